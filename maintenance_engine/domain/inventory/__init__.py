"""Inventory Domain - branch stock ledger shared with the stock-transfer module"""
