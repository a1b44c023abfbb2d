"""
Scheduling Domain

Recurrence calculation, visit materialization and the real/virtual calendar.
"""
