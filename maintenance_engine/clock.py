"""Injectable time and identifier sources"""

import uuid
from datetime import date, datetime, timedelta


class Clock:
    """Wall clock (naive UTC, like the rest of the schema)"""

    def now(self) -> datetime:
        return datetime.utcnow()

    def today(self) -> date:
        return self.now().date()


class FrozenClock(Clock):
    """Clock pinned to a given instant; used by sweeps replaying a date and by tests"""

    def __init__(self, instant: datetime):
        self.instant = instant

    def now(self) -> datetime:
        return self.instant

    def advance(self, **kwargs) -> None:
        self.instant = self.instant + timedelta(**kwargs)


class IdGenerator:
    def new_public_id(self) -> str:
        """Generate a unique public ID for secure public access"""
        return str(uuid.uuid4())


system_clock = Clock()
id_generator = IdGenerator()


def generate_public_id() -> str:
    return id_generator.new_public_id()


def get_clock() -> Clock:
    """FastAPI dependency; tests override it with a FrozenClock"""
    return system_clock
