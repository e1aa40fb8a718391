"""Availability models."""

import datetime as dt
from typing import List

from pydantic import BaseModel, Field


class AvailabilityResult(BaseModel):
    """Bookable versus reserved hours for one (date, employee) pair.

    ``available`` and ``reserved`` never share an hour.
    """

    date: dt.date
    employee_id: int
    available: List[str] = Field(default_factory=list, description="Free hours (HH:MM)")
    reserved: List[str] = Field(default_factory=list, description="Taken hours (HH:MM)")
    source: str = Field(default="unknown", description="Backend shape: list, slots or unknown")

    def is_for(self, date: dt.date, employee_id: int) -> bool:
        return self.date == date and int(self.employee_id) == int(employee_id)

    def is_available(self, hour: str) -> bool:
        return hour in self.available and hour not in self.reserved

