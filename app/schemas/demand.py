from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field


class DemandObservation(BaseModel):
    """Total outbound quantity for one calendar day, with calendar features."""

    date: date
    quantity: int = Field(ge=0)
    day_of_week: int = Field(ge=0, le=6)
    day_of_month: int = Field(ge=1, le=31)
    month: int = Field(ge=1, le=12)
    is_weekend: bool

    class Config:
        frozen = True

    @classmethod
    def for_day(cls, day: date, quantity: int) -> "DemandObservation":
        weekday = day.weekday()
        return cls(
            date=day,
            quantity=quantity,
            day_of_week=weekday,
            day_of_month=day.day,
            month=day.month,
            is_weekend=weekday >= 5,
        )
