from __future__ import annotations

import uuid
from bisect import bisect_right
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable


@dataclass(frozen=True)
class RateOverride:
    employee_id: uuid.UUID
    hourly_rate: Decimal | float
    effective_from: date


@dataclass(frozen=True)
class AgeBand:
    id: int
    min_age: int
    max_age: int | None
    is_active: bool = True


@dataclass(frozen=True)
class BandRate:
    band_id: int
    hourly_rate: Decimal | float
    effective_from: date


def age_on(date_of_birth: date, on_date: date) -> int:
    years = on_date.year - date_of_birth.year
    if (on_date.month, on_date.day) < (date_of_birth.month, date_of_birth.day):
        years -= 1
    return years


class _EffectiveRates:
    """Rates ordered by effective date; lookup returns the latest one on or before a day."""

    def __init__(self) -> None:
        self._dates: list[date] = []
        self._rates: list[float] = []

    def add(self, effective_from: date, hourly_rate: Decimal | float) -> None:
        index = bisect_right(self._dates, effective_from)
        self._dates.insert(index, effective_from)
        self._rates.insert(index, float(hourly_rate))

    def at(self, on_date: date) -> float | None:
        index = bisect_right(self._dates, on_date)
        if index == 0:
            return None
        return self._rates[index - 1]


class PayRateBook:
    """Resolves an employee's hourly rate for a day from overrides, then age bands."""

    def __init__(
        self,
        *,
        overrides: Iterable[RateOverride] = (),
        bands: Iterable[AgeBand] = (),
        band_rates: Iterable[BandRate] = (),
        dates_of_birth: dict[uuid.UUID, date | None] | None = None,
    ) -> None:
        self._overrides: dict[uuid.UUID, _EffectiveRates] = defaultdict(_EffectiveRates)
        for override in overrides:
            self._overrides[override.employee_id].add(override.effective_from, override.hourly_rate)

        self._bands = sorted((band for band in bands if band.is_active), key=lambda band: band.min_age)
        self._band_rates: dict[int, _EffectiveRates] = defaultdict(_EffectiveRates)
        for band_rate in band_rates:
            self._band_rates[band_rate.band_id].add(band_rate.effective_from, band_rate.hourly_rate)

        self._dates_of_birth = dict(dates_of_birth or {})

    def _band_for_age(self, age: int) -> AgeBand | None:
        for band in self._bands:
            if age >= band.min_age and (band.max_age is None or age <= band.max_age):
                return band
        return None

    def rate_for(self, employee_id: uuid.UUID, on_date: date) -> float | None:
        override = self._overrides.get(employee_id)
        if override is not None:
            rate = override.at(on_date)
            if rate is not None:
                return rate

        date_of_birth = self._dates_of_birth.get(employee_id)
        if date_of_birth is None:
            return None
        band = self._band_for_age(age_on(date_of_birth, on_date))
        if band is None:
            return None
        band_rates = self._band_rates.get(band.id)
        if band_rates is None:
            return None
        return band_rates.at(on_date)
