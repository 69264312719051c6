# astrosignals/time_engine.py
# ------------------------------------------------------------
# Vimshottari Dasha
# - Mahadasha sequence from birth instant + sidereal Moon longitude
# - Antardasha / Pratyantardasha derived on demand from a parent span
# - boundaries are UTC calendar dates; to[i] == from[i+1]
# - bad input raises DashaError; a wrong partition is never returned
# ------------------------------------------------------------

import calendar
import datetime as dt
import itertools
import math
import threading
from typing import Any, Dict, Iterator, List, Optional

import pytz
import swisseph as swe
from pydantic import BaseModel, ConfigDict, Field

from .chart_state import PLANET_NAME_TO_ID, planet_name

# ---- Vimshottari tables ----
DASHA_ORDER: tuple = ("KETU", "VENUS", "SUN", "MOON", "MARS", "RAHU", "JUPITER", "SATURN", "MERCURY")
DASHA_YEARS: Dict[str, int] = {
    "KETU": 7, "VENUS": 20, "SUN": 6, "MOON": 10, "MARS": 7,
    "RAHU": 18, "JUPITER": 16, "SATURN": 19, "MERCURY": 17,
}
TOTAL_YEARS = 120
NAK_LORDS: tuple = DASHA_ORDER * 3  # index 0 = Ashwini ... 26 = Revati
NAK_SIZE = 360.0 / 27.0
YEAR_DAYS = 365.2425  # fractional durations only
# longitudes this close to a nakshatra start are treated as on it
BOUNDARY_EPS = 1e-9

AYAN_MAP = {
    "Lahiri": swe.SIDM_LAHIRI,
    "Raman": swe.SIDM_RAMAN,
    "Krishnamurti": swe.SIDM_KRISHNAMURTI,
}
_SWE_LOCK = threading.Lock()


class DashaError(ValueError):
    pass


class DashaPeriod(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    planet: str
    start: dt.date = Field(alias="from")
    end: dt.date = Field(alias="to")

    @property
    def duration_days(self) -> int:
        return (self.end - self.start).days

    def contains(self, day: dt.date) -> bool:
        return self.start <= day <= self.end


class DashaState(BaseModel):
    model_config = ConfigDict(frozen=True)

    mahadasha: Optional[DashaPeriod] = None
    antardasha: Optional[DashaPeriod] = None
    pratyantardasha: Optional[DashaPeriod] = None


# ---- instants ----
def to_utc(instant: Any, tz_hours: Optional[float] = None) -> dt.datetime:
    """
    Aware datetime -> UTC. Naive datetime is UTC unless tz_hours is given.
    date -> midnight UTC. ISO strings are parsed first.
    """
    if isinstance(instant, str):
        try:
            instant = dt.datetime.fromisoformat(instant.strip().replace("Z", "+00:00"))
        except ValueError as ex:
            raise DashaError(f"invalid instant: {instant!r}") from ex
    if isinstance(instant, dt.datetime):
        if instant.tzinfo is not None:
            return instant.astimezone(pytz.utc)
        if tz_hours is not None:
            offset = int(round(tz_hours * 60))
            return pytz.FixedOffset(offset).localize(instant).astimezone(pytz.utc)
        return pytz.utc.localize(instant)
    if isinstance(instant, dt.date):
        return pytz.utc.localize(dt.datetime(instant.year, instant.month, instant.day))
    raise DashaError(f"instant must be a datetime, date or ISO string, got {type(instant).__name__}")


def to_date(value: Any) -> dt.date:
    if isinstance(value, dt.datetime):
        return to_utc(value).date()
    if isinstance(value, dt.date):
        return value
    if isinstance(value, str):
        try:
            return dt.date.fromisoformat(value.strip())
        except ValueError as ex:
            raise DashaError(f"date must be ISO YYYY-MM-DD: {value!r}") from ex
    raise DashaError(f"date required, got {type(value).__name__}")


def ceil_to_date(moment: dt.datetime) -> dt.date:
    floored = moment.date()
    if moment == dt.datetime.combine(floored, dt.time(0), tzinfo=moment.tzinfo):
        return floored
    return floored + dt.timedelta(days=1)


def add_years(day: dt.date, years: int) -> dt.date:
    """Same month/day `years` later; Feb 29 clamps to the month's last day."""
    target = day.year + years
    if not dt.MINYEAR <= target <= dt.MAXYEAR:
        raise DashaError(f"date out of range: {day} + {years} years")
    last = calendar.monthrange(target, day.month)[1]
    return dt.date(target, day.month, min(day.day, last))


def normalize(deg: float) -> float:
    return deg % 360.0


def _longitude(value: Any) -> float:
    try:
        lon = float(value)
    except (TypeError, ValueError) as ex:
        raise DashaError(f"moon longitude must be a number, got {value!r}") from ex
    if not math.isfinite(lon):
        raise DashaError(f"moon longitude must be finite, got {value!r}")
    return normalize(lon)


def _ruler(value: Any) -> str:
    name = planet_name(value)
    if name not in DASHA_YEARS:
        raise DashaError(f"invalid dasha planet: {value!r}")
    return name


# ---- Moon position ----
def moon_nakshatra(moon_lon: float) -> tuple:
    """Return (nak_index 0..26, balance_fraction 0..1]."""
    lon = _longitude(moon_lon)
    q = lon / NAK_SIZE
    nearest = round(q)
    if abs(q - nearest) < BOUNDARY_EPS:
        idx, traversed = int(nearest), 0.0
    else:
        idx = int(q)
        traversed = min(max(0.0, q - idx), 1.0)
    return idx % 27, 1.0 - traversed


def next_in_cycle(name: str) -> str:
    i = DASHA_ORDER.index(name)
    return DASHA_ORDER[(i + 1) % len(DASHA_ORDER)]


def moon_sidereal_longitude(birth: Any, tz_hours: Optional[float] = None, ayanamsha: str = "Lahiri") -> float:
    utc = to_utc(birth, tz_hours)
    jd = swe.julday(utc.year, utc.month, utc.day,
                    utc.hour + utc.minute / 60.0 + utc.second / 3600.0)
    # sidereal mode is global Swiss Ephemeris state
    with _SWE_LOCK:
        swe.set_sid_mode(AYAN_MAP.get(ayanamsha, swe.SIDM_LAHIRI))
        pos, _ = swe.calc_ut(jd, swe.MOON, swe.FLG_SWIEPH | swe.FLG_SIDEREAL)
    return normalize(pos[0])


# ---- Mahadasha ----
def iter_periods(birth: Any, moon_lon: Any) -> Iterator[DashaPeriod]:
    """Endless Mahadasha sequence; the 9-planet rotation never resets."""
    cursor = to_utc(birth)
    nak_idx, balance = moon_nakshatra(moon_lon)
    lord = NAK_LORDS[nak_idx]

    years: float = DASHA_YEARS[lord] * balance
    first = True
    while True:
        start = cursor.date()
        if not first or float(years).is_integer():
            end = add_years(start, int(years))
        else:
            # fractional balance: mean-year days, rounded up to a whole date
            try:
                end = ceil_to_date(cursor + dt.timedelta(days=years * YEAR_DAYS))
            except OverflowError as ex:
                raise DashaError(f"period end out of range after {start}") from ex
            end = max(end, start + dt.timedelta(days=1))
        yield DashaPeriod(planet=lord, start=start, end=end)

        cursor = pytz.utc.localize(dt.datetime(end.year, end.month, end.day))
        lord = next_in_cycle(lord)
        years = DASHA_YEARS[lord]
        first = False


def generate_periods(birth: Any, moon_lon: Any, count: int = 18) -> List[DashaPeriod]:
    if isinstance(count, bool) or not isinstance(count, int) or count < 1:
        raise DashaError(f"count must be a positive integer, got {count!r}")
    return list(itertools.islice(iter_periods(birth, moon_lon), count))


# ---- Antardasha / Pratyantardasha ----
def generate_sub_periods(parent_planet: Any, start: Any, end: Any) -> List[DashaPeriod]:
    """
    Split a parent span into sub-periods, starting from the parent planet.
    Each share is parent_days * years / 120 added to the previous boundary and
    rounded up to a date; the last boundary is forced to the parent end.
    """
    lord = _ruler(parent_planet)
    start_d, end_d = to_date(start), to_date(end)
    parent_days = (end_d - start_d).days
    if parent_days <= 0:
        raise DashaError(f"parent duration must be > 0 ({start_d} -> {end_d})")

    cursor = start_d
    out: List[DashaPeriod] = []
    for i in range(len(DASHA_ORDER)):
        share = parent_days * DASHA_YEARS[lord] / TOTAL_YEARS
        nxt = ceil_to_date(dt.datetime.combine(cursor, dt.time(0)) + dt.timedelta(days=share))
        if i == len(DASHA_ORDER) - 1 or nxt > end_d:
            nxt = end_d
        out.append(DashaPeriod(planet=lord, start=cursor, end=nxt))
        cursor = nxt
        if cursor >= end_d:
            break
        lord = next_in_cycle(lord)

    return out


def _find(periods: List[DashaPeriod], day: dt.date) -> Optional[DashaPeriod]:
    for p in periods:
        if p.contains(day):
            return p
    return None


def state_at(birth: Any, moon_lon: Any, at: Any) -> DashaState:
    """Running Mahadasha / Antardasha / Pratyantardasha on the date of `at`."""
    day = to_utc(at).date()
    if day < to_utc(birth).date():
        return DashaState()

    md = None
    for period in iter_periods(birth, moon_lon):
        if period.contains(day):
            md = period
            break

    ad = _find(generate_sub_periods(md.planet, md.start, md.end), day)
    pd = _find(generate_sub_periods(ad.planet, ad.start, ad.end), day) if ad else None
    return DashaState(mahadasha=md, antardasha=ad, pratyantardasha=pd)


def snapshot_dasha_fields(state: DashaState) -> Dict[str, Optional[int]]:
    """DashaState -> running_*_planet snapshot columns (engine ids)."""
    def pid(p: Optional[DashaPeriod]) -> Optional[int]:
        return PLANET_NAME_TO_ID.get(p.planet) if p else None

    return {
        "running_mahadasha_planet": pid(state.mahadasha),
        "running_antardasha_planet": pid(state.antardasha),
        "running_pratyantardasha_planet": pid(state.pratyantardasha),
    }
