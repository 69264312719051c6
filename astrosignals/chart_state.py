# astrosignals/chart_state.py
# ------------------------------------------------------------
# Snapshot -> ChartState adapter
# - planets/transits accepted as a list of records or a name-keyed map
# - houses accepted as a list of records or an id-keyed map
# - malformed entries are dropped; nothing here raises on bad data
# ------------------------------------------------------------

import math
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from .nakshatra import nakshatra_from_record, pada_from_record

# ------------ Core tables ------------
SIGNS: List[str] = [
    "Aries", "Taurus", "Gemini", "Cancer", "Leo", "Virgo",
    "Libra", "Scorpio", "Sagittarius", "Capricorn", "Aquarius", "Pisces"
]
SIGN_LORD: Dict[int, str] = {
    1: "MARS", 2: "VENUS", 3: "MERCURY", 4: "MOON", 5: "SUN", 6: "MERCURY",
    7: "VENUS", 8: "MARS", 9: "JUPITER", 10: "SATURN", 11: "SATURN", 12: "JUPITER"
}
# engine ids used by snapshot columns and authored dasha rules
PLANET_ID_TO_NAME: Dict[int, str] = {
    1: "SUN", 2: "MOON", 3: "MARS", 4: "MERCURY", 5: "JUPITER",
    6: "VENUS", 7: "SATURN", 8: "RAHU", 9: "KETU",
}
PLANET_NAME_TO_ID: Dict[str, int] = {v: k for k, v in PLANET_ID_TO_NAME.items()}

_SIGN_BY_NAME: Dict[str, int] = {s.upper(): i + 1 for i, s in enumerate(SIGNS)}


# ------------ tiny coercion helpers ------------
def to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(f):
        return None
    return int(f)


def to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def sign_number(value: Any) -> Optional[int]:
    """1..12 from a sign number or sign name."""
    if isinstance(value, str) and value.strip().upper() in _SIGN_BY_NAME:
        return _SIGN_BY_NAME[value.strip().upper()]
    n = to_int(value)
    return n if n is not None and 1 <= n <= 12 else None


def planet_name(value: Any) -> Optional[str]:
    """Uppercase planet name from a name or an engine id (1..9)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return PLANET_ID_TO_NAME.get(to_int(value))
    raw = str(value).strip()
    if not raw:
        return None
    if raw.isdigit():
        return PLANET_ID_TO_NAME.get(int(raw))
    return raw.upper()


def lord_of_sign(sign_num: int) -> Optional[str]:
    return SIGN_LORD.get(sign_num)


def sign_of_house_from_asc(asc_sign: int, house_num: int) -> int:
    """Whole-sign: house 1 = asc sign; house n => asc+(n-1)."""
    return ((asc_sign - 1) + (house_num - 1)) % 12 + 1


# ------------ models ------------
class PlanetFact(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    house: Optional[int] = None
    sign: Optional[int] = None
    longitude: Optional[float] = None
    nakshatra: Optional[str] = None
    pada: Optional[int] = None
    strength: Optional[float] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class ChartState(BaseModel):
    """Canonical, read-only view of one snapshot for a single evaluation."""
    model_config = ConfigDict(frozen=True)

    planets: Dict[str, PlanetFact] = Field(default_factory=dict)
    transits: Dict[str, PlanetFact] = Field(default_factory=dict)
    # house number -> sign number
    houses: Dict[int, int] = Field(default_factory=dict)
    yogas: List[Any] = Field(default_factory=list)
    doshas: List[Any] = Field(default_factory=list)
    raw: Dict[str, Any] = Field(default_factory=dict)

    def house_lord(self, house_num: int) -> Optional[str]:
        sign = self.houses.get(house_num)
        return lord_of_sign(sign) if sign else None


# ------------ adapters ------------
def _house_value(value: Any) -> Optional[int]:
    # either {"house": 2} or {"house": {"number": 2, ...}}
    if isinstance(value, Mapping):
        value = value.get("number")
    return to_int(value)


def planet_fact(name: str, record: Mapping[str, Any]) -> PlanetFact:
    sign = record.get("sign")
    if sign is None:
        sign = record.get("sign_num")
    lon = record.get("longitude")
    if lon is None:
        lon = record.get("lon")
    strength = record.get("strength")
    if strength is None:
        strength = record.get("strength_score")
    return PlanetFact(
        name=name,
        house=_house_value(record.get("house")),
        sign=sign_number(sign),
        longitude=to_float(lon),
        nakshatra=nakshatra_from_record(record),
        pada=pada_from_record(record),
        strength=to_float(strength),
        raw=dict(record),
    )


def planets_by_name(source: Any) -> Dict[str, PlanetFact]:
    out: Dict[str, PlanetFact] = {}
    if isinstance(source, (list, tuple)):
        for rec in source:
            if not isinstance(rec, Mapping):
                continue
            name = planet_name(rec.get("planet") if rec.get("planet") is not None else rec.get("name"))
            if not name:
                continue
            out[name] = planet_fact(name, rec)
    elif isinstance(source, Mapping):
        for key, rec in source.items():
            name = planet_name(key)
            if not name or not isinstance(rec, Mapping):
                continue
            out[name] = planet_fact(name, rec)
    return out


def _house_entry_sign(rec: Any) -> Optional[int]:
    if isinstance(rec, Mapping):
        sign = rec.get("sign")
        if sign is None:
            sign = rec.get("sign_num")
        return sign_number(sign)
    return sign_number(rec)


def houses_map(source: Any, lagna_sign: Any = None) -> Dict[int, int]:
    out: Dict[int, int] = {}
    if isinstance(source, (list, tuple)):
        for rec in source:
            if not isinstance(rec, Mapping):
                continue
            num = None
            for key in ("house", "number", "id"):
                if rec.get(key) is not None:
                    num = to_int(rec[key])
                    break
            sign = _house_entry_sign(rec)
            if num is not None and 1 <= num <= 12 and sign:
                out[num] = sign
    elif isinstance(source, Mapping):
        for key, rec in source.items():
            num = to_int(key)
            sign = _house_entry_sign(rec)
            if num is not None and 1 <= num <= 12 and sign:
                out[num] = sign

    if not out:
        asc = sign_number(lagna_sign)
        if asc:
            out = {h: sign_of_house_from_asc(asc, h) for h in range(1, 13)}
    return out


def _first(row: Mapping[str, Any], *keys: str) -> Any:
    for k in keys:
        if row.get(k) is not None:
            return row[k]
    return None


def normalize_snapshot(row: Optional[Mapping[str, Any]]) -> ChartState:
    """
    Build a ChartState from a snapshot row.

    planets_state / transits_state may be:
      1) [{"planet": "JUPITER", "house": 2, ...}, ...]
      2) {"JUPITER": {"house": 2, ...}, ...}
    Scalar columns (running dasha planets, overall scores, lagna_sign, ...)
    are kept in `raw` for the leaves that read them directly.
    """
    if isinstance(row, ChartState):
        return row
    if not isinstance(row, Mapping):
        row = {}

    yogas = row.get("yogas_state")
    doshas = row.get("doshas_state")
    raw = {k: v for k, v in row.items() if not isinstance(v, (Mapping, list, tuple))}

    return ChartState(
        planets=planets_by_name(_first(row, "planets_state", "planets")),
        transits=planets_by_name(_first(row, "transits_state", "transits")),
        houses=houses_map(row.get("houses_state"), row.get("lagna_sign")),
        yogas=list(yogas) if isinstance(yogas, (list, tuple)) else [],
        doshas=list(doshas) if isinstance(doshas, (list, tuple)) else [],
        raw=raw,
    )
