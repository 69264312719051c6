# astrosignals/nakshatra.py
# ------------------------------------------------------------
# Nakshatra identifiers + per-context strength classes
# - canonical names (index 1..27)
# - supportive | neutral | sensitive | obstructive lookup
# - static tables only; unknown input resolves to None / "neutral"
# ------------------------------------------------------------

from typing import Any, Dict, List, Mapping, Optional, Sequence

NAKSHATRA_NAMES: tuple = (
    "ASHWINI", "BHARANI", "KRITTIKA", "ROHINI", "MRIGASHIRA", "ARDRA",
    "PUNARVASU", "PUSHYA", "ASHLESHA", "MAGHA", "PURVA_PHALGUNI", "UTTARA_PHALGUNI",
    "HASTA", "CHITRA", "SWATI", "VISHAKHA", "ANURADHA", "JYESHTHA",
    "MULA", "PURVA_ASHADHA", "UTTARA_ASHADHA", "SHRAVANA", "DHANISHTHA", "SHATABHISHA",
    "PURVA_BHADRAPADA", "UTTARA_BHADRAPADA", "REVATI",
)

NAKSHATRA_ALIASES: Dict[str, str] = {
    "PURVA_PHALGINI": "PURVA_PHALGUNI",
    "UTTARA_PHALGINI": "UTTARA_PHALGUNI",
    "VISHHAKHA": "VISHAKHA",
    "SHATBHISHA": "SHATABHISHA",
    "PURVA_BHADRA": "PURVA_BHADRAPADA",
    "UTTARA_BHADRA": "UTTARA_BHADRAPADA",
}

STRENGTH_CLASSES: tuple = ("supportive", "neutral", "sensitive", "obstructive")

# Anything not listed for a context is neutral.
NAKSHATRA_STRENGTH_MODEL: Dict[str, Dict[str, tuple]] = {
    "marriage": {"supportive": (), "neutral": (), "sensitive": (), "obstructive": ()},
    "finance": {
        "supportive": ("PUSHYA", "ROHINI", "HASTA", "SWATI", "SHRAVANA", "DHANISHTHA", "ANURADHA", "UTTARA_PHALGUNI"),
        "neutral": (),
        "sensitive": ("ARDRA", "ASHLESHA", "JYESHTHA", "MULA"),
        "obstructive": ("BHARANI",),
    },
    "health": {
        "supportive": ("PUSHYA", "ROHINI", "HASTA", "ANURADHA", "SHRAVANA", "UTTARA_PHALGUNI"),
        "neutral": (),
        "sensitive": ("ARDRA", "ASHLESHA", "JYESHTHA", "MULA"),
        "obstructive": ("BHARANI",),
    },
    "progeny": {
        "supportive": ("PUSHYA", "ROHINI", "PUNARVASU", "REVATI", "UTTARA_PHALGUNI", "UTTARA_ASHADHA"),
        "neutral": (),
        "sensitive": ("ARDRA", "ASHLESHA", "JYESHTHA", "MULA"),
        "obstructive": ("BHARANI",),
    },
    "career": {
        "supportive": ("HASTA", "SWATI", "ANURADHA", "UTTARA_PHALGUNI", "UTTARA_ASHADHA", "SHRAVANA", "DHANISHTHA"),
        "neutral": (),
        "sensitive": ("ARDRA", "JYESHTHA", "MULA", "ASHLESHA"),
        "obstructive": ("BHARANI",),
    },
    "business": {
        "supportive": ("HASTA", "SWATI", "SHRAVANA", "DHANISHTHA", "ANURADHA", "UTTARA_PHALGUNI"),
        "neutral": (),
        "sensitive": ("ARDRA", "ASHLESHA", "JYESHTHA", "MULA"),
        "obstructive": ("BHARANI",),
    },
    "relationship": {"supportive": (), "neutral": (), "sensitive": (), "obstructive": ()},
}

# checked in this order; first hit wins
_CLASS_PRECEDENCE = ("obstructive", "sensitive", "supportive", "neutral")

DEFAULT_SIGNAL_PLANETS: tuple = ("JUPITER", "SATURN", "RAHU", "KETU", "VENUS")


def canonicalize(value: Any) -> Optional[str]:
    """Index 1..27, canonical name, or known alias -> canonical name; else None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if value != value or value in (float("inf"), float("-inf")):
            return None
        idx = int(value)
        if 1 <= idx <= 27:
            return NAKSHATRA_NAMES[idx - 1]
        return None

    raw = str(value).strip()
    if not raw:
        return None
    upper = "_".join(raw.upper().split())
    while "--" in upper:
        upper = upper.replace("--", "-")
    upper = upper.replace("-", "_")

    if upper in NAKSHATRA_NAMES:
        return upper
    return NAKSHATRA_ALIASES.get(upper)


def canonicalize_pada(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        n = float(value)
    except (TypeError, ValueError):
        return None
    if n != n or n in (float("inf"), float("-inf")):
        return None
    p = int(n)
    return p if 1 <= p <= 4 else None


def nakshatra_index(name: Any) -> Optional[int]:
    """1-based index of a nakshatra, or None."""
    n = canonicalize(name)
    return NAKSHATRA_NAMES.index(n) + 1 if n else None


def classify(context_key: Any, nakshatra: Any) -> str:
    n = canonicalize(nakshatra)
    if not n:
        return "neutral"
    ctx = NAKSHATRA_STRENGTH_MODEL.get(str(context_key or "").lower())
    if not ctx:
        return "neutral"
    for kind in _CLASS_PRECEDENCE:
        if n in ctx.get(kind, ()):
            return kind
    return "neutral"


# ------------ planet record helpers ------------
_NAKSHATRA_KEYS = ("nakshatra", "nakshatra_name", "nakshatraName", "nakshatra_id", "nakshatraId")
_PADA_KEYS = ("nakshatra_pada", "pada", "nakshatraPada")


def _first_present(record: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for k in keys:
        if record.get(k) is not None:
            return record[k]
    return None


def nakshatra_from_record(record: Optional[Mapping[str, Any]]) -> Optional[str]:
    if not isinstance(record, Mapping):
        return None
    return canonicalize(_first_present(record, _NAKSHATRA_KEYS))


def pada_from_record(record: Optional[Mapping[str, Any]]) -> Optional[int]:
    if not isinstance(record, Mapping):
        return None
    return canonicalize_pada(_first_present(record, _PADA_KEYS))


def extract_nakshatra_context_signals(state, context_key: str,
                                      transit_planets: Sequence[str] = DEFAULT_SIGNAL_PLANETS) -> Dict[str, Any]:
    """
    List the nakshatra class of each transiting planet for one domain context.
    Planets without a known nakshatra are left out.
    """
    ctx = str(context_key or "").lower()
    signals: List[Dict[str, Any]] = []
    for p in transit_planets:
        name = str(p).upper()
        fact = state.transits.get(name)
        if fact is None or not fact.nakshatra:
            continue
        signals.append({
            "kind": "transit",
            "planet": name,
            "nakshatra": fact.nakshatra,
            "pada": fact.pada,
            "strength": classify(ctx, fact.nakshatra),
        })
    return {"context": ctx, "signals": signals}
