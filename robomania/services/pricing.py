"""Competition pricing and robot validation rules. Pure functions, no I/O."""
from __future__ import annotations

import re
from typing import NamedTuple, Optional

ROBOWARS = "ROBOWARS"
ROBORACE = "ROBORACE"
ROBOSOCCER = "ROBOSOCCER"

COMPETITIONS = (ROBOWARS, ROBORACE, ROBOSOCCER)

# Entry fee in rupees
COMPETITION_PRICES = {
    ROBOWARS: 300,
    ROBORACE: 200,
    ROBOSOCCER: 200,
}

# Maximum robot weight in kg
WEIGHT_LIMITS = {
    ROBOWARS: 8,
    ROBORACE: 5,
    ROBOSOCCER: 3,
}

DISPLAY_NAMES = {
    ROBOWARS: "RoboWars",
    ROBORACE: "RoboRace",
    ROBOSOCCER: "RoboSoccer",
}

# Competitions where the robot must declare a weapon
WEAPON_COMPETITIONS = {ROBOWARS}

WEAPON_TYPES = [
    "Spinner",
    "Flipper",
    "Hammer",
    "Lifter",
    "Crusher",
    "Saw",
    "Axe",
    "Pusher",
    "Other",
]

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_RE = re.compile(r"^[6-9]\d{9}$")


class WeightCheck(NamedTuple):
    valid: bool
    reason: Optional[str] = None


def normalize_competition(value: str) -> Optional[str]:
    """Return the canonical competition code ('robowars' -> 'ROBOWARS'), or None if unknown."""
    code = (value or "").strip().upper()
    return code if code in COMPETITION_PRICES else None


def price_of(competition: str) -> int:
    """Entry fee in rupees. 0 for unknown competitions."""
    return COMPETITION_PRICES.get(normalize_competition(competition) or "", 0)


def max_weight_of(competition: str) -> Optional[float]:
    code = normalize_competition(competition)
    return WEIGHT_LIMITS.get(code) if code else None


def display_name(competition: str) -> str:
    code = normalize_competition(competition)
    return DISPLAY_NAMES[code] if code else competition


def requires_weapon(competition: str) -> bool:
    return normalize_competition(competition) in WEAPON_COMPETITIONS


def validate_weight(weight: float, competition: str) -> WeightCheck:
    """Check a robot weight against the competition ceiling (inclusive)."""
    max_weight = max_weight_of(competition)
    if max_weight is None:
        return WeightCheck(False, "Invalid competition")
    if weight is None or weight <= 0:
        return WeightCheck(False, "Weight must be greater than 0")
    if weight > max_weight:
        return WeightCheck(False, f"Maximum weight for {display_name(competition)} is {max_weight}kg")
    return WeightCheck(True)


def calculate_total(competitions: list[str]) -> int:
    return sum(price_of(c) for c in competitions)


def validate_email(email: str) -> bool:
    return bool(_EMAIL_RE.match((email or "").strip()))


def validate_phone(phone: str) -> bool:
    """Indian mobile number: 10 digits starting with 6-9 (spaces ignored)."""
    return bool(_PHONE_RE.match(re.sub(r"\s+", "", phone or "")))
