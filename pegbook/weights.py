"""
Catch weights. Canonical unit is integer grams so sums never drift.
Input accepts grams, kilograms ("2.5kg") or pounds/ounces ("5 lb 3 oz").
"""
from __future__ import annotations

import re

GRAMS_PER_OUNCE = 28.349523125
OUNCES_PER_POUND = 16

_LB_OZ = re.compile(r"^\s*(?:(\d+(?:\.\d+)?)\s*lbs?)?\s*(?:(\d+(?:\.\d+)?)\s*oz)?\s*$", re.IGNORECASE)
_KG = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*kg\s*$", re.IGNORECASE)
_GRAMS = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*g?\s*$", re.IGNORECASE)


def ounces_to_grams(pounds: float, ounces: float = 0) -> int:
    return round((pounds * OUNCES_PER_POUND + ounces) * GRAMS_PER_OUNCE)


def kg_to_grams(kg: float) -> int:
    return round(kg * 1000)


def parse_weight(value: int | float | str) -> int:
    """
    Parse a weight into grams. Raises ValueError for negative or unreadable input.
    Bare numbers are grams.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid weight: {value!r}")
    if isinstance(value, (int, float)):
        grams = round(value)
    else:
        text = value.strip()
        if not text:
            raise ValueError("Weight is required")
        kg = _KG.match(text)
        grams_match = _GRAMS.match(text)
        lb_oz = _LB_OZ.match(text)
        if kg:
            grams = kg_to_grams(float(kg.group(1)))
        elif grams_match:
            grams = round(float(grams_match.group(1)))
        elif lb_oz and (lb_oz.group(1) or lb_oz.group(2)):
            grams = ounces_to_grams(float(lb_oz.group(1) or 0), float(lb_oz.group(2) or 0))
        else:
            raise ValueError(f"Invalid weight: {value!r}")
    if grams < 0:
        raise ValueError("Weight cannot be negative")
    return grams


def format_kg(grams: int) -> str:
    return f"{grams / 1000:.3f}"


def format_lb_oz(grams: int) -> str:
    total_oz = round(grams / GRAMS_PER_OUNCE)
    pounds, ounces = divmod(total_oz, OUNCES_PER_POUND)
    return f"{pounds} lb {ounces} oz"
