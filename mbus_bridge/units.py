"""Parsing of the free-text unit strings libmbus attaches to data records.

libmbus renders a record's unit as ``<quantity> (<annotation>)``, for example
``Volume (1e-3 m^3)`` or ``Energy (kWh)``. The annotation optionally starts with
a power-of-ten factor that has to be applied to the raw value.
"""

import re

from .models import ParsedUnit, ScaledUnit

PROPERTY_UNIT_RE = re.compile(r"^(?P<name>.+?)(\((?P<annotation>.+)\))?$")
FACTOR_UNIT_RE = re.compile(r"^(?P<factor>1e-\d)\s+(?P<unit>.+)$")

SUPERSCRIPTS = (("^2", "²"), ("^3", "³"))


def parse_property_unit(text: str) -> ParsedUnit:
    """Split ``text`` into a display name and an optional unit annotation."""
    match = PROPERTY_UNIT_RE.match(text or "")
    if not match:
        # only the empty string gets here
        return ParsedUnit(display_name=text or "")
    return ParsedUnit(
        display_name=match.group("name"),
        annotation=match.group("annotation"),
    )


def normalize_unit(unit: str) -> str:
    for plain, superscript in SUPERSCRIPTS:
        unit = unit.replace(plain, superscript)
    return unit


def parse_scaled_unit(annotation: str) -> ScaledUnit:
    """
    Extract the power-of-ten factor from a unit annotation.

    ``"1e-3 m^3"`` gives factor ``0.001`` and unit ``"m³"``. Annotations without a
    factor token (``"kWh"``, ``"m m^3"``) are returned verbatim with no factor.
    """
    match = FACTOR_UNIT_RE.match(annotation)
    if not match:
        return ScaledUnit(normalized_unit=annotation)
    return ScaledUnit(
        normalized_unit=normalize_unit(match.group("unit")),
        scale_factor=float(match.group("factor")),
    )
