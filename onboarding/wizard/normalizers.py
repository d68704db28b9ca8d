"""Input masks and normalization helpers for wizard fields."""

from __future__ import annotations

import re
from typing import Any

REGISTRY_NUMBER_LENGTH = 10
POSTAL_PREFIX_LENGTH = 5
POSTAL_MAX_DIGITS = 9
POSTAL_CODE_PATTERN = re.compile(r"\d{5}-\d{4}")
REGISTRY_NUMBER_PATTERN = re.compile(r"\d{10}")

STATE_NAMES_BY_CODE: dict[str, str] = {
    "AL": "Alabama",
    "AK": "Alaska",
    "AZ": "Arizona",
    "AR": "Arkansas",
    "CA": "California",
    "CO": "Colorado",
    "CT": "Connecticut",
    "DC": "District of Columbia",
    "DE": "Delaware",
    "FL": "Florida",
    "GA": "Georgia",
    "HI": "Hawaii",
    "ID": "Idaho",
    "IL": "Illinois",
    "IN": "Indiana",
    "IA": "Iowa",
    "KS": "Kansas",
    "KY": "Kentucky",
    "LA": "Louisiana",
    "ME": "Maine",
    "MD": "Maryland",
    "MA": "Massachusetts",
    "MI": "Michigan",
    "MN": "Minnesota",
    "MS": "Mississippi",
    "MO": "Missouri",
    "MT": "Montana",
    "NE": "Nebraska",
    "NV": "Nevada",
    "NH": "New Hampshire",
    "NJ": "New Jersey",
    "NM": "New Mexico",
    "NY": "New York",
    "NC": "North Carolina",
    "ND": "North Dakota",
    "OH": "Ohio",
    "OK": "Oklahoma",
    "OR": "Oregon",
    "PA": "Pennsylvania",
    "RI": "Rhode Island",
    "SC": "South Carolina",
    "SD": "South Dakota",
    "TN": "Tennessee",
    "TX": "Texas",
    "UT": "Utah",
    "VT": "Vermont",
    "VA": "Virginia",
    "WA": "Washington",
    "WV": "West Virginia",
    "WI": "Wisconsin",
    "WY": "Wyoming",
}

STATE_CODES_BY_NAME: dict[str, str] = {
    name.lower(): code for code, name in STATE_NAMES_BY_CODE.items()
}
# Address search also returns Indian results.
STATE_CODES_BY_NAME.update(
    {
        "andhra pradesh": "AP",
        "arunachal pradesh": "AR",
        "assam": "AS",
        "bihar": "BR",
        "chhattisgarh": "CT",
        "goa": "GA",
        "gujarat": "GJ",
        "haryana": "HR",
        "himachal pradesh": "HP",
        "jammu and kashmir": "JK",
        "jharkhand": "JH",
        "karnataka": "KA",
        "kerala": "KL",
        "madhya pradesh": "MP",
        "maharashtra": "MH",
        "manipur": "MN",
        "meghalaya": "ML",
        "mizoram": "MZ",
        "nagaland": "NL",
        "odisha": "OR",
        "punjab": "PB",
        "rajasthan": "RJ",
        "sikkim": "SK",
        "tamil nadu": "TN",
        "telangana": "TG",
        "tripura": "TR",
        "uttar pradesh": "UP",
        "uttarakhand": "UT",
        "west bengal": "WB",
    }
)


def safe(value: Any) -> str:
    """Convert optional value to trimmed string."""
    if value is None:
        return ""
    return str(value).strip()


def clean_spaces(value: str) -> str:
    """Normalize whitespace and trim string boundaries."""
    return re.sub(r"\s+", " ", (value or "").strip())


def digits_only(value: Any) -> str:
    return re.sub(r"\D+", "", safe(value))


def mask_registry_number(value: Any, previous: str = "") -> str:
    """Keep digits only; an edit longer than ten digits keeps ``previous``."""
    digits = digits_only(value)
    if len(digits) > REGISTRY_NUMBER_LENGTH:
        return previous
    return digits


def format_postal_code(value: Any) -> str:
    """Render up to nine digits as ``NNNNN`` or ``NNNNN-NNNN``.

    Re-applying the mask to its own output is stable, so a value typed one
    digit at a time converges on the same result as pasting it whole.
    """
    digits = digits_only(value)[:POSTAL_MAX_DIGITS]
    if len(digits) > POSTAL_PREFIX_LENGTH:
        return f"{digits[:POSTAL_PREFIX_LENGTH]}-{digits[POSTAL_PREFIX_LENGTH:]}"
    return digits


def registry_postal_code(value: Any) -> str:
    """Format a registry-supplied postal code, or ``""`` when it is not ZIP+4."""
    digits = digits_only(value)
    if len(digits) < POSTAL_MAX_DIGITS:
        return ""
    return format_postal_code(digits)


def postal_prefix(value: Any) -> str:
    """Return the five-digit lookup prefix, or ``""`` when too short."""
    digits = digits_only(value)
    if len(digits) < POSTAL_PREFIX_LENGTH:
        return ""
    return digits[:POSTAL_PREFIX_LENGTH]


def is_valid_postal_code(value: Any) -> bool:
    return bool(POSTAL_CODE_PATTERN.fullmatch(safe(value)))


def is_valid_registry_number(value: Any) -> bool:
    return bool(REGISTRY_NUMBER_PATTERN.fullmatch(safe(value)))


def state_name_for(state_code: str) -> str:
    return STATE_NAMES_BY_CODE.get(safe(state_code).upper(), "")


def state_code_for(state_name: str) -> str:
    return STATE_CODES_BY_NAME.get(clean_spaces(safe(state_name)).lower(), "")
