"""US state name lookup used to normalize the region before hashing."""

from __future__ import annotations

import re

US_STATES: dict[str, str] = {
    "ALABAMA": "AL",
    "ALASKA": "AK",
    "ARIZONA": "AZ",
    "ARKANSAS": "AR",
    "CALIFORNIA": "CA",
    "COLORADO": "CO",
    "CONNECTICUT": "CT",
    "DELAWARE": "DE",
    "FLORIDA": "FL",
    "GEORGIA": "GA",
    "HAWAII": "HI",
    "IDAHO": "ID",
    "ILLINOIS": "IL",
    "INDIANA": "IN",
    "IOWA": "IA",
    "KANSAS": "KS",
    "KENTUCKY": "KY",
    "LOUISIANA": "LA",
    "MAINE": "ME",
    "MARYLAND": "MD",
    "MASSACHUSETTS": "MA",
    "MICHIGAN": "MI",
    "MINNESOTA": "MN",
    "MISSISSIPPI": "MS",
    "MISSOURI": "MO",
    "MONTANA": "MT",
    "NEBRASKA": "NE",
    "NEVADA": "NV",
    "NEW HAMPSHIRE": "NH",
    "NEW JERSEY": "NJ",
    "NEW MEXICO": "NM",
    "NEW YORK": "NY",
    "NORTH CAROLINA": "NC",
    "NORTH DAKOTA": "ND",
    "OHIO": "OH",
    "OKLAHOMA": "OK",
    "OREGON": "OR",
    "PENNSYLVANIA": "PA",
    "RHODE ISLAND": "RI",
    "SOUTH CAROLINA": "SC",
    "SOUTH DAKOTA": "SD",
    "TENNESSEE": "TN",
    "TEXAS": "TX",
    "UTAH": "UT",
    "VERMONT": "VT",
    "VIRGINIA": "VA",
    "WASHINGTON": "WA",
    "WEST VIRGINIA": "WV",
    "WISCONSIN": "WI",
    "WYOMING": "WY",
    "DISTRICT OF COLUMBIA": "DC",
    "AMERICAN SAMOA": "AS",
    "GUAM": "GU",
    "NORTHERN MARIANA ISLANDS": "MP",
    "PUERTO RICO": "PR",
    "UNITED STATES VIRGIN ISLANDS": "VI",
    "U.S. VIRGIN ISLANDS": "VI",
}

_ABBREVIATIONS = frozenset(US_STATES.values())
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z])(?=[A-Z])")
_WHITESPACE = re.compile(r"\s+")


def camel_case_to_spaced(text: str) -> str:
    """``"NewYork"`` -> ``"New York"``; already-spaced text is left alone."""
    return _WHITESPACE.sub(" ", _CAMEL_BOUNDARY.sub(" ", text)).strip()


def normalize_region(region: str | None, country_code: str | None) -> str:
    """Normalize a free-text region into the form the conversions API hashes.

    US regions map to the lower-case two-letter state code when the lookup
    hits. Everything else is lower-cased with spaces removed.
    """
    raw = region or ""
    if (country_code or "").strip().upper() == "US":
        candidate = camel_case_to_spaced(raw).upper()
        abbreviation = US_STATES.get(candidate)
        if abbreviation is None and candidate in _ABBREVIATIONS:
            abbreviation = candidate
        if abbreviation:
            return abbreviation.lower()
    return raw.lower().replace(" ", "")
