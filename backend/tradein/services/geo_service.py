# Overview: Static lookups behind order identifiers; postal code, state name and product family codes.

"""
Geo / product code resolution.

Pure functions over static tables, no database access.

FALLBACK POLICY: unknown geography never blocks order creation. Any postal
code outside the range table resolves to the default region/sub-region, and
any unknown state name resolves to the default region.
"""

from __future__ import annotations

import re
from bisect import bisect_right
from typing import NamedTuple


DEFAULT_REGION_CODE = "TN"
DEFAULT_SUB_REGION_CODE = "37"

POSTAL_CODE_LENGTH = 6

_NON_DIGITS = re.compile(r"\D")


class PostalRange(NamedTuple):
    start: int
    end: int  # inclusive
    region_code: str
    sub_region_code: str
    label: str


# Sorted by start; ranges never overlap (checked at import below)
POSTAL_RANGES: tuple[PostalRange, ...] = (
    PostalRange(110001, 110096, "DL", "01", "New Delhi"),
    PostalRange(400001, 400104, "MH", "01", "Mumbai"),
    PostalRange(500001, 500100, "TS", "09", "Hyderabad"),
    PostalRange(560001, 560110, "KA", "01", "Bengaluru"),
    PostalRange(600001, 600100, "TN", "01", "Chennai"),
    PostalRange(620001, 620025, "TN", "39", "Tiruchirappalli"),
    PostalRange(625001, 625025, "TN", "45", "Madurai"),
    PostalRange(627001, 627015, "TN", "30", "Tirunelveli"),
    PostalRange(632001, 632015, "TN", "23", "Vellore"),
    PostalRange(636001, 636020, "TN", "33", "Salem"),
    PostalRange(638001, 638015, "TN", "31", "Erode"),
    PostalRange(641001, 641050, "TN", "37", "Coimbatore"),
    PostalRange(641601, 641615, "TN", "38", "Tiruppur"),
    PostalRange(682001, 682041, "KL", "07", "Kochi"),
)

_RANGE_STARTS = [r.start for r in POSTAL_RANGES]


def _check_ranges() -> None:
    for prev, cur in zip(POSTAL_RANGES, POSTAL_RANGES[1:]):
        if cur.start <= prev.end:
            raise RuntimeError(f"Postal ranges overlap: {prev.label} / {cur.label}")


_check_ranges()


STATE_CODES: dict[str, str] = {
    "tamil nadu": "TN",
    "tamilnadu": "TN",
    "tn": "TN",
    "karnataka": "KA",
    "kerala": "KL",
    "andhra pradesh": "AP",
    "telangana": "TS",
    "maharashtra": "MH",
    "delhi": "DL",
    "gujarat": "GJ",
    "rajasthan": "RJ",
    "west bengal": "WB",
    "uttar pradesh": "UP",
    "punjab": "PB",
    "haryana": "HR",
    "odisha": "OD",
    "assam": "AS",
    "bihar": "BR",
    "jharkhand": "JH",
    "chhattisgarh": "CG",
    "himachal pradesh": "HP",
    "uttarakhand": "UK",
    "goa": "GA",
    "manipur": "MN",
    "meghalaya": "MG",
    "mizoram": "MZ",
    "nagaland": "NL",
    "sikkim": "SK",
    "tripura": "TR",
    "arunachal pradesh": "AR",
    "ladakh": "LA",
    "jammu and kashmir": "JK",
    "puducherry": "PY",
    "andaman and nicobar islands": "AN",
    "dadra and nagar haveli and daman and diu": "DH",
    "lakshadweep": "LD",
}


# Product families: (category keyword, brand keyword, code). First match wins,
# so brand-specific rows come before the per-category generic rows.
CAMERA_CODE = "DSLR"

PRODUCT_FAMILIES: tuple[tuple[str, str, str], ...] = (
    ("camera", "", CAMERA_CODE),
    ("dslr", "", CAMERA_CODE),
    ("phone", "apple", "IPNE"),
    ("phone", "samsung", "SMSG"),
    ("laptop", "apple", "MCBK"),
    ("tablet", "apple", "IPAD"),
    ("phone", "", "IPNE"),
    ("laptop", "", "MCBK"),
    ("tablet", "", "IPAD"),
)


def normalize_postal_code(postal_code: str | None) -> str:
    """Strip non-digits, left-pad to 6, keep the first 6 digits."""
    digits = _NON_DIGITS.sub("", postal_code or "")
    return digits.zfill(POSTAL_CODE_LENGTH)[:POSTAL_CODE_LENGTH]


def find_postal_range(postal_code: str | None) -> PostalRange | None:
    value = int(normalize_postal_code(postal_code))
    idx = bisect_right(_RANGE_STARTS, value) - 1
    if idx < 0:
        return None
    candidate = POSTAL_RANGES[idx]
    if candidate.start <= value <= candidate.end:
        return candidate
    return None


def resolve(postal_code: str | None) -> tuple[str, str]:
    """
    Postal code -> (region code, sub-region code).

    Unmatched codes return (DEFAULT_REGION_CODE, DEFAULT_SUB_REGION_CODE).
    """
    match = find_postal_range(postal_code)
    if match is None:
        return DEFAULT_REGION_CODE, DEFAULT_SUB_REGION_CODE
    return match.region_code, match.sub_region_code


def state_code(state_name: str | None) -> str:
    return STATE_CODES.get((state_name or "").strip().lower(), DEFAULT_REGION_CODE)


def category_code(category: str | None, brand: str | None = None) -> str:
    """
    Category + brand -> 4-letter product-type code.

    Case-insensitive substring match, so "Phones", "mobile phone" and
    "phones" all land in the phone family.
    """
    normalized_category = (category or "").strip().lower()
    normalized_brand = (brand or "").strip().lower()

    for category_key, brand_key, code in PRODUCT_FAMILIES:
        if category_key not in normalized_category:
            continue
        if brand_key and brand_key not in normalized_brand:
            continue
        return code
    return CAMERA_CODE
