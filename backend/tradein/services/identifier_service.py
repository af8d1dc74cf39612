# Overview: Service-layer operations for order identifiers; composes geo codes with the global sequence.

"""
Order identifier generation.

FORMAT: {REGION}{SUB_REGION}WT{PRODUCT}{SEQUENCE}
    TN      2 letters   region (state) code
    37      2 digits    sub-region (RTO) code from the postal code
    WT      fixed tag
    DSLR    4 letters   product-type code
    1001    >= 4 digits global sequence, zero padded to 4

Example: TN37WTDSLR1001

The sequence segment is global, not per region or category, so the
trailing number alone is unique across all identifiers ever issued.

PREVIEW: preview_order_id() resolves the same codes without touching the
counter and puts PREVIEW_PLACEHOLDER in the sequence slot. A preview can
never parse as an identifier and must not be persisted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from . import geo_service
from .sequence_service import next_sequence
from ..validation import ValidationError


FIXED_TAG = "WT"
SEQUENCE_PAD = 4
PREVIEW_PLACEHOLDER = "XXXX"

ORDER_ID_PATTERN = re.compile(
    r"^(?P<region>[A-Z]{2})(?P<sub_region>\d{2})WT(?P<product>[A-Z]{4})(?P<sequence>\d{4,})$"
)


@dataclass(frozen=True)
class OrderIdentifier:
    region_code: str
    sub_region_code: str
    product_type_code: str
    sequence: int
    fixed_tag: str = FIXED_TAG

    def __str__(self) -> str:
        return format_order_id(
            self.region_code, self.sub_region_code, self.product_type_code, self.sequence
        )

    def to_dict(self) -> dict:
        return {
            "regionCode": self.region_code,
            "subRegionCode": self.sub_region_code,
            "fixedTag": self.fixed_tag,
            "productTypeCode": self.product_type_code,
            "sequence": self.sequence,
        }


def format_order_id(region_code: str, sub_region_code: str, product_type_code: str, sequence) -> str:
    if isinstance(sequence, int):
        sequence = f"{sequence:0{SEQUENCE_PAD}d}"
    return f"{region_code}{sub_region_code}{FIXED_TAG}{product_type_code}{sequence}"


def _resolve_codes(
    postal_code: str | None,
    category: str | None,
    brand: str | None,
    state_name: str | None,
) -> tuple[str, str, str]:
    region_code, sub_region_code = geo_service.resolve(postal_code)
    if state_name:
        region_code = geo_service.state_code(state_name)
    return region_code, sub_region_code, geo_service.category_code(category, brand)


def generate_order_id(
    postal_code: str | None,
    category: str | None,
    brand: str | None = None,
    state_name: str | None = None,
) -> str:
    """
    Allocate a sequence number and build the identifier string.

    Args:
        postal_code: customer postal code (non-digits are ignored)
        category: product category, e.g. "cameras", "phones"
        brand: optional brand, refines the product code ("Apple" -> IPNE)
        state_name: optional explicit state; overrides the region derived
            from the postal code (sub-region still comes from the postal code)

    Raises:
        SequenceAllocationError: counter could not be incremented
    """
    region_code, sub_region_code, product_code = _resolve_codes(
        postal_code, category, brand, state_name
    )
    return format_order_id(region_code, sub_region_code, product_code, next_sequence())


def preview_order_id(
    postal_code: str | None,
    category: str | None,
    brand: str | None = None,
    state_name: str | None = None,
) -> str:
    """Display-only identifier; the sequence slot holds PREVIEW_PLACEHOLDER."""
    region_code, sub_region_code, product_code = _resolve_codes(
        postal_code, category, brand, state_name
    )
    return format_order_id(region_code, sub_region_code, product_code, PREVIEW_PLACEHOLDER)


def is_order_id(value: str | None) -> bool:
    return bool(value) and ORDER_ID_PATTERN.match(value) is not None


def parse_order_id(value: str | None) -> OrderIdentifier:
    """Raises ValidationError for anything that is not an issued identifier (previews included)."""
    m = ORDER_ID_PATTERN.match((value or "").strip().upper())
    if m is None:
        raise ValidationError(f"'{value}' is not a valid order identifier")
    return OrderIdentifier(
        region_code=m.group("region"),
        sub_region_code=m.group("sub_region"),
        product_type_code=m.group("product"),
        sequence=int(m.group("sequence")),
    )
