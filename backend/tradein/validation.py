from __future__ import annotations

from typing import Any, Iterable


# Maximum agreed price: ₹99,99,99,999 (whole rupees)
# Prices arrive as integers from the pricing collaborator; anything larger is a data error
MAX_PRICE = 999_999_999


class ValidationError(ValueError):
    """400-level input problem."""


class CaptureValidationError(ValidationError):
    """
    Required capture fields (photos, ID proof, serial number) are missing.

    `missing` keeps the individual problems so callers can show each one.
    """

    def __init__(self, missing: list[str]):
        self.missing = list(missing)
        super().__init__("Incomplete capture: " + "; ".join(self.missing))


class NotFoundError(LookupError):
    """404-level lookup failure."""


class ConflictError(ValueError):
    """409-level business rule conflict: someone already acted on the record."""


def require_fields(payload: dict | None, fields: Iterable[str]) -> dict:
    """Reject a payload that is not a dict or lacks any of `fields` (None and "" count as missing)."""
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    missing = [f for f in fields if payload.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    return payload


def clean_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def parse_int_field(name: str, value: Any) -> int:
    """Strict integer coercion: rejects floats, decimals and scientific notation."""
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValidationError(f"{name} must be an integer, not a decimal")
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    raise ValidationError(f"{name} must be an integer")


def validate_price(name: str, value: Any, *, allow_zero: bool = True) -> int:
    price = parse_int_field(name, value)
    if price < 0 or (price == 0 and not allow_zero):
        raise ValidationError(f"{name} must be {'>= 0' if allow_zero else '> 0'}")
    if price > MAX_PRICE:
        raise ValidationError(f"{name} cannot exceed {MAX_PRICE}")
    return price


def normalize_photo_list(name: str, value: Any) -> list[str]:
    """Photo references are opaque URIs; keep non-blank strings only."""
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"{name} must be a list of photo references")
    return [str(v).strip() for v in value if v is not None and str(v).strip()]


def validate_capture(
    *,
    device_photos: list[str],
    id_proof_photos: list[str],
    serial_number: str,
    min_device_photos: int,
    min_id_proof_photos: int,
    require_serial: bool = True,
) -> None:
    """
    Verification capture rules, checked before anything is written.

    Collects every problem instead of stopping at the first one.
    """
    missing = []
    if len(device_photos) < min_device_photos:
        missing.append(
            f"at least {min_device_photos} device photos required, got {len(device_photos)}"
        )
    if len(id_proof_photos) < min_id_proof_photos:
        missing.append(
            f"at least {min_id_proof_photos} ID proof photo required, got {len(id_proof_photos)}"
        )
    if require_serial and not clean_str(serial_number):
        missing.append("serial number is required")
    if missing:
        raise CaptureValidationError(missing)
