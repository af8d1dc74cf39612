# Overview: Service-layer operations for inventory custody; stock-in, transfer, stock-out, aging, audit.

# backend/tradein/services/inventory_service.py

from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import InventoryItem, IntakeRecord, QCDecision, StockMovement, VerificationRecord
from ..time_utils import utcnow, whole_days_between
from ..validation import ConflictError, NotFoundError, ValidationError, clean_str
from . import ledger_service
from .concurrency import lock_for_update, run_with_retry
from .ledger_service import (
    ACTIVE_STATUSES,
    LOCATIONS,
    InventoryStatus,
    Location,
    MovementType,
)
"""
Inventory Custody Invariants (authoritative)

- One InventoryItem per physical unit, created exactly once per IntakeRecord
  by a non-reject QC decision (unique intake_id and order_id).
- Custody state only changes through ledger_service.record_movement, so each
  change of location/status comes with exactly one StockMovement.
- transfer and stock_out require status == in_stock. That check, made under a
  row lock and the item's version counter, is the only guard against two
  concurrent actions on the same unit; the loser sees the new state.
- After stock_out (sold/returned) the item is frozen; only audit reads remain.
- Aging is computed at read time and never stored.
"""


STOCK_IN_REASON = "qc_routing"
DEFAULT_TRANSFER_REASON = "manual_transfer"
SOLD_REASON = "sold"

AGING_BUCKETS = ("0-7 days", "8-14 days", "15-30 days", "30+ days")
STALE_AFTER_DAYS = 14


class InventoryStateError(ConflictError):
    """Raised when an operation does not fit the item's current custody state."""


def get_item(item_id: int) -> InventoryItem:
    item = db.session.get(InventoryItem, item_id)
    if item is None:
        raise NotFoundError(f"Inventory item {item_id} not found")
    return item


def get_item_by_order_id(order_id: str) -> InventoryItem | None:
    return db.session.query(InventoryItem).filter_by(order_id=order_id).first()


def _lock_item(item_id: int) -> InventoryItem:
    item = lock_for_update(db.session.query(InventoryItem).filter_by(id=item_id)).first()
    if item is None:
        raise NotFoundError(f"Inventory item {item_id} not found")
    return item


def _require_in_stock(item: InventoryItem, action: str) -> None:
    if item.status != InventoryStatus.IN_STOCK.value:
        raise InventoryStateError(
            f"Cannot {action} inventory item {item.id} ({item.order_id}): "
            f"status is '{item.status}', must be 'in_stock'"
        )


def place_in_stock(
    intake: IntakeRecord,
    verification: Optional[VerificationRecord],
    qc_decision: QCDecision,
) -> InventoryItem:
    """
    Create the custody record for a unit that QC routed to a location.

    Runs inside the caller's transaction (the QC decision); flushes, never commits.

    Raises:
        ValidationError: decision is not a stock location
        InventoryStateError: the intake already has an inventory item
    """
    if qc_decision.decision not in LOCATIONS:
        raise ValidationError(f"QC decision '{qc_decision.decision}' does not place a unit in stock")

    existing = db.session.query(InventoryItem).filter_by(intake_id=intake.id).first()
    if existing is not None:
        raise InventoryStateError(
            f"Intake {intake.order_id} already has inventory item {existing.id}"
        )

    to_showroom_id = qc_decision.target_showroom_id if qc_decision.decision == Location.SHOWROOM.value else None

    item = InventoryItem(
        order_id=intake.order_id,
        intake_id=intake.id,
        qc_decision_id=qc_decision.id,
        verification_id=verification.id if verification else None,
        source_type=intake.source_type,
        source_showroom_id=intake.showroom_id,
        serial_number=verification.serial_number if verification else "",
        product_name=intake.product_name or "",
        brand=intake.brand,
        category=intake.category,
        agreed_price=intake.price or 0,
        stock_in_date=utcnow(),
    )

    notes = f"QC decision: {qc_decision.decision}. {qc_decision.notes or ''}".strip()
    ledger_service.record_movement(
        item,
        movement_type=MovementType.STOCK_IN,
        to_location=qc_decision.decision,
        to_showroom_id=to_showroom_id,
        resulting_status=InventoryStatus.IN_STOCK.value,
        reason=STOCK_IN_REASON,
        performed_by=qc_decision.reviewer_id,
        performed_by_name=qc_decision.reviewer_name,
        notes=notes,
    )
    return item


def transfer(
    item_id: int,
    *,
    to_location: str,
    performed_by: str,
    to_showroom_id: str | None = None,
    reason: str | None = None,
    performed_by_name: str | None = None,
    notes: str | None = None,
) -> InventoryItem:
    """
    Move an in-stock unit to another location (or another showroom).

    Args:
        item_id: InventoryItem id
        to_location: service_station | showroom | warehouse
        performed_by: staff id
        to_showroom_id: required when to_location is showroom

    Returns:
        InventoryItem: the updated item (flushed, not committed)

    Raises:
        ValidationError: bad location / missing showroom / no-op move
        NotFoundError: unknown item
        InventoryStateError: item is not in_stock
    """
    to_location = clean_str(to_location)
    to_showroom_id = clean_str(to_showroom_id) or None
    performed_by = clean_str(performed_by)

    if to_location not in LOCATIONS:
        raise ValidationError(
            f"Invalid location '{to_location}'. Must be one of: {', '.join(sorted(LOCATIONS))}"
        )
    if to_location == Location.SHOWROOM.value and not to_showroom_id:
        raise ValidationError("Target showroom is required for a showroom transfer")
    if to_location != Location.SHOWROOM.value:
        to_showroom_id = None
    if not performed_by:
        raise ValidationError("performed_by is required")

    def _op():
        item = _lock_item(item_id)
        _require_in_stock(item, "transfer")

        if item.current_location == to_location and item.current_showroom_id == to_showroom_id:
            raise ValidationError(f"Inventory item {item.id} is already at {to_location}")

        ledger_service.record_movement(
            item,
            movement_type=MovementType.TRANSFER,
            to_location=to_location,
            to_showroom_id=to_showroom_id,
            resulting_status=InventoryStatus.IN_STOCK.value,
            reason=clean_str(reason) or DEFAULT_TRANSFER_REASON,
            performed_by=performed_by,
            performed_by_name=performed_by_name,
            notes=notes,
        )
        return item

    return run_with_retry(_op)


def stock_out(
    item_id: int,
    *,
    reason: str,
    performed_by: str,
    performed_by_name: str | None = None,
    notes: str | None = None,
) -> InventoryItem:
    """
    Take an in-stock unit out of custody.

    reason "sold" -> status sold; any other reason -> status returned.
    The item is frozen afterwards.
    """
    reason = clean_str(reason)
    performed_by = clean_str(performed_by)
    if not reason:
        raise ValidationError("Stock-out reason is required")
    if not performed_by:
        raise ValidationError("performed_by is required")

    resulting_status = (
        InventoryStatus.SOLD.value if reason.lower() == SOLD_REASON else InventoryStatus.RETURNED.value
    )

    def _op():
        item = _lock_item(item_id)
        _require_in_stock(item, "stock out")

        ledger_service.record_movement(
            item,
            movement_type=MovementType.STOCK_OUT,
            to_location=None,
            to_showroom_id=None,
            resulting_status=resulting_status,
            reason=reason,
            performed_by=performed_by,
            performed_by_name=performed_by_name,
            notes=notes,
        )
        return item

    return run_with_retry(_op)


# =============================================================================
# Aging (read-time only)
# =============================================================================

def aging_days(item: InventoryItem, now: datetime | None = None) -> int:
    """Whole days since stock-in (falls back to created_at, then 0)."""
    start = item.stock_in_date or item.created_at
    if start is None:
        return 0
    return whole_days_between(start, now or utcnow())


def aging_bucket(days: int) -> str:
    if days <= 7:
        return AGING_BUCKETS[0]
    if days <= 14:
        return AGING_BUCKETS[1]
    if days <= 30:
        return AGING_BUCKETS[2]
    return AGING_BUCKETS[3]


def aging_report(now: datetime | None = None) -> dict:
    """Bucket counts for active units, plus the units older than STALE_AFTER_DAYS (oldest first)."""
    now = now or utcnow()
    items = (
        db.session.query(InventoryItem)
        .filter(InventoryItem.status.in_(ACTIVE_STATUSES))
        .all()
    )
    buckets = {label: 0 for label in AGING_BUCKETS}
    stale = []
    for item in items:
        days = aging_days(item, now)
        buckets[aging_bucket(days)] += 1
        if days > STALE_AFTER_DAYS:
            stale.append({**item.to_dict(), "agingDays": days})
    stale.sort(key=lambda row: row["agingDays"], reverse=True)
    return {"buckets": buckets, "stale": stale, "total": len(items)}


# =============================================================================
# Queries
# =============================================================================

def inventory_stats() -> dict:
    items = (
        db.session.query(InventoryItem.current_location, InventoryItem.status)
        .filter(InventoryItem.status.in_(ACTIVE_STATUSES))
        .all()
    )
    return {
        "total": len(items),
        "byLocation": dict(Counter(loc for loc, _ in items)),
        "byStatus": dict(Counter(status for _, status in items)),
    }


def list_items(
    *,
    location: str | None = None,
    status: str | None = None,
    category: str | None = None,
    brand: str | None = None,
    search: str | None = None,
) -> list[InventoryItem]:
    q = db.session.query(InventoryItem)
    if location:
        q = q.filter(InventoryItem.current_location == location)
    if status:
        q = q.filter(InventoryItem.status == status)
    if category:
        q = q.filter(InventoryItem.category == category)
    if brand:
        q = q.filter(InventoryItem.brand == brand)
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(
            db.or_(
                InventoryItem.serial_number.ilike(pattern),
                InventoryItem.order_id.ilike(pattern),
                InventoryItem.product_name.ilike(pattern),
                InventoryItem.brand.ilike(pattern),
            )
        )
    return q.order_by(InventoryItem.created_at.desc(), InventoryItem.id.desc()).all()


def list_movements(
    *,
    inventory_id: int | None = None,
    movement_type: str | None = None,
    limit: int = 200,
) -> list[StockMovement]:
    """Newest first. With inventory_id, the full history of that item."""
    q = db.session.query(StockMovement)
    if inventory_id is not None:
        q = q.filter(StockMovement.inventory_id == inventory_id)
    if movement_type:
        q = q.filter(StockMovement.type == movement_type)
    q = q.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
    if inventory_id is None:
        q = q.limit(limit)
    return q.all()


def item_audit(item_id: int) -> dict:
    item = get_item(item_id)
    return {
        "item": {**item.to_dict(), "agingDays": aging_days(item)},
        "movements": [m.to_dict() for m in ledger_service.get_item_movements(item.id)],
        "problems": ledger_service.verify_item(item),
    }


# =============================================================================
# Consistency checks and repair
# =============================================================================

def find_inconsistencies() -> list[dict]:
    """Every item whose snapshot and movement log disagree, or that has pending movements."""
    report = []
    for item in db.session.query(InventoryItem).order_by(InventoryItem.id).all():
        problems = ledger_service.verify_item(item)
        if problems:
            report.append({"inventoryId": item.id, "orderId": item.order_id, "problems": problems})
    return report


def repair(item_id: int) -> list[str]:
    """Resolve partial writes on one item. Caller commits."""
    def _op():
        item = _lock_item(item_id)
        return ledger_service.repair_item(item)

    return run_with_retry(_op)
