from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.orm.attributes import get_history

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from ..validation import ConflictError


# Statuses after which an InventoryItem is frozen (stock_out results)
CLOSED_ITEM_STATUSES = frozenset({"sold", "returned"})


class ImmutableRecordError(ConflictError):
    """Write attempted on a ledger row that only allows appends or audit reads."""


class InventoryItem(db.Model):
    """
    Custody record for one physical unit.

    current_location / current_showroom_id / status are a cached projection of
    the StockMovement log for this item. They are only written by
    ledger_service.record_movement (and the repair pass), never directly.
    """
    __tablename__ = "inventory_items"
    __table_args__ = (
        db.UniqueConstraint("intake_id", name="uq_inventory_items_intake"),
        db.UniqueConstraint("order_id", name="uq_inventory_items_order_id"),
        db.Index("ix_inventory_items_location_status", "current_location", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(32), nullable=False)
    intake_id = db.Column(db.Integer, nullable=False)
    qc_decision_id = db.Column(db.Integer, nullable=True)
    verification_id = db.Column(db.Integer, nullable=True)

    source_type = db.Column(db.String(32), nullable=False)
    source_showroom_id = db.Column(db.String(64), nullable=True)

    serial_number = db.Column(db.String(128), nullable=False, default="", index=True)
    product_name = db.Column(db.String(255), nullable=False, default="")
    brand = db.Column(db.String(64), nullable=True, index=True)
    category = db.Column(db.String(64), nullable=True, index=True)

    current_location = db.Column(db.String(32), nullable=False)
    current_showroom_id = db.Column(db.String(64), nullable=True)
    status = db.Column(db.String(32), nullable=False, index=True)

    agreed_price = db.Column(db.Integer, nullable=False, default=0)
    stock_in_date = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<InventoryItem id={self.id} order_id={self.order_id!r} "
            f"location={self.current_location!r} status={self.status!r}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "orderId": self.order_id,
            "intakeId": self.intake_id,
            "qcDecisionId": self.qc_decision_id,
            "verificationId": self.verification_id,
            "sourceType": self.source_type,
            "sourceShowroomId": self.source_showroom_id,
            "serialNumber": self.serial_number,
            "productName": self.product_name,
            "brand": self.brand,
            "category": self.category,
            "currentLocation": self.current_location,
            "currentShowroomId": self.current_showroom_id,
            "status": self.status,
            "agreedPrice": self.agreed_price,
            "stockInDate": to_utc_z(self.stock_in_date),
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only custody log entry.

    is_pending is raised while the matching snapshot write is in flight and
    cleared once it lands. A row still pending after commit marks a partial
    write for the repair pass. Clearing that flag is the only update allowed;
    deleting a row is only allowed while it is still pending (rollback).
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_inventory_created", "inventory_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    inventory_id = db.Column(db.Integer, nullable=False)
    order_id = db.Column(db.String(32), nullable=False, index=True)
    serial_number = db.Column(db.String(128), nullable=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    from_location = db.Column(db.String(32), nullable=True)
    to_location = db.Column(db.String(32), nullable=True)
    to_showroom_id = db.Column(db.String(64), nullable=True)
    resulting_status = db.Column(db.String(32), nullable=False)

    reason = db.Column(db.String(64), nullable=False)
    performed_by = db.Column(db.String(64), nullable=False)
    performed_by_name = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    is_pending = db.Column(db.Boolean, nullable=False, default=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def __repr__(self) -> str:
        return (
            f"<StockMovement id={self.id} inventory_id={self.inventory_id} type={self.type!r} "
            f"{self.from_location!r}->{self.to_location!r}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "inventoryId": self.inventory_id,
            "orderId": self.order_id,
            "serialNumber": self.serial_number,
            "type": self.type,
            "fromLocation": self.from_location,
            "toLocation": self.to_location,
            "toShowroomId": self.to_showroom_id,
            "resultingStatus": self.resulting_status,
            "reason": self.reason,
            "performedBy": self.performed_by,
            "performedByName": self.performed_by_name,
            "notes": self.notes,
            "isPending": self.is_pending,
            "timestamp": to_utc_z(self.created_at),
        }


def _changed_columns(mapper, target) -> set[str]:
    return {
        attr.key
        for attr in mapper.column_attrs
        if get_history(target, attr.key).has_changes()
    }


@event.listens_for(StockMovement, "before_update")
def _movement_append_only(mapper, connection, target):
    changed = _changed_columns(mapper, target)
    if not changed:
        return
    if changed - {"is_pending"}:
        raise ImmutableRecordError(
            f"Stock movement {target.id} is append-only; cannot change {', '.join(sorted(changed))}"
        )
    if target.is_pending:
        raise ImmutableRecordError(f"Stock movement {target.id} cannot be re-marked as pending")


@event.listens_for(StockMovement, "before_delete")
def _movement_delete_only_pending(mapper, connection, target):
    if not target.is_pending:
        raise ImmutableRecordError(f"Stock movement {target.id} is committed and cannot be deleted")


@event.listens_for(InventoryItem, "before_update")
def _item_frozen_after_stock_out(mapper, connection, target):
    if not _changed_columns(mapper, target):
        return
    previous = get_history(target, "status").deleted
    old_status = previous[0] if previous else target.status
    if old_status in CLOSED_ITEM_STATUSES:
        raise ImmutableRecordError(
            f"Inventory item {target.id} is {old_status} and can no longer change"
        )
