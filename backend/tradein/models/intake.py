from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class IntakeRecord(db.Model):
    """
    One customer device submission (home pickup or showroom walk-in).

    The status column is only written through custody_service.apply_transition.
    Records are never deleted; terminal states stay for audit.

    Customer fields are opaque to the custody core and stored as given.
    """
    __tablename__ = "intake_records"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_intake_records_order_id"),
        db.Index("ix_intake_records_status_source", "status", "source_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(32), nullable=False)
    source_type = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(32), nullable=False, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=True)
    brand = db.Column(db.String(64), nullable=True)
    price = db.Column(db.Integer, nullable=False, default=0)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)
    customer_address = db.Column(db.Text, nullable=True)
    postal_code = db.Column(db.String(16), nullable=True)

    # Walk-ins only: showroom where the device was received
    showroom_id = db.Column(db.String(64), nullable=True, index=True)

    assigned_agent_id = db.Column(db.String(64), nullable=True, index=True)
    assigned_agent_name = db.Column(db.String(255), nullable=True)
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=True)

    cancellation_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<IntakeRecord id={self.id} order_id={self.order_id!r} status={self.status!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "orderId": self.order_id,
            "sourceType": self.source_type,
            "status": self.status,
            "productName": self.product_name,
            "category": self.category,
            "brand": self.brand,
            "price": self.price,
            "customer": {
                "name": self.customer_name,
                "phone": self.customer_phone,
                "address": self.customer_address,
                "postalCode": self.postal_code,
            },
            "showroomId": self.showroom_id,
            "assignedAgentId": self.assigned_agent_id,
            "assignedAgentName": self.assigned_agent_name,
            "assignedAt": to_utc_z(self.assigned_at),
            "cancellationReason": self.cancellation_reason,
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }


class VerificationRecord(db.Model):
    """
    On-site (pickup) or at-counter (walk-in) capture of photos, ID proof and serial.

    Immutable after creation except for `notes`, which only grows.
    """
    __tablename__ = "verification_records"
    __table_args__ = (
        db.UniqueConstraint("intake_id", name="uq_verification_records_intake"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    intake_id = db.Column(db.Integer, nullable=False, index=True)
    order_id = db.Column(db.String(32), nullable=False, index=True)

    performed_by = db.Column(db.String(64), nullable=False)
    performed_by_name = db.Column(db.String(255), nullable=True)

    device_photos = db.Column(db.JSON, nullable=False, default=list)
    id_proof_photos = db.Column(db.JSON, nullable=False, default=list)
    serial_number = db.Column(db.String(128), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def append_notes(self, text: str) -> None:
        text = (text or "").strip()
        if not text:
            return
        self.notes = f"{self.notes}\n{text}" if self.notes else text

    def __repr__(self) -> str:
        return f"<VerificationRecord id={self.id} order_id={self.order_id!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "intakeId": self.intake_id,
            "orderId": self.order_id,
            "performedBy": self.performed_by,
            "performedByName": self.performed_by_name,
            "devicePhotos": list(self.device_photos or []),
            "idProofPhotos": list(self.id_proof_photos or []),
            "serialNumber": self.serial_number,
            "notes": self.notes,
            "createdAt": to_utc_z(self.created_at),
        }


class QCDecision(db.Model):
    """
    Outcome of quality review. Exactly one per IntakeRecord, never mutated.

    The unique constraint on intake_id is the storage-level backstop for the
    "decide at most once" rule enforced in custody_service.
    """
    __tablename__ = "qc_decisions"
    __table_args__ = (
        db.UniqueConstraint("intake_id", name="uq_qc_decisions_intake"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    intake_id = db.Column(db.Integer, nullable=False)
    order_id = db.Column(db.String(32), nullable=False, index=True)
    source_type = db.Column(db.String(32), nullable=False)

    decision = db.Column(db.String(32), nullable=False, index=True)
    target_showroom_id = db.Column(db.String(64), nullable=True)

    reviewer_id = db.Column(db.String(64), nullable=False)
    reviewer_name = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<QCDecision id={self.id} order_id={self.order_id!r} decision={self.decision!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "intakeId": self.intake_id,
            "sourceId": self.intake_id,
            "orderId": self.order_id,
            "sourceType": self.source_type,
            "decision": self.decision,
            "targetShowroomId": self.target_showroom_id,
            "reviewerId": self.reviewer_id,
            "reviewerName": self.reviewer_name,
            "notes": self.notes,
            "createdAt": to_utc_z(self.created_at),
        }
