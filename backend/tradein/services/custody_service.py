# Overview: Service-layer operations for device intake; custody state machine through QC routing.

"""
Custody State Machine (intake -> verification -> QC decision)

================================================================================
STATES
================================================================================

Pickup:   pending -> assigned -> picked_up -> qc_review -> <terminal>
Walk-in:  pending_qc -> <terminal>

Terminal: service_station | showroom | warehouse | reject   (set by a QCDecision)
          cancelled                                        (pickup withdrawn)

pending:     pickup requested, no agent yet
assigned:    agent assigned (may be re-assigned or unassigned back to pending)
picked_up:   agent captured >=3 device photos, ID proof and serial on site
qc_review:   under quality review; implicit once a VerificationRecord exists,
             made explicit by begin_qc_review() or by the decision itself
pending_qc:  walk-in captured at the showroom counter, waiting for QC

================================================================================
RULES
================================================================================

1. Every status change goes through apply_transition(), which looks the pair
   (current state, event) up in TRANSITIONS. Pairs not in the table are
   rejected with IllegalTransitionError naming the current state.
2. Terminal states accept no events. A second QC decision is rejected with
   AlreadyDecidedError; it never overwrites the first.
3. The QCDecision row, the terminal status and (for non-reject outcomes) the
   InventoryItem + first StockMovement are flushed in one DB transaction.
   If any part fails, the caller's rollback discards all of them.
4. Capture validation happens before any row is created.
================================================================================
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import InventoryItem, IntakeRecord, QCDecision, VerificationRecord
from ..time_utils import utcnow
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    clean_str,
    normalize_photo_list,
    validate_capture,
    validate_price,
)
from . import inventory_service
from .concurrency import lock_for_update, run_with_retry
from .identifier_service import generate_order_id


class SourceType(str, Enum):
    PICKUP = "pickup"
    SHOWROOM_WALKIN = "showroom_walkin"


class IntakeStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    PICKED_UP = "picked_up"
    QC_REVIEW = "qc_review"
    PENDING_QC = "pending_qc"
    SERVICE_STATION = "service_station"
    SHOWROOM = "showroom"
    WAREHOUSE = "warehouse"
    REJECT = "reject"
    CANCELLED = "cancelled"


class IntakeEvent(str, Enum):
    ASSIGN = "assign"
    UNASSIGN = "unassign"
    VERIFY = "verify"
    BEGIN_QC = "begin_qc"
    CANCEL = "cancel"
    DECIDE = "decide"


class QCOutcome(str, Enum):
    SERVICE_STATION = "service_station"
    SHOWROOM = "showroom"
    WAREHOUSE = "warehouse"
    REJECT = "reject"


INITIAL_STATUS = {
    SourceType.PICKUP: IntakeStatus.PENDING,
    SourceType.SHOWROOM_WALKIN: IntakeStatus.PENDING_QC,
}

TERMINAL_STATUSES = frozenset({
    IntakeStatus.SERVICE_STATION,
    IntakeStatus.SHOWROOM,
    IntakeStatus.WAREHOUSE,
    IntakeStatus.REJECT,
    IntakeStatus.CANCELLED,
})

QC_QUEUE_STATUSES = (IntakeStatus.PICKED_UP, IntakeStatus.QC_REVIEW, IntakeStatus.PENDING_QC)

# (current, event) -> next. DECIDE maps to None: the next state is the outcome.
TRANSITIONS: dict[tuple[IntakeStatus, IntakeEvent], Optional[IntakeStatus]] = {
    (IntakeStatus.PENDING, IntakeEvent.ASSIGN): IntakeStatus.ASSIGNED,
    (IntakeStatus.ASSIGNED, IntakeEvent.ASSIGN): IntakeStatus.ASSIGNED,
    (IntakeStatus.ASSIGNED, IntakeEvent.UNASSIGN): IntakeStatus.PENDING,
    (IntakeStatus.ASSIGNED, IntakeEvent.VERIFY): IntakeStatus.PICKED_UP,
    (IntakeStatus.PICKED_UP, IntakeEvent.BEGIN_QC): IntakeStatus.QC_REVIEW,
    (IntakeStatus.PENDING, IntakeEvent.CANCEL): IntakeStatus.CANCELLED,
    (IntakeStatus.ASSIGNED, IntakeEvent.CANCEL): IntakeStatus.CANCELLED,
    (IntakeStatus.QC_REVIEW, IntakeEvent.DECIDE): None,
    (IntakeStatus.PENDING_QC, IntakeEvent.DECIDE): None,
}


class IllegalTransitionError(ConflictError):
    """The event does not apply to the record's current state."""

    def __init__(self, message: str, *, current_status: str | None = None):
        self.current_status = current_status
        super().__init__(message)


class AlreadyDecidedError(IllegalTransitionError):
    """A QC decision was submitted for a record that is already terminal."""


def next_status(
    current: str,
    event: IntakeEvent,
    outcome: QCOutcome | None = None,
) -> IntakeStatus:
    """
    Pure transition lookup.

    Raises:
        AlreadyDecidedError: DECIDE on a terminal record
        IllegalTransitionError: any other pair missing from TRANSITIONS
    """
    try:
        state = IntakeStatus(current)
    except ValueError:
        raise IllegalTransitionError(f"Unknown intake status '{current}'", current_status=current)

    if state in TERMINAL_STATUSES:
        error_cls = AlreadyDecidedError if event == IntakeEvent.DECIDE else IllegalTransitionError
        raise error_cls(
            f"Cannot {event.value}: intake is already in terminal state '{state.value}'",
            current_status=state.value,
        )

    key = (state, event)
    if key not in TRANSITIONS:
        raise IllegalTransitionError(
            f"Cannot {event.value}: intake is in '{state.value}'",
            current_status=state.value,
        )

    target = TRANSITIONS[key]
    if target is None:
        if outcome is None:
            raise ValidationError("QC decision is required")
        return IntakeStatus(outcome.value)
    return target


def apply_transition(
    intake: IntakeRecord,
    event: IntakeEvent,
    outcome: QCOutcome | None = None,
) -> IntakeStatus:
    """The only writer of IntakeRecord.status after creation."""
    target = next_status(intake.status, event, outcome)
    intake.status = target.value
    intake.updated_at = utcnow()
    return target


def is_terminal(status: str) -> bool:
    return status in {s.value for s in TERMINAL_STATUSES}


# =============================================================================
# Lookups
# =============================================================================

def get_intake(intake_id: int) -> IntakeRecord:
    intake = db.session.get(IntakeRecord, intake_id)
    if intake is None:
        raise NotFoundError(f"Intake {intake_id} not found")
    return intake


def get_intake_by_order_id(order_id: str) -> IntakeRecord | None:
    return db.session.query(IntakeRecord).filter_by(order_id=order_id).first()


def get_verification(intake_id: int) -> VerificationRecord | None:
    return db.session.query(VerificationRecord).filter_by(intake_id=intake_id).first()


def get_qc_decision(intake_id: int) -> QCDecision | None:
    return db.session.query(QCDecision).filter_by(intake_id=intake_id).first()


def _lock_intake(intake_id: int) -> IntakeRecord:
    intake = lock_for_update(db.session.query(IntakeRecord).filter_by(id=intake_id)).first()
    if intake is None:
        raise NotFoundError(f"Intake {intake_id} not found")
    return intake


def list_intakes(
    *,
    status: str | None = None,
    source_type: str | None = None,
    agent_id: str | None = None,
    showroom_id: str | None = None,
) -> list[IntakeRecord]:
    q = db.session.query(IntakeRecord)
    if status:
        q = q.filter(IntakeRecord.status == status)
    if source_type:
        q = q.filter(IntakeRecord.source_type == source_type)
    if agent_id:
        q = q.filter(IntakeRecord.assigned_agent_id == agent_id)
    if showroom_id:
        q = q.filter(IntakeRecord.showroom_id == showroom_id)
    return q.order_by(IntakeRecord.created_at.desc(), IntakeRecord.id.desc()).all()


def list_qc_queue() -> list[IntakeRecord]:
    """Records waiting for a QC decision, oldest first."""
    return (
        db.session.query(IntakeRecord)
        .filter(IntakeRecord.status.in_([s.value for s in QC_QUEUE_STATUSES]))
        .order_by(IntakeRecord.created_at, IntakeRecord.id)
        .all()
    )


# =============================================================================
# Intake creation
# =============================================================================

def _capture_minimums() -> tuple[int, int]:
    cfg = current_app.config
    return int(cfg.get("MIN_DEVICE_PHOTOS", 3)), int(cfg.get("MIN_ID_PROOF_PHOTOS", 1))


def create_pickup_request(
    *,
    product_name: str,
    category: str | None,
    postal_code: str | None,
    price: int = 0,
    brand: str | None = None,
    customer_name: str | None = None,
    customer_phone: str | None = None,
    customer_address: str | None = None,
    state_name: str | None = None,
) -> IntakeRecord:
    """
    Create a pickup intake in 'pending' with a freshly allocated order id.

    Input is validated before the sequence is touched, so a rejected request
    never burns a number. A failure after allocation (e.g. the caller rolls
    back) does burn one; numbers are never reused.
    """
    product_name = clean_str(product_name)
    if not product_name:
        raise ValidationError("product_name is required")
    price = validate_price("price", price)

    order_id = generate_order_id(postal_code, category, brand, state_name)

    intake = IntakeRecord(
        order_id=order_id,
        source_type=SourceType.PICKUP.value,
        status=INITIAL_STATUS[SourceType.PICKUP].value,
        product_name=product_name,
        category=clean_str(category) or None,
        brand=clean_str(brand) or None,
        price=price,
        customer_name=clean_str(customer_name) or None,
        customer_phone=clean_str(customer_phone) or None,
        customer_address=clean_str(customer_address) or None,
        postal_code=clean_str(postal_code) or None,
    )
    db.session.add(intake)
    db.session.flush()
    return intake


def create_walk_in(
    *,
    showroom_id: str,
    staff_id: str,
    customer_name: str,
    customer_phone: str,
    product_name: str,
    manual_price: int,
    device_photos: list[str],
    id_proof_photos: list[str],
    category: str | None = None,
    brand: str | None = None,
    serial_number: str | None = None,
    postal_code: str | None = None,
    customer_address: str | None = None,
    staff_name: str | None = None,
    notes: str | None = None,
    state_name: str | None = None,
) -> tuple[IntakeRecord, VerificationRecord]:
    """
    Showroom walk-in: created directly in 'pending_qc' with its VerificationRecord.

    Raises:
        CaptureValidationError: fewer than the minimum photos / ID proofs
        ValidationError: missing customer, product, showroom or price
    """
    min_photos, min_id_proofs = _capture_minimums()
    device_photos = normalize_photo_list("device_photos", device_photos)
    id_proof_photos = normalize_photo_list("id_proof_photos", id_proof_photos)

    missing = [
        name for name, value in (
            ("showroom_id", showroom_id),
            ("staff_id", staff_id),
            ("customer_name", customer_name),
            ("customer_phone", customer_phone),
            ("product_name", product_name),
        )
        if not clean_str(value)
    ]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    validate_capture(
        device_photos=device_photos,
        id_proof_photos=id_proof_photos,
        serial_number=serial_number or "",
        min_device_photos=min_photos,
        min_id_proof_photos=min_id_proofs,
        require_serial=False,
    )
    manual_price = validate_price("manual_price", manual_price, allow_zero=False)

    order_id = generate_order_id(postal_code, category, brand, state_name)

    intake = IntakeRecord(
        order_id=order_id,
        source_type=SourceType.SHOWROOM_WALKIN.value,
        status=INITIAL_STATUS[SourceType.SHOWROOM_WALKIN].value,
        product_name=clean_str(product_name),
        category=clean_str(category) or None,
        brand=clean_str(brand) or None,
        price=manual_price,
        customer_name=clean_str(customer_name),
        customer_phone=clean_str(customer_phone),
        customer_address=clean_str(customer_address) or None,
        postal_code=clean_str(postal_code) or None,
        showroom_id=clean_str(showroom_id),
    )
    db.session.add(intake)
    db.session.flush()

    verification = VerificationRecord(
        intake_id=intake.id,
        order_id=order_id,
        performed_by=clean_str(staff_id),
        performed_by_name=clean_str(staff_name) or None,
        device_photos=device_photos,
        id_proof_photos=id_proof_photos,
        serial_number=clean_str(serial_number),
        notes=clean_str(notes) or None,
    )
    db.session.add(verification)
    db.session.flush()
    return intake, verification


# =============================================================================
# Pickup workflow
# =============================================================================

def assign_agent(intake_id: int, *, agent_id: str, agent_name: str | None = None) -> IntakeRecord:
    agent_id = clean_str(agent_id)
    if not agent_id:
        raise ValidationError("agent_id is required")

    def _op():
        intake = _lock_intake(intake_id)
        apply_transition(intake, IntakeEvent.ASSIGN)
        intake.assigned_agent_id = agent_id
        intake.assigned_agent_name = clean_str(agent_name) or None
        intake.assigned_at = utcnow()
        db.session.flush()
        return intake

    return run_with_retry(_op)


def unassign_agent(intake_id: int) -> IntakeRecord:
    def _op():
        intake = _lock_intake(intake_id)
        apply_transition(intake, IntakeEvent.UNASSIGN)
        intake.assigned_agent_id = None
        intake.assigned_agent_name = None
        intake.assigned_at = None
        db.session.flush()
        return intake

    return run_with_retry(_op)


def cancel_intake(intake_id: int, *, reason: str | None = None) -> IntakeRecord:
    def _op():
        intake = _lock_intake(intake_id)
        apply_transition(intake, IntakeEvent.CANCEL)
        intake.cancellation_reason = clean_str(reason) or None
        db.session.flush()
        return intake

    return run_with_retry(_op)


def submit_pickup_verification(
    intake_id: int,
    *,
    performed_by: str,
    device_photos: list[str],
    id_proof_photos: list[str],
    serial_number: str,
    performed_by_name: str | None = None,
    notes: str | None = None,
) -> VerificationRecord:
    """
    Agent's on-site capture. Advances 'assigned' -> 'picked_up'.

    Raises:
        CaptureValidationError: checked first; nothing is written
        IllegalTransitionError: intake is not in 'assigned'
    """
    min_photos, min_id_proofs = _capture_minimums()
    device_photos = normalize_photo_list("device_photos", device_photos)
    id_proof_photos = normalize_photo_list("id_proof_photos", id_proof_photos)
    validate_capture(
        device_photos=device_photos,
        id_proof_photos=id_proof_photos,
        serial_number=serial_number,
        min_device_photos=min_photos,
        min_id_proof_photos=min_id_proofs,
    )
    performed_by = clean_str(performed_by)
    if not performed_by:
        raise ValidationError("performed_by is required")

    def _op():
        intake = _lock_intake(intake_id)
        if intake.source_type != SourceType.PICKUP.value:
            raise ValidationError(f"Intake {intake.order_id} is a {intake.source_type}, not a pickup")
        # Validate the transition before creating the verification row
        next_status(intake.status, IntakeEvent.VERIFY)

        verification = VerificationRecord(
            intake_id=intake.id,
            order_id=intake.order_id,
            performed_by=performed_by,
            performed_by_name=clean_str(performed_by_name) or None,
            device_photos=device_photos,
            id_proof_photos=id_proof_photos,
            serial_number=clean_str(serial_number),
            notes=clean_str(notes) or None,
        )
        db.session.add(verification)
        apply_transition(intake, IntakeEvent.VERIFY)
        db.session.flush()
        return verification

    return run_with_retry(_op)


def append_verification_notes(intake_id: int, text: str) -> VerificationRecord:
    verification = get_verification(intake_id)
    if verification is None:
        raise NotFoundError(f"Intake {intake_id} has no verification")
    verification.append_notes(text)
    db.session.flush()
    return verification


def begin_qc_review(intake_id: int) -> IntakeRecord:
    """Make the implicit 'qc_review' state explicit (reviewer opened the record)."""
    def _op():
        intake = _lock_intake(intake_id)
        if get_verification(intake.id) is None:
            raise IllegalTransitionError(
                f"Intake {intake.order_id} has no verification yet", current_status=intake.status
            )
        apply_transition(intake, IntakeEvent.BEGIN_QC)
        db.session.flush()
        return intake

    return run_with_retry(_op)


# =============================================================================
# QC decision
# =============================================================================

def record_qc_decision(
    intake_id: int,
    *,
    decision: str,
    reviewer_id: str,
    reviewer_name: str | None = None,
    target_showroom_id: str | None = None,
    notes: str | None = None,
) -> tuple[QCDecision, Optional[InventoryItem]]:
    """
    Route a verified device. Exactly once per intake.

    Non-reject outcomes also create the InventoryItem and its stock_in
    movement in the same transaction.

    Returns:
        (QCDecision, InventoryItem | None) -- item is None for 'reject'

    Raises:
        ValidationError: unknown decision, missing reviewer, showroom without target
        AlreadyDecidedError: the intake is already terminal
        IllegalTransitionError: the intake is not waiting for QC
    """
    try:
        outcome = QCOutcome(clean_str(decision))
    except ValueError:
        raise ValidationError(
            f"Invalid decision '{decision}'. Must be one of: "
            f"{', '.join(o.value for o in QCOutcome)}"
        )
    reviewer_id = clean_str(reviewer_id)
    if not reviewer_id:
        raise ValidationError("reviewer_id is required")
    target_showroom_id = clean_str(target_showroom_id) or None
    if outcome == QCOutcome.SHOWROOM and not target_showroom_id:
        raise ValidationError("target_showroom_id is required for a showroom decision")
    if outcome != QCOutcome.SHOWROOM:
        target_showroom_id = None

    def _op():
        intake = _lock_intake(intake_id)
        if is_terminal(intake.status) or get_qc_decision(intake.id) is not None:
            raise AlreadyDecidedError(
                f"Intake {intake.order_id} already has a QC decision (status '{intake.status}')",
                current_status=intake.status,
            )

        verification = get_verification(intake.id)
        if intake.status == IntakeStatus.PICKED_UP.value and verification is not None:
            apply_transition(intake, IntakeEvent.BEGIN_QC)
        apply_transition(intake, IntakeEvent.DECIDE, outcome)

        qc_decision = QCDecision(
            intake_id=intake.id,
            order_id=intake.order_id,
            source_type=intake.source_type,
            decision=outcome.value,
            target_showroom_id=target_showroom_id,
            reviewer_id=reviewer_id,
            reviewer_name=clean_str(reviewer_name) or None,
            notes=clean_str(notes) or None,
        )
        db.session.add(qc_decision)
        db.session.flush()

        item = None
        if outcome != QCOutcome.REJECT:
            item = inventory_service.place_in_stock(intake, verification, qc_decision)
        return qc_decision, item

    try:
        return run_with_retry(_op)
    except IntegrityError as exc:
        # Unique intake_id on qc_decisions / inventory_items: a concurrent decision won
        db.session.rollback()
        raise AlreadyDecidedError(
            f"Intake {intake_id} was decided concurrently"
        ) from exc
