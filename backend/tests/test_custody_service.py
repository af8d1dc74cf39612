import pytest

from tradein.extensions import db
from tradein.models import IntakeRecord, InventoryItem, QCDecision, StockMovement, VerificationRecord
from tradein.services import custody_service
from tradein.services.custody_service import (
    TERMINAL_STATUSES,
    TRANSITIONS,
    AlreadyDecidedError,
    IllegalTransitionError,
    IntakeEvent,
    IntakeStatus,
    QCOutcome,
)
from tradein.services.sequence_service import peek_sequence
from tradein.validation import CaptureValidationError, ValidationError

from conftest import DEVICE_PHOTOS, ID_PROOF_PHOTOS


def _verify(intake_id, **overrides):
    fields = {
        'performed_by': "agent-7",
        'device_photos': list(DEVICE_PHOTOS),
        'id_proof_photos': list(ID_PROOF_PHOTOS),
        'serial_number': "SN-0001",
    }
    fields.update(overrides)
    return custody_service.submit_pickup_verification(intake_id, **fields)


# =============================================================================
# Transition table
# =============================================================================

def test_every_pair_outside_the_table_is_rejected():
    for status in IntakeStatus:
        for event in IntakeEvent:
            if (status, event) in TRANSITIONS:
                continue
            expected = IllegalTransitionError
            if status in TERMINAL_STATUSES and event == IntakeEvent.DECIDE:
                expected = AlreadyDecidedError
            with pytest.raises(expected) as excinfo:
                custody_service.next_status(status.value, event, QCOutcome.WAREHOUSE)
            assert excinfo.value.current_status == status.value


def test_table_transitions():
    assert custody_service.next_status("pending", IntakeEvent.ASSIGN) == IntakeStatus.ASSIGNED
    assert custody_service.next_status("assigned", IntakeEvent.UNASSIGN) == IntakeStatus.PENDING
    assert custody_service.next_status("assigned", IntakeEvent.VERIFY) == IntakeStatus.PICKED_UP
    assert custody_service.next_status("picked_up", IntakeEvent.BEGIN_QC) == IntakeStatus.QC_REVIEW
    for outcome in QCOutcome:
        assert custody_service.next_status("qc_review", IntakeEvent.DECIDE, outcome).value == outcome.value
        assert custody_service.next_status("pending_qc", IntakeEvent.DECIDE, outcome).value == outcome.value


def test_decide_requires_an_outcome():
    with pytest.raises(ValidationError):
        custody_service.next_status("qc_review", IntakeEvent.DECIDE)


# =============================================================================
# Pickup workflow
# =============================================================================

def test_pickup_request_starts_pending(make_pickup):
    intake = make_pickup()
    assert intake.status == "pending"
    assert intake.source_type == "pickup"
    assert intake.order_id == "TN37WTDSLR1001"


def test_invalid_pickup_request_does_not_consume_a_number(app):
    with pytest.raises(ValidationError):
        custody_service.create_pickup_request(product_name="  ", category="cameras", postal_code="641001")
    with pytest.raises(ValidationError):
        custody_service.create_pickup_request(
            product_name="Nikon D750", category="cameras", postal_code="641001", price=-5
        )
    assert peek_sequence() == 1000


def test_assign_reassign_unassign(db_session, make_pickup):
    intake = make_pickup()

    custody_service.assign_agent(intake.id, agent_id="agent-1", agent_name="Kumar")
    db_session.commit()
    assert intake.status == "assigned"
    assert intake.assigned_agent_id == "agent-1"
    assert intake.assigned_at is not None

    custody_service.assign_agent(intake.id, agent_id="agent-2")
    db_session.commit()
    assert intake.status == "assigned"
    assert intake.assigned_agent_id == "agent-2"

    custody_service.unassign_agent(intake.id)
    db_session.commit()
    assert intake.status == "pending"
    assert intake.assigned_agent_id is None
    assert intake.assigned_at is None


def test_unassign_pending_is_rejected(make_pickup):
    intake = make_pickup()
    with pytest.raises(IllegalTransitionError, match="pending"):
        custody_service.unassign_agent(intake.id)


def test_verification_with_two_photos_writes_nothing(db_session, make_assigned_pickup):
    intake = make_assigned_pickup()

    with pytest.raises(CaptureValidationError) as excinfo:
        _verify(intake.id, device_photos=DEVICE_PHOTOS[:2])
    db_session.rollback()

    assert len(excinfo.value.missing) == 1
    assert "3 device photos" in excinfo.value.missing[0]
    assert custody_service.get_verification(intake.id) is None
    assert custody_service.get_intake(intake.id).status == "assigned"


def test_verification_lists_every_missing_capture_field(make_assigned_pickup):
    intake = make_assigned_pickup()
    with pytest.raises(CaptureValidationError) as excinfo:
        _verify(intake.id, device_photos=[], id_proof_photos=["", None], serial_number="  ")
    assert len(excinfo.value.missing) == 3


def test_verification_with_three_photos_picks_up(db_session, make_assigned_pickup):
    intake = make_assigned_pickup()

    verification = _verify(intake.id, notes="Minor scratches")
    db_session.commit()

    assert intake.status == "picked_up"
    assert verification.intake_id == intake.id
    assert verification.order_id == intake.order_id
    assert verification.device_photos == DEVICE_PHOTOS
    assert intake in custody_service.list_qc_queue()


def test_verification_before_assignment_is_rejected(db_session, make_pickup):
    intake = make_pickup()
    with pytest.raises(IllegalTransitionError, match="pending"):
        _verify(intake.id)
    db_session.rollback()
    assert db_session.query(VerificationRecord).count() == 0


def test_verification_twice_is_rejected(db_session, make_verified_pickup):
    intake = make_verified_pickup()
    with pytest.raises(IllegalTransitionError):
        _verify(intake.id, serial_number="SN-OTHER")
    db_session.rollback()
    assert db_session.query(VerificationRecord).filter_by(intake_id=intake.id).count() == 1


def test_cancel(db_session, make_pickup, make_verified_pickup):
    intake = make_pickup()
    custody_service.cancel_intake(intake.id, reason="Customer changed mind")
    db_session.commit()
    assert intake.status == "cancelled"
    assert intake.cancellation_reason == "Customer changed mind"

    with pytest.raises(IllegalTransitionError, match="terminal"):
        custody_service.assign_agent(intake.id, agent_id="agent-1")
    with pytest.raises(AlreadyDecidedError):
        custody_service.record_qc_decision(intake.id, decision="warehouse", reviewer_id="qc-1")

    picked_up = make_verified_pickup()
    with pytest.raises(IllegalTransitionError, match="picked_up"):
        custody_service.cancel_intake(picked_up.id)


def test_append_verification_notes(db_session, make_verified_pickup):
    intake = make_verified_pickup()
    custody_service.append_verification_notes(intake.id, "Battery health 84%")
    custody_service.append_verification_notes(intake.id, "Charger included")
    db_session.commit()
    assert custody_service.get_verification(intake.id).notes == "Battery health 84%\nCharger included"


# =============================================================================
# Walk-ins
# =============================================================================

def test_walk_in_starts_pending_qc(make_walk_in):
    intake = make_walk_in()
    assert intake.status == "pending_qc"
    assert intake.source_type == "showroom_walkin"
    assert intake.showroom_id == "SR-CBE-01"
    assert intake.order_id == "KA01WTIPNE1001"
    verification = custody_service.get_verification(intake.id)
    assert verification.performed_by == "staff-3"
    assert verification.serial_number == "IMEI-1234"


def test_walk_in_serial_is_optional(make_walk_in):
    intake = make_walk_in(serial_number=None)
    assert custody_service.get_verification(intake.id).serial_number == ""


def test_walk_in_capture_validated_before_anything_is_written(db_session, make_walk_in):
    with pytest.raises(CaptureValidationError):
        make_walk_in(device_photos=DEVICE_PHOTOS[:2])
    db_session.rollback()
    assert db_session.query(IntakeRecord).count() == 0
    assert peek_sequence() == 1000


@pytest.mark.parametrize("overrides", [
    {'manual_price': 0},
    {'manual_price': "12.5"},
    {'customer_name': ""},
    {'customer_phone': None},
    {'product_name': " "},
    {'showroom_id': ""},
])
def test_walk_in_required_fields(db_session, make_walk_in, overrides):
    with pytest.raises(ValidationError):
        make_walk_in(**overrides)
    db_session.rollback()
    assert db_session.query(IntakeRecord).count() == 0


# =============================================================================
# QC decision
# =============================================================================

def test_warehouse_decision_creates_item_and_stock_in(db_session, make_verified_pickup):
    intake = make_verified_pickup()

    qc_decision, item = custody_service.record_qc_decision(
        intake.id, decision="warehouse", reviewer_id="qc-1", notes="Clean unit"
    )
    db_session.commit()

    assert intake.status == "warehouse"
    assert qc_decision.decision == "warehouse"
    assert item.current_location == "warehouse"
    assert item.current_showroom_id is None
    assert item.status == "in_stock"
    assert item.serial_number == "SN-0001"
    assert item.agreed_price == 25000
    assert item.stock_in_date is not None

    movements = db_session.query(StockMovement).filter_by(inventory_id=item.id).all()
    assert len(movements) == 1
    assert movements[0].type == "stock_in"
    assert movements[0].from_location is None
    assert movements[0].to_location == "warehouse"
    assert movements[0].reason == "qc_routing"
    assert movements[0].is_pending is False
    assert movements[0].notes == "QC decision: warehouse. Clean unit"


def test_second_decision_is_rejected_and_creates_nothing(db_session, make_verified_pickup):
    intake = make_verified_pickup()
    custody_service.record_qc_decision(intake.id, decision="warehouse", reviewer_id="qc-1")
    db_session.commit()

    with pytest.raises(AlreadyDecidedError):
        custody_service.record_qc_decision(
            intake.id, decision="showroom", reviewer_id="qc-2", target_showroom_id="SR-1"
        )
    db_session.rollback()

    assert db_session.query(QCDecision).filter_by(intake_id=intake.id).count() == 1
    assert db_session.query(InventoryItem).filter_by(intake_id=intake.id).count() == 1
    assert custody_service.get_intake(intake.id).status == "warehouse"


def test_reject_creates_no_item(db_session, make_verified_pickup):
    intake = make_verified_pickup()
    qc_decision, item = custody_service.record_qc_decision(intake.id, decision="reject", reviewer_id="qc-1")
    db_session.commit()

    assert item is None
    assert qc_decision.decision == "reject"
    assert intake.status == "reject"
    assert db_session.query(InventoryItem).count() == 0
    assert intake not in custody_service.list_qc_queue()


def test_showroom_decision_requires_target(db_session, make_verified_pickup):
    intake = make_verified_pickup()
    with pytest.raises(ValidationError, match="target_showroom_id"):
        custody_service.record_qc_decision(intake.id, decision="showroom", reviewer_id="qc-1")
    db_session.rollback()
    assert custody_service.get_intake(intake.id).status == "picked_up"
    assert db_session.query(QCDecision).count() == 0


def test_showroom_decision_for_walk_in(db_session, make_walk_in):
    intake = make_walk_in()
    _, item = custody_service.record_qc_decision(
        intake.id, decision="showroom", reviewer_id="qc-1", target_showroom_id="SR-BLR-02"
    )
    db_session.commit()

    assert intake.status == "showroom"
    assert item.current_location == "showroom"
    assert item.current_showroom_id == "SR-BLR-02"
    assert item.source_type == "showroom_walkin"
    assert item.source_showroom_id == "SR-CBE-01"


def test_target_showroom_ignored_for_other_locations(db_session, make_verified_pickup):
    intake = make_verified_pickup()
    qc_decision, item = custody_service.record_qc_decision(
        intake.id, decision="service_station", reviewer_id="qc-1", target_showroom_id="SR-1"
    )
    db_session.commit()
    assert qc_decision.target_showroom_id is None
    assert item.current_showroom_id is None


def test_unknown_decision_is_rejected(make_verified_pickup):
    intake = make_verified_pickup()
    with pytest.raises(ValidationError, match="Invalid decision"):
        custody_service.record_qc_decision(intake.id, decision="scrap", reviewer_id="qc-1")


def test_decision_before_verification_is_illegal(make_assigned_pickup):
    intake = make_assigned_pickup()
    with pytest.raises(IllegalTransitionError) as excinfo:
        custody_service.record_qc_decision(intake.id, decision="warehouse", reviewer_id="qc-1")
    assert not isinstance(excinfo.value, AlreadyDecidedError)
    assert excinfo.value.current_status == "assigned"


def test_explicit_qc_review_then_decision(db_session, make_verified_pickup):
    intake = make_verified_pickup()
    custody_service.begin_qc_review(intake.id)
    db_session.commit()
    assert intake.status == "qc_review"
    assert intake in custody_service.list_qc_queue()

    custody_service.record_qc_decision(intake.id, decision="warehouse", reviewer_id="qc-1")
    db_session.commit()
    assert intake.status == "warehouse"


def test_unique_constraint_backstop_reports_already_decided(db_session, make_verified_pickup, monkeypatch):
    intake = make_verified_pickup()
    db_session.add(QCDecision(
        intake_id=intake.id,
        order_id=intake.order_id,
        source_type=intake.source_type,
        decision="reject",
        reviewer_id="qc-other",
    ))
    db_session.commit()

    # Simulate the race where the check ran before the other decision landed
    monkeypatch.setattr(custody_service, "get_qc_decision", lambda intake_id: None)

    with pytest.raises(AlreadyDecidedError):
        custody_service.record_qc_decision(intake.id, decision="warehouse", reviewer_id="qc-1")

    assert db.session.get(IntakeRecord, intake.id).status == "picked_up"
    assert db_session.query(InventoryItem).count() == 0
    assert db_session.query(QCDecision).count() == 1


# =============================================================================
# Queries
# =============================================================================

def test_list_intakes_filters(make_pickup, make_assigned_pickup, make_walk_in):
    pending = make_pickup()
    assigned = make_assigned_pickup(agent_id="agent-9")
    walk_in = make_walk_in()

    assert custody_service.list_intakes(status="pending") == [pending]
    assert custody_service.list_intakes(agent_id="agent-9") == [assigned]
    assert custody_service.list_intakes(source_type="showroom_walkin") == [walk_in]
    assert custody_service.list_intakes(showroom_id="SR-CBE-01") == [walk_in]
    assert len(custody_service.list_intakes()) == 3
    assert custody_service.get_intake_by_order_id(walk_in.order_id) == walk_in


def test_qc_queue_is_oldest_first(make_pickup, make_verified_pickup, make_walk_in):
    make_pickup()
    first = make_verified_pickup()
    second = make_walk_in()
    assert custody_service.list_qc_queue() == [first, second]
