# backend/tradein/routes/intake.py
"""
Intake API routes: pickup requests, agent workflow, walk-ins and QC routing.

Staff identity (agent_id, performed_by, reviewer_id, staff_id) is taken from
the request body; authentication happens in front of this service.

Each write commits once at the end of the request; any failure rolls back
everything the request flushed.
"""
from flask import Blueprint, jsonify, request

from ..extensions import db
from ..services import custody_service
from ..services.identifier_service import preview_order_id
from ..validation import require_fields
from .errors import json_error


intake_bp = Blueprint("intake", __name__, url_prefix="/api/intake")


def _intake_payload(intake) -> dict:
    verification = custody_service.get_verification(intake.id)
    qc_decision = custody_service.get_qc_decision(intake.id)
    return {
        **intake.to_dict(),
        "verification": verification.to_dict() if verification else None,
        "qcDecision": qc_decision.to_dict() if qc_decision else None,
    }


@intake_bp.post("/pickups")
def create_pickup_route():
    """
    Create a pickup request (status=pending) with a new order id.

    Request body:
    {
        "product_name": str,
        "category": str,
        "postal_code": str,
        "brand": str (optional),
        "price": int (optional, whole rupees),
        "state": str (optional, overrides the region code),
        "customer_name" / "customer_phone" / "customer_address": str (optional)
    }

    Returns:
        201: intake created
        400: invalid request
        503: order number could not be allocated
    """
    payload = request.get_json(silent=True)
    try:
        data = require_fields(payload, ("product_name",))
        intake = custody_service.create_pickup_request(
            product_name=data["product_name"],
            category=data.get("category"),
            postal_code=data.get("postal_code"),
            brand=data.get("brand"),
            price=data.get("price", 0),
            customer_name=data.get("customer_name"),
            customer_phone=data.get("customer_phone"),
            customer_address=data.get("customer_address"),
            state_name=data.get("state"),
        )
        db.session.commit()
        return jsonify(intake.to_dict()), 201
    except Exception as e:
        return json_error(e)


@intake_bp.post("/<int:intake_id>/assign")
def assign_agent_route(intake_id: int):
    payload = request.get_json(silent=True)
    try:
        data = require_fields(payload, ("agent_id",))
        intake = custody_service.assign_agent(
            intake_id,
            agent_id=data["agent_id"],
            agent_name=data.get("agent_name"),
        )
        db.session.commit()
        return jsonify(intake.to_dict()), 200
    except Exception as e:
        return json_error(e)


@intake_bp.post("/<int:intake_id>/unassign")
def unassign_agent_route(intake_id: int):
    try:
        intake = custody_service.unassign_agent(intake_id)
        db.session.commit()
        return jsonify(intake.to_dict()), 200
    except Exception as e:
        return json_error(e)


@intake_bp.post("/<int:intake_id>/cancel")
def cancel_intake_route(intake_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        intake = custody_service.cancel_intake(intake_id, reason=payload.get("reason"))
        db.session.commit()
        return jsonify(intake.to_dict()), 200
    except Exception as e:
        return json_error(e)


@intake_bp.post("/<int:intake_id>/verify")
def verify_pickup_route(intake_id: int):
    """
    Agent submits the on-site capture (assigned -> picked_up).

    Request body:
    {
        "performed_by": str,
        "performed_by_name": str (optional),
        "device_photos": [str, ...]   (>= 3),
        "id_proof_photos": [str, ...] (>= 1),
        "serial_number": str,
        "notes": str (optional)
    }

    Returns:
        201: verification recorded
        400: capture incomplete ("missing" lists every problem)
        404: intake not found
        409: intake is not assigned
    """
    payload = request.get_json(silent=True)
    try:
        data = require_fields(payload, ("performed_by",))
        verification = custody_service.submit_pickup_verification(
            intake_id,
            performed_by=data["performed_by"],
            performed_by_name=data.get("performed_by_name"),
            device_photos=data.get("device_photos"),
            id_proof_photos=data.get("id_proof_photos"),
            serial_number=data.get("serial_number"),
            notes=data.get("notes"),
        )
        db.session.commit()
        intake = custody_service.get_intake(intake_id)
        return jsonify({"intake": intake.to_dict(), "verification": verification.to_dict()}), 201
    except Exception as e:
        return json_error(e)


@intake_bp.post("/<int:intake_id>/notes")
def append_notes_route(intake_id: int):
    payload = request.get_json(silent=True)
    try:
        data = require_fields(payload, ("text",))
        verification = custody_service.append_verification_notes(intake_id, data["text"])
        db.session.commit()
        return jsonify(verification.to_dict()), 200
    except Exception as e:
        return json_error(e)


@intake_bp.post("/walk-ins")
def create_walk_in_route():
    """
    Showroom staff record a walk-in with its capture (status=pending_qc).

    Returns:
        201: intake + verification created
        400: missing customer/product/showroom, capture incomplete, bad price
    """
    payload = request.get_json(silent=True)
    try:
        data = require_fields(payload, ("showroom_id", "staff_id", "manual_price"))
        intake, verification = custody_service.create_walk_in(
            showroom_id=data["showroom_id"],
            staff_id=data["staff_id"],
            staff_name=data.get("staff_name"),
            customer_name=data.get("customer_name"),
            customer_phone=data.get("customer_phone"),
            customer_address=data.get("customer_address"),
            postal_code=data.get("postal_code"),
            product_name=data.get("product_name"),
            category=data.get("category"),
            brand=data.get("brand"),
            manual_price=data["manual_price"],
            device_photos=data.get("device_photos"),
            id_proof_photos=data.get("id_proof_photos"),
            serial_number=data.get("serial_number"),
            notes=data.get("notes"),
            state_name=data.get("state"),
        )
        db.session.commit()
        return jsonify({"intake": intake.to_dict(), "verification": verification.to_dict()}), 201
    except Exception as e:
        return json_error(e)


@intake_bp.post("/<int:intake_id>/begin-qc")
def begin_qc_route(intake_id: int):
    try:
        intake = custody_service.begin_qc_review(intake_id)
        db.session.commit()
        return jsonify(intake.to_dict()), 200
    except Exception as e:
        return json_error(e)


@intake_bp.post("/<int:intake_id>/qc-decision")
def qc_decision_route(intake_id: int):
    """
    Record the QC decision; non-reject outcomes put the unit into stock.

    Request body:
    {
        "decision": "service_station" | "showroom" | "warehouse" | "reject",
        "reviewer_id": str,
        "reviewer_name": str (optional),
        "target_showroom_id": str (required for "showroom"),
        "notes": str (optional)
    }

    Returns:
        201: {"qcDecision": {...}, "inventoryItem": {...} | null}
        400: invalid decision / missing showroom target
        404: intake not found
        409: already decided, or not waiting for QC
    """
    payload = request.get_json(silent=True)
    try:
        data = require_fields(payload, ("decision", "reviewer_id"))
        qc_decision, item = custody_service.record_qc_decision(
            intake_id,
            decision=data["decision"],
            reviewer_id=data["reviewer_id"],
            reviewer_name=data.get("reviewer_name"),
            target_showroom_id=data.get("target_showroom_id"),
            notes=data.get("notes"),
        )
        db.session.commit()
        return jsonify({
            "qcDecision": qc_decision.to_dict(),
            "inventoryItem": item.to_dict() if item else None,
        }), 201
    except Exception as e:
        return json_error(e)


@intake_bp.get("")
def list_intakes_route():
    try:
        intakes = custody_service.list_intakes(
            status=request.args.get("status"),
            source_type=request.args.get("source_type"),
            agent_id=request.args.get("agent_id"),
            showroom_id=request.args.get("showroom_id"),
        )
        return jsonify({"items": [i.to_dict() for i in intakes], "count": len(intakes)})
    except Exception as e:
        return json_error(e)


@intake_bp.get("/qc-queue")
def qc_queue_route():
    try:
        intakes = custody_service.list_qc_queue()
        return jsonify({"items": [_intake_payload(i) for i in intakes], "count": len(intakes)})
    except Exception as e:
        return json_error(e)


@intake_bp.get("/order-id/preview")
def preview_order_id_route():
    """Display-only order id; never allocates a number."""
    try:
        preview = preview_order_id(
            request.args.get("postal_code"),
            request.args.get("category"),
            request.args.get("brand"),
            request.args.get("state"),
        )
        return jsonify({"preview": preview})
    except Exception as e:
        return json_error(e)


@intake_bp.get("/<int:intake_id>")
def get_intake_route(intake_id: int):
    try:
        intake = custody_service.get_intake(intake_id)
        return jsonify(_intake_payload(intake))
    except Exception as e:
        return json_error(e)
