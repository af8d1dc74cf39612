# backend/tradein/routes/inventory.py
"""
Inventory custody routes.

Reads:
- GET /api/inventory                 list items (location, status, category, brand, search)
- GET /api/inventory/<id>            one item with aging
- GET /api/inventory/order/<order_id> one item by order identifier
- GET /api/inventory/<id>/audit      item, full movement history, consistency problems
- GET /api/inventory/movements       recent movements (inventory_id, type, limit)
- GET /api/inventory/stats           active totals by location/status
- GET /api/inventory/aging           aging buckets and stale units (as_of)

Writes (one movement each, committed with the snapshot change):
- POST /api/inventory/<id>/transfer
- POST /api/inventory/<id>/stock-out

Time semantics: datetimes are returned as ISO-8601 UTC with a trailing Z.
"""
from flask import Blueprint, jsonify, request

from ..extensions import db
from ..services import inventory_service
from ..time_utils import parse_iso_datetime
from ..validation import NotFoundError, ValidationError, parse_int_field, require_fields
from .errors import json_error


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

MAX_MOVEMENT_LIMIT = 1000


@inventory_bp.get("")
def list_items_route():
    try:
        items = inventory_service.list_items(
            location=request.args.get("location"),
            status=request.args.get("status"),
            category=request.args.get("category"),
            brand=request.args.get("brand"),
            search=request.args.get("search"),
        )
        return jsonify({
            "items": [{**i.to_dict(), "agingDays": inventory_service.aging_days(i)} for i in items],
            "count": len(items),
        })
    except Exception as e:
        return json_error(e)


@inventory_bp.get("/stats")
def stats_route():
    try:
        return jsonify(inventory_service.inventory_stats())
    except Exception as e:
        return json_error(e)


@inventory_bp.get("/aging")
def aging_route():
    """Optional ?as_of=ISO-8601 (Z or offset); defaults to now."""
    try:
        try:
            as_of = parse_iso_datetime(request.args.get("as_of"))
        except ValueError:
            raise ValidationError("as_of must be an ISO-8601 datetime")
        return jsonify(inventory_service.aging_report(as_of))
    except Exception as e:
        return json_error(e)


@inventory_bp.get("/movements")
def list_movements_route():
    try:
        inventory_id = request.args.get("inventory_id")
        limit = request.args.get("limit")
        limit = parse_int_field("limit", limit) if limit else 200
        if limit < 1 or limit > MAX_MOVEMENT_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_MOVEMENT_LIMIT}")
        movements = inventory_service.list_movements(
            inventory_id=parse_int_field("inventory_id", inventory_id) if inventory_id else None,
            movement_type=request.args.get("type"),
            limit=limit,
        )
        return jsonify({"items": [m.to_dict() for m in movements], "count": len(movements)})
    except Exception as e:
        return json_error(e)


@inventory_bp.get("/order/<order_id>")
def get_item_by_order_route(order_id: str):
    try:
        item = inventory_service.get_item_by_order_id(order_id.strip().upper())
        if item is None:
            raise NotFoundError(f"No inventory item for order {order_id}")
        return jsonify({**item.to_dict(), "agingDays": inventory_service.aging_days(item)})
    except Exception as e:
        return json_error(e)


@inventory_bp.get("/<int:item_id>")
def get_item_route(item_id: int):
    try:
        item = inventory_service.get_item(item_id)
        return jsonify({**item.to_dict(), "agingDays": inventory_service.aging_days(item)})
    except Exception as e:
        return json_error(e)


@inventory_bp.get("/<int:item_id>/audit")
def item_audit_route(item_id: int):
    try:
        return jsonify(inventory_service.item_audit(item_id))
    except Exception as e:
        return json_error(e)


@inventory_bp.post("/<int:item_id>/transfer")
def transfer_route(item_id: int):
    """
    Move an in-stock unit to another location.

    Request body:
    {
        "to_location": "service_station" | "showroom" | "warehouse",
        "to_showroom_id": str (required for showroom),
        "performed_by": str,
        "performed_by_name": str (optional),
        "reason": str (optional, default "manual_transfer"),
        "notes": str (optional)
    }

    Returns:
        200: updated item
        400: invalid location / missing showroom / already there
        404: item not found
        409: item is not in_stock
    """
    payload = request.get_json(silent=True)
    try:
        data = require_fields(payload, ("to_location", "performed_by"))
        item = inventory_service.transfer(
            item_id,
            to_location=data["to_location"],
            to_showroom_id=data.get("to_showroom_id"),
            performed_by=data["performed_by"],
            performed_by_name=data.get("performed_by_name"),
            reason=data.get("reason"),
            notes=data.get("notes"),
        )
        db.session.commit()
        return jsonify(item.to_dict()), 200
    except Exception as e:
        return json_error(e)


@inventory_bp.post("/<int:item_id>/stock-out")
def stock_out_route(item_id: int):
    """
    Take a unit out of custody. reason "sold" -> sold, anything else -> returned.

    Returns:
        200: updated item (frozen from now on)
        400: missing reason / performer
        404: item not found
        409: item is not in_stock
    """
    payload = request.get_json(silent=True)
    try:
        data = require_fields(payload, ("reason", "performed_by"))
        item = inventory_service.stock_out(
            item_id,
            reason=data["reason"],
            performed_by=data["performed_by"],
            performed_by_name=data.get("performed_by_name"),
            notes=data.get("notes"),
        )
        db.session.commit()
        return jsonify(item.to_dict()), 200
    except Exception as e:
        return json_error(e)
