# backend/tradein/routes/errors.py
"""
Shared error-to-response mapping for the JSON blueprints.

400  ValidationError (CaptureValidationError also lists each missing field)
404  NotFoundError
409  ConflictError family (illegal transition, already decided, item not in stock)
503  counter unavailable or storage contention: nothing was recorded, retry
500  anything else (logged with traceback)

Every mapped error rolls back the request session first.
"""

from flask import current_app, jsonify
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..services.sequence_service import SequenceAllocationError
from ..validation import CaptureValidationError, ConflictError, NotFoundError, ValidationError


RETRY_MESSAGE = "The service is busy. Please try again."


def json_error(exc: Exception):
    db.session.rollback()

    if isinstance(exc, CaptureValidationError):
        return jsonify({"error": str(exc), "missing": exc.missing}), 400
    if isinstance(exc, ValidationError):
        return jsonify({"error": str(exc)}), 400
    if isinstance(exc, NotFoundError):
        return jsonify({"error": str(exc)}), 404
    if isinstance(exc, ConflictError):
        body = {"error": str(exc)}
        current_status = getattr(exc, "current_status", None)
        if current_status:
            body["currentStatus"] = current_status
        return jsonify(body), 409
    if isinstance(exc, (SequenceAllocationError, OperationalError, StaleDataError)):
        current_app.logger.exception("Storage unavailable or contended")
        return jsonify({"error": RETRY_MESSAGE}), 503

    current_app.logger.exception("Unexpected error")
    return jsonify({"error": "Internal server error"}), 500
