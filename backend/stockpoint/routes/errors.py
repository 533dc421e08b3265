# Overview: Maps service exceptions to JSON error responses.

from flask import current_app, jsonify

from ..extensions import db
from ..validation import ConflictError, NotFoundError, ValidationError
from ..services.loyalty_service import InsufficientPointsError, LoyaltyError
from ..services.sales_service import SaleError
from ..services.stock_service import InsufficientStockError
from ..services.tenant_service import TenantAccessError
from ..services.transfer_service import (
    PRODUCT_NOT_FOUND,
    SITE_NOT_FOUND,
    TransferError,
    TransferRejected,
)


# Expected outcomes of a request; anything else is a server fault
DOMAIN_ERRORS = (
    ValidationError,
    NotFoundError,
    TenantAccessError,
    ConflictError,
    InsufficientStockError,
    TransferError,
    LoyaltyError,
    SaleError,
)


def error_response(e: Exception):
    """(body, status) for a domain exception. Rolls back any open transaction."""
    db.session.rollback()

    if isinstance(e, ValidationError):
        body = {"error": str(e)}
        if e.field:
            body["field"] = e.field
        return jsonify(body), 400
    if isinstance(e, (NotFoundError, TenantAccessError)):
        return jsonify({"error": str(e)}), 404
    if isinstance(e, ConflictError):
        return jsonify({"error": str(e)}), 409
    if isinstance(e, InsufficientStockError):
        return jsonify({"error": str(e), "code": "INSUFFICIENT_STOCK", "details": e.details}), 409
    if isinstance(e, TransferRejected):
        status = 404 if e.code in (SITE_NOT_FOUND, PRODUCT_NOT_FOUND) else 409
        return jsonify({"error": str(e), "code": e.code, "details": e.details}), status
    if isinstance(e, TransferError):
        return jsonify({"error": str(e)}), 500
    if isinstance(e, InsufficientPointsError):
        return jsonify({"error": str(e), "code": "INSUFFICIENT_POINTS", "details": e.details}), 409
    if isinstance(e, LoyaltyError):
        return jsonify({"error": str(e)}), 400
    if isinstance(e, SaleError):
        return jsonify({"error": str(e), "details": e.details}), 400

    current_app.logger.exception("Unhandled error")
    return jsonify({"error": "Internal error"}), 500


def server_error(message: str):
    """Generic 500 for unexpected database failures; details go to the log only."""
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": message}), 500
