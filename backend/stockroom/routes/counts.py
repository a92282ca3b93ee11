# backend/stockroom/routes/counts.py
"""
Physical inventory count API routes.
"""
from flask import Blueprint, request

from ..services import count_service
from ..validation import ValidationError

counts_bp = Blueprint("counts", __name__, url_prefix="/api/counts")


def _flag(name: str) -> bool:
    return request.args.get(name, "").strip().lower() in {"1", "true", "yes"}


@counts_bp.route("", methods=["POST"])
def record_count():
    """
    Record a physical count for one product.

    Request body:
    {
        "product_id": str,
        "physical_count": int,
        "counted_by": str,
        "notes": str (optional)
    }

    Returns:
        201: Count recorded
        400: Invalid request
        404: Product not found
    """
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    for field in ("product_id", "physical_count", "counted_by"):
        if field not in data:
            raise ValidationError(f"Missing required field: {field}", details={"field": field})

    count = count_service.record_count(
        data["product_id"],
        data["physical_count"],
        data["counted_by"],
        notes=data.get("notes"),
    )
    return count, 201


@counts_bp.route("", methods=["GET"])
def list_counts():
    """Query params: product_id (optional)."""
    items = count_service.list_counts(product_id=request.args.get("product_id") or None)
    return {"items": items, "count": len(items)}


@counts_bp.route("/variances", methods=["GET"])
def list_variances():
    """
    Query params:
    - product_id: str (optional)
    - unapplied: bool (optional) - only counts not yet posted to stock
    - since: ISO-8601 or epoch ms (optional)
    """
    items = count_service.list_variances(
        product_id=request.args.get("product_id") or None,
        unapplied_only=_flag("unapplied"),
        since_ms=request.args.get("since") or None,
    )
    return {"items": items, "count": len(items)}


@counts_bp.route("/analytics", methods=["GET"])
def inventory_analytics():
    return count_service.get_inventory_analytics()


@counts_bp.route("/<count_id>", methods=["GET"])
def get_count(count_id: str):
    return count_service.get_count(count_id)


@counts_bp.route("/<count_id>/apply", methods=["POST"])
def apply_adjustment(count_id: str):
    """
    Post the count's variance to live stock.

    Request body (optional):
    {
        "applied_by": str
    }

    Returns:
        200: Applied; body holds the count and the updated product
        404: Count or product not found
        409: Already applied, or stock has moved below the variance
    """
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return count_service.apply_adjustment(count_id, applied_by=data.get("applied_by"))
