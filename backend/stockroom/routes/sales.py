# Overview: Flask API routes for sales; checkout commit and sale history.

# backend/stockroom/routes/sales.py
from flask import Blueprint, request

from ..services import sales_service
from ..validation import ValidationError

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
def commit_sale_route():
    """
    Commit a cart as one sale.

    Request body:
    {
        "items": [{"product_id": str, "quantity": int}, ...],
        "payment_method": str,
        "customer_name": str (optional),
        "idempotency_key": str (optional, or Idempotency-Key header)
    }

    Returns:
        201: Sale committed, or the sale already committed under the same key
        400: Invalid cart
        404: Unknown product
        409: Insufficient stock
        503: Store busy, safe to retry with the same idempotency key
    """
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    key = request.headers.get("Idempotency-Key") or payload.get("idempotency_key")
    sale = sales_service.commit_sale(
        payload.get("items"),
        payload.get("payment_method"),
        customer_name=payload.get("customer_name"),
        idempotency_key=key,
    )
    return sale, 201


@sales_bp.get("")
def list_sales():
    """
    Query params:
    - start / end: ISO-8601 or epoch ms (optional, inclusive)
    - page: int (default 1)
    - per_page: int (default 20, max 100)
    """
    return sales_service.list_sales(
        start=request.args.get("start") or None,
        end=request.args.get("end") or None,
        page=request.args.get("page") or 1,
        per_page=request.args.get("per_page") or 20,
    )


@sales_bp.get("/today")
def list_todays_sales():
    items = sales_service.list_todays_sales()
    return {"items": items, "count": len(items)}


@sales_bp.get("/analytics")
def sales_analytics():
    return sales_service.get_sales_analytics()


@sales_bp.get("/<sale_id>")
def get_sale(sale_id: str):
    return sales_service.get_sale(sale_id)
