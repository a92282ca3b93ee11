# Overview: Flask API routes for products and stock; parses input and returns JSON responses.

# backend/stockroom/routes/products.py
"""
Product catalogue and stock routes.

Errors raised by the services are StockroomError subclasses and are turned
into {"error", "details"} JSON by the app-level error handler.
"""
from flask import Blueprint, current_app, request

from ..services import inventory_service, products_service, search_service
from ..validation import ValidationError, require_text

products_bp = Blueprint("products", __name__, url_prefix="/api/products")

MAX_SEARCH_RESULTS = 200


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def _flag(name: str) -> bool:
    return request.args.get(name, "").strip().lower() in {"1", "true", "yes"}


@products_bp.get("")
def list_products():
    """
    List products with optional filters and pagination.

    Query params:
    - category: str (optional) - exact category, "All" for no filter
    - min_price / max_price: decimal string (optional)
    - low_stock: bool (optional) - only products at or below their minimum
    - page: int (optional) - page number (1-indexed). If omitted, returns all items.
    - per_page: int (optional) - items per page (default 20, max 100)
    """
    return products_service.list_products(
        category=request.args.get("category") or None,
        min_price=request.args.get("min_price") or None,
        max_price=request.args.get("max_price") or None,
        low_stock=_flag("low_stock"),
        page=request.args.get("page") or None,
        per_page=request.args.get("per_page") or None,
    )


@products_bp.post("")
def create_product_route():
    created = products_service.create_product(_json_body())
    return created, 201


@products_bp.get("/search")
def search_products():
    """Query params: q (search text), limit (default 50, max 200)."""
    query = request.args.get("q", "")
    limit = min(request.args.get("limit", 50, type=int) or 50, MAX_SEARCH_RESULTS)
    results = products_service.search_products(query).first(limit)
    return {"query": query, "items": results, "count": len(results)}


@products_bp.get("/categories")
def list_categories():
    return {"items": products_service.list_categories()}


@products_bp.get("/low-stock")
def list_low_stock():
    items = inventory_service.list_low_stock()
    return {"items": items, "count": len(items)}


@products_bp.get("/out-of-stock")
def list_out_of_stock():
    items = inventory_service.list_out_of_stock()
    return {"items": items, "count": len(items)}


@products_bp.get("/barcode/<barcode>")
def get_product_by_barcode(barcode: str):
    return products_service.get_product_by_barcode(barcode)


@products_bp.get("/<product_id>")
def get_product(product_id: str):
    return products_service.get_product(product_id)


@products_bp.patch("/<product_id>")
def update_product_route(product_id: str):
    return products_service.update_product(product_id, _json_body())


@products_bp.delete("/<product_id>")
def delete_product_route(product_id: str):
    products_service.delete_product(product_id)
    return {"ok": True}, 200


@products_bp.post("/<product_id>/adjust")
def adjust_stock_route(product_id: str):
    """
    Request body:
    {
        "delta": int,           // positive to add, negative to remove
        "reason": str (optional)
    }
    """
    payload = _json_body()
    if "delta" not in payload:
        raise ValidationError("delta is required", details={"field": "delta"})
    reason = require_text(payload, "reason", max_length=255, required=False)
    return inventory_service.adjust_stock(product_id, payload["delta"], reason=reason)


@products_bp.post("/search-index/rebuild")
def rebuild_search_index():
    """Start a background rebuild of the search index; returns immediately."""
    search_service.start_background_rebuild(current_app._get_current_object())
    return {"status": "started"}, 202
