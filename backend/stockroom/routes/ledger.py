# Overview: Flask API routes for the audit ledger; read-only.

from flask import Blueprint, request

from ..services import ledger_service

"""
Ordering: newest first (occurred_at desc, then id desc).
"""

ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


@ledger_bp.get("")
def list_ledger_events_route():
    """
    Query params:
    - entity_type: product | sale | inventory_count (optional)
    - entity_id: str (optional)
    - event_type: e.g. sale.committed, stock.adjusted (optional)
    - limit: int (default 100, max 500)
    """
    items = ledger_service.list_ledger_events(
        entity_type=request.args.get("entity_type") or None,
        entity_id=request.args.get("entity_id") or None,
        event_type=request.args.get("event_type") or None,
        limit=request.args.get("limit") or 100,
    )
    return {"items": items, "count": len(items)}
