# Overview: Append-only ledger of domain events, written inside the caller's transaction.

from __future__ import annotations

import json
from typing import Optional

from ..extensions import db
from ..models import LedgerEvent
from ..validation import validate_int
from . import store
"""
Ledger invariants:

- Append-only audit log for domain events.
- No domain/business logic in the ledger itself.
- Events are written inside the same DB transaction as the change they record.
"""

MAX_LEDGER_PAGE = 500


def append_ledger_event(
    *,
    event_type: str,
    entity_type: str,
    entity_id: str,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
) -> LedgerEvent:
    ev = LedgerEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        note=note[:255] if note else None,
        payload=json.dumps(payload, default=str, sort_keys=True) if payload is not None else None,
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def list_ledger_events(
    *,
    entity_type: str | None = None,
    entity_id: str | None = None,
    event_type: str | None = None,
    limit: int = 100,
) -> list[dict]:
    """Newest first. limit is clamped to 1..MAX_LEDGER_PAGE."""
    limit = max(1, min(validate_int(limit, "limit"), MAX_LEDGER_PAGE))

    def _op():
        q = db.session.query(LedgerEvent)
        if entity_type is not None:
            q = q.filter(LedgerEvent.entity_type == entity_type)
        if entity_id is not None:
            q = q.filter(LedgerEvent.entity_id == entity_id)
        if event_type is not None:
            q = q.filter(LedgerEvent.event_type == event_type)
        q = q.order_by(LedgerEvent.occurred_at_ms.desc(), LedgerEvent.id.desc())
        return [ev.to_dict() for ev in q.limit(limit).all()]

    return store.run_read("list_ledger_events", _op)
