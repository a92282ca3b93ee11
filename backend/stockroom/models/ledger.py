from __future__ import annotations

from ..extensions import db
from ..time_utils import now_ms, to_utc_z


class LedgerEvent(db.Model):
    """
    Append-only audit record of domain events.

    Written in the same transaction as the change it records; never updated
    or deleted.
    """
    __tablename__ = "ledger_events"
    __table_args__ = (
        db.Index("ix_ledger_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)  # e.g. sale.committed, stock.adjusted
    entity_type = db.Column(db.String(32), nullable=False)  # product, sale, inventory_count
    entity_id = db.Column(db.String(32), nullable=False)

    occurred_at_ms = db.Column(db.BigInteger, nullable=False, default=now_ms, index=True)

    note = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "occurred_at_ms": self.occurred_at_ms,
            "occurred_at": to_utc_z(self.occurred_at_ms),
            "note": self.note,
            "payload": self.payload,
        }
