# Overview: Durable store adapter; the only place that opens, commits or rolls back transactions.

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterator

from flask import current_app
from sqlalchemy import and_, case, func
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Product, ProductSearchEntry
from ..validation import StockroomError, TransactionError
from .concurrency import begin_immediate, run_with_retry
"""
Store contract consumed by the services:

- transaction(): one atomic unit. SQLite transactions start with
  BEGIN IMMEDIATE so concurrent writers queue on the database lock (bounded
  by the connect timeout); other databases rely on SELECT ... FOR UPDATE in
  the services.
- Domain errors raised inside a transaction roll it back and propagate
  unchanged. SQLAlchemy errors roll back and become TransactionError.
- Reads may be retried (run_read); writes never are.
"""

logger = logging.getLogger(__name__)


@contextmanager
def transaction(operation: str, entity_id: str | None = None) -> Iterator[Any]:
    session = db.session()
    # Pending ORM changes belong to the caller and must not be discarded
    if session.new or session.dirty or session.deleted:
        logger.warning("%s refused for %s: session has uncommitted changes", operation, entity_id)
        raise TransactionError(operation, entity_id)
    # Anything still open is an implicit read transaction from an earlier cache miss
    if session.in_transaction():
        session.rollback()

    try:
        begin_immediate(session)
        yield session
        session.commit()
    except StockroomError:
        session.rollback()
        raise
    except SQLAlchemyError as exc:
        session.rollback()
        logger.warning("%s failed for %s: %s", operation, entity_id, exc)
        raise TransactionError(operation, entity_id, exc) from exc
    except BaseException:
        session.rollback()
        raise


def run_read(operation: str, func_: Callable[[], Any], entity_id: str | None = None) -> Any:
    attempts = current_app.config.get("STOCKROOM_READ_RETRY_ATTEMPTS", 3)
    try:
        return run_with_retry(func_, attempts=attempts)
    except StockroomError:
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.warning("%s failed for %s: %s", operation, entity_id, exc)
        raise TransactionError(operation, entity_id, exc) from exc


def get(model, key: str):
    return db.session.get(model, key)


def put(record):
    db.session.add(record)
    db.session.flush()
    return record


def delete(record) -> None:
    db.session.delete(record)
    db.session.flush()


def query_indexed(model, column: str, predicate: Any):
    """
    Query by an indexed column.

    predicate is either a plain value (equality) or a callable taking the
    column and returning a SQL expression.
    """
    col = getattr(model, column)
    condition = predicate(col) if callable(predicate) else col == predicate
    return db.session.query(model).filter(condition)


def _like_escape(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def full_text_search(query: str, *, limit: int, offset: int = 0) -> list[Product]:
    """
    Products whose search text contains every word of query.

    Ordered by relevance (exact barcode, barcode prefix, name prefix, name
    substring, other fields) then name, then id so paging is stable.
    """
    term = " ".join(query.lower().split())
    tokens = term.split(" ")
    escaped = _like_escape(term)

    name = func.lower(Product.name)
    relevance = case(
        (Product.barcode == term, 0),
        (Product.barcode.like(f"{escaped}%", escape="\\"), 1),
        (name.like(f"{escaped}%", escape="\\"), 2),
        (name.like(f"%{escaped}%", escape="\\"), 3),
        else_=4,
    )

    conditions = [
        ProductSearchEntry.search_text.like(f"%{_like_escape(tok)}%", escape="\\")
        for tok in tokens
    ]

    q = (
        db.session.query(Product)
        .join(ProductSearchEntry, ProductSearchEntry.product_id == Product.id)
        .filter(and_(*conditions))
        .order_by(relevance, Product.name.asc(), Product.id.asc())
    )
    return q.offset(offset).limit(limit).all()
