# Overview: Product search index maintenance and lazy search result sequences.

from __future__ import annotations

import logging
import threading

from flask import Flask

from ..extensions import db
from ..models import Product, ProductSearchEntry
from ..time_utils import now_ms
from . import store

logger = logging.getLogger(__name__)

REBUILD_BATCH_SIZE = 200


class SearchResults:
    """
    Lazy, finite, restartable sequence of product dicts.

    Nothing is read until iteration starts; every new iteration re-runs the
    query from the first page, so the sequence can be walked more than once.
    """

    def __init__(self, query: str, *, batch_size: int = 50):
        self.query = query
        self.batch_size = batch_size

    def __iter__(self):
        if not self.query.strip():
            yield from self._all_products()
            return

        offset = 0
        while True:
            batch = store.run_read(
                "search_products",
                lambda: [p.to_dict() for p in store.full_text_search(
                    self.query, limit=self.batch_size, offset=offset,
                )],
            )
            yield from batch
            if len(batch) < self.batch_size:
                return
            offset += self.batch_size

    def _all_products(self):
        offset = 0
        while True:
            batch = store.run_read(
                "search_products",
                lambda: [
                    p.to_dict()
                    for p in db.session.query(Product)
                    .order_by(Product.name.asc(), Product.id.asc())
                    .offset(offset)
                    .limit(self.batch_size)
                    .all()
                ],
            )
            yield from batch
            if len(batch) < self.batch_size:
                return
            offset += self.batch_size

    def first(self, n: int) -> list[dict]:
        out = []
        for item in self:
            if len(out) >= n:
                break
            out.append(item)
        return out

    def __repr__(self) -> str:
        return f"<SearchResults query={self.query!r}>"


def search(query: str) -> SearchResults:
    return SearchResults(query or "")


def index_product(product: Product) -> ProductSearchEntry:
    """Insert or refresh the search entry for product (caller owns the transaction)."""
    entry = db.session.get(ProductSearchEntry, product.id)
    if entry is None:
        entry = ProductSearchEntry(product_id=product.id)
        db.session.add(entry)
    entry.search_text = product.search_text()
    entry.indexed_at_ms = now_ms()
    db.session.flush()
    return entry


def remove_product(product_id: str) -> None:
    entry = db.session.get(ProductSearchEntry, product_id)
    if entry is not None:
        db.session.delete(entry)
        db.session.flush()


def rebuild_index(batch_size: int = REBUILD_BATCH_SIZE) -> int:
    """
    Rebuild every search entry from the products table.

    Works in short batches, each in its own transaction, so a rebuild never
    holds the write lock long enough to stall a checkout.
    """
    with store.transaction("rebuild_search_index"):
        db.session.query(ProductSearchEntry).filter(
            ~ProductSearchEntry.product_id.in_(db.session.query(Product.id))
        ).delete(synchronize_session=False)

    indexed = 0
    last_id = ""
    while True:
        with store.transaction("rebuild_search_index"):
            products = (
                db.session.query(Product)
                .filter(Product.id > last_id)
                .order_by(Product.id.asc())
                .limit(batch_size)
                .all()
            )
            for product in products:
                index_product(product)
        indexed += len(products)
        if len(products) < batch_size:
            break
        last_id = products[-1].id

    logger.info("search index rebuilt: %d products", indexed)
    return indexed


def start_background_rebuild(app: Flask) -> threading.Thread:
    def _run():
        with app.app_context():
            try:
                rebuild_index()
            except Exception:
                logger.exception("background search index rebuild failed")
            finally:
                db.session.remove()

    thread = threading.Thread(target=_run, name="stockroom-search-rebuild", daemon=True)
    thread.start()
    return thread
