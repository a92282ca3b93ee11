# Overview: Domain event signals published after a store transaction commits.

"""
Notification, analytics and print collaborators subscribe to these signals;
the core never waits for them.

- Events are sent only after the owning transaction has committed.
- Receivers run on a small thread pool (or inline when
  STOCKROOM_EVENTS_SYNC is set, which the test-suite uses).
- A failing receiver is logged and never reaches the caller.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from decimal import Decimal

from blinker import Namespace

logger = logging.getLogger(__name__)

stockroom_signals = Namespace()

product_low_stock = stockroom_signals.signal("product-low-stock")
sale_committed = stockroom_signals.signal("sale-committed")
count_variance_detected = stockroom_signals.signal("count-variance-detected")


@dataclass(frozen=True)
class ProductLowStock:
    product_id: str
    product_name: str
    barcode: str
    stock_quantity: int
    min_stock_level: int

    @property
    def is_out_of_stock(self) -> bool:
        return self.stock_quantity <= 0


@dataclass(frozen=True)
class SaleCommitted:
    sale_id: str
    total: Decimal
    item_count: int
    payment_method: str
    product_ids: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class CountVarianceDetected:
    count_id: str
    product_id: str
    product_name: str
    system_count: int
    physical_count: int
    variance: int


_SIGNALS = {
    ProductLowStock: product_low_stock,
    SaleCommitted: sale_committed,
    CountVarianceDetected: count_variance_detected,
}


class EventBus:
    def __init__(self):
        self.sync = False
        self._workers = 2
        self._executor: ThreadPoolExecutor | None = None

    def init_app(self, app) -> None:
        self.sync = bool(app.config.get("STOCKROOM_EVENTS_SYNC", False))
        self._workers = int(app.config.get("STOCKROOM_EVENT_WORKERS", 2))
        app.extensions["stockroom_events"] = self

    def _pool(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self._workers,
                thread_name_prefix="stockroom-events",
            )
        return self._executor

    def publish(self, event) -> None:
        signal = _SIGNALS[type(event)]
        if not signal.receivers:
            return
        if self.sync:
            _deliver(signal, event)
        else:
            self._pool().submit(_deliver, signal, event)

    def publish_all(self, events) -> None:
        for event in events:
            self.publish(event)

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None


def _deliver(signal, event) -> None:
    for receiver in signal.receivers_for(event):
        try:
            receiver(event)
        except Exception:
            logger.exception("event receiver %r failed for %s", receiver, type(event).__name__)


def event_payload(event) -> dict:
    payload = asdict(event)
    return {k: (str(v) if isinstance(v, Decimal) else v) for k, v in payload.items()}
