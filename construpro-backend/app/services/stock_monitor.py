from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable

from app.db import settings
from app.services.cart import CartService
from app.services.stock_validation import StockValidationResult

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class StockWarning:
    kind: str  # "removed" | "limited"
    item_id: str
    product_id: str | None
    product_name: str
    message: str
    requested_quantity: Decimal | None = None
    available_stock: Decimal | None = None


@dataclass(slots=True)
class MonitorTick:
    result: StockValidationResult
    removed_item_ids: list[str] = field(default_factory=list)
    warnings: list[StockWarning] = field(default_factory=list)


def _qty(value: Decimal) -> str:
    return format(value.normalize(), "f")


class StockMonitor:
    """Periodic re-check of an open cart.

    Out-of-stock items are removed right away. Items whose stock dropped below
    the requested quantity keep that quantity and only get a warning, because
    the buyer may be editing it.
    """

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        self._warned_removed: set[str] = set()
        self._warned_limited: set[str] = set()

    async def tick(self, cart_service: CartService) -> MonitorTick:
        result = await cart_service.validate_stock(self.user_id)
        tick = MonitorTick(result=result)

        if result.invalid_items:
            ids = [item.item_id for item in result.invalid_items]
            cart_service.remove_items(self.user_id, ids)
            tick.removed_item_ids = ids
            for item in result.invalid_items:
                if item.item_id in self._warned_removed:
                    continue
                self._warned_removed.add(item.item_id)
                tick.warnings.append(
                    StockWarning(
                        kind="removed",
                        item_id=item.item_id,
                        product_id=item.product_id,
                        product_name=item.product_name,
                        message=f'"{item.product_name}" ficou sem estoque e foi removido do carrinho.',
                        requested_quantity=item.requested_quantity,
                        available_stock=item.available_stock,
                    )
                )
            logger.info("Stock monitor removed %s items user=%s", len(ids), self.user_id)

        limited_now = {item.item_id for item in result.adjusted_items}
        for item in result.adjusted_items:
            if item.item_id in self._warned_limited:
                continue
            self._warned_limited.add(item.item_id)
            tick.warnings.append(
                StockWarning(
                    kind="limited",
                    item_id=item.item_id,
                    product_id=item.product_id,
                    product_name=item.product_name,
                    message=(
                        f'"{item.product_name}" tem apenas {_qty(item.new_quantity)} em estoque '
                        f"(você pediu {_qty(item.old_quantity)})."
                    ),
                    requested_quantity=item.old_quantity,
                    available_stock=item.new_quantity,
                )
            )
        # item voltou a ter estoque: pode ser avisado de novo numa queda futura
        self._warned_limited &= limited_now
        return tick


class StockMonitorRegistry:
    """Monitors of recently active carts, least recently used dropped first."""

    def __init__(self, max_entries: int = 1024) -> None:
        self.max_entries = max_entries
        self._monitors: OrderedDict[str, StockMonitor] = OrderedDict()

    def __len__(self) -> int:
        return len(self._monitors)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._monitors

    def get(self, user_id: str) -> StockMonitor:
        monitor = self._monitors.get(user_id)
        if monitor is None:
            monitor = StockMonitor(user_id)
            self._monitors[user_id] = monitor
            while len(self._monitors) > self.max_entries:
                self._monitors.popitem(last=False)
        else:
            self._monitors.move_to_end(user_id)
        return monitor

    def discard(self, user_id: str) -> None:
        self._monitors.pop(user_id, None)


async def run_stock_monitor_loop(
    monitor: StockMonitor,
    service_factory: Callable[[], tuple[CartService, Callable[[], None]]],
    on_tick: Callable[[MonitorTick], None] | None = None,
    interval_seconds: float | None = None,
    stop: asyncio.Event | None = None,
) -> None:
    """Run ``monitor.tick`` every interval until ``stop`` is set.

    ``service_factory`` returns a fresh service plus a close callback so every
    tick gets its own database session.
    """
    interval = interval_seconds if interval_seconds is not None else settings.stock_revalidate_interval_seconds
    stop = stop or asyncio.Event()
    while not stop.is_set():
        service, close = service_factory()
        try:
            tick = await monitor.tick(service)
            if on_tick is not None:
                on_tick(tick)
        except Exception:
            logger.exception("Stock monitor tick failed user=%s", monitor.user_id)
        finally:
            close()
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            continue
