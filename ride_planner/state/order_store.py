"""ride_planner/state/order_store.py — Read access to storefront orders.

    order:{order_id}   JSON Order document
"""
import logging
from typing import Dict, Iterable, Optional

import redis as redis_lib

from ride_planner.models.order import Order

logger = logging.getLogger(__name__)


def _order_key(order_id: str) -> str:
    return f"order:{order_id}"


class OrderStore:
    def __init__(self, client: redis_lib.Redis) -> None:
        self._redis = client

    def get(self, order_id: str) -> Optional[Order]:
        raw = self._redis.get(_order_key(order_id))
        return Order.model_validate_json(raw) if raw is not None else None

    def get_many(self, order_ids: Iterable[str]) -> Dict[str, Order]:
        """Fetch orders by id; ids without a record are absent from the result."""
        ids = list(order_ids)
        if not ids:
            return {}
        raws = self._redis.mget([_order_key(i) for i in ids])
        orders = {}
        for order_id, raw in zip(ids, raws):
            if raw is None:
                logger.warning("Order record missing: order=%s", order_id)
                continue
            orders[order_id] = Order.model_validate_json(raw)
        return orders

    def save(self, order: Order) -> Order:
        self._redis.set(_order_key(order.id), order.model_dump_json())
        logger.debug("Order saved: order=%s", order.id)
        return order
