"""Best-effort outbound domain events for the merchant dashboards.

Events are published after the owning transaction commits. Delivery is not
part of the ledger outcome: a Redis outage is logged and otherwise ignored.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

import redis.asyncio as redis
from pydantic import BaseModel, Field

from config import settings
from services.clock import utcnow

logger = logging.getLogger(__name__)

TRANSACTION_COMPLETED = "transaction_completed"
SETTLEMENT_CREATED = "settlement_created"
SETTLEMENT_UPDATED = "settlement_updated"
SETTLEMENT_COMPLETED = "settlement_completed"


class LedgerEvent(BaseModel):
    event_type: str
    store_id: str
    data: Dict[str, Any] = Field(default_factory=dict)
    emitted_at: datetime = Field(default_factory=utcnow)

    @property
    def channel(self) -> str:
        return f"{settings.EVENT_CHANNEL_PREFIX}{self.store_id}"

    def payload(self) -> str:
        return json.dumps(self.model_dump(mode="json"), default=_json_default)


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Unserialisable event field: {type(value)!r}")


def transaction_completed(*, store_id: str, member_ref: int, amount: Decimal, new_balance: Decimal,
                          new_daily_spent: Decimal, transaction_id: str) -> LedgerEvent:
    return LedgerEvent(
        event_type=TRANSACTION_COMPLETED,
        store_id=store_id,
        data={
            "transaction_id": transaction_id,
            "member_ref": member_ref,
            "amount": str(amount),
            "new_balance": str(new_balance),
            "new_daily_spent": str(new_daily_spent),
        },
    )


def settlement_event(event_type: str, settlement: Any, store_pending_amount: Optional[Decimal] = None) -> LedgerEvent:
    data = {
        "settlement_id": settlement.id,
        "status": settlement.status,
        "total_transaction_amount": str(settlement.total_transaction_amount),
        "settled_amount": str(settlement.settled_amount),
        "pending_amount": str(settlement.pending_amount),
    }
    if store_pending_amount is not None:
        data["store_pending_amount"] = str(store_pending_amount)
    return LedgerEvent(event_type=event_type, store_id=settlement.store_id, data=data)


async def publish_event(event: LedgerEvent) -> bool:
    """Publish one event on the store's channel. Never raises."""
    if not settings.EVENTS_ENABLED:
        return False
    try:
        client = redis.from_url(settings.REDIS_URL, decode_responses=True)
        try:
            await client.publish(event.channel, event.payload())
        finally:
            await client.aclose()
    except Exception as exc:
        logger.warning("Event %s for %s not delivered: %s", event.event_type, event.channel, exc)
        return False
    return True
