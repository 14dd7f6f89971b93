"""
Override audit tracker for line-item claims.

Granting a claim is two-step (request, then confirm); removing one is
immediate. Transitions:

    Excluded  --request_claim-->  PendingConfirmation
    PendingConfirmation --confirm--> Claimable(tag, auto_assigned=False)
    PendingConfirmation --cancel-->  Excluded (item unchanged)
    Claimable --remove_claim-->  Excluded

Anything else raises InvalidOverrideAttempt, which signals a caller bug
rather than bad input.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Hashable, Optional

from taxvault.config import settings
from taxvault.models.lhdn import LhdnTag
from taxvault.models.receipt import Claimable, Excluded, LineItem
from taxvault.services.classifier import is_typically_ineligible

logger = logging.getLogger(__name__)


class InvalidOverrideAttempt(Exception):
    """Illegal claim transition, e.g. confirming with nothing pending."""
    pass


@dataclass(frozen=True)
class PendingConfirmation:
    """What the UI must show before the user confirms a claim."""
    item_id: str
    item_name: str
    tag: LhdnTag
    reason: Optional[str] = None
    suggested_action: Optional[str] = None

    @property
    def typically_ineligible(self) -> bool:
        return self.reason is not None


class OverrideTracker:
    """
    Holds pending claim requests keyed by item.

    Keys default to the item id; callers tracking several receipts pass
    a (receipt_id, item_id) key instead.

    Abandoned requests expire after ttl_seconds, and at most max_pending
    are held (oldest evicted first). An expired or evicted request
    behaves as if it was never made.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        max_pending: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.ttl_seconds = settings.PENDING_OVERRIDE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.max_pending = settings.PENDING_OVERRIDE_LIMIT if max_pending is None else max_pending
        self._clock = clock
        # Insertion order is request order
        self._pending: Dict[Hashable, PendingConfirmation] = {}
        self._requested_at: Dict[Hashable, float] = {}

    def pending_count(self) -> int:
        self._expire()
        return len(self._pending)

    def _expire(self) -> None:
        cutoff = self._clock() - self.ttl_seconds
        stale = [key for key, at in self._requested_at.items() if at <= cutoff]
        for key in stale:
            self._discard(key)
        if stale:
            logger.debug("Expired pending claim requests", extra={"count": len(stale)})

    def _discard(self, key: Hashable) -> Optional[PendingConfirmation]:
        self._requested_at.pop(key, None)
        return self._pending.pop(key, None)

    def pending_for(self, key: Hashable) -> Optional[PendingConfirmation]:
        self._expire()
        return self._pending.get(key)

    def is_pending(self, key: Hashable) -> bool:
        return self.pending_for(key) is not None

    def request_claim(self, item: LineItem, tag: LhdnTag, key: Optional[Hashable] = None) -> PendingConfirmation:
        if item.claimable:
            raise InvalidOverrideAttempt(f"Item {item.id} is already claimable")

        tag = LhdnTag(tag)
        check = is_typically_ineligible(item.name, tag)
        pending = PendingConfirmation(
            item_id=item.id,
            item_name=item.name,
            tag=tag,
            reason=check.reason,
            suggested_action=check.suggested_action,
        )
        key = item.id if key is None else key
        self._expire()
        # A repeated request replaces the earlier one and moves to the back
        self._discard(key)
        self._pending[key] = pending
        self._requested_at[key] = self._clock()
        while len(self._pending) > self.max_pending:
            oldest = next(iter(self._pending))
            self._discard(oldest)
            logger.info("Evicted pending claim request", extra={"item_id": str(oldest)})
        return pending

    def confirm(self, item: LineItem, key: Optional[Hashable] = None) -> LineItem:
        """Apply the pending claim; the returned copy is the only claimable version."""
        key = item.id if key is None else key
        pending = self.pending_for(key)
        if pending is None:
            raise InvalidOverrideAttempt(f"No pending claim to confirm for item {item.id}")
        self._discard(key)
        if item.claimable:
            # Claim was granted elsewhere since the request
            raise InvalidOverrideAttempt(f"Item {item.id} is already claimable")

        logger.info("Claim override confirmed", extra={
            "item_id": item.id,
            "tag": pending.tag.value,
            "typically_ineligible": pending.typically_ineligible,
        })
        return item.model_copy(update={'claim': Claimable(tag=pending.tag, auto_assigned=False)})

    def cancel(self, item: LineItem, key: Optional[Hashable] = None) -> LineItem:
        key = item.id if key is None else key
        self._expire()
        if self._discard(key) is None:
            raise InvalidOverrideAttempt(f"No pending claim to cancel for item {item.id}")
        return item


def remove_claim(item: LineItem) -> LineItem:
    """Drop a claim immediately; tag and auto_assigned go with it."""
    if not item.claimable:
        raise InvalidOverrideAttempt(f"Item {item.id} has no claim to remove")
    logger.info("Claim removed", extra={"item_id": item.id, "tag": item.tag.value})
    return item.model_copy(update={'claim': Excluded()})
