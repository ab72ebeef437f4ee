"""
Change Notification Bus.

Two channels share one in-process fan-out:

- ``road_edit``: the durable ``RecentEdit`` log of road asset mutations. Rows
  are appended in the caller's transaction and published after commit.
- ``workflow``: lifecycle audit records (``EventStatusChanged`` etc.) emitted
  by the lifecycle engine. Not persisted here; the engine keeps its own audit
  table.

Ordering: edits are totally ordered by ``(edited_at, seq)``. ``edited_at``
comes from a clock that never goes backwards inside this process, so the
list endpoint and the live stream agree on order.

Delivery: every subscription buffers its own queue. A subscription registers
*before* it replays the gap after its cursor, and both paths de-duplicate on
the edit id, so each edit appears exactly once per stream. A failing or
overflowing subscriber is dropped without touching the log or its peers.

Locking: edits are written inside ``edit_transaction``, which stamps, commits
and publishes under one lock, so commit order, ``edited_at`` order and
delivery order are the same. A cursor taken from any committed edit therefore
never skips an edit that commits later. The registry lock is separate and is
never held while calling into the database.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
import uuid
from collections import OrderedDict, deque
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Iterator

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from roadworks.core.errors import InvalidInput
from roadworks.models.recent_edit import EditType, RecentEdit
from roadworks.services.domain_events import DomainEvent

logger = logging.getLogger(__name__)

ROAD_EDIT_CHANNEL = "road_edit"
WORKFLOW_CHANNEL = "workflow"
CHANNELS = (ROAD_EDIT_CHANNEL, WORKFLOW_CHANNEL)


class SubscriberGone(Exception):
    """The subscription was closed or its consumer can no longer be reached."""


class SubscriberOverflow(Exception):
    """The consumer fell further behind than the subscription's buffer allows."""


class Subscription:
    def __init__(self, client_id: str, channel: str, max_pending: int, dedup_window: int | None = None):
        self.id = str(uuid.uuid4())
        self.client_id = client_id
        self.channel = channel
        self.max_pending = max_pending
        self.replay_truncated = False
        self.closed = False
        self.close_reason: str | None = None
        self.last_pulled = time.monotonic()

        self._lock = threading.Lock()
        self._pending: deque[dict[str, Any]] = deque()
        self._seen: OrderedDict[str, None] = OrderedDict()
        self._dedup_window = dedup_window or max(4 * max_pending, 256)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._wakeup: asyncio.Event | None = None

    # -------- producer side --------
    def offer(self, item_id: str | None, payload: dict[str, Any]) -> bool:
        """Queue one item. Returns False if it was a duplicate."""
        with self._lock:
            if self.closed:
                raise SubscriberGone(self.close_reason or "closed")
            if item_id is not None and item_id in self._seen:
                return False
            if len(self._pending) >= self.max_pending:
                raise SubscriberOverflow(f"{len(self._pending)} items pending")
            if item_id is not None:
                self._remember(item_id)
            self._pending.append(payload)
        self._notify()
        return True

    def prime(self, replayed: Iterable[dict[str, Any]]) -> int:
        """Place replayed items ahead of anything that arrived live meanwhile."""
        with self._lock:
            replay = []
            replay_ids = set()
            for payload in replayed:
                item_id = payload.get("id")
                if item_id in replay_ids:
                    continue
                replay_ids.add(item_id)
                replay.append(payload)
            live = [p for p in self._pending if p.get("id") not in replay_ids]
            self._pending = deque(replay + live)
            for item_id in replay_ids:
                self._remember(item_id)
            count = len(replay)
        if count:
            self._notify()
        return count

    def _remember(self, item_id: str) -> None:
        self._seen[item_id] = None
        self._seen.move_to_end(item_id)
        while len(self._seen) > self._dedup_window:
            self._seen.popitem(last=False)

    def _notify(self) -> None:
        loop, wakeup = self._loop, self._wakeup
        if loop is not None and wakeup is not None:
            try:
                loop.call_soon_threadsafe(wakeup.set)
            except RuntimeError as exc:  # loop closed: the client is gone
                raise SubscriberGone("event loop closed") from exc

    # -------- consumer side --------
    def attach_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._wakeup = asyncio.Event()
        if self._pending:
            self._wakeup.set()

    def touch(self) -> None:
        self.last_pulled = time.monotonic()

    def drain(self) -> list[dict[str, Any]]:
        with self._lock:
            items = list(self._pending)
            self._pending.clear()
        self.touch()
        return items

    async def next_batch(self, timeout: float) -> list[dict[str, Any]]:
        if self._wakeup is None:
            self.attach_loop(asyncio.get_running_loop())
        assert self._wakeup is not None
        self._wakeup.clear()
        items = self.drain()
        if items or self.closed:
            return items
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout)
        except asyncio.TimeoutError:
            self.touch()
            return []
        self._wakeup.clear()
        return self.drain()

    def close(self, reason: str) -> None:
        with self._lock:
            if self.closed:
                return
            self.closed = True
            self.close_reason = reason
        loop, wakeup = self._loop, self._wakeup
        if loop is not None and wakeup is not None and not loop.is_closed():
            loop.call_soon_threadsafe(wakeup.set)

    @property
    def pending(self) -> int:
        return len(self._pending)


def parse_timestamp(value: str) -> datetime:
    s = value.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        raise InvalidInput(f"Cursor {value!r} is neither an edit id nor an ISO8601 timestamp")
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class NotificationBus:
    def __init__(
        self,
        *,
        max_pending: int = 1000,
        idle_timeout: float = 120.0,
        max_list_limit: int = 200,
    ):
        self.max_pending = max_pending
        self.idle_timeout = idle_timeout
        self.max_list_limit = max_list_limit

        self._lock = threading.Lock()
        self._subscribers: dict[str, Subscription] = {}
        self._clock_lock = threading.Lock()
        self._last_timestamp: datetime | None = None
        self._commit_lock = threading.Lock()
        self._writer: int | None = None
        self._batch: list[RecentEdit] = []
        self.dropped = 0

    # -------- clock --------
    def _next_timestamp(self) -> datetime:
        now = datetime.now(timezone.utc)
        with self._clock_lock:
            if self._last_timestamp is not None and now <= self._last_timestamp:
                now = self._last_timestamp + timedelta(microseconds=1)
            self._last_timestamp = now
        return now

    # -------- road edit log --------
    @contextmanager
    def edit_transaction(self, db: Session) -> Iterator[None]:
        """
        Scope one writer's transaction on the edit log.

        Edits appended inside the block are stamped, committed and published
        while the commit lock is held. On error the session is rolled back and
        nothing is published. Not re-entrant.
        """
        with self._commit_lock:
            batch: list[RecentEdit] = []
            self._writer = threading.get_ident()
            self._batch = batch
            try:
                yield
                db.commit()
            except Exception:
                db.rollback()
                raise
            finally:
                self._writer = None
                self._batch = []
            for edit in batch:
                self.publish_edit(edit)

    def append_edit(
        self,
        db: Session,
        road_asset_id: str,
        edit_type: EditType | str,
        bbox: list[float] | None,
        snapshot: dict[str, Any] | None = None,
        edit_source: str = "manual",
    ) -> RecentEdit:
        """Add an edit row to the caller's transaction; must run inside ``edit_transaction``."""
        if self._writer != threading.get_ident():
            raise RuntimeError("append_edit must be called inside edit_transaction")
        edit_type = EditType(edit_type)
        snapshot = snapshot or {}
        edit = RecentEdit(
            id=f"REL-{uuid.uuid4().hex[:12]}",
            road_asset_id=road_asset_id,
            edit_type=edit_type.value,
            road_name=snapshot.get("name"),
            road_display_name=snapshot.get("display_name"),
            road_ward=snapshot.get("ward"),
            road_type=snapshot.get("road_type"),
            bbox=list(bbox) if bbox is not None else None,
            edit_source=edit_source,
            edited_at=self._next_timestamp(),
        )
        db.add(edit)
        db.flush()
        self._batch.append(edit)
        return edit

    def publish_edit(self, edit: RecentEdit) -> int:
        payload = edit.to_dict()
        return self._fanout(ROAD_EDIT_CHANNEL, payload["id"], payload)

    def record_edit(
        self,
        db: Session,
        road_asset_id: str,
        edit_type: EditType | str,
        bbox: list[float] | None,
        snapshot: dict[str, Any] | None = None,
        edit_source: str = "manual",
    ) -> RecentEdit:
        """Append, commit and publish one edit. Append failures propagate."""
        with self.edit_transaction(db):
            edit = self.append_edit(db, road_asset_id, edit_type, bbox, snapshot, edit_source)
        return edit

    # -------- workflow channel --------
    def publish_workflow(self, event: DomainEvent) -> int:
        payload = event.to_dict()
        payload["id"] = str(uuid.uuid4())
        return self._fanout(WORKFLOW_CHANNEL, payload["id"], payload)

    # -------- reads --------
    def _resolve_cursor(self, db: Session, cursor: str) -> tuple[datetime, int | None]:
        row = (
            db.query(RecentEdit.edited_at, RecentEdit.seq)
            .filter(RecentEdit.id == cursor)
            .first()
        )
        if row:
            return row[0], row[1]
        return parse_timestamp(cursor), None

    def _clamp(self, limit: int | None) -> int:
        if limit is None:
            return self.max_list_limit
        return max(1, min(int(limit), self.max_list_limit))

    def list_recent(
        self,
        db: Session,
        limit: int | None = 50,
        since: str | None = None,
        before: str | None = None,
    ) -> tuple[list[RecentEdit], bool]:
        """
        Page through the edit log.

        Without ``since``: newest first, optionally older than ``before``.
        With ``since``: oldest first, strictly after the cursor (replay).
        Returns (edits, has_more).
        """
        if since and before:
            raise InvalidInput("Use either since or before, not both")
        limit = self._clamp(limit)
        q = db.query(RecentEdit)

        if since:
            at, seq = self._resolve_cursor(db, since)
            if seq is None:
                q = q.filter(RecentEdit.edited_at > at)
            else:
                q = q.filter(
                    or_(
                        RecentEdit.edited_at > at,
                        and_(RecentEdit.edited_at == at, RecentEdit.seq > seq),
                    )
                )
            q = q.order_by(RecentEdit.edited_at.asc(), RecentEdit.seq.asc())
        else:
            if before:
                at, seq = self._resolve_cursor(db, before)
                if seq is None:
                    q = q.filter(RecentEdit.edited_at < at)
                else:
                    q = q.filter(
                        or_(
                            RecentEdit.edited_at < at,
                            and_(RecentEdit.edited_at == at, RecentEdit.seq < seq),
                        )
                    )
            q = q.order_by(RecentEdit.edited_at.desc(), RecentEdit.seq.desc())

        rows = q.limit(limit + 1).all()
        return rows[:limit], len(rows) > limit

    # -------- subscriptions --------
    def subscribe(
        self,
        client_id: str,
        channel: str = ROAD_EDIT_CHANNEL,
        since: str | None = None,
        db: Session | None = None,
    ) -> Subscription:
        if channel not in CHANNELS:
            raise InvalidInput(f"Unknown channel {channel!r}")
        if since and channel != ROAD_EDIT_CHANNEL:
            raise InvalidInput("Only the road_edit channel can be replayed")

        sub = Subscription(client_id, channel, self.max_pending)
        with self._lock:
            self._subscribers[sub.id] = sub
        logger.info("subscriber connected", extra={"client_id": client_id, "channel": channel})

        if since:
            if db is None:
                raise ValueError("replay needs a database session")
            try:
                edits, has_more = self.list_recent(db, limit=self.max_pending, since=since)
            except Exception:
                self.unsubscribe(sub, reason="replay failed")
                raise
            sub.prime(e.to_dict() for e in edits)
            sub.replay_truncated = has_more

        self.reap_idle()
        return sub

    def unsubscribe(self, sub: Subscription, reason: str = "client disconnected") -> None:
        with self._lock:
            self._subscribers.pop(sub.id, None)
        sub.close(reason)
        logger.info(
            "subscriber released (%s)", reason, extra={"client_id": sub.client_id, "channel": sub.channel}
        )

    def reap_idle(self, now: float | None = None) -> int:
        now = time.monotonic() if now is None else now
        with self._lock:
            stale = [
                s for s in self._subscribers.values()
                if s.closed or now - s.last_pulled > self.idle_timeout
            ]
            for s in stale:
                self._subscribers.pop(s.id, None)
        for s in stale:
            s.close("idle timeout")
            logger.warning("reaped idle subscriber", extra={"client_id": s.client_id, "channel": s.channel})
        return len(stale)

    def _fanout(self, channel: str, item_id: str | None, payload: dict[str, Any]) -> int:
        with self._lock:
            targets = [s for s in self._subscribers.values() if s.channel == channel]

        delivered = 0
        failed: list[tuple[Subscription, str]] = []
        for sub in targets:
            try:
                if sub.offer(item_id, payload):
                    delivered += 1
            except SubscriberOverflow as exc:
                failed.append((sub, f"overflow: {exc}"))
            except SubscriberGone as exc:
                failed.append((sub, f"gone: {exc}"))
            except Exception:
                logger.warning(
                    "delivery failed",
                    exc_info=True,
                    extra={"client_id": sub.client_id, "channel": channel, "edit_id": item_id},
                )
                failed.append((sub, "delivery error"))

        for sub, reason in failed:
            self.dropped += 1
            self.unsubscribe(sub, reason=reason)

        self.reap_idle()
        return delivered

    def subscriber_count(self, channel: str | None = None) -> int:
        with self._lock:
            return sum(1 for s in self._subscribers.values() if channel is None or s.channel == channel)

    def stats(self) -> dict[str, Any]:
        return {
            "connectedClients": self.subscriber_count(ROAD_EDIT_CHANNEL),
            "workflowClients": self.subscriber_count(WORKFLOW_CHANNEL),
            "droppedClients": self.dropped,
        }
