"""Outbound delivery: persistent queue, signed POSTs, retries and the worker loop.

Enqueuing writes one `OutboundActivity` plus one `DeliveryLog` row per target
inbox and returns immediately. `DeliveryWorker` drains due rows in the
background with bounded concurrency. Rows are ordered per
`(local actor, destination domain)`: only the oldest pending row of each pair
is attempted, so a `Delete` never overtakes the `Create` it retracts.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Collection, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import httpx
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from activitypub_stage import __version__
from activitypub_stage.core.config import FederationConfig
from activitypub_stage.core.errors import (
    BlockedInstanceError,
    DeliveryError,
    DeliveryPermanentFailure,
    DeliveryTransientFailure,
)
from activitypub_stage.db.time import as_utc, utcnow
from activitypub_stage.models import Actor, DeliveryLog, Follower, OutboundActivity
from activitypub_stage.models.delivery import (
    DELIVERY_DEAD,
    DELIVERY_DELIVERED,
    DELIVERY_FAILED,
    DELIVERY_PENDING,
)
from activitypub_stage.services.blocklist import Blocklist
from activitypub_stage.services.signatures import ACTIVITY_JSON, SignatureSigner
from activitypub_stage.services.urls import UnsafeURLError, ensure_fetchable, host_of

logger = logging.getLogger(__name__)

HTTP_TOO_MANY_REQUESTS = 429
HTTP_INTERNAL_SERVER_ERROR = 500
USER_AGENT = f"activitypub-stage/{__version__}"
_ERROR_MAX_LENGTH = 500


def serialize_activity(activity: dict[str, Any]) -> str:
    return json.dumps(activity, separators=(",", ":"), ensure_ascii=False)


@dataclass(frozen=True)
class DeliveryJob:
    """Everything one attempt needs, detached from the DB session."""

    log_id: int
    inbox: str
    body: bytes
    headers: dict[str, str]


@dataclass(frozen=True)
class DeliveryOutcome:
    delivered: bool
    transient: bool = False
    status_code: int | None = None
    error: str | None = None


class DeliveryService:
    """Queues activities for delivery and performs delivery attempts."""

    def __init__(
        self,
        config: FederationConfig,
        blocklist: Blocklist,
        signer: SignatureSigner,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self.blocklist = blocklist
        self.signer = signer
        self._client = client
        self._clock = clock or utcnow
        self._semaphore = asyncio.Semaphore(config.delivery_concurrency)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.delivery_timeout_seconds),
                follow_redirects=False,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # -- enqueue --------------------------------------------------------------

    def follower_inboxes(self, db: Session, actor: Actor) -> list[str]:
        """Distinct delivery inboxes of the actor's followers on unblocked hosts."""
        blocked = self.blocklist.blocked_domains(db)
        inboxes: list[str] = []
        seen: set[str] = set()
        followers = (
            db.query(Follower).filter(Follower.actor_id == actor.id).order_by(Follower.id).all()
        )
        for follower in followers:
            inbox = follower.delivery_inbox
            if inbox in seen:
                continue
            if host_of(inbox) in blocked or follower.follower_domain in blocked:
                continue
            seen.add(inbox)
            inboxes.append(inbox)
        return inboxes

    def enqueue_to_followers(
        self,
        db: Session,
        actor: Actor,
        activity: dict[str, Any],
        *,
        object_uri: str | None = None,
    ) -> OutboundActivity:
        inboxes = self.follower_inboxes(db, actor)
        return self.enqueue_to_inboxes(db, actor, activity, inboxes, object_uri)

    def enqueue_to_inbox(
        self,
        db: Session,
        actor: Actor,
        activity: dict[str, Any],
        inbox: str,
        *,
        object_uri: str | None = None,
    ) -> OutboundActivity:
        targets = [] if self.blocklist.is_blocked(db, inbox) else [inbox]
        return self.enqueue_to_inboxes(db, actor, activity, targets, object_uri)

    def enqueue_to_inboxes(
        self,
        db: Session,
        actor: Actor,
        activity: dict[str, Any],
        inboxes: Iterable[str],
        object_uri: str | None,
    ) -> OutboundActivity:
        activity_id = activity["id"]
        outbound = (
            db.query(OutboundActivity).filter(OutboundActivity.activity_id == activity_id).first()
        )
        if outbound is None:
            outbound = OutboundActivity(
                activity_id=activity_id,
                actor_id=actor.id,
                activity_type=activity.get("type", ""),
                object_uri=object_uri,
                payload=serialize_activity(activity),
            )
            db.add(outbound)
            db.flush()

        existing = {
            inbox
            for (inbox,) in db.query(DeliveryLog.target_inbox)
            .filter(DeliveryLog.activity_id == activity_id)
            .all()
        }
        queued = 0
        for inbox in inboxes:
            if inbox in existing:
                continue
            db.add(
                DeliveryLog(
                    activity_id=activity_id,
                    local_actor_id=actor.id,
                    target_inbox=inbox,
                    target_domain=host_of(inbox),
                    status=DELIVERY_PENDING,
                    attempts=0,
                )
            )
            existing.add(inbox)
            queued += 1
        db.flush()
        logger.debug("Queued %s %s for %d inboxes", outbound.activity_type, activity_id, queued)
        return outbound

    def cancel_for_object(self, db: Session, object_uri: str) -> int:
        """Kill pending deliveries about a retracted object, except its Delete."""
        activity_ids = [
            activity_id
            for (activity_id,) in db.query(OutboundActivity.activity_id)
            .filter(
                OutboundActivity.object_uri == object_uri,
                OutboundActivity.activity_type != "Delete",
            )
            .all()
        ]
        if not activity_ids:
            return 0
        rows = (
            db.query(DeliveryLog)
            .filter(
                DeliveryLog.activity_id.in_(activity_ids),
                DeliveryLog.status == DELIVERY_PENDING,
            )
            .all()
        )
        for row in rows:
            row.transition(DELIVERY_DEAD)
            row.last_error = "cancelled: object retracted"
            row.next_retry_at = None
        db.flush()
        if rows:
            logger.info("Cancelled %d pending deliveries for %s", len(rows), object_uri)
        return len(rows)

    # -- attempts -------------------------------------------------------------

    def due_deliveries(
        self,
        db: Session,
        now: datetime | None = None,
        limit: int | None = None,
        exclude: Collection[int] = (),
    ) -> list[DeliveryLog]:
        """Head-of-line pending rows per (actor, domain) whose retry time has come.

        Rows in `exclude` (already in flight) are skipped, which also holds back
        the rest of their pair until they are recorded.
        """
        now = now or self._clock()
        heads = (
            select(func.min(DeliveryLog.id))
            .where(DeliveryLog.status == DELIVERY_PENDING)
            .group_by(DeliveryLog.local_actor_id, DeliveryLog.target_domain)
        )
        rows = (
            db.query(DeliveryLog)
            .filter(DeliveryLog.id.in_(heads))
            .order_by(DeliveryLog.id)
            .all()
        )
        due = [
            row
            for row in rows
            if row.id not in exclude
            and (row.next_retry_at is None or as_utc(row.next_retry_at) <= now)
        ]
        return due[: limit or self.config.delivery_batch_size]

    def prepare(self, db: Session, row: DeliveryLog) -> DeliveryJob | None:
        """Sign the stored payload for one inbox, or settle rows that cannot be sent."""
        try:
            self.blocklist.ensure_allowed(db, row.target_domain)
        except BlockedInstanceError as exc:
            row.transition(DELIVERY_DEAD)
            row.last_error = "destination blocked"
            row.next_retry_at = None
            logger.info("Dropping delivery %s to blocked %s", row.id, exc.domain)
            return None
        try:
            ensure_fetchable(row.target_inbox, self.config)
        except UnsafeURLError as exc:
            row.attempts += 1
            row.transition(DELIVERY_FAILED)
            row.last_error = str(exc)
            row.next_retry_at = None
            logger.warning("Delivery %s to %s refused: %s", row.id, row.target_inbox, exc)
            return None

        outbound = (
            db.query(OutboundActivity)
            .filter(OutboundActivity.activity_id == row.activity_id)
            .first()
        )
        actor = db.get(Actor, row.local_actor_id)
        if outbound is None or actor is None:
            row.transition(DELIVERY_DEAD)
            row.last_error = "activity or actor missing"
            return None

        body = outbound.payload.encode("utf-8")
        headers = self.signer.sign(
            actor,
            "POST",
            row.target_inbox,
            body,
            {
                "Content-Type": ACTIVITY_JSON,
                "Accept": ACTIVITY_JSON,
                "User-Agent": USER_AGENT,
            },
        )
        return DeliveryJob(log_id=row.id, inbox=row.target_inbox, body=body, headers=headers)

    async def post(self, job: DeliveryJob) -> int:
        """POST one signed activity and return the status code.

        Raises:
            DeliveryTransientFailure: Timeout, network error, 429 or 5xx.
            DeliveryPermanentFailure: Any other non-2xx response.
        """
        try:
            response = await self._get_client().post(
                job.inbox, content=job.body, headers=job.headers, follow_redirects=False
            )
        except httpx.TimeoutException as exc:
            raise DeliveryTransientFailure(f"timeout: {exc}") from exc
        except httpx.HTTPError as exc:
            raise DeliveryTransientFailure(f"network error: {exc}") from exc

        status_code = response.status_code
        if response.is_success:
            return status_code
        if status_code == HTTP_TOO_MANY_REQUESTS or status_code >= HTTP_INTERNAL_SERVER_ERROR:
            raise DeliveryTransientFailure(f"remote responded {status_code}", status_code)
        raise DeliveryPermanentFailure(f"remote responded {status_code}", status_code)

    async def attempt(self, job: DeliveryJob) -> DeliveryOutcome:
        async with self._semaphore:
            try:
                status_code = await self.post(job)
            except DeliveryTransientFailure as exc:
                return DeliveryOutcome(False, True, exc.http_status, str(exc))
            except DeliveryError as exc:
                return DeliveryOutcome(False, False, exc.http_status, str(exc))
        return DeliveryOutcome(True, status_code=status_code)

    def record(self, row: DeliveryLog, outcome: DeliveryOutcome, now: datetime) -> None:
        """Apply an attempt's outcome; attempts only grow and status only moves forward."""
        row.attempts = (row.attempts or 0) + 1
        row.last_status_code = outcome.status_code
        if outcome.delivered:
            row.transition(DELIVERY_DELIVERED)
            row.last_error = None
            row.next_retry_at = None
            return

        row.last_error = (outcome.error or "")[:_ERROR_MAX_LENGTH]
        if not outcome.transient:
            row.transition(DELIVERY_FAILED)
            row.next_retry_at = None
        elif row.attempts >= self.config.delivery_max_attempts:
            row.transition(DELIVERY_DEAD)
            row.next_retry_at = None
        else:
            row.next_retry_at = now + timedelta(seconds=self.config.backoff_for(row.attempts))
        logger.warning(
            "Delivery %s of %s to %s failed (attempt %d): %s",
            row.id,
            row.activity_id,
            row.target_inbox,
            row.attempts,
            outcome.error,
        )

    def complete(
        self, db: Session, log_id: int, outcome: DeliveryOutcome, now: datetime | None = None
    ) -> DeliveryLog | None:
        """Record an attempt made outside `run_once`; rows settled meanwhile are left alone."""
        row = db.get(DeliveryLog, log_id)
        if row is None or row.status != DELIVERY_PENDING:
            return None
        self.record(row, outcome, now or self._clock())
        return row

    async def run_once(self, db: Session, now: datetime | None = None) -> int:
        """Attempt every due delivery once; return the number attempted."""
        now = now or self._clock()
        rows = self.due_deliveries(db, now)
        jobs: list[tuple[DeliveryLog, DeliveryJob]] = []
        for row in rows:
            job = self.prepare(db, row)
            if job is not None:
                jobs.append((row, job))
        db.flush()

        outcomes = await asyncio.gather(*(self.attempt(job) for _, job in jobs))
        for (row, _), outcome in zip(jobs, outcomes):
            self.record(row, outcome, now)
        db.commit()
        return len(jobs)

    # -- maintenance and statistics ----------------------------------------

    def purge(self, db: Session, retention_days: int | None = None, now: datetime | None = None) -> int:
        """Delete settled delivery rows older than the retention window."""
        days = self.config.delivery_log_retention_days if retention_days is None else retention_days
        cutoff = (now or self._clock()) - timedelta(days=days)
        deleted = (
            db.query(DeliveryLog)
            .filter(DeliveryLog.created_at < cutoff, DeliveryLog.status != DELIVERY_PENDING)
            .delete(synchronize_session=False)
        )
        remaining = select(DeliveryLog.activity_id).distinct()
        db.query(OutboundActivity).filter(
            OutboundActivity.created_at < cutoff,
            OutboundActivity.activity_id.not_in(remaining),
        ).delete(synchronize_session=False)
        db.flush()
        if deleted:
            logger.info("Purged %d delivery log rows older than %d days", deleted, days)
        return deleted

    def stats(self, db: Session, hours: int = 24, now: datetime | None = None) -> dict[str, Any]:
        since = (now or self._clock()) - timedelta(hours=hours)
        counts = dict(
            db.query(DeliveryLog.status, func.count(DeliveryLog.id))
            .filter(DeliveryLog.created_at >= since)
            .group_by(DeliveryLog.status)
            .all()
        )
        total = sum(counts.values())
        delivered = counts.get(DELIVERY_DELIVERED, 0)
        failed = counts.get(DELIVERY_FAILED, 0) + counts.get(DELIVERY_DEAD, 0)
        settled = delivered + failed
        return {
            "period_hours": hours,
            "total": total,
            "delivered": delivered,
            "failed": counts.get(DELIVERY_FAILED, 0),
            "dead": counts.get(DELIVERY_DEAD, 0),
            "pending": counts.get(DELIVERY_PENDING, 0),
            "success_rate": round(delivered / settled * 100, 2) if settled else 0.0,
        }

    def failures_by_instance(
        self, db: Session, hours: int = 24, limit: int = 20, now: datetime | None = None
    ) -> list[dict[str, Any]]:
        since = (now or self._clock()) - timedelta(hours=hours)
        rows = (
            db.query(DeliveryLog.target_domain, func.count(DeliveryLog.id))
            .filter(
                DeliveryLog.created_at >= since,
                DeliveryLog.status.in_((DELIVERY_FAILED, DELIVERY_DEAD)),
            )
            .group_by(DeliveryLog.target_domain)
            .order_by(func.count(DeliveryLog.id).desc())
            .limit(limit)
            .all()
        )
        return [{"domain": domain, "failures": count} for domain, count in rows]


class DeliveryWorker:
    """Background pool draining the delivery queue and purging old rows.

    Each due delivery runs as its own task and is recorded as soon as it
    finishes, so a slow destination only holds up its own (actor, domain)
    queue. At most `delivery_concurrency` deliveries are in flight.
    """

    def __init__(
        self,
        service: DeliveryService,
        session_factory: Callable[[], Session],
    ) -> None:
        self.service = service
        self._session_factory = session_factory
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()
        self._wake = asyncio.Event()
        self._inflight: dict[int, asyncio.Task[None]] = {}
        self._last_purge: datetime | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def in_flight(self) -> int:
        return len(self._inflight)

    async def start(self) -> None:
        """Start the background delivery loop."""
        if not self.running:
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop scheduling and wait for in-flight deliveries to be recorded."""
        if self._task is None:
            return
        self._stopping.set()
        self._wake.set()
        await self._task
        self._task = None
        await self.drain()

    async def drain(self) -> None:
        """Wait until every scheduled delivery has been recorded."""
        while self._inflight:
            await asyncio.gather(*self._inflight.values(), return_exceptions=True)

    def dispatch(self) -> int:
        """Schedule due deliveries up to the free pool capacity; return how many."""
        capacity = self.service.config.delivery_concurrency - len(self._inflight)
        if capacity <= 0:
            return 0
        scheduled = 0
        with self._session_factory() as db:
            rows = self.service.due_deliveries(db, limit=capacity, exclude=self._inflight.keys())
            for row in rows:
                job = self.service.prepare(db, row)
                if job is None:
                    continue
                self._inflight[job.log_id] = asyncio.create_task(self._deliver(job))
                scheduled += 1
            db.commit()
        return scheduled

    async def _deliver(self, job: DeliveryJob) -> None:
        try:
            outcome = await self.service.attempt(job)
            with self._session_factory() as db:
                self.service.complete(db, job.log_id, outcome)
                db.commit()
        except Exception as e:
            logger.error("Recording delivery %s failed: %s", job.log_id, e, exc_info=True)
        finally:
            self._inflight.pop(job.log_id, None)
            self._wake.set()

    async def tick(self) -> int:
        """One iteration: schedule due rows, then purge when the interval elapsed."""
        config = self.service.config
        scheduled = self.dispatch()
        now = utcnow()
        interval = timedelta(seconds=config.delivery_cleanup_interval_seconds)
        if self._last_purge is None or now - self._last_purge >= interval:
            with self._session_factory() as db:
                self.service.purge(db)
                db.commit()
            self._last_purge = now
        return scheduled

    async def _run(self) -> None:
        interval = max(0.1, float(self.service.config.delivery_poll_interval_seconds))

        while not self._stopping.is_set():
            self._wake.clear()
            try:
                await self.tick()
            except (OSError, ConnectionError, TimeoutError) as e:
                logger.warning("DeliveryWorker encountered network error: %s", e)
            except Exception as e:
                logger.error("DeliveryWorker iteration failed: %s", e, exc_info=True)

            # A finished delivery wakes the loop so the next row of its queue goes out.
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=interval)
            except TimeoutError:
                pass
