"""
SheetFlow
Snapshot rebuild queue + in-process worker.

Mutations that change a sheet's derived data call ``enqueue_rebuild``
inside their transaction and register ``SnapshotWorker.kick`` as a
post-commit hook.  The worker never runs inside the mutation: it rebuilds
SheetSnapshotCache rows from committed state on its own thread.

Architecture:
    - enqueue_rebuild(sheet_id): idempotent per sheet (one queue row)
    - SnapshotWorker.kick(): debounced; a drain already scheduled is not
      scheduled twice.  No-op when SNAPSHOT_WORKER_ENABLED is false.
    - drain_queue(max_items): claim → rebuild → delete.  On failure the
      error is stored (max 500 chars) and the claim released, or the row
      dropped once attempts reach MAX_ATTEMPTS.

Run manually with ``flask drain-snapshots``.
"""

from __future__ import annotations

import json
import logging
import re
import threading
import time
from datetime import datetime, timedelta, timezone

from flask import Flask
from sqlalchemy import or_, select

from sheetflow.models import db
from sheetflow.models.sheet import Sheet
from sheetflow.models.snapshot import SheetSnapshotCache, SnapshotRebuildJob
from sheetflow.services.sheet_snapshot import build_snapshot

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
MAX_ERROR_MESSAGE_CHARS = 500
CLAIM_TIMEOUT = timedelta(minutes=10)


def _utcnow():
    return datetime.now(timezone.utc)


def _as_aware(ts: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes
    if ts is not None and ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def normalize_error(exc: BaseException | str) -> str:
    """Single-line error text, at most 500 chars."""
    raw = str(exc)
    collapsed = re.sub(r"\s+", " ", raw).strip()
    if len(collapsed) <= MAX_ERROR_MESSAGE_CHARS:
        return collapsed
    return collapsed[: MAX_ERROR_MESSAGE_CHARS - 3] + "..."


# ═══════════════════════════════════════════════════════════════════════════
#  Queue
# ═══════════════════════════════════════════════════════════════════════════


def enqueue_rebuild(sheet_id: int) -> SnapshotRebuildJob:
    """Queue (or re-arm) the rebuild job for *sheet_id*.  Caller owns the commit."""
    job = db.session.execute(
        select(SnapshotRebuildJob).where(SnapshotRebuildJob.sheet_id == sheet_id)
    ).scalar_one_or_none()
    if job is None:
        job = SnapshotRebuildJob(sheet_id=sheet_id, attempts=0)
        db.session.add(job)
    else:
        job.attempts = 0
        job.last_error = None
    job.enqueued_at = _utcnow()
    db.session.flush()
    return job


def _claim_batch(max_items: int) -> list[tuple[int, int, datetime]]:
    """Claim up to *max_items* jobs; returns (job_id, attempts, claimed_at)."""
    now = _utcnow()
    stale_before = now - CLAIM_TIMEOUT
    jobs = db.session.execute(
        select(SnapshotRebuildJob)
        .where(or_(SnapshotRebuildJob.claimed_at.is_(None),
                   SnapshotRebuildJob.claimed_at < stale_before))
        .order_by(SnapshotRebuildJob.enqueued_at, SnapshotRebuildJob.id)
        .limit(max_items)
        .with_for_update(skip_locked=True)
    ).scalars().all()

    claimed = []
    for job in jobs:
        job.attempts = (job.attempts or 0) + 1
        job.claimed_at = now
        claimed.append((job.id, job.attempts, now))
    db.session.commit()
    return claimed


def _rebuild_cache(sheet_id: int) -> None:
    sheet = db.session.get(Sheet, sheet_id)
    if sheet is None:
        raise LookupError(f"Sheet {sheet_id} no longer exists")
    payload = json.dumps(build_snapshot(sheet), default=str)
    cache = db.session.get(SheetSnapshotCache, sheet_id)
    if cache is None:
        db.session.add(SheetSnapshotCache(sheet_id=sheet_id, snapshot_json=payload))
    else:
        cache.snapshot_json = payload
        cache.rebuilt_at = _utcnow()


def _process_claimed(job_id: int, attempts: int, claimed_at: datetime) -> bool:
    job = db.session.get(SnapshotRebuildJob, job_id)
    if job is None:
        return False
    sheet_id = job.sheet_id
    try:
        _rebuild_cache(sheet_id)
        # A mutation that re-armed the job after the claim keeps it queued
        if _as_aware(job.enqueued_at) and _as_aware(job.enqueued_at) > claimed_at:
            job.claimed_at = None
        else:
            db.session.delete(job)
        db.session.commit()
        logger.debug("Snapshot cache rebuilt for sheet %s", sheet_id,
                     extra={"sheet_id": sheet_id, "event_type": "snapshot_rebuilt"})
        return True
    except Exception as exc:
        db.session.rollback()
        message = normalize_error(exc)
        logger.warning("Snapshot rebuild failed for sheet %s (attempt %d): %s",
                       sheet_id, attempts, message,
                       extra={"sheet_id": sheet_id, "event_type": "snapshot_rebuild_failed"})
        job = db.session.get(SnapshotRebuildJob, job_id)
        if job is not None:
            if attempts >= MAX_ATTEMPTS:
                db.session.delete(job)
            else:
                job.last_error = message
                job.claimed_at = None
            db.session.commit()
        return False


def drain_queue(max_items: int = 5) -> int:
    """Claim up to *max_items* jobs and process them sequentially.

    Returns:
        Number of jobs claimed (successful or not).
    """
    claimed = _claim_batch(max_items)
    for job_id, attempts, claimed_at in claimed:
        _process_claimed(job_id, attempts, claimed_at)
    return len(claimed)


# ═══════════════════════════════════════════════════════════════════════════
#  In-process worker
# ═══════════════════════════════════════════════════════════════════════════


class SnapshotWorker:
    """
    Debounced background drainer.

    Jobs are executed within Flask app context on a daemon thread.  At most
    one drain is scheduled at a time; kicks arriving meanwhile are absorbed
    because the scheduled drain will see their queue rows.
    """

    _app: Flask | None = None
    _lock = threading.Lock()
    _scheduled: bool = False

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        app.extensions["snapshot_worker"] = cls
        logger.info("SnapshotWorker initialized (enabled=%s)",
                    app.config.get("SNAPSHOT_WORKER_ENABLED", False))

    @classmethod
    def kick(cls) -> bool:
        """Schedule one drain run.  Returns True if a new run was scheduled."""
        app = cls._app
        if app is None or not app.config.get("SNAPSHOT_WORKER_ENABLED", False):
            return False
        with cls._lock:
            if cls._scheduled:
                return False
            cls._scheduled = True
        thread = threading.Thread(target=cls._run, name="snapshot-worker", daemon=True)
        thread.start()
        return True

    @classmethod
    def _run(cls) -> None:
        app = cls._app
        try:
            delay = app.config.get("SNAPSHOT_WORKER_DEBOUNCE_SECONDS", 0)
            if delay:
                time.sleep(delay)
            with app.app_context():
                batch = app.config.get("SNAPSHOT_WORKER_BATCH_SIZE", 5)
                processed = drain_queue(batch)
                logger.debug("Snapshot worker drained %d job(s)", processed)
        except Exception:
            logger.exception("Snapshot worker drain error")
        finally:
            with cls._lock:
                cls._scheduled = False
