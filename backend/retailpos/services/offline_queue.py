# Overview: Durable offline operation queue with ordered, single-flight, at-least-once replay.

from __future__ import annotations

import json
import logging
import threading
import uuid
from typing import Callable

from flask import current_app

from ..extensions import db
from ..models import OfflineOperation
from ..models.offline import OP_CHECKOUT, OP_EXCHANGE, OP_RECEIVE, OP_TYPES
from ..time_utils import utcnow
from ..validation import NotFoundError, ValidationError
from .checkout_service import CheckoutRequest, checkout_cart
from .exchange_service import ExchangeRequest, perform_exchange
from .inventory_service import ReceiveRequest, receive_stock

"""
Offline Queue Invariants (authoritative)

- Entries are replayed in (created_at, position) order. A failure stops the
  drain: the entry keeps its place, attempts is incremented and last_error
  recorded. Later entries never overtake a failing one.
- An entry is removed only after its transaction committed.
- The entry id travels to the transaction as op_id. Replaying an entry whose
  transaction already committed (crash between commit and removal) returns
  the existing record instead of applying it twice.
- At most one drain runs at a time per process.
"""

log = logging.getLogger(__name__)

_drain_lock = threading.Lock()


def enqueue(op_type: str, payload: dict, *, op_id: str | None = None) -> OfflineOperation:
    if op_type not in OP_TYPES:
        raise ValidationError(f"type must be one of {', '.join(OP_TYPES)}")
    if not isinstance(payload, dict):
        raise ValidationError("payload must be an object")

    op_id = op_id or str(uuid.uuid4())
    existing = get_op(op_id)
    if existing is not None:
        return existing

    op = OfflineOperation(
        id=op_id,
        type=op_type,
        payload_json=json.dumps(payload, default=str),
        created_at=utcnow(),
        attempts=0,
    )
    db.session.add(op)
    db.session.commit()
    current_app.logger.info("Queued offline %s op %s", op_type, op_id)
    return op


def list_ops() -> list[OfflineOperation]:
    return (
        db.session.query(OfflineOperation)
        .order_by(OfflineOperation.created_at.asc(), OfflineOperation.position.asc())
        .all()
    )


def get_op(op_id: str) -> OfflineOperation | None:
    return db.session.query(OfflineOperation).filter_by(id=op_id).first()


def remove_op(op_id: str) -> bool:
    op = get_op(op_id)
    if op is None:
        return False
    db.session.delete(op)
    db.session.commit()
    return True


def apply_op(op_type: str, payload: dict, op_id: str):
    """Run the transaction an entry stands for, keyed by its op id."""
    if op_type == OP_CHECKOUT:
        return checkout_cart(CheckoutRequest.from_payload(payload, op_id=op_id), op_id=op_id)
    if op_type == OP_EXCHANGE:
        return perform_exchange(ExchangeRequest.from_payload(payload, op_id=op_id))
    if op_type == OP_RECEIVE:
        return receive_stock(ReceiveRequest.from_payload(payload, op_id=op_id))
    raise ValidationError(f"Unknown offline operation type {op_type!r}")


def _record_failure(op_id: str, exc: Exception) -> None:
    db.session.rollback()
    op = get_op(op_id)
    if op is None:
        return
    op.attempts = (op.attempts or 0) + 1
    op.last_error = str(exc) or exc.__class__.__name__
    op.last_attempt_at = utcnow()
    db.session.commit()


def process_op(op_id: str) -> bool:
    """
    Replay one entry. True when applied (and removed), False when it failed
    and stays queued as pending-retry.
    """
    op = get_op(op_id)
    if op is None:
        raise NotFoundError("Offline operation not found", details={"id": op_id})

    op_type, payload = op.type, op.payload
    try:
        apply_op(op_type, payload, op_id)
    except Exception as exc:
        current_app.logger.warning("Offline op %s (%s) failed: %s", op_id, op_type, exc)
        _record_failure(op_id, exc)
        return False

    remove_op(op_id)
    current_app.logger.info("Offline op %s (%s) applied", op_id, op_type)
    return True


def _online(is_online) -> bool:
    if is_online is None:
        return True
    if callable(is_online):
        return bool(is_online())
    return bool(is_online)


def process_queue(is_online: bool | Callable[[], bool] | None = None) -> dict:
    """
    Drain the queue in order, stopping at the first failure or when
    connectivity drops. A drain already in progress makes this a no-op.
    """
    if not _drain_lock.acquire(blocking=False):
        return {"skipped": True, "processed": 0, "remaining": None, "failed_op_id": None}

    try:
        processed = 0
        failed_op_id = None
        for op_id in [op.id for op in list_ops()]:
            if not _online(is_online):
                break
            if not process_op(op_id):
                failed_op_id = op_id
                break
            processed += 1

        return {
            "skipped": False,
            "processed": processed,
            "remaining": db.session.query(OfflineOperation).count(),
            "failed_op_id": failed_op_id,
        }
    finally:
        _drain_lock.release()


class QueuePoller:
    """
    Background drainer.

    Runs process_queue every `interval` seconds while online. While offline
    it sleeps until notify_online() is called. Drains are single-flight
    because process_queue is.
    """

    def __init__(self, app, interval: float | None = None, online: bool = True):
        self.app = app
        self.interval = interval if interval is not None else app.config.get("OFFLINE_POLL_INTERVAL", 5.0)
        self._online = threading.Event()
        if online:
            self._online.set()
        self._wake = threading.Event()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_online(self) -> bool:
        return self._online.is_set()

    def notify_online(self) -> None:
        self._online.set()
        self._wake.set()

    def notify_offline(self) -> None:
        self._online.clear()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="offline-queue-poller", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        self._wake.set()
        self._online.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def drain_once(self) -> dict | None:
        if not self.is_online:
            return None
        with self.app.app_context():
            try:
                return process_queue(is_online=lambda: self.is_online)
            finally:
                db.session.remove()

    def _run(self) -> None:
        log.info("Offline queue poller started (interval=%ss)", self.interval)
        while not self._stop.is_set():
            if not self.is_online:
                # Paused until connectivity comes back (or stop)
                self._online.wait()
                continue
            try:
                result = self.drain_once()
                if result and result.get("failed_op_id"):
                    log.warning("Offline queue drain stopped at op %s", result["failed_op_id"])
            except Exception:
                log.exception("Offline queue drain crashed")
            self._wake.wait(self.interval)
            self._wake.clear()
        log.info("Offline queue poller stopped")
