from __future__ import annotations

import json

from ..extensions import db
from ..time_utils import to_utc_z, utcnow

OP_CHECKOUT = "checkout"
OP_EXCHANGE = "exchange"
OP_RECEIVE = "receive"
OP_TYPES = (OP_CHECKOUT, OP_EXCHANGE, OP_RECEIVE)


class OfflineOperation(db.Model):
    """
    Durable local queue entry for an operation captured while disconnected.

    Lives in the "offline" bind so it survives independently of the main
    database. id is the stable op id forwarded to the transaction layer for
    redelivery dedupe; position breaks created_at ties in FIFO order.
    """
    __bind_key__ = "offline"
    __tablename__ = "offline_operations"
    __table_args__ = (
        db.UniqueConstraint("id", name="uq_offline_operations_id"),
        db.Index("ix_offline_operations_created", "created_at", "position"),
        {"sqlite_autoincrement": True},
    )

    position = db.Column(db.Integer, primary_key=True)
    id = db.Column(db.String(64), nullable=False)
    type = db.Column(db.String(16), nullable=False)
    payload_json = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)
    last_attempt_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def payload(self) -> dict:
        return json.loads(self.payload_json)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "payload": self.payload,
            "created_at": to_utc_z(self.created_at),
            "attempts": self.attempts,
            "last_error": self.last_error,
            "last_attempt_at": to_utc_z(self.last_attempt_at),
            "status": "pending-retry" if self.attempts else "pending",
        }
