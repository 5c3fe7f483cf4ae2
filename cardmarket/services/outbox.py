"""Outbox: queued side effects with at-least-once delivery.

State changes enqueue messages in their own transaction; ``OutboxDispatcher``
delivers them later. A failed delivery is retried with backoff until
``OUTBOX_MAX_ATTEMPTS`` is reached, after which the message is marked ``dead``
and left for an operator to inspect and requeue.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from cardmarket.api import EmailClient, PushClient
from cardmarket.config import settings
from cardmarket.constants import OUTBOX_BATCH_SIZE, OUTBOX_MAX_ATTEMPTS, OUTBOX_SENT_RETENTION
from cardmarket.errors import NotFoundError, ValidationError
from cardmarket.models import Notification, OutboxMessage, User
from cardmarket.timestamps import utcnow

logger = logging.getLogger(__name__)

KIND_EMAIL = "email"
KIND_NOTIFICATION = "notification"
KIND_PUSH = "push"


def action_url(path: str) -> str:
    return f"{settings.app_base_url.rstrip('/')}{path}"


class Outbox:
    """Writes side effects into the caller's session; the caller commits."""

    def __init__(self, db: Session):
        self.db = db

    def enqueue(
        self,
        kind: str,
        recipient_id: str,
        subject: str,
        body: str,
        payload: Optional[dict] = None,
    ) -> OutboxMessage:
        message = OutboxMessage(
            kind=kind,
            recipient_id=recipient_id,
            subject=subject[:200],
            body=body,
            payload=payload or {},
            status="pending",
            attempts=0,
            next_attempt_at=utcnow(),
        )
        self.db.add(message)
        return message

    def notify(
        self,
        recipient_id: str,
        notification_type: str,
        title: str,
        message: str,
        data: Optional[dict] = None,
        email: bool = True,
    ) -> None:
        """Queue an in-app notification, a device push and, optionally, a matching email.

        The push travels as its own message so a flaky push provider retries on
        its own schedule and never holds back the in-app record.
        """
        payload = {"type": notification_type, "data": data or {}}
        self.enqueue(KIND_NOTIFICATION, recipient_id, title, message, payload)
        self.enqueue(KIND_PUSH, recipient_id, title, message, payload)
        if email:
            link = (data or {}).get("actionUrl")
            body = f"{message}\n\n{action_url(link)}" if link else message
            self.enqueue(KIND_EMAIL, recipient_id, title, body, payload)


class OutboxDispatcher:
    """Delivers pending outbox messages through the provider clients."""

    def __init__(
        self,
        db: Session,
        email_client: EmailClient,
        push_client: Optional[PushClient] = None,
        max_attempts: int = OUTBOX_MAX_ATTEMPTS,
    ):
        self.db = db
        self.email_client = email_client
        self.push_client = push_client
        self.max_attempts = max_attempts

    async def deliver_pending(self, now: Optional[datetime] = None, limit: int = OUTBOX_BATCH_SIZE) -> dict:
        now = now or utcnow()
        messages = (
            self.db.query(OutboxMessage)
            .filter(OutboxMessage.status == "pending")
            .filter(OutboxMessage.next_attempt_at <= now)
            .order_by(OutboxMessage.id.asc())
            .limit(limit)
            .all()
        )

        sent = failed = dead = 0
        for message in messages:
            try:
                await self._deliver(message)
            except Exception as e:
                message.attempts += 1
                message.last_error = str(e)[:1000]
                if message.attempts >= self.max_attempts:
                    message.status = "dead"
                    dead += 1
                    logger.error(
                        f"Outbox message {message.id} ({message.kind} to {message.recipient_id}) "
                        f"dead after {message.attempts} attempts: {e}"
                    )
                else:
                    message.next_attempt_at = now + timedelta(minutes=2 ** message.attempts)
                    failed += 1
                    logger.warning(f"Outbox message {message.id} attempt {message.attempts} failed: {e}")
            else:
                message.attempts += 1
                message.status = "sent"
                message.sent_at = now
                sent += 1
            # Commit per message so a crash never re-sends what was already delivered.
            self.db.commit()

        if messages:
            logger.info(f"Outbox delivery: {sent} sent, {failed} failed, {dead} dead")
        return {"processed": len(messages), "sent": sent, "failed": failed, "dead": dead}

    async def _deliver(self, message: OutboxMessage) -> None:
        payload = message.payload or {}
        if message.kind == KIND_NOTIFICATION:
            self.db.add(
                Notification(
                    user_id=message.recipient_id,
                    type=payload.get("type", "system"),
                    title=message.subject,
                    message=message.body,
                    data=payload.get("data") or {},
                )
            )
        elif message.kind == KIND_PUSH:
            if self.push_client is not None:
                await self.push_client.send_push(
                    message.recipient_id, message.subject, message.body, payload.get("data")
                )
        elif message.kind == KIND_EMAIL:
            user = self.db.get(User, message.recipient_id)
            if user is None or not user.email:
                raise ValueError(f"No email address for user {message.recipient_id}")
            await self.email_client.send_email(user.email, message.subject, message.body)
        else:
            raise ValueError(f"Unknown outbox kind '{message.kind}'")


def list_dead_messages(db: Session, limit: int = 100) -> list[OutboxMessage]:
    return (
        db.query(OutboxMessage)
        .filter(OutboxMessage.status == "dead")
        .order_by(OutboxMessage.id.desc())
        .limit(limit)
        .all()
    )


def requeue_message(db: Session, message_id: int) -> OutboxMessage:
    """Move a dead message back to pending with a fresh attempt budget."""
    message = db.get(OutboxMessage, message_id)
    if message is None:
        raise NotFoundError("Outbox message not found")
    if message.status != "dead":
        raise ValidationError("Only dead messages can be requeued")
    message.status = "pending"
    message.attempts = 0
    message.next_attempt_at = utcnow()
    db.commit()
    logger.info(f"Requeued outbox message {message.id}")
    return message


def purge_sent_messages(db: Session, now: Optional[datetime] = None, retention: timedelta = OUTBOX_SENT_RETENTION) -> int:
    """Delete delivered messages older than ``retention``; dead ones are kept for inspection."""
    cutoff = (now or utcnow()) - retention
    deleted = (
        db.query(OutboxMessage)
        .filter(OutboxMessage.status == "sent")
        .filter(OutboxMessage.sent_at <= cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    if deleted:
        logger.info(f"Purged {deleted} sent outbox messages older than {cutoff.isoformat()}")
    return deleted
