# Overview: Fire-and-forget notifications, dispatched only after commit.

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy import event
from sqlalchemy.orm import Session

from ..extensions import db

logger = logging.getLogger(__name__)

NOTIFIER_EXTENSION_KEY = "storecore.notifier"
_PENDING_KEY = "storecore.pending_notifications"


class LoggingNotifier:
    """Default dispatcher: writes each notification to the log."""

    def send(self, kind: str, recipient: dict, payload: dict) -> None:
        logger.info("notification %s -> %s %s", kind, recipient, payload)


class RecordingNotifier:
    """Keeps dispatched notifications in memory (tests, dry runs)."""

    def __init__(self):
        self.sent: list[tuple[str, dict, dict]] = []

    def send(self, kind: str, recipient: dict, payload: dict) -> None:
        self.sent.append((kind, recipient, payload))

    def kinds(self) -> list[str]:
        return [kind for kind, _, _ in self.sent]


def install_notifier(app, notifier=None) -> None:
    app.extensions[NOTIFIER_EXTENSION_KEY] = notifier or LoggingNotifier()


def get_notifier():
    return current_app.extensions[NOTIFIER_EXTENSION_KEY]


def notify(kind: str, *, recipient: dict, payload: dict | None = None) -> None:
    """
    Queue a notification on the current session.

    It is sent when the transaction commits and dropped if it rolls back,
    so nobody is told about a change that never happened.
    """
    pending = db.session.info.setdefault(_PENDING_KEY, [])
    pending.append((get_notifier(), kind, recipient, payload or {}))


@event.listens_for(Session, "after_commit")
def _dispatch_after_commit(session):
    pending = session.info.pop(_PENDING_KEY, None)
    if not pending:
        return
    for notifier, kind, recipient, payload in pending:
        try:
            notifier.send(kind, recipient, payload)
        except Exception:
            logger.exception("Notification %s to %s failed", kind, recipient)


@event.listens_for(Session, "after_soft_rollback")
def _drop_after_rollback(session, previous_transaction):
    # savepoint rollbacks keep the outer transaction and its queue
    if previous_transaction.parent is None:
        session.info.pop(_PENDING_KEY, None)
