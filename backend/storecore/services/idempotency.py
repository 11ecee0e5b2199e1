# Overview: Processed-event records guarding externally triggered transitions.

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import ProcessedEvent
from ..time_utils import utcnow

logger = logging.getLogger(__name__)


def already_processed(source: str, event_key: str) -> bool:
    return (
        db.session.query(ProcessedEvent.id)
        .filter_by(source=source, event_key=event_key)
        .first()
        is not None
    )


def claim_event(source: str, event_key: str, *, entity_type: str | None = None, entity_id: int | None = None) -> bool:
    """
    Claim (source, event_key) inside the current transaction.

    Returns False when the event was already processed; the caller must
    then skip every mutation. The unique constraint catches a concurrent
    claim that slipped past the read.
    """
    if already_processed(source, event_key):
        logger.info("Replayed event ignored: %s/%s", source, event_key)
        return False
    try:
        with db.session.begin_nested():
            db.session.add(ProcessedEvent(
                source=source,
                event_key=event_key,
                entity_type=entity_type,
                entity_id=entity_id,
                processed_at=utcnow(),
            ))
    except IntegrityError:
        logger.info("Concurrent replay ignored: %s/%s", source, event_key)
        return False
    return True


def find_event(source: str, event_key: str) -> ProcessedEvent | None:
    return db.session.query(ProcessedEvent).filter_by(source=source, event_key=event_key).first()
