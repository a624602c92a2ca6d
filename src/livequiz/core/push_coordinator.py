"""Quiz push coordination.

Selects an unpushed quiz item, marks it pushed exactly once, and announces
it to the live audience of the session.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, replace
from typing import Protocol

import structlog

from livequiz.core.errors import NothingToPushError, StateConflictError
from livequiz.db.quiz_repository import (
    QuizItemRecord,
    count_unpushed,
    get_quiz_item,
    get_unpushed_at,
    mark_quiz_pushed,
)
from livequiz.db.sessions_repository import get_session

logger = structlog.get_logger(__name__)

NEW_QUIZ_EVENT = "new_quiz"

# Random selection retries when another pusher takes the chosen item first
MAX_SELECTION_ATTEMPTS = 5


class EventPublisher(Protocol):
    """What the coordinator needs from the broadcast channel."""

    def publish(self, session_id: str, event: dict) -> int: ...

    def recipient_count(self, session_id: str) -> int: ...


@dataclass
class PushOutcome:
    """Result of a successful push."""

    item: QuizItemRecord
    recipients: int


class PushCoordinator:
    """Pushes quiz items to a session's live audience."""

    def __init__(self, publisher: EventPublisher, rng: random.Random | None = None):
        self._publisher = publisher
        self._rng = rng or random.Random()

    def select_next(self, session_id: str, explicit_id: str | None = None) -> QuizItemRecord:
        """Choose the item to push.

        Args:
            session_id: Session the item must belong to
            explicit_id: Push this item instead of a random one

        Raises:
            StateConflictError: If the explicit item is unknown, belongs to
                another session, or was already pushed
            NothingToPushError: If no unpushed item is left
        """
        if explicit_id is not None:
            item = get_quiz_item(explicit_id)
            if item is None or item.session_id != session_id:
                raise StateConflictError(f"Quiz {explicit_id} does not belong to session {session_id}")
            if item.is_pushed:
                raise StateConflictError(f"Quiz {explicit_id} was already pushed at {item.pushed_at}")
            return item

        remaining = count_unpushed(session_id)
        if remaining == 0:
            raise NothingToPushError(f"Every quiz of session {session_id} has already been pushed")

        item = get_unpushed_at(session_id, self._rng.randrange(remaining))
        if item is None:
            # Shrunk between count and read; take the first one left
            item = get_unpushed_at(session_id, 0)
        if item is None:
            raise NothingToPushError(f"Every quiz of session {session_id} has already been pushed")
        return item

    def mark_pushed(self, item_id: str) -> str | None:
        """Compare-and-set pushed_at. Returns the timestamp only for the winning caller."""
        return mark_quiz_pushed(item_id)

    def recipient_count(self, session_id: str) -> int:
        return self._publisher.recipient_count(session_id)

    def push_item(self, session_id: str, explicit_id: str | None = None) -> PushOutcome:
        """Push one quiz item to the session's live audience.

        Raises:
            StateConflictError: If the session is not in progress, or the
                explicit item cannot be pushed
            NothingToPushError: If no unpushed item is left
        """
        session = get_session(session_id)
        if session is None or session.status != "in_progress":
            current = session.status if session else "unknown"
            raise StateConflictError(
                f"Session {session_id} is not in progress (status: {current})"
            )

        attempts = 1 if explicit_id is not None else MAX_SELECTION_ATTEMPTS
        for attempt in range(1, attempts + 1):
            item = self.select_next(session_id, explicit_id)
            pushed_at = self.mark_pushed(item.quiz_id)
            if pushed_at is not None:
                break
            logger.debug("push.lost_race", session_id=session_id, quiz_id=item.quiz_id, attempt=attempt)
        else:
            if explicit_id is not None:
                raise StateConflictError(f"Quiz {explicit_id} was already pushed")
            raise StateConflictError(
                f"Could not claim a quiz for session {session_id} after {attempts} attempts"
            )

        item = replace(item, pushed_at=pushed_at)
        recipients = self._publisher.publish(
            session_id,
            {"type": NEW_QUIZ_EVENT, "quiz": item.to_public_dict()},
        )

        logger.info(
            "push.delivered",
            session_id=session_id,
            quiz_id=item.quiz_id,
            recipients=recipients,
        )
        return PushOutcome(item=item, recipients=recipients)
