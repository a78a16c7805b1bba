from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal

from movie_chat_recommender.core.conversation import ChatSession

logger = logging.getLogger(__name__)

TriggerReason = Literal[
    "already_extracted",
    "user_requested",
    "assistant_confirmed",
    "turn_threshold",
    "not_yet",
]

# (action verb, target nouns): a user message containing the verb and any of
# its targets asks for preferences to be saved.
SAVE_REQUEST_PHRASES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("save", ("preference", "my account", "my profile")),
    ("update", ("preference", "my account", "my profile", "it in my")),
    ("remember", ("preference",)),
    ("store", ("preference",)),
)

COMPLETION_PHRASES: tuple[str, ...] = (
    "updated your",
    "saved",
    "got it",
    "noted",
    "recorded",
    "preferences",
    "perfect!",
    "great",
    "excellent",
)

CONFIRMATION_MIN_USER_TURNS = 2
UNCONDITIONAL_USER_TURNS = 3


@dataclass(frozen=True)
class TriggerDecision:
    fire: bool
    reason: TriggerReason


def requests_save(message: str) -> bool:
    text = message.lower()
    return any(
        verb in text and any(target in text for target in targets)
        for verb, targets in SAVE_REQUEST_PHRASES
    )


def signals_completion(reply: str) -> bool:
    text = reply.lower()
    return any(phrase in text for phrase in COMPLETION_PHRASES)


class ExtractionTrigger:
    """Decides, once per completed exchange, whether extraction should run.

    One-shot per session: after ``mark_fired`` the session never fires again.
    """

    def __init__(
        self,
        *,
        confirmation_min_user_turns: int = CONFIRMATION_MIN_USER_TURNS,
        unconditional_user_turns: int = UNCONDITIONAL_USER_TURNS,
    ) -> None:
        self.confirmation_min_user_turns = confirmation_min_user_turns
        self.unconditional_user_turns = unconditional_user_turns

    def evaluate(self, session: ChatSession, latest_reply: str | None = None) -> TriggerDecision:
        if session.preferences_extracted:
            return TriggerDecision(fire=False, reason="already_extracted")

        reply = session.latest_assistant_reply if latest_reply is None else latest_reply
        user_turns = session.user_turns

        if any(requests_save(m) for m in session.user_messages):
            decision = TriggerDecision(fire=True, reason="user_requested")
        elif user_turns >= self.confirmation_min_user_turns and signals_completion(reply):
            decision = TriggerDecision(fire=True, reason="assistant_confirmed")
        elif user_turns >= self.unconditional_user_turns:
            decision = TriggerDecision(fire=True, reason="turn_threshold")
        else:
            decision = TriggerDecision(fire=False, reason="not_yet")

        logger.info(
            "Extraction check for session %s: user_turns=%d fire=%s reason=%s",
            session.session_id,
            user_turns,
            decision.fire,
            decision.reason,
        )
        return decision

    @staticmethod
    def mark_fired(session: ChatSession, preferences: dict[str, Any]) -> None:
        session.preferences_extracted = True
        session.preferences = preferences
