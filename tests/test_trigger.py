from __future__ import annotations

from movie_chat_recommender.core.conversation import ChatSession, ConversationMessage
from movie_chat_recommender.core.trigger import ExtractionTrigger, requests_save, signals_completion


def _session(*turns: tuple[str, str]) -> ChatSession:
    session = ChatSession(session_id="s1")
    for role, content in turns:
        session.append(ConversationMessage(role=role, content=content))  # type: ignore[arg-type]
    return session


def test_explicit_save_request_fires_on_first_turn() -> None:
    session = _session(("user", "Please save my preferences: I like horror"), ("assistant", "Sure."))
    decision = ExtractionTrigger().evaluate(session)
    assert decision.fire
    assert decision.reason == "user_requested"


def test_assistant_confirmation_needs_two_user_turns() -> None:
    one_turn = _session(("user", "I like horror"), ("assistant", "Great choice!"))
    assert not ExtractionTrigger().evaluate(one_turn).fire

    two_turns = _session(
        ("user", "I like horror"),
        ("assistant", "Which decade do you prefer?"),
        ("user", "The 1980s"),
        ("assistant", "Got it, horror from the 1980s."),
    )
    decision = ExtractionTrigger().evaluate(two_turns)
    assert decision.fire
    assert decision.reason == "assistant_confirmed"


def test_two_turns_without_confirmation_do_not_fire() -> None:
    session = _session(
        ("user", "I like horror"),
        ("assistant", "Which decade do you prefer?"),
        ("user", "The 1980s"),
        ("assistant", "Any favourite directors?"),
    )
    decision = ExtractionTrigger().evaluate(session)
    assert not decision.fire
    assert decision.reason == "not_yet"


def test_third_user_turn_fires_unconditionally() -> None:
    session = _session(
        ("user", "I like horror"),
        ("assistant", "Which decade?"),
        ("user", "The 1980s"),
        ("assistant", "Any directors?"),
        ("user", "Carpenter"),
        ("assistant", "How about The Thing?"),
    )
    decision = ExtractionTrigger().evaluate(session)
    assert decision.fire
    assert decision.reason == "turn_threshold"


def test_trigger_is_one_shot() -> None:
    session = _session(("user", "remember my preferences"), ("assistant", "Noted!"))
    trigger = ExtractionTrigger()
    assert trigger.evaluate(session).fire

    trigger.mark_fired(session, {"genres": []})
    decision = trigger.evaluate(session)
    assert not decision.fire
    assert decision.reason == "already_extracted"
    assert session.preferences == {"genres": []}


def test_latest_reply_overrides_session_history() -> None:
    session = _session(("user", "I like horror"), ("assistant", "Which decade?"), ("user", "80s"))
    decision = ExtractionTrigger().evaluate(session, "Excellent, I have everything I need.")
    assert decision.reason == "assistant_confirmed"


def test_phrase_tables() -> None:
    assert requests_save("Can you update it in my profile?")
    assert not requests_save("I saved money by staying in")
    assert signals_completion("I've UPDATED YOUR list")
    assert not signals_completion("What else do you enjoy?")
