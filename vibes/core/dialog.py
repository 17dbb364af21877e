"""
Vibes Assistant — Dialog state and typed context.

Each conversation state owns at most one context type. `transition()` is the
only place that writes `User.state` / `User.context`, so leaving a dialog
always drops its context and a new dialog never inherits a stale one.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import asdict, dataclass, field

from vibes.data.models import ConversationState, User

logger = logging.getLogger(__name__)


@dataclass
class MorningCheckupContext:
    """Answers collected during the morning checkup."""

    energy_rating: str | None = None   # raw button label, e.g. "high"
    sleep_hours: str | None = None     # free text, validated by the LLM downstream


@dataclass
class EventRatingContext:
    """Events still waiting for a vibe, in presentation order."""

    pending: dict[str, str] = field(default_factory=dict)   # event_id → summary

    def next_event(self) -> tuple[str, str] | None:
        for event_id, summary in self.pending.items():
            return event_id, summary
        return None

    def resolve(self, key: str) -> str | None:
        """Map a button key back to the pending event id."""
        for event_id in self.pending:
            if event_key(event_id) == key:
                return event_id
        return None


def event_key(event_id: str) -> str:
    """Short stable key for an event id.

    Telegram limits callback data to 64 bytes and calendar ids (recurring
    instances, imported invites) can be much longer.
    """
    return hashlib.sha1(event_id.encode("utf-8")).hexdigest()[:10]


DialogContext = MorningCheckupContext | EventRatingContext

_CONTEXT_TYPES: dict[ConversationState, type] = {
    ConversationState.AWAITING_MORNING_ENERGY_RATING: MorningCheckupContext,
    ConversationState.AWAITING_MORNING_SLEEP_HOURS: MorningCheckupContext,
    ConversationState.AWAITING_MORNING_PLANS: MorningCheckupContext,
    ConversationState.AWAITING_EVENT_RATING: EventRatingContext,
}

# States with no dialog in progress.
IDLE_STATES = frozenset({ConversationState.NONE, ConversationState.ONBOARDING_COMPLETED})


def is_idle(user: User) -> bool:
    return user.state in IDLE_STATES


def transition(
    user: User,
    state: ConversationState,
    context: DialogContext | None = None,
) -> None:
    """Move `user` to `state`, replacing (never merging) the dialog context.

    Raises:
        ValueError: If `context` does not belong to `state`.
    """
    expected = _CONTEXT_TYPES.get(state)
    if context is not None and (expected is None or not isinstance(context, expected)):
        raise ValueError(
            f"{type(context).__name__} is not a valid context for state {state.value}"
        )

    previous = user.state
    user.state = state
    if expected is None or context is None:
        user.context = None
    else:
        user.context = json.dumps(asdict(context), ensure_ascii=False)

    if previous is not state:
        logger.info(
            "User %d: %s → %s", user.telegram_id, previous.value, state.value
        )


def read_context(user: User) -> DialogContext | None:
    """Return the typed context for the user's current state, or None.

    A missing or unreadable blob yields a fresh default context instead of
    raising, so a corrupted row degrades to "start this step over".
    """
    ctx_type = _CONTEXT_TYPES.get(user.state)
    if ctx_type is None:
        return None
    if not user.context:
        return ctx_type()
    try:
        data = json.loads(user.context)
        return ctx_type(**data)
    except (json.JSONDecodeError, TypeError) as exc:
        logger.warning(
            "Discarding unreadable %s context for user %d: %s",
            user.state.value, user.telegram_id, exc,
        )
        return ctx_type()
