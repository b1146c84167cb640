"""
Session Store - per-user conversational state held in process memory

Sessions are not persisted; a restart drops every in-progress flow. The
store hands out copies, so a caller mutating what it got back does not
change the stored session until it calls ``set``. Access for one user is
serialised by the update dispatcher, which is what makes last-write-wins
safe here.
"""
from dataclasses import dataclass, field
from typing import Any, Optional

from app.state_machine.states import OrderFlowState, ORDER_FLOW_TRANSITIONS
from app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Session:
    step: OrderFlowState = OrderFlowState.MENU
    context: dict[str, Any] = field(default_factory=dict)

    def copy(self) -> "Session":
        return Session(step=self.step, context=dict(self.context))


class SessionStore:
    """In-memory map of Telegram user id to Session"""

    def __init__(self) -> None:
        self._sessions: dict[int, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, user_id: int) -> bool:
        return user_id in self._sessions

    def get(self, user_id: int) -> Session:
        """Stored session, or a fresh menu session with empty context"""
        session = self._sessions.get(user_id)
        return session.copy() if session else Session()

    def set(self, user_id: int, session: Session) -> None:
        self._sessions[user_id] = session.copy()

    def clear(self, user_id: int) -> None:
        self._sessions.pop(user_id, None)

    def transition_to(
        self,
        user_id: int,
        new_state: OrderFlowState,
        context_update: Optional[dict[str, Any]] = None,
        reset_context: bool = False,
    ) -> bool:
        """
        Move to ``new_state`` if the transition is allowed, merging
        ``context_update`` into a new context dict (or using it alone when
        ``reset_context`` is set). Returns False and changes nothing for a
        disallowed transition.
        """
        session = self.get(user_id)
        if new_state not in ORDER_FLOW_TRANSITIONS.get(session.step, []):
            logger.warning(
                "Invalid state transition attempted",
                extra_data={
                    "user_id": user_id,
                    "current_state": session.step.value,
                    "target_state": new_state.value,
                },
            )
            return False

        context = {} if reset_context else dict(session.context)
        if context_update:
            context.update(context_update)
        self.set(user_id, Session(step=new_state, context=context))
        return True

