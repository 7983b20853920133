"""
netrauth State Machine Base

Table-driven state machine used by the secure-channel orchestrator:
- Transitions are looked up by (current state, event type)
- Context updates are pure functions returning a new context
- Registered invariants are checked before a transition is committed
- Every committed transition is kept in a history for audit and tests
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Tuple, TypeVar

import attrs
import structlog
from returns.result import Failure, Result, Success

from netrauth.core.exceptions import InvariantViolation
from netrauth.core.types import NetrCredential, SecretBytes

logger = structlog.get_logger()


S = TypeVar("S", bound=Enum)  # State type
E = TypeVar("E")  # Event type
C = TypeVar("C")  # Context type


@attrs.define(frozen=True, slots=True)
class Transition(Generic[S]):
    """Immutable record of one committed transition."""

    from_state: S
    event_type: str
    to_state: S
    timestamp: datetime
    context_snapshot: Dict[str, Any] = attrs.Factory(dict)
    event_data: Dict[str, Any] = attrs.Factory(dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_state": self.from_state.name,
            "event_type": self.event_type,
            "to_state": self.to_state.name,
            "timestamp": self.timestamp.isoformat(),
            "context_snapshot": self.context_snapshot,
            "event_data": self.event_data,
        }


InvariantFn = Callable[[Any, Any], bool]

# (next_state, context_updater)
TransitionEntry = Tuple[Any, Callable[[Any, Any], Any]]


@attrs.define
class StateMachineBase(ABC, Generic[S, E, C]):
    """
    Base state machine with invariant checking.

    Subclasses provide ``initial_state`` and ``transition_table``. Context
    updaters receive ``(event, context)`` and must not mutate the context
    they are given.

    Usage:
        class ChannelMachine(StateMachineBase[ChannelState, Any, SessionState]):
            def initial_state(self) -> ChannelState:
                return ChannelState.UNINITIALIZED

            def transition_table(self):
                return {
                    (ChannelState.UNINITIALIZED, ChallengeExchanged): (
                        ChannelState.CHALLENGING,
                        self._on_challenge,
                    ),
                }
    """

    _state: S = attrs.field(alias="_state")
    _context: C = attrs.field(alias="_context")
    _history: List[Transition[S]] = attrs.field(factory=list, alias="_history")
    _invariants: List[Tuple[str, InvariantFn]] = attrs.field(factory=list, alias="_invariants")
    _logger: Any = attrs.field(factory=lambda: structlog.get_logger(), alias="_logger")

    @abstractmethod
    def initial_state(self) -> S:
        """Return the initial state for this state machine."""
        ...

    @abstractmethod
    def transition_table(self) -> Dict[Tuple[S, type], TransitionEntry]:
        """Map (current_state, event_type) to (next_state, context_updater)."""
        ...

    @property
    def state(self) -> S:
        return self._state

    @property
    def context(self) -> C:
        return self._context

    def process_event(self, event: E) -> Result[S, str]:
        """
        Apply an event.

        Returns:
            Success(new_state) if the transition was committed
            Failure(error_message) if no transition exists or the update failed

        Raises:
            InvariantViolation: If an invariant fails for the would-be state
        """
        event_type = type(event)
        entry = self.transition_table().get((self._state, event_type))
        if entry is None:
            self._logger.warning(
                "invalid_transition",
                current_state=self._state.name,
                event_type=event_type.__name__,
            )
            return Failure(
                f"No transition for state {self._state.name} with event {event_type.__name__}"
            )

        next_state, context_updater = entry

        try:
            new_context = context_updater(event, self._context)
        except Exception as e:
            self._logger.error(
                "context_update_failed",
                error=str(e),
                current_state=self._state.name,
                event_type=event_type.__name__,
            )
            return Failure(f"Context update failed: {e}")

        self._check_invariants(next_state, new_context)

        self._history.append(
            Transition(
                from_state=self._state,
                event_type=event_type.__name__,
                to_state=next_state,
                timestamp=datetime.now(timezone.utc),
                context_snapshot=self._snapshot(new_context),
                event_data=self._snapshot(event),
            )
        )

        self._logger.debug(
            "state_transition",
            from_state=self._state.name,
            to_state=next_state.name,
            event_type=event_type.__name__,
        )

        self._state = next_state
        self._context = new_context
        return Success(next_state)

    def add_invariant(self, name: str, invariant: InvariantFn) -> None:
        """Register ``invariant(state, context) -> bool``, checked on every transition."""
        self._invariants.append((name, invariant))

    def get_trace(self) -> List[Transition[S]]:
        return list(self._history)

    def export_trace_json(self) -> str:
        """Transition history as JSON. Byte values appear only as their length."""
        return json.dumps(
            {
                "initial_state": self.initial_state().name,
                "final_state": self._state.name,
                "transitions": [t.to_dict() for t in self._history],
            },
            indent=2,
        )

    def _check_invariants(self, next_state: S, new_context: C) -> None:
        for name, invariant in self._invariants:
            if not invariant(next_state, new_context):
                self._logger.error(
                    "invariant_violated",
                    invariant=name,
                    from_state=self._state.name,
                    to_state=next_state.name,
                )
                raise InvariantViolation(f"Invariant '{name}' violated")

    def _snapshot(self, obj: Any) -> Dict[str, Any]:
        if attrs.has(type(obj)):
            return attrs.asdict(
                obj,
                recurse=False,
                filter=lambda attr, value: not attr.name.startswith("_"),
                value_serializer=self._serialize_value,
            )
        return {"type": type(obj).__name__}

    @staticmethod
    def _serialize_value(inst: type, field: attrs.Attribute, value: Any) -> Any:  # noqa: ARG004
        if isinstance(value, (bytes, bytearray, SecretBytes)):
            return f"<bytes:{len(value)}>"
        if isinstance(value, NetrCredential):
            return f"<bytes:{len(value.data)}>"
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, Enum):
            return value.name
        if value is not None and not isinstance(value, (str, int, float, bool)):
            return f"<{type(value).__name__}>"
        return value
