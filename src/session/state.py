"""
Scan Session State Module.

This module defines the per-capture state machine:

    Idle -> Capturing -> Normalizing -> Recognizing -> Extracting
         -> Validating -> Done(Complete | Partial | Failed)

Any active state may end in Done (a fatal error yields a Failed result)
or Superseded (a newer capture or a cancel). Terminal states only go
back to Idle.

Author: ML Engineering Team
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from src.utils.exceptions import InvalidTransitionError
from src.input_handler.capture import RawCapture
from src.field_extraction.extraction_result import ScanResult, ScanStatus


class ScanState(str, Enum):
    """States of one scan session."""
    IDLE = "Idle"
    CAPTURING = "Capturing"
    NORMALIZING = "Normalizing"
    RECOGNIZING = "Recognizing"
    EXTRACTING = "Extracting"
    VALIDATING = "Validating"
    DONE = "Done"
    SUPERSEDED = "Superseded"

    @property
    def terminal(self) -> bool:
        return self in (ScanState.DONE, ScanState.SUPERSEDED)

    @property
    def active(self) -> bool:
        return self not in (ScanState.IDLE, ScanState.DONE, ScanState.SUPERSEDED)


_ENDINGS = {ScanState.DONE, ScanState.SUPERSEDED}

ALLOWED_TRANSITIONS = {
    ScanState.IDLE: {ScanState.CAPTURING},
    ScanState.CAPTURING: {ScanState.NORMALIZING} | _ENDINGS,
    ScanState.NORMALIZING: {ScanState.RECOGNIZING} | _ENDINGS,
    ScanState.RECOGNIZING: {ScanState.EXTRACTING} | _ENDINGS,
    ScanState.EXTRACTING: {ScanState.VALIDATING} | _ENDINGS,
    ScanState.VALIDATING: set(_ENDINGS),
    ScanState.DONE: {ScanState.IDLE},
    ScanState.SUPERSEDED: {ScanState.IDLE},
}


@dataclass(frozen=True)
class StateChange:
    """
    One state transition, as delivered to state listeners.

    Attributes:
        session_id: Session that changed.
        generation: Its generation number.
        previous: State before the change.
        current: State after the change.
        status: Scan status when ``current`` is Done.
        timestamp: When the change happened.
    """
    session_id: str
    generation: int
    previous: ScanState
    current: ScanState
    status: Optional[ScanStatus] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'session_id': self.session_id,
            'generation': self.generation,
            'previous': self.previous.value,
            'current': self.current.value,
            'status': self.status.value if self.status else None,
            'timestamp': self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        label = f"Done({self.status.value})" if self.status else self.current.value
        return f"[{self.session_id}#{self.generation}] {self.previous.value} -> {label}"


@dataclass
class ScanSession:
    """
    Mutable state of one capture's trip through the pipeline.

    The capture is dropped once normalization succeeds or the session
    is superseded; the result is set once, on Done.
    """
    session_id: str
    generation: int
    capture: Optional[RawCapture] = None
    state: ScanState = ScanState.IDLE
    result: Optional[ScanResult] = None
    history: List[StateChange] = field(default_factory=list)

    @property
    def status(self) -> Optional[ScanStatus]:
        return self.result.status if self.result else None

    def can_transition(self, new_state: ScanState) -> bool:
        return new_state in ALLOWED_TRANSITIONS[self.state]

    def transition(self, new_state: ScanState, result: Optional[ScanResult] = None) -> StateChange:
        """
        Move to a new state.

        Args:
            new_state: Requested state.
            result: Scan result, required when entering Done.

        Returns:
            The recorded StateChange.

        Raises:
            InvalidTransitionError: If the transition is not allowed.
        """
        if not self.can_transition(new_state):
            raise InvalidTransitionError(self.session_id, self.state.value, new_state.value)
        if new_state is ScanState.DONE:
            if result is None:
                raise InvalidTransitionError(self.session_id, self.state.value, "Done without a result")
            self.result = result

        change = StateChange(
            session_id=self.session_id,
            generation=self.generation,
            previous=self.state,
            current=new_state,
            status=result.status if new_state is ScanState.DONE else None
        )
        self.state = new_state
        self.history.append(change)

        if new_state in (ScanState.RECOGNIZING, ScanState.SUPERSEDED):
            self.capture = None

        return change

    def __repr__(self) -> str:
        return f"ScanSession('{self.session_id}', gen={self.generation}, state={self.state.value})"
