import logging
from collections import deque
from collections.abc import Callable
from enum import Enum

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    READY = "ready"
    SUBMITTING = "submitting"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_STATES = frozenset({PipelineState.SUBMITTING, PipelineState.QUEUED, PipelineState.PROCESSING})
TERMINAL_STATES = frozenset({PipelineState.COMPLETED, PipelineState.FAILED})

# recent transitions kept for inspection; older entries drop off
HISTORY_LIMIT = 50

# Choosing a new file (ANALYZING) is legal from everywhere; it overrides any running import.
TRANSITIONS: dict[PipelineState, frozenset[PipelineState]] = {
    PipelineState.IDLE: frozenset({PipelineState.ANALYZING}),
    PipelineState.ANALYZING: frozenset({PipelineState.ANALYZING, PipelineState.READY, PipelineState.IDLE}),
    PipelineState.READY: frozenset({PipelineState.ANALYZING, PipelineState.SUBMITTING, PipelineState.IDLE}),
    PipelineState.SUBMITTING: frozenset({
        PipelineState.ANALYZING, PipelineState.QUEUED, PipelineState.PROCESSING,
        PipelineState.COMPLETED, PipelineState.FAILED, PipelineState.READY, PipelineState.IDLE,
    }),
    PipelineState.QUEUED: frozenset({
        PipelineState.ANALYZING, PipelineState.QUEUED, PipelineState.PROCESSING,
        PipelineState.COMPLETED, PipelineState.FAILED, PipelineState.READY, PipelineState.IDLE,
    }),
    PipelineState.PROCESSING: frozenset({
        PipelineState.ANALYZING, PipelineState.PROCESSING,
        PipelineState.COMPLETED, PipelineState.FAILED, PipelineState.READY, PipelineState.IDLE,
    }),
    PipelineState.COMPLETED: frozenset({PipelineState.ANALYZING, PipelineState.SUBMITTING, PipelineState.IDLE}),
    PipelineState.FAILED: frozenset({PipelineState.ANALYZING, PipelineState.SUBMITTING, PipelineState.IDLE}),
}


class InvalidTransitionError(RuntimeError):
    def __init__(self, current: PipelineState, target: PipelineState):
        super().__init__(f"Illegal pipeline transition: {current.value} -> {target.value}")
        self.current = current
        self.target = target


class PipelineStateMachine:
    def __init__(self, on_change: Callable[[PipelineState, PipelineState], None] | None = None):
        self._state = PipelineState.IDLE
        self._on_change = on_change
        self.history: deque[PipelineState] = deque([PipelineState.IDLE], maxlen=HISTORY_LIMIT)

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state in ACTIVE_STATES

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    def can_transition(self, target: PipelineState) -> bool:
        return target in TRANSITIONS[self._state]

    def transition(self, target: PipelineState) -> PipelineState:
        if not self.can_transition(target):
            raise InvalidTransitionError(self._state, target)
        previous, self._state = self._state, target
        if previous != target:
            self.history.append(target)
            logger.debug(f"Pipeline {previous.value} -> {target.value}")
            if self._on_change is not None:
                self._on_change(previous, target)
        return previous
