"""
===============================================================================
EPHEMVIZ - Readiness / Staleness Coordinator (Finite State Machine)
===============================================================================
Tracks the asynchronously loaded inputs every derived product depends on and
gates consumers until the inputs they need are ready for the CURRENT
generation.

Each tracked input runs its own small state machine:

            begin()             complete(gen)
    IDLE ----------> LOADING ----------------> READY
      ^                 |   \\                   |
      |                 |    \\ fail(gen)        | begin()  (new generation)
      |    reset()      |     v                 v
      +-----------------+   FAILED ---------> LOADING

Every begin() issues a new Generation token. Results carry the token they
were started with; a token that is no longer current is stale and its
result is discarded, so a slow response from a superseded request can never
overwrite newer state.

Which user actions start a generation of which input:

    date range change  -> EPHEMERIS, FRAME_MATRIX, MODEL
    frame change       -> EPHEMERIS
    model parameter    -> MODEL
===============================================================================
"""

import logging
from collections import deque
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Deque, Dict, List, Optional, Sequence, Tuple

from ephemviz.core.errors import InputsNotReady, StaleGenerationResult

logger = logging.getLogger(__name__)

# Transitions kept for the status report
TIMELINE_LENGTH = 256


# =============================================================================
# ENUMERATIONS
# =============================================================================

class TrackedInput(IntEnum):
    EPHEMERIS = 0
    FRAME_MATRIX = 1
    MODEL = 2


class InputState(IntEnum):
    IDLE = 0
    LOADING = 1
    READY = 2
    FAILED = 3


@dataclass(frozen=True)
class Generation:
    """Token identifying one load of one input."""
    input: TrackedInput
    number: int


@dataclass(frozen=True)
class ReadinessState:
    """Snapshot handed to subscribers and the UI layer."""
    ephemeris_ready: bool
    frame_matrix_ready: bool
    model_ready: bool
    states: Dict[TrackedInput, InputState]
    generations: Dict[TrackedInput, int]
    reasons: Dict[TrackedInput, str]


@dataclass(eq=False)
class _Subscription:
    callback: Callable[[ReadinessState], None]
    requires: Tuple[TrackedInput, ...]
    fired_for: Optional[Tuple[int, ...]] = None


# =============================================================================
# COORDINATOR
# =============================================================================

class ReadinessCoordinator:
    """
    Per-input LOADING/READY/FAILED state with generation tagging.

    Examples
    --------
    >>> rc = ReadinessCoordinator()
    >>> g1 = rc.begin(TrackedInput.EPHEMERIS)
    >>> g2 = rc.begin(TrackedInput.EPHEMERIS)   # supersedes g1
    >>> rc.complete(g1)
    False
    >>> rc.complete(g2)
    True
    """

    def __init__(self, timeline_length: int = TIMELINE_LENGTH) -> None:
        self._states: Dict[TrackedInput, InputState] = {i: InputState.IDLE for i in TrackedInput}
        self._generations: Dict[TrackedInput, int] = {i: 0 for i in TrackedInput}
        self._reasons: Dict[TrackedInput, str] = {i: '' for i in TrackedInput}
        self._subscriptions: List[_Subscription] = []
        self._timeline: Deque[Tuple[TrackedInput, InputState, InputState, int, str]] = \
            deque(maxlen=timeline_length)

    # -- transitions -------------------------------------------------------

    def begin(self, tracked: TrackedInput, reason: str = '') -> Generation:
        """Start a new generation of ``tracked``; any older one becomes stale."""
        self._generations[tracked] += 1
        self._transition(tracked, InputState.LOADING, reason)
        return Generation(tracked, self._generations[tracked])

    def complete(self, generation: Generation) -> bool:
        """
        Mark ``generation`` READY.

        Returns
        -------
        bool
            False if the generation was superseded (the result must be
            discarded) or is not loading.
        """
        if not self.is_current(generation):
            logger.debug("Discarding stale %s result (generation %d, current %d)",
                         generation.input.name, generation.number,
                         self._generations[generation.input])
            return False
        if self._states[generation.input] is not InputState.LOADING:
            return False

        self._transition(generation.input, InputState.READY)
        self._notify()
        return True

    def fail(self, generation: Generation, reason: str) -> bool:
        """Mark ``generation`` FAILED with a reason for the UI layer."""
        if not self.is_current(generation):
            logger.debug("Ignoring failure of stale %s generation %d",
                         generation.input.name, generation.number)
            return False

        self._transition(generation.input, InputState.FAILED, reason)
        return True

    def reset(self, tracked: TrackedInput, reason: str = '') -> None:
        """Return ``tracked`` to IDLE and invalidate any in-flight load."""
        self._generations[tracked] += 1
        self._transition(tracked, InputState.IDLE, reason)

    def _transition(self, tracked: TrackedInput, new_state: InputState,
                    reason: str = '') -> None:
        old_state = self._states[tracked]
        self._states[tracked] = new_state
        self._reasons[tracked] = reason
        generation = self._generations[tracked]
        self._timeline.append((tracked, old_state, new_state, generation, reason))

        message = "%s: %s -> %s (generation %d)"
        args = [tracked.name, old_state.name, new_state.name, generation]
        if reason:
            message += " [%s]"
            args.append(reason)
        if new_state is InputState.FAILED:
            logger.warning(message, *args)
        else:
            logger.info(message, *args)

    # -- queries -----------------------------------------------------------

    def is_current(self, generation: Generation) -> bool:
        return self._generations[generation.input] == generation.number

    def validate(self, generation: Generation) -> None:
        """
        Raise if ``generation`` has been superseded.

        Called after every await in a load so a stale continuation stops
        before touching shared state.

        Raises
        ------
        StaleGenerationResult
        """
        if not self.is_current(generation):
            raise StaleGenerationResult(
                f"{generation.input.name} generation {generation.number} superseded "
                f"by {self._generations[generation.input]}")

    def state(self, tracked: TrackedInput) -> InputState:
        return self._states[tracked]

    def reason(self, tracked: TrackedInput) -> str:
        return self._reasons[tracked]

    def current(self, tracked: TrackedInput) -> Generation:
        return Generation(tracked, self._generations[tracked])

    def is_ready(self, *inputs: TrackedInput) -> bool:
        """True when every input in ``inputs`` (default: all) is READY."""
        inputs = inputs or tuple(TrackedInput)
        return all(self._states[i] is InputState.READY for i in inputs)

    def guard(self, *inputs: TrackedInput) -> None:
        """
        Raises
        ------
        InputsNotReady
            If any of ``inputs`` is not READY.
        """
        pending = [i.name for i in (inputs or tuple(TrackedInput))
                   if self._states[i] is not InputState.READY]
        if pending:
            raise InputsNotReady(f"Inputs not ready: {', '.join(pending)}")

    def snapshot(self) -> ReadinessState:
        return ReadinessState(
            ephemeris_ready=self._states[TrackedInput.EPHEMERIS] is InputState.READY,
            frame_matrix_ready=self._states[TrackedInput.FRAME_MATRIX] is InputState.READY,
            model_ready=self._states[TrackedInput.MODEL] is InputState.READY,
            states=dict(self._states),
            generations=dict(self._generations),
            reasons=dict(self._reasons),
        )

    @property
    def timeline(self) -> List[Tuple[TrackedInput, InputState, InputState, int, str]]:
        """Most recent transitions as (input, from, to, generation, reason), oldest first."""
        return list(self._timeline)

    # -- subscriptions -----------------------------------------------------

    def subscribe(self, callback: Callable[[ReadinessState], None],
                  requires: Sequence[TrackedInput] = tuple(TrackedInput)) -> Callable[[], None]:
        """
        Call ``callback(snapshot)`` whenever all ``requires`` become READY.

        Fires at most once per combination of generations, so a new
        generation of any required input re-arms it. Fires immediately if
        the inputs are already ready.

        Returns
        -------
        callable
            Removes the subscription.
        """
        subscription = _Subscription(callback, tuple(requires))
        self._subscriptions.append(subscription)
        self._notify()

        def unsubscribe() -> None:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return unsubscribe

    def _notify(self) -> None:
        for subscription in list(self._subscriptions):
            if not self.is_ready(*subscription.requires):
                continue
            key = tuple(self._generations[i] for i in subscription.requires)
            if subscription.fired_for == key:
                continue
            subscription.fired_for = key
            subscription.callback(self.snapshot())

    def get_status_summary(self) -> str:
        lines = ["Readiness:"]
        for tracked in TrackedInput:
            line = (f"  {tracked.name:<13} {self._states[tracked].name:<8} "
                    f"generation {self._generations[tracked]}")
            if self._reasons[tracked]:
                line += f" ({self._reasons[tracked]})"
            lines.append(line)
        return "\n".join(lines)
