"""
Debounced detection state machine.

The machine is a pure function ``tick(state, tick_input) -> (state, event)``
over an explicit ``DetectorState`` record, so any host loop (timer, thread,
event loop, test) can drive it. ``DetectionStateMachine`` is a small
stateful wrapper for callers that prefer ``on_tick(distance, now_ms)``.

Phases:
    IDLE      no reference set; nothing can fire
    ARMED     reference set, outside cooldown
    COOLDOWN  within cooldown_ms of the last trigger
"""
import datetime
import enum
import math
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Tuple

# Upper bound accepted for cooldown_ms (one hour)
MAX_COOLDOWN_MS = 3_600_000


class ThresholdDirection(enum.Enum):
    """Which side of the threshold counts as a match."""
    MATCH_BELOW = "below"
    MATCH_ABOVE = "above"

    def matches(self, distance: float, threshold: float) -> bool:
        if self is ThresholdDirection.MATCH_BELOW:
            return distance <= threshold
        return distance >= threshold


class Phase(enum.Enum):
    IDLE = "idle"
    ARMED = "armed"
    COOLDOWN = "cooldown"


@dataclass(frozen=True)
class DetectionConfig:
    """
    Detection parameters, validated at construction.

    Attributes:
        threshold: Distance threshold in [0, 1]
        direction: Whether a match is at or below, or at or above, threshold
        cooldown_ms: Minimum interval between two events, in milliseconds
    """
    threshold: float = 0.20
    direction: ThresholdDirection = ThresholdDirection.MATCH_BELOW
    cooldown_ms: int = 1500

    def __post_init__(self):
        if isinstance(self.direction, str):
            object.__setattr__(self, "direction", ThresholdDirection(self.direction))
        if not isinstance(self.threshold, (int, float)) or not math.isfinite(self.threshold):
            raise ValueError(f"threshold must be a finite number, got {self.threshold!r}")
        if not 0.0 <= self.threshold <= 1.0:
            raise ValueError(f"threshold must be between 0 and 1, got {self.threshold}")
        if isinstance(self.cooldown_ms, bool) or not isinstance(self.cooldown_ms, int):
            raise ValueError(f"cooldown_ms must be an integer, got {self.cooldown_ms!r}")
        if not 0 <= self.cooldown_ms <= MAX_COOLDOWN_MS:
            raise ValueError(
                f"cooldown_ms must be between 0 and {MAX_COOLDOWN_MS}, got {self.cooldown_ms}"
            )

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "DetectionConfig":
        """Build from the ``detection`` section of the app config."""
        detection = config["detection"]
        return cls(
            threshold=float(detection["threshold"]),
            direction=ThresholdDirection(detection["threshold_direction"]),
            cooldown_ms=int(detection["cooldown_ms"]),
        )


@dataclass(frozen=True)
class DetectionEvent:
    """A single detection. Immutable once emitted."""
    timestamp_ms: float
    distance: float

    @property
    def timestamp(self) -> datetime.datetime:
        """Event time as an aware UTC datetime."""
        return datetime.datetime.fromtimestamp(self.timestamp_ms / 1000.0, tz=datetime.timezone.utc)

    def isoformat(self) -> str:
        return self.timestamp.isoformat(timespec="milliseconds")


@dataclass(frozen=True)
class DetectorState:
    """Everything the machine remembers between ticks."""
    phase: Phase = Phase.IDLE
    last_trigger_ms: Optional[float] = None


@dataclass(frozen=True)
class TickInput:
    distance: float
    now_ms: float
    reference_present: bool
    config: DetectionConfig


def _cooldown_elapsed(state: DetectorState, now_ms: float, cooldown_ms: int) -> bool:
    if state.last_trigger_ms is None:
        return True
    return now_ms - state.last_trigger_ms >= cooldown_ms


def tick(state: DetectorState, tick_input: TickInput) -> Tuple[DetectorState, Optional[DetectionEvent]]:
    """
    Advance the machine by one tick.

    Args:
        state: State after the previous tick
        tick_input: Distance sample, clock, reference flag and current config

    Returns:
        Tuple of (new_state, event) where event is None unless this tick fired
    """
    config = tick_input.config
    now_ms = tick_input.now_ms

    if not tick_input.reference_present:
        return replace(state, phase=Phase.IDLE), None

    if state.phase is not Phase.ARMED:
        # Leaving IDLE or COOLDOWN; the trigger time survives a cleared reference
        if _cooldown_elapsed(state, now_ms, config.cooldown_ms):
            state = replace(state, phase=Phase.ARMED)
        else:
            state = replace(state, phase=Phase.COOLDOWN)

    if state.phase is Phase.COOLDOWN:
        return state, None

    distance = tick_input.distance
    if not math.isfinite(distance) or not config.direction.matches(distance, config.threshold):
        return state, None

    event = DetectionEvent(timestamp_ms=now_ms, distance=float(distance))
    return DetectorState(phase=Phase.COOLDOWN, last_trigger_ms=now_ms), event


class DetectionStateMachine:
    """
    Stateful wrapper around ``tick``.

    ``config`` and ``reference_present`` may be changed between ticks; the
    change applies from the next ``on_tick`` and never moves the start of a
    running cooldown.
    """

    def __init__(self, config: Optional[DetectionConfig] = None, reference_present: bool = False):
        self.config = config or DetectionConfig()
        self.reference_present = reference_present
        self._state = DetectorState()

    @property
    def state(self) -> DetectorState:
        return self._state

    @property
    def phase(self) -> Phase:
        return self._state.phase

    def on_tick(self, distance: float, now_ms: float) -> Optional[DetectionEvent]:
        """Feed one distance sample; returns the event if one fires."""
        self._state, event = tick(
            self._state,
            TickInput(
                distance=distance,
                now_ms=now_ms,
                reference_present=self.reference_present,
                config=self.config,
            ),
        )
        return event
