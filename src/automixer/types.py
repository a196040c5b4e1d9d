"""
Shared records for the mix: transition strategies, decision policies,
transition metadata and extraction events.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


class _LabelEnum(Enum):
    """Enum that parses its members from names, values or list positions."""

    @classmethod
    def parse(cls, label: Union[str, int, "_LabelEnum"]):
        if isinstance(label, cls):
            return label
        if isinstance(label, int):
            return list(cls)[label]
        normalized = str(label).replace("_", "").replace("-", "").lower()
        for member in cls:
            if normalized in (member.name.replace("_", "").lower(), member.value.lower()):
                return member
        raise ValueError(f"Unknown {cls.__name__}: {label!r}")


class TransitionType(_LabelEnum):
    """Transition strategies the mix generator can realize."""

    FADE_IN = "FadeIn"
    SLAM = "Slam"
    BEAT_REPEAT = "BeatRepeat"
    CROSSFADE = "Crossfade"
    BEATMATCH = "Beatmatch"
    BEATMATCH_MULTIPLE = "BeatmatchMultiple"
    ECHO_FREEZE = "EchoFreeze"
    POWER_DOWN = "PowerDown"
    EFFECTS = "Effects"


class DecisionType(_LabelEnum):
    """Policies for choosing the strategy of the next transition."""

    DEFAULT = "Default"
    RANDOM = "Random"
    DECISION_TREE = "DecisionTree"
    FIFTY_FIFTY = "FiftyFifty"


# every strategy except the opening fade
AVAILABLE_TRANSITIONS: Tuple[TransitionType, ...] = tuple(
    t for t in TransitionType if t is not TransitionType.FADE_IN
)


@dataclass(frozen=True)
class Beat:
    """Beat onset from an extraction service; label "1".."4" is the position in the bar."""

    time: float
    label: str


@dataclass(frozen=True)
class FeatureEvent:
    """Frame-based feature value (key estimate, loudness) at a time in seconds."""

    time: float
    value: float


@dataclass(frozen=True)
class Transition:
    """Immutable record of one generated transition."""

    type: TransitionType
    duration: float
    index: int = 0
    decision: Optional[DecisionType] = None
    features: Optional[Tuple[Optional[float], ...]] = None
    names: Optional[Tuple[str, ...]] = None
    date: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "type": self.type.value,
            "duration": self.duration,
            "index": self.index,
            "decision": self.decision.value if self.decision else None,
            "features": list(self.features) if self.features is not None else None,
            "names": list(self.names) if self.names is not None else None,
            "date": self.date.isoformat(),
        }


FeatureList = List[FeatureEvent]
