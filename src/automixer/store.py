"""
In-memory hierarchical structure store for tracks and the mix timeline.

Objects are composites (sequences play their parts one after another,
conjunctions play them in parallel) or leaves (beats, silence, controls).
Each object carries features (analysis values such as duration, key and
loudness) and parameters (playback values such as Amplitude). Constraints
bind a parameter of every object in a set to an expression over controls
and are re-evaluated on demand. Events attached to a position in a
composite set a control parameter when playback reaches that position.
"""

import contextlib
import itertools
import logging
import math
import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)

# object types
SEQUENCE = "sequence"
CONJUNCTION = "conjunction"
EVENT = "event"
SILENCE = "silence"
RAMP = "ramp"
PARAMETER = "parameter"

# features
DURATION_FEATURE = "duration"
TIME_FEATURE = "time"
KEY_FEATURE = "key"
LOUDNESS_FEATURE = "loudness"

# parameters
AMPLITUDE = "Amplitude"
PLAYBACK_RATE = "PlaybackRate"
REVERB = "Reverb"
DELAY = "Delay"
TIME_STRETCH_RATIO = "TimeStretchRatio"
DURATION_RATIO = "DurationRatio"
VALUE = "Value"
AUTO_CONTROL_TRIGGER = "AutoControlTrigger"

PARAMETER_DEFAULTS = {
    AMPLITUDE: 1.0,
    PLAYBACK_RATE: 1.0,
    REVERB: 0.0,
    DELAY: 0.0,
    TIME_STRETCH_RATIO: 1.0,
    DURATION_RATIO: 1.0,
    VALUE: 0.0,
    AUTO_CONTROL_TRIGGER: 0.0,
}

# summarizing modes
MEAN = "mean"
MODE = "mode"


class StoreConcurrencyError(RuntimeError):
    """Raised when a structural edit overlaps another edit of the store."""
    pass


@dataclass
class StoreObject:
    uri: str
    type: str
    parts: List[str] = field(default_factory=list)
    features: Dict[str, Any] = field(default_factory=dict)
    parameters: Dict[str, float] = field(default_factory=dict)
    source: Optional[str] = None


class ConstraintScope:
    """Values visible to a constraint formula while it is applied to one target."""

    def __init__(self, store: "StructureStore", target: str, controls: Dict[str, str]):
        self.store = store
        self.target = target
        self._controls = controls

    def control(self, name: str) -> float:
        return self.store.find_parameter_value(self._controls[name], VALUE)

    def feature(self, name: str) -> Any:
        return self.store.find_feature_value(self.target, name)

    def parameter(self, name: str) -> float:
        return self.store.find_parameter_value(self.target, name)


@dataclass(frozen=True)
class Constraint:
    """
    Binds `function` of every object in `targets` to `formula`.

    `expression` is the readable form, e.g. "Amplitude(d) == 1-r", where `d`
    ranges over the targets and the other names are controls.
    """

    function: str
    targets: Tuple[str, ...]
    controls: Dict[str, str]
    formula: Callable[[ConstraintScope], float]
    expression: str
    owner: Optional[str] = None


class StructureStore:
    """In-memory object store with features, parameters, controls and constraints."""

    def __init__(self, prefix: str = "obj"):
        self._prefix = prefix
        self._objects: Dict[str, StoreObject] = {}
        self._constraints: Dict[str, Constraint] = {}
        self._events: Dict[Tuple[str, int], List[Tuple[str, float]]] = {}
        self._observers: Dict[Tuple[str, str], List[Any]] = {}
        self._ids = itertools.count()
        self._edit_lock = threading.Lock()

    def _new_uri(self, kind: str) -> str:
        return f"{self._prefix}:{kind}{next(self._ids)}"

    def _get(self, uri: str) -> StoreObject:
        try:
            return self._objects[uri]
        except KeyError:
            raise KeyError(f"Unknown object: {uri}") from None

    @contextlib.contextmanager
    def _structural_edit(self):
        if not self._edit_lock.acquire(blocking=False):
            raise StoreConcurrencyError("Concurrent structural edit of the store")
        try:
            yield
        finally:
            self._edit_lock.release()

    # ---------------------------------------------------------------- objects

    def add_object(self, type: str = SEQUENCE, parent: Optional[str] = None,
                   source: Optional[str] = None) -> str:
        uri = self._new_uri(type)
        self._objects[uri] = StoreObject(uri=uri, type=type, source=source)
        if parent is not None:
            self.add_part(parent, uri)
        return uri

    def exists(self, uri: str) -> bool:
        return uri in self._objects

    def find_type(self, uri: str) -> str:
        return self._get(uri).type

    def find_source(self, uri: str) -> Optional[str]:
        return self._get(uri).source

    def add_part(self, parent: str, part: str) -> None:
        with self._structural_edit():
            self._get(part)
            self._get(parent).parts.append(part)

    def add_parts(self, parent: str, parts: List[str]) -> None:
        for part in parts:
            self.add_part(parent, part)

    def insert_part_at(self, parent: str, part: str, index: int) -> None:
        with self._structural_edit():
            self._get(parent).parts.insert(index, part)

    def find_parts(self, uri: str) -> List[str]:
        return list(self._get(uri).parts)

    def find_part_at(self, uri: str, index: int) -> Optional[str]:
        parts = self._get(uri).parts
        if -len(parts) <= index < len(parts):
            return parts[index]
        return None

    def remove_parts(self, uri: str, index: int) -> List[str]:
        """Remove and return all parts of `uri` from `index` on."""
        with self._structural_edit():
            obj = self._get(uri)
            index = max(0, index)
            removed = obj.parts[index:]
            del obj.parts[index:]
            stale = [k for k in self._events if k[0] == uri and k[1] >= index]
            for key in stale:
                del self._events[key]
            return removed

    def add_conjunction(self, parent: str, parts: List[str]) -> str:
        """Append a composite playing `parts` in parallel to `parent`."""
        conjunction = self.add_object(CONJUNCTION)
        self.add_parts(conjunction, parts)
        self.add_part(parent, conjunction)
        return conjunction

    # --------------------------------------------------------------- features

    def set_feature(self, uri: str, name: str, value: Any) -> None:
        self._get(uri).features[name] = value

    def find_feature_value(self, uri: str, name: str, summary: Optional[str] = None) -> Any:
        """
        Return the feature of an object, or with `summary` (MEAN/MODE) an
        aggregate over the values of its parts when it has none itself.
        """
        obj = self._get(uri)
        if name in obj.features:
            return obj.features[name]
        if summary is None or not obj.parts:
            return None
        values = [self.find_feature_value(p, name, summary) for p in obj.parts]
        return summarize([v for v in values if v is not None], summary)

    def duration(self, uri: str) -> float:
        """Natural duration in seconds: own feature, sum of sequence parts or longest conjunction part."""
        obj = self._get(uri)
        if obj.features.get(DURATION_FEATURE) is not None:
            return obj.features[DURATION_FEATURE]
        durations = [self.duration(p) for p in obj.parts]
        if not durations:
            return 0.0
        return max(durations) if obj.type == CONJUNCTION else sum(durations)

    # ------------------------------------------------------------- parameters

    def set_parameter(self, uri: str, name: str, value: float) -> None:
        obj = self._get(uri)
        changed = obj.parameters.get(name) != value
        obj.parameters[name] = value
        if changed:
            for observer in list(self._observers.get((uri, name), [])):
                observer.observed_value_changed(uri, name, value)

    def find_parameter_value(self, uri: str, name: str) -> float:
        obj = self._get(uri)
        if name in obj.parameters:
            return obj.parameters[name]
        return PARAMETER_DEFAULTS.get(name, 0.0)

    def add_value_observer(self, uri: str, name: str, observer) -> None:
        self._observers.setdefault((uri, name), []).append(observer)

    def remove_value_observer(self, uri: str, name: str, observer) -> None:
        observers = self._observers.get((uri, name), [])
        if observer in observers:
            observers.remove(observer)

    # --------------------------------------------------------------- controls

    def add_ramp_control(self, duration: float, steps: int = 100) -> str:
        """Add a ramp moving from 0 to 1 over `duration` seconds in `steps` steps."""
        ramp = self.add_object(RAMP)
        self.set_feature(ramp, DURATION_FEATURE, duration)
        self.set_feature(ramp, "steps", steps)
        self.set_parameter(ramp, VALUE, 0.0)
        return ramp

    def add_custom_parameter(self, name: str, value: float = 0.0) -> str:
        param = self.add_object(PARAMETER)
        self.set_feature(param, "name", name)
        self.set_parameter(param, VALUE, value)
        return param

    def add_event(self, composite: str, index: int, control: str, value: float = 1.0) -> None:
        """Set `control`'s trigger to `value` when playback of `composite` reaches `index`."""
        self._get(control)
        self._events.setdefault((composite, index), []).append((control, value))

    def pop_events(self, composite: str, index: int) -> List[Tuple[str, float]]:
        return self._events.pop((composite, index), [])

    # ------------------------------------------------------------ constraints

    def add_constraint(self, constraint: Constraint) -> str:
        uri = self._new_uri("constraint")
        self._constraints[uri] = constraint
        logger.debug(f"Constraint {uri}: {constraint.expression} over {len(constraint.targets)} objects")
        return uri

    def find_constraint(self, uri: str) -> Constraint:
        return self._constraints[uri]

    def is_constraint(self, uri: str) -> bool:
        return uri in self._constraints

    def apply_constraints(self, uris: Optional[List[str]] = None) -> None:
        """
        Evaluate constraints in the given (default: registration) order and
        write their parameters. URIs that are not constraints are skipped.
        """
        if uris is None:
            uris = list(self._constraints)
        for uri in uris:
            constraint = self._constraints.get(uri)
            if constraint is None:
                continue
            for target in constraint.targets:
                scope = ConstraintScope(self, target, constraint.controls)
                self.set_parameter(target, constraint.function, constraint.formula(scope))


def summarize(values: List[Any], mode: str) -> Any:
    """Aggregate values by MEAN or MODE (smallest value wins ties); None when empty."""
    if not values:
        return None
    if mode == MEAN:
        return float(np.mean(values))
    if mode == MODE:
        counts = Counter(values)
        top = max(counts.values())
        return min(v for v, c in counts.items() if c == top)
    raise ValueError(f"Unknown summarizing mode: {mode}")


def safe_inverse(value: float) -> float:
    return 1 / value if value else math.inf
