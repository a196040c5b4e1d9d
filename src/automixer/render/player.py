"""
Offline Playback Engine.

Plays a mix timeline on an offline clock: playback only moves when
advance() is called, one top-level timeline segment (bar, silence or
parallel segment) at a time. Reaching a segment fires the events stored
at its index, starts triggered ramps, re-evaluates loaded constraints and
reports the newly playing beats to observers.
"""

import logging
from typing import Callable, Dict, List, Optional, Set

from ..store import (
    AUTO_CONTROL_TRIGGER,
    DURATION_FEATURE,
    RAMP,
    VALUE,
    StructureStore,
)

logger = logging.getLogger(__name__)


class Player:
    """Interface of the playback engine used by the mix generator and orchestrator."""

    def load(self, *uris: str) -> None:
        raise NotImplementedError

    def play(self, uri: str) -> None:
        raise NotImplementedError

    def stop(self, uri: Optional[str] = None) -> None:
        raise NotImplementedError

    def is_playing(self, uri: str) -> bool:
        raise NotImplementedError

    def position(self, uri: str) -> int:
        raise NotImplementedError

    def add_playing_observer(self, callback: Callable[[List[str]], None]) -> None:
        raise NotImplementedError


class OfflinePlayer(Player):
    """Steps through a timeline in the store without real-time scheduling."""

    def __init__(self, store: StructureStore, schedule_ahead_time: float = 0.5, load_ahead_time: float = 2.0):
        self.store = store
        self.schedule_ahead_time = schedule_ahead_time
        self.load_ahead_time = load_ahead_time
        self.playing: Optional[str] = None
        self.index = 0
        self.elapsed = 0.0
        self._loaded: Set[str] = set()
        self._constraints: List[str] = []
        self._ramps: Dict[str, float] = {}
        self._playing_observers: List[Callable[[List[str]], None]] = []

    def load(self, *uris: str) -> None:
        """Activate objects; constraints among them are evaluated immediately."""
        for uri in uris:
            if uri in self._loaded:
                continue
            self._loaded.add(uri)
            if self.store.is_constraint(uri):
                self._constraints.append(uri)
        self.store.apply_constraints(list(uris))

    def play(self, uri: str) -> None:
        if self.playing == uri:
            return
        self.playing = uri
        self.index = 0
        self.elapsed = 0.0
        logger.info(f"Playing {uri}")
        self._enter_segment()

    def stop(self, uri: Optional[str] = None) -> None:
        if uri is None or uri == self.playing:
            logger.info(f"Stopped {self.playing}")
            self.playing = None
            self._ramps.clear()

    def is_playing(self, uri: str) -> bool:
        return self.playing == uri

    def position(self, uri: str) -> int:
        """Index of the currently playing segment of `uri` (0 when not playing)."""
        return self.index if self.playing == uri else 0

    def add_playing_observer(self, callback: Callable[[List[str]], None]) -> None:
        self._playing_observers.append(callback)

    def advance(self, segments: int = 1) -> None:
        """Finish the current segment(s) and move on; stops at the end of the timeline."""
        for _ in range(segments):
            if self.playing is None:
                return
            segment = self.store.find_part_at(self.playing, self.index)
            duration = self.store.duration(segment) if segment is not None else 0.0
            self.elapsed += duration
            self._progress_ramps(duration)
            self.index += 1
            self._enter_segment()

    def _enter_segment(self) -> None:
        parts = self.store.find_parts(self.playing)
        if self.index >= len(parts):
            logger.info(f"Reached the end of {self.playing}")
            self.stop()
            return
        for control, value in self.store.pop_events(self.playing, self.index):
            if self.store.find_type(control) == RAMP:
                self._ramps[control] = 0.0
                self.store.set_parameter(control, VALUE, 0.0)
            self.store.set_parameter(control, AUTO_CONTROL_TRIGGER, value)
        self.store.apply_constraints(self._constraints)
        playing = self._leaves(parts[self.index])
        for callback in list(self._playing_observers):
            callback(playing)

    def _progress_ramps(self, seconds: float) -> None:
        for ramp in list(self._ramps):
            self._ramps[ramp] += seconds
            duration = self.store.find_feature_value(ramp, DURATION_FEATURE) or 0.0
            steps = self.store.find_feature_value(ramp, "steps") or 100
            progress = min(1.0, self._ramps[ramp] / duration) if duration > 0 else 1.0
            self.store.set_parameter(ramp, VALUE, round(progress * steps) / steps)
            if progress >= 1.0:
                del self._ramps[ramp]

    def _leaves(self, uri: str) -> List[str]:
        parts = self.store.find_parts(uri)
        if not parts:
            return [uri]
        return [leaf for part in parts for leaf in self._leaves(part)]
