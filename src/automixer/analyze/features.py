"""
Pairwise Feature Analysis: tempo, beat regularity and key relations
between the previous and the incoming track.

Values are derived from the bar/beat structure in the store and memoized
per track. Tracks with fewer than two beats or without key annotations
yield None for every value that depends on the missing data.
"""

import logging
import math
from enum import IntEnum
from typing import Dict, List, NamedTuple, Optional

import numpy as np

from ..store import DURATION_FEATURE, KEY_FEATURE, StructureStore, MODE, summarize
from .cues import find_cue_point

logger = logging.getLogger(__name__)


class Feature(IntEnum):
    """Column indices of a FeatureVector."""

    TEMPO_A = 0
    TEMPO_B = 1
    TEMPO_RATIO = 2
    TEMPO_MULTIPLICITY = 3
    REGULARITY_A = 4
    REGULARITY_B = 5
    REGULARITY_PRODUCT = 6
    KEY_A = 7
    KEY_B = 8
    KEY_DISTANCE = 9


class FeatureVector(NamedTuple):
    tempo_a: Optional[float]
    tempo_b: Optional[float]
    tempo_ratio: Optional[float]
    tempo_multiplicity: Optional[float]
    regularity_a: Optional[float]
    regularity_b: Optional[float]
    regularity_product: Optional[float]
    key_a: Optional[int]
    key_b: Optional[int]
    key_distance: Optional[int]


# fifth-related keys are closest, the tritone farthest
TONAL_DISTANCES = (0, 5, 2, 3, 4, 1, 6, 1, 4, 3, 2, 5)

MIN_BEATS = 2


def key_distance_of(key_a: Optional[int], key_b: Optional[int]) -> Optional[int]:
    if key_a is None or key_b is None:
        return None
    return TONAL_DISTANCES[abs(key_a - key_b) % 12]


def symmetric_ratio(tempo_a: Optional[float], tempo_b: Optional[float]) -> Optional[float]:
    """tempo_a / tempo_b folded into (0, 1]; 1 means identical tempo."""
    if tempo_a is None or tempo_b is None:
        return None
    ratio = tempo_a / tempo_b
    return 1 / ratio if ratio > 1 else ratio


def multiplicity(tempo_a: Optional[float], tempo_b: Optional[float]) -> Optional[float]:
    """
    Fractional part of the tempo ratio taken >= 1. Values near 1 mean one tempo
    is close to an integer multiple of the other; exact multiples give 1.
    """
    ratio = symmetric_ratio(tempo_a, tempo_b)
    if ratio is None:
        return None
    fraction = (1 / ratio) % 1
    if math.isclose(fraction, 0, abs_tol=1e-9) or math.isclose(fraction, 1, abs_tol=1e-9):
        return 1.0
    return fraction


class FeatureAnalyzer:
    """Computes and caches per-track and pairwise descriptors."""

    def __init__(self, store: StructureStore, min_beats: int = MIN_BEATS):
        self.store = store
        self.min_beats = max(MIN_BEATS, min_beats)
        self.beats_cache: Dict[str, List[float]] = {}
        self.keys_cache: Dict[str, Optional[int]] = {}
        self.tempo_cache: Dict[str, Optional[float]] = {}
        self.regularity_cache: Dict[str, Optional[float]] = {}

    def compute_feature_vector(self, previous: str, new: str) -> FeatureVector:
        """Feature vector for the ordered pair (previous, new); never raises on missing data."""
        vector = FeatureVector(
            tempo_a=self.tempo(previous),
            tempo_b=self.tempo(new),
            tempo_ratio=self.tempo_ratio(previous, new),
            tempo_multiplicity=self.tempo_multiplicity(previous, new),
            regularity_a=self.regularity(previous),
            regularity_b=self.regularity(new),
            regularity_product=self.regularity_product(previous, new),
            key_a=self.key(previous),
            key_b=self.key(new),
            key_distance=self.key_distance(previous, new),
        )
        missing = [f for f, v in zip(vector._fields, vector) if v is None]
        if missing:
            logger.warning(f"Undefined features for {previous} -> {new}: {', '.join(missing)}")
        logger.debug(f"Features {previous} -> {new}: {vector}")
        return vector

    def tempo(self, track: str) -> Optional[float]:
        if track not in self.tempo_cache:
            durations = self.beat_durations(track)
            self.tempo_cache[track] = (
                60 / float(np.mean(durations)) if len(durations) >= self.min_beats else None
            )
        return self.tempo_cache[track]

    def regularity(self, track: str) -> Optional[float]:
        """Sample standard deviation of the beat durations; lower is steadier."""
        if track not in self.regularity_cache:
            durations = self.beat_durations(track)
            self.regularity_cache[track] = (
                float(np.std(durations, ddof=1)) if len(durations) >= self.min_beats else None
            )
        return self.regularity_cache[track]

    def tempo_ratio(self, track_a: str, track_b: str) -> Optional[float]:
        return symmetric_ratio(self.tempo(track_a), self.tempo(track_b))

    def tempo_multiplicity(self, track_a: str, track_b: str) -> Optional[float]:
        return multiplicity(self.tempo(track_a), self.tempo(track_b))

    def regularity_product(self, track_a: str, track_b: str) -> Optional[float]:
        reg_a, reg_b = self.regularity(track_a), self.regularity(track_b)
        if reg_a is None or reg_b is None:
            return None
        return reg_a * reg_b

    def key(self, track: str) -> Optional[int]:
        """Pitch class 0-11: the most common bar key, else the track-level key."""
        if track not in self.keys_cache:
            bar_keys = [self.store.find_feature_value(b, KEY_FEATURE) for b in self.store.find_parts(track)]
            key = summarize([k for k in bar_keys if k is not None], MODE)
            if key is None:
                key = self.store.find_feature_value(track, KEY_FEATURE)
            self.keys_cache[track] = int(round(key)) % 12 if key is not None else None
        return self.keys_cache[track]

    def key_distance(self, track_a: str, track_b: str) -> Optional[int]:
        return key_distance_of(self.key(track_a), self.key(track_b))

    def find_cue_point(self, track: str) -> int:
        return find_cue_point(self.store, track)

    def beat_durations(self, track: str) -> List[float]:
        if track not in self.beats_cache:
            durations = []
            for bar in self.store.find_parts(track):
                for beat in self.store.find_parts(bar):
                    duration = self.store.find_feature_value(beat, DURATION_FEATURE)
                    if duration is not None:
                        durations.append(duration)
            self.beats_cache[track] = durations
        return self.beats_cache[track]
