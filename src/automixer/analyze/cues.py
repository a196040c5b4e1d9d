"""
Cue Point Detection: skip low-energy intro material.

The entry bar is the first local maximum among the local maxima of the
per-bar loudness series. This is a best-effort heuristic.
"""

import logging
from typing import List

import numpy as np

from ..store import LOUDNESS_FEATURE, StructureStore

logger = logging.getLogger(__name__)


def local_maxima(values: np.ndarray) -> List[int]:
    """Indices of interior points strictly above their left and at least their right neighbour."""
    return [
        i for i in range(1, len(values) - 1)
        if values[i - 1] < values[i] >= values[i + 1]
    ]


def find_cue_point(store: StructureStore, track: str) -> int:
    """
    Find the bar offset at which to enter a track.

    Args:
        store: Store holding the track
        track: Track URI with per-bar loudness annotations

    Returns:
        Bar index of the cue point, 0 if none could be found
    """
    bars = store.find_parts(track)
    loudness = [store.find_feature_value(b, LOUDNESS_FEATURE) for b in bars]
    if not loudness or any(v is None for v in loudness):
        logger.debug(f"No loudness for every bar of {track}; cueing at bar 0")
        return 0

    series = np.asarray(loudness, dtype=float)
    maxima = local_maxima(series)
    if not maxima:
        return 0

    peaks_of_peaks = local_maxima(series[maxima])
    cue = maxima[peaks_of_peaks[0]] if peaks_of_peaks else maxima[0]
    logger.info(f"✅ Cue point for {track}: bar {cue} of {len(bars)}")
    return int(cue)
