"""
Bar/beat structure: turns extracted beat events into a track of bars of
beats in the store and attaches frame-based features as bar summaries.
"""

import bisect
import logging
from typing import List, Optional

from ..store import (
    DURATION_FEATURE,
    SEQUENCE,
    TIME_FEATURE,
    EVENT,
    StructureStore,
    summarize,
)
from ..types import Beat, FeatureEvent

logger = logging.getLogger(__name__)

BEATS_PER_BAR = 4


def trim_to_full_bars(beats: List[Beat]) -> List[Beat]:
    """Drop the incomplete bars before the first downbeat and after the last "4"."""
    start = next((i for i, b in enumerate(beats) if b.label == "1"), len(beats))
    end = next((i for i in range(len(beats) - 1, -1, -1) if beats[i].label == str(BEATS_PER_BAR)), -1)
    return beats[start:end + 1]


def build_bar_beat_structure(store: StructureStore, audio_uri: str, beats: List[Beat]) -> str:
    """
    Create a track object for `audio_uri` with one bar per downbeat.

    Beat durations are onset differences; the last beat repeats the duration
    of the one before it.

    Returns:
        URI of the new track object
    """
    track = store.add_object(SEQUENCE, source=audio_uri)
    beats = trim_to_full_bars(beats)
    if not beats:
        logger.warning(f"No complete bars found for {audio_uri}")
        return track

    times = [b.time for b in beats]
    durations: List[Optional[float]] = [t2 - t1 for t1, t2 in zip(times, times[1:])]
    durations.append(durations[-1] if durations else None)

    bar = None
    for beat, duration in zip(beats, durations):
        if bar is None or beat.label == "1":
            bar = store.add_object(SEQUENCE, parent=track, source=audio_uri)
            store.set_feature(bar, TIME_FEATURE, beat.time)
        part = store.add_object(EVENT, parent=bar, source=audio_uri)
        store.set_feature(part, TIME_FEATURE, beat.time)
        store.set_feature(part, DURATION_FEATURE, duration)

    for bar in store.find_parts(track):
        beat_durations = [store.find_feature_value(b, DURATION_FEATURE) for b in store.find_parts(bar)]
        store.set_feature(bar, DURATION_FEATURE, sum(d for d in beat_durations if d is not None))

    logger.debug(f"Built {len(store.find_parts(track))} bars from {len(beats)} beats for {audio_uri}")
    return track


def add_summarized_feature(
    store: StructureStore,
    track: str,
    name: str,
    events: List[FeatureEvent],
    summary: str,
) -> None:
    """
    Summarize frame-based `events` onto each bar of `track` and onto the track.

    A bar with no frame inside it takes the value of the latest earlier frame.
    """
    if not events:
        return
    events = sorted(events, key=lambda e: e.time)
    times = [e.time for e in events]
    for bar in store.find_parts(track):
        start = store.find_feature_value(bar, TIME_FEATURE)
        end = start + store.find_feature_value(bar, DURATION_FEATURE)
        lo = bisect.bisect_left(times, start)
        hi = bisect.bisect_left(times, end)
        values = [e.value for e in events[lo:hi]]
        if not values and lo > 0:
            values = [events[lo - 1].value]
        value = summarize(values, summary)
        if value is not None:
            store.set_feature(bar, name, value)
    store.set_feature(track, name, summarize([e.value for e in events], summary))
