"""
Tests for building bar/beat structures from beat events.
"""

import pytest

from automixer.analyze.structure import add_summarized_feature, build_bar_beat_structure, trim_to_full_bars
from automixer.store import DURATION_FEATURE, LOUDNESS_FEATURE, MEAN, TIME_FEATURE
from automixer.types import Beat, FeatureEvent

from conftest import regular_beats


class TestTrim:
    """Test trimming to complete bars."""

    def test_pickup_and_tail_removed(self):
        beats = [Beat(0.0, "3"), Beat(0.5, "4")] + regular_beats(120, 2, start=1.0) + [Beat(5.0, "1")]
        trimmed = trim_to_full_bars(beats)
        assert len(trimmed) == 8
        assert trimmed[0].time == 1.0
        assert trimmed[-1].label == "4"

    def test_no_downbeat(self):
        assert trim_to_full_bars([Beat(0.0, "2"), Beat(0.5, "3")]) == []


class TestBuild:
    """Test the bar/beat structure."""

    def test_bars_and_beats(self, store):
        track = build_bar_beat_structure(store, "song.wav", regular_beats(120, 3))
        bars = store.find_parts(track)
        assert len(bars) == 3
        assert all(len(store.find_parts(b)) == 4 for b in bars)
        assert store.find_feature_value(bars[1], TIME_FEATURE) == pytest.approx(2.0)
        assert store.find_feature_value(bars[1], DURATION_FEATURE) == pytest.approx(2.0)
        assert store.find_source(track) == "song.wav"

    def test_last_beat_repeats_previous_duration(self, store):
        beats = [Beat(0.0, "1"), Beat(0.5, "2"), Beat(1.1, "3"), Beat(1.8, "4")]
        track = build_bar_beat_structure(store, "song.wav", beats)
        bar = store.find_parts(track)[0]
        durations = [store.find_feature_value(b, DURATION_FEATURE) for b in store.find_parts(bar)]
        assert durations == pytest.approx([0.5, 0.6, 0.7, 0.7])

    def test_empty_beats(self, store):
        track = build_bar_beat_structure(store, "silence.wav", [])
        assert store.find_parts(track) == []


class TestSummarizedFeature:
    """Test frame features summarized per bar."""

    def test_mean_per_bar(self, store):
        track = build_bar_beat_structure(store, "song.wav", regular_beats(120, 2))
        frames = [FeatureEvent(0.0, 1.0), FeatureEvent(1.0, 3.0), FeatureEvent(2.5, 10.0)]
        add_summarized_feature(store, track, LOUDNESS_FEATURE, frames, MEAN)
        bars = store.find_parts(track)
        assert store.find_feature_value(bars[0], LOUDNESS_FEATURE) == pytest.approx(2.0)
        assert store.find_feature_value(bars[1], LOUDNESS_FEATURE) == pytest.approx(10.0)
        assert store.find_feature_value(track, LOUDNESS_FEATURE) == pytest.approx(14.0 / 3)

    def test_bar_without_frames_takes_earlier_value(self, store):
        track = build_bar_beat_structure(store, "song.wav", regular_beats(120, 3))
        add_summarized_feature(store, track, "key", [FeatureEvent(0.0, 5)], "mode")
        assert [store.find_feature_value(b, "key") for b in store.find_parts(track)] == [5, 5, 5]
