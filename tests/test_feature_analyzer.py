"""
Unit tests for pairwise feature analysis and cue points.
"""

import pytest

from automixer.analyze.cues import find_cue_point, local_maxima
from automixer.analyze.features import (
    TONAL_DISTANCES,
    Feature,
    FeatureAnalyzer,
    FeatureVector,
    key_distance_of,
    multiplicity,
    symmetric_ratio,
)
from automixer.store import DURATION_FEATURE, KEY_FEATURE, LOUDNESS_FEATURE, SEQUENCE, EVENT, StructureStore
from automixer.analyze.structure import build_bar_beat_structure

from conftest import regular_beats


@pytest.fixture
def analyzer(store):
    return FeatureAnalyzer(store)


class TestTempoAndRegularity:
    """Test per-track descriptors."""

    def test_tempo_from_beat_durations(self, analyzer, make_track):
        track = make_track(tempo=120.0)
        assert analyzer.tempo(track) == pytest.approx(120.0)

    def test_tempo_is_cached(self, analyzer, make_track):
        track = make_track(tempo=100.0)
        analyzer.tempo(track)
        assert track in analyzer.tempo_cache
        assert track in analyzer.beats_cache

    def test_regularity_is_cached(self, analyzer, make_track):
        track = make_track(tempo=100.0)
        first = analyzer.regularity(track)
        assert analyzer.regularity_cache[track] == first
        analyzer.beats_cache[track] = [0.1, 0.9]
        assert analyzer.regularity(track) == first

    def test_steady_track_has_near_zero_regularity(self, analyzer, make_track):
        track = make_track(tempo=128.0)
        assert analyzer.regularity(track) == pytest.approx(0.0, abs=1e-9)

    def test_irregular_beats_raise_regularity(self, store, analyzer):
        times = [0.0, 0.5, 1.1, 1.5, 2.2, 2.5, 3.1, 3.5]
        beats = regular_beats(120.0, 2)
        beats = [type(b)(time=t, label=b.label) for b, t in zip(beats, times)]
        track = build_bar_beat_structure(store, "wobbly.wav", beats)
        assert analyzer.regularity(track) > 0.05

    def test_short_track_has_undefined_tempo(self, store, analyzer):
        track = store.add_object(SEQUENCE)
        bar = store.add_object(SEQUENCE, parent=track)
        beat = store.add_object(EVENT, parent=bar)
        store.set_feature(beat, DURATION_FEATURE, 0.5)
        assert analyzer.tempo(track) is None
        assert analyzer.regularity(track) is None


class TestPairFeatures:
    """Test pairwise relations."""

    def test_tempo_ratio_symmetric(self, analyzer, make_track):
        a = make_track(tempo=120.0)
        b = make_track(tempo=100.0)
        assert analyzer.tempo_ratio(a, b) == pytest.approx(analyzer.tempo_ratio(b, a))
        assert analyzer.tempo_ratio(a, b) == pytest.approx(100.0 / 120.0)

    @pytest.mark.parametrize("tempo_a,tempo_b", [(120, 120), (60, 180), (174, 87.5), (90, 91)])
    def test_tempo_ratio_in_unit_interval(self, tempo_a, tempo_b):
        ratio = symmetric_ratio(tempo_a, tempo_b)
        assert 0 < ratio <= 1

    def test_tempo_multiplicity_near_double_time(self):
        assert multiplicity(120.0, 62.0) == pytest.approx((120.0 / 62.0) % 1)
        assert multiplicity(120.0, 62.0) > 0.85

    def test_exact_multiple_folds_to_one(self):
        assert multiplicity(120.0, 60.0) == 1.0
        assert multiplicity(60.0, 120.0) == 1.0

    def test_multiplicity_undefined_without_tempo(self):
        assert multiplicity(None, 120.0) is None

    def test_regularity_product(self, store, analyzer, make_track):
        a = make_track(tempo=120.0)
        b = make_track(tempo=100.0)
        assert analyzer.regularity_product(a, b) == pytest.approx(0.0, abs=1e-12)


class TestKeys:
    """Test key summarization and tonal distance."""

    def test_key_from_annotations(self, analyzer, make_track):
        track = make_track(key=7)
        assert analyzer.key(track) == 7

    def test_key_is_mode_of_bars(self, store, analyzer, make_track):
        track = make_track(num_bars=3)
        for bar, key in zip(store.find_parts(track), [2, 9, 9]):
            store.set_feature(bar, KEY_FEATURE, key)
        assert analyzer.key(track) == 9

    def test_missing_key(self, analyzer, make_track):
        assert analyzer.key(make_track()) is None

    def test_distance_table(self):
        assert TONAL_DISTANCES == (0, 5, 2, 3, 4, 1, 6, 1, 4, 3, 2, 5)

    @pytest.mark.parametrize("d", range(1, 12))
    def test_distance_mirror(self, d):
        assert TONAL_DISTANCES[d] == TONAL_DISTANCES[12 - d]

    def test_key_distance_symmetric(self):
        for a in range(12):
            assert key_distance_of(a, a) == 0
            for b in range(12):
                assert key_distance_of(a, b) == key_distance_of(b, a)

    def test_fifth_closest_tritone_farthest(self):
        assert key_distance_of(0, 7) == 1
        assert key_distance_of(0, 6) == 6


class TestFeatureVector:
    """Test the full vector."""

    def test_vector_order(self, analyzer, make_track):
        a = make_track(tempo=120.0, key=0)
        b = make_track(tempo=100.0, key=7)
        vector = analyzer.compute_feature_vector(a, b)
        assert isinstance(vector, FeatureVector)
        assert len(vector) == 10
        assert vector[Feature.TEMPO_A] == pytest.approx(120.0)
        assert vector[Feature.TEMPO_B] == pytest.approx(100.0)
        assert vector[Feature.KEY_B] == 7
        assert vector[Feature.KEY_DISTANCE] == 1

    def test_missing_beats_do_not_raise(self, store, analyzer, make_track):
        a = make_track(tempo=120.0, key=0)
        empty = store.add_object(SEQUENCE)
        vector = analyzer.compute_feature_vector(a, empty)
        assert vector.tempo_a == pytest.approx(120.0)
        assert vector.tempo_b is None
        assert vector.tempo_ratio is None
        assert vector.regularity_product is None
        assert vector.key_distance is None

    def test_independent_analyzers_agree(self, store, make_track):
        a = make_track(tempo=123.0, key=3)
        b = make_track(tempo=97.0, key=10)
        first = FeatureAnalyzer(store).compute_feature_vector(a, b)
        second = FeatureAnalyzer(store).compute_feature_vector(a, b)
        assert first == second


class TestCuePoint:
    """Test the loudness-based cue heuristic."""

    def _track_with_loudness(self, store, make_track, values):
        track = make_track(num_bars=len(values))
        for bar, value in zip(store.find_parts(track), values):
            store.set_feature(bar, LOUDNESS_FEATURE, value)
        return track

    def test_local_maxima(self):
        assert local_maxima([1, 3, 2, 5, 4]) == [1, 3]

    def test_first_peak_of_peaks(self, store, make_track):
        track = self._track_with_loudness(store, make_track, [1, 3, 2, 5, 4, 8, 2, 3, 1])
        assert find_cue_point(store, track) == 5

    def test_single_peak(self, store, make_track):
        track = self._track_with_loudness(store, make_track, [1, 2, 6, 2, 1])
        assert find_cue_point(store, track) == 2

    def test_no_loudness_cues_at_start(self, store, make_track):
        track = make_track(num_bars=4)
        assert FeatureAnalyzer(store).find_cue_point(track) == 0
