"""Shared fixtures: a store, an offline player and track factories."""

import pytest

from automixer.analyze.structure import add_summarized_feature, build_bar_beat_structure
from automixer.render.player import OfflinePlayer
from automixer.store import KEY_FEATURE, MODE, StructureStore
from automixer.types import Beat, FeatureEvent


def regular_beats(tempo, num_bars, start=0.0):
    """Beats of a perfectly steady track, labelled 1..4 in every bar."""
    beat = 60.0 / tempo
    return [Beat(time=start + i * beat, label=str(i % 4 + 1)) for i in range(num_bars * 4)]


@pytest.fixture
def store():
    return StructureStore()


@pytest.fixture
def player(store):
    return OfflinePlayer(store)


@pytest.fixture
def make_track(store):
    """Factory: make_track(tempo, num_bars, key=None) -> track URI in the store."""

    def factory(tempo=120.0, num_bars=8, key=None, name="track.wav"):
        track = build_bar_beat_structure(store, name, regular_beats(tempo, num_bars))
        if key is not None:
            add_summarized_feature(store, track, KEY_FEATURE, [FeatureEvent(0.0, key)], MODE)
        return track

    return factory
