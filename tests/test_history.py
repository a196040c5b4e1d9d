"""
Tests for the SQLite transition log.
"""

import pytest

from automixer.history import TransitionLog
from automixer.types import DecisionType, Transition, TransitionType


@pytest.fixture
def log():
    log = TransitionLog(":memory:")
    log.connect()
    yield log
    log.disconnect()


class TestTransitionLog:
    """Test recording, listing and rating transitions."""

    def test_record_and_list(self, log):
        first = Transition(TransitionType.FADE_IN, 4.0, index=0, decision=DecisionType.RANDOM, names=("a",))
        second = Transition(
            TransitionType.BEATMATCH, 5.5, index=1, decision=DecisionType.DECISION_TREE,
            features=(120.0, 120.0, 1.0, 1.0, 0.0, 0.0, 0.0, 0, 7, 1), names=("a", "b"),
        )
        log.record("mix-1", first)
        log.record("mix-1", second)
        log.record("mix-2", first)

        rows = log.list_transitions("mix-1")
        assert [r["type"] for r in rows] == ["Beatmatch", "FadeIn"]
        assert rows[0]["features"][9] == 1
        assert rows[0]["decision"] == "DecisionTree"
        assert rows[1]["features"] is None
        assert len(log.list_transitions()) == 3
        assert len(log.list_transitions(limit=1)) == 1

    def test_rate(self, log):
        row_id = log.record("mix-1", Transition(TransitionType.SLAM, 0.0))
        assert log.rate(row_id, 5)
        assert log.list_transitions()[0]["rating"] == 5
        assert not log.rate(row_id + 100, 1)

    def test_file_database(self, tmp_path):
        path = tmp_path / "nested" / "log.sqlite"
        log = TransitionLog(str(path))
        log.connect()
        log.record("mix", Transition(TransitionType.CROSSFADE, 6.0))
        log.disconnect()

        reopened = TransitionLog(str(path))
        reopened.connect()
        assert reopened.list_transitions()[0]["type"] == "Crossfade"
        reopened.disconnect()
