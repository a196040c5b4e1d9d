"""
Mix Orchestrator: ingests tracks one at a time and chains transitions.

For each new track:
1. Reset if playback stopped since the last call
2. Extract beats, key and loudness and build the bar/beat structure
3. Compute the feature vector against the previous track
4. Choose a strategy (default, random, decision tree or fifty-fifty)
5. Generate the transition and resume playback of the mix
"""

import dataclasses
import json
import logging
import random
import threading
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from .analyze.extraction import AubioExtractor, ExtractionError, FeatureService
from .analyze.features import FeatureAnalyzer, FeatureVector
from .analyze.structure import add_summarized_feature, build_bar_beat_structure
from .analyze.tags import track_name
from .config import Config
from .generate.decision_tree import DecisionTree, Leaf, Split, parse_node
from .generate.mixer import MixGenerator, TransitionOptions
from .generate.standard_tree import STANDARD_TREE
from .history import TransitionLog
from .observer import Signal
from .store import KEY_FEATURE, LOUDNESS_FEATURE, MEAN, MODE, StoreConcurrencyError, StructureStore
from .types import AVAILABLE_TRANSITIONS, DecisionType, Transition, TransitionType

logger = logging.getLogger(__name__)

TreeSpec = Union[DecisionTree, Split, Leaf, Dict[str, Any]]


class MixOrchestrator:
    """Sequences ingestion, decision and generation for one continuous mix."""

    def __init__(
        self,
        store: StructureStore,
        player,
        feature_service: Optional[FeatureService] = None,
        decision_type: DecisionType = DecisionType.DECISION_TREE,
        decision_tree: TreeSpec = STANDARD_TREE,
        default_transition: TransitionType = TransitionType.BEATMATCH,
        config: Optional[Config] = None,
        rng: Optional[random.Random] = None,
        history: Optional[TransitionLog] = None,
    ):
        self.config = config or Config.defaults()
        self.store = store
        self.player = player
        self.feature_service = feature_service or AubioExtractor(self.config["analysis"])
        self.decision_type = decision_type
        self.default_transition = default_transition
        self.rng = rng or random.Random()
        self.decision_tree = self._make_tree(decision_tree)
        self.history = history

        self.analyzer = FeatureAnalyzer(store, min_beats=self.config.get("analysis", "min_beats", 2))
        self.mix_generator = MixGenerator(
            store,
            player,
            offset_bars=self.config.get("transitions", "offset_bars", 1),
            schedule_ahead_time=self.config.get("player", "schedule_ahead_time", 0.5),
            defaults=self.config["transitions"],
            rng=self.rng,
        )
        self.previous_tracks: List[str] = []
        self.transitions: List[Transition] = []
        self.mix_id = self._new_mix_id()
        self._names: Dict[str, str] = {}
        self._lock = threading.Lock()

        self._previous_playing: List[str] = []
        self._beats_played = 0
        self._transition_started = Signal("transition_started")
        self._beat = Signal("beat")
        self.mix_generator.transition_started.subscribe(self._on_generator_transition_started)
        self.player.add_playing_observer(self._on_playing_changed)

    @classmethod
    def from_config(
        cls,
        config: Config,
        store: StructureStore,
        player,
        feature_service: Optional[FeatureService] = None,
        rng: Optional[random.Random] = None,
    ) -> "MixOrchestrator":
        """Build an orchestrator with the decision settings and history from `config`."""
        tree: TreeSpec = STANDARD_TREE
        tree_path = config.get("decision", "tree_path")
        if tree_path:
            with open(Path(tree_path), "r") as f:
                tree = json.load(f)
            logger.info(f"Loaded decision tree from {tree_path}")

        history = None
        db_path = config.get("history", "db_path")
        if db_path:
            history = TransitionLog(db_path)
            history.connect()

        return cls(
            store,
            player,
            feature_service=feature_service,
            decision_type=config.decision_type,
            decision_tree=tree,
            default_transition=config.default_transition,
            config=config,
            rng=rng,
            history=history,
        )

    # ---------------------------------------------------------------- public

    def transition_to_track(self, audio_uri: str) -> Transition:
        """Ingest one track and generate the transition into it."""
        with self._lock:
            self._reset_if_stopped()
            track = self._extract_features_and_add_track(audio_uri)
            return self._internal_transition(TransitionOptions(track=track))

    def play_dj_set(
        self,
        audio_uris: List[str],
        num_bars: Optional[int] = None,
        auto_cue: bool = False,
    ) -> List[Transition]:
        """
        Ingest a whole sequence of tracks, track i starting at bar i * num_bars.

        A track whose extraction fails, or whose transition hits a concurrent
        store edit, is logged and skipped; the set continues. Other errors
        (a bad decision tree column, for one) propagate.

        Args:
            audio_uris: Tracks in playing order
            num_bars: Bars of each track to use; None plays each to the transition point
            auto_cue: Start each track at its detected cue point

        Returns:
            Transitions that were generated
        """
        transitions = []
        with self._lock:
            self._reset_if_stopped()
            for i, audio_uri in enumerate(audio_uris):
                try:
                    track = self._extract_features_and_add_track(audio_uri)
                    options = TransitionOptions(track=track)
                    if auto_cue:
                        options.cue_offset = self.analyzer.find_cue_point(track)
                    if num_bars is not None:
                        # each track leaves a tail for the next transition to use
                        options.transition_bars = max(1, num_bars // 2)
                        options.num_bars = num_bars + options.transition_bars
                        options.position = i * num_bars
                    transitions.append(self._internal_transition(options))
                except (ExtractionError, StoreConcurrencyError) as e:
                    logger.error(f"Transition to {audio_uri} failed: {e}", exc_info=True)
        logger.info(f"✅ DJ set: {len(transitions)}/{len(audio_uris)} transitions")
        return transitions

    def stop(self) -> None:
        """Stop playback and start over on a new timeline; installed automation stays in the store."""
        with self._lock:
            self.player.stop(self.mix_generator.get_timeline())
            logger.info(f"Stopped mix {self.mix_id}")
            self._start_new_mix()

    def on_transition_started(self, callback: Callable[[Transition], None]) -> Callable[[], None]:
        return self._transition_started.subscribe(callback)

    def on_beat(self, callback: Callable[[int], None]) -> Callable[[], None]:
        return self._beat.subscribe(callback)

    def get_timeline(self) -> str:
        return self.mix_generator.get_timeline()

    # -------------------------------------------------------------- internal

    def _internal_transition(self, options: TransitionOptions) -> Transition:
        features = self._transition_features(options.track)
        transition = self._transition_based_on_decision_type(options, features)
        names = tuple(self._names[t] for t in self.previous_tracks[-1:] + [options.track])
        transition = dataclasses.replace(
            transition,
            features=tuple(features) if features is not None else None,
            names=names,
        )
        self.previous_tracks.append(options.track)
        self.transitions.append(transition)
        if self.history is not None:
            self.history.record(self.mix_id, transition)
        self.player.play(self.mix_generator.get_timeline())
        return transition

    def _reset_if_stopped(self) -> None:
        if self.previous_tracks and not self.player.is_playing(self.mix_generator.get_timeline()):
            logger.info("Playback stopped; starting a new mix")
            self._start_new_mix()

    def _start_new_mix(self) -> None:
        self.previous_tracks = []
        self.transitions = []
        self.mix_id = self._new_mix_id()
        self.mix_generator.init()

    def _transition_features(self, new_track: str) -> Optional[FeatureVector]:
        if self.previous_tracks:
            return self.analyzer.compute_feature_vector(self.previous_tracks[-1], new_track)
        return None

    def _extract_features_and_add_track(self, audio_uri: str) -> str:
        beats = self.feature_service.get_beats(audio_uri)
        track = build_bar_beat_structure(self.store, audio_uri, beats)
        keys = self.feature_service.get_keys(audio_uri)
        if keys:
            add_summarized_feature(self.store, track, KEY_FEATURE, keys, MODE)
        else:
            logger.warning(f"No key annotations for {audio_uri}")
        loudnesses = self.feature_service.get_loudnesses(audio_uri)
        if loudnesses:
            add_summarized_feature(self.store, track, LOUDNESS_FEATURE, loudnesses, MEAN)
        self.player.load(track)
        self._names[track] = track_name(audio_uri)
        logger.info(f"✅ Ingested {audio_uri}: {len(self.store.find_parts(track))} bars")
        return track

    def _transition_based_on_decision_type(
        self, options: TransitionOptions, features: Optional[FeatureVector]
    ) -> Transition:
        if not self.previous_tracks:
            transition = self.mix_generator.start_mix_with_fade_in(options)
            decision = None if self.decision_type is DecisionType.FIFTY_FIFTY else self.decision_type
            return dataclasses.replace(transition, decision=decision)
        if self.decision_type is DecisionType.DEFAULT:
            transition = self.mix_generator.transition(self.default_transition, options)
            return dataclasses.replace(transition, decision=DecisionType.DEFAULT)
        if self.decision_type is DecisionType.RANDOM:
            return self._random_transition(options)
        if self.decision_type is DecisionType.FIFTY_FIFTY:
            if self.rng.random() > 0.5:
                return self._random_transition(options)
            return self._decision_tree_transition(options, features)
        return self._decision_tree_transition(options, features)

    def _random_transition(self, options: TransitionOptions) -> Transition:
        transition_type = self.rng.choice(AVAILABLE_TRANSITIONS)
        logger.info(f"Random decision: {transition_type.value}")
        transition = self.mix_generator.transition(transition_type, options)
        return dataclasses.replace(transition, decision=DecisionType.RANDOM)

    def _decision_tree_transition(self, options: TransitionOptions, features: FeatureVector) -> Transition:
        transition_type = self.decision_tree.classify(features)
        logger.info(f"Decision tree chose {transition_type.value}")
        transition = self.mix_generator.transition(transition_type, options)
        return dataclasses.replace(transition, decision=DecisionType.DECISION_TREE)

    def _make_tree(self, tree: TreeSpec) -> DecisionTree:
        if isinstance(tree, DecisionTree):
            return tree
        if isinstance(tree, dict):
            tree = parse_node(tree)
        return DecisionTree(tree, rng=self.rng)

    def _on_generator_transition_started(self, transition: Transition) -> None:
        if transition.index < len(self.transitions):
            transition = self.transitions[transition.index]
        logger.debug(f"Transition #{transition.index} ({transition.type.value}) started")
        self._transition_started.emit(transition)

    def _on_playing_changed(self, playing: List[str]) -> None:
        # a newly playing object means a new beat
        changed = set(playing) - set(self._previous_playing)
        self._previous_playing = playing
        if changed:
            self._beat.emit(self._beats_played)
            self._beats_played += 1

    @staticmethod
    def _new_mix_id() -> str:
        return f"mix-{uuid.uuid4().hex[:12]}"
