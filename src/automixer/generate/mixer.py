"""
Mix Generation: owns the mix timeline and realizes each transition strategy.

Every strategy follows the same shape:
1. Cut the timeline after the current playback position plus a look-ahead
   (the removed tail is the old track material still available).
2. Arrange old and new bars, silences and parallel segments.
3. Install ramps and constraints triggered when playback reaches the
   transition.
4. Append the rest of the new track and return a Transition record.
"""

import itertools
import logging
import random
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from ..observer import Signal, TransitionObserver
from ..store import (
    AMPLITUDE,
    DELAY,
    DURATION_FEATURE,
    DURATION_RATIO,
    EVENT,
    PLAYBACK_RATE,
    REVERB,
    SEQUENCE,
    SILENCE,
    TIME_STRETCH_RATIO,
    VALUE,
    Constraint,
    ConstraintScope,
    StructureStore,
    safe_inverse,
)
from ..types import Transition, TransitionType

logger = logging.getLogger(__name__)

TRANSITION_OFFSET = 1  # bars between the playback position and any transition start
START_MARKER = "TransitionStart"
TEMPO_PARAMETER = "Tempo"

DEFAULT_BARS = {
    "fade_in_bars": 2,
    "crossfade_bars": 3,
    "beat_repeat_times": 3,
    "echo_break_bars": 1,
    "power_down_bars": 2,
    "power_down_break_bars": 0,
    "effects_bars": 2,
}


@dataclass
class TransitionOptions:
    """
    Args:
        track: Track URI to transition to
        cue_offset: First bar of the track to use
        num_bars: Maximum number of bars of the track to append
        transition_bars: Bars used by the transition itself (overrides defaults)
        position: Timeline index to start at instead of the playback position
    """

    track: str
    cue_offset: int = 0
    num_bars: Optional[int] = None
    transition_bars: Optional[int] = None
    position: Optional[int] = None


@dataclass
class MixState:
    removed_old_bars: List[str]
    new_bars: List[str]
    start_index: int


class MixGenerator:
    """Builds the mix timeline one transition at a time."""

    def __init__(
        self,
        store: StructureStore,
        player,
        offset_bars: int = TRANSITION_OFFSET,
        schedule_ahead_time: float = 0.5,
        defaults: Optional[Dict[str, int]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.player = player
        self.offset_bars = offset_bars
        self.schedule_ahead_time = schedule_ahead_time
        self.defaults = dict(DEFAULT_BARS, **(defaults or {}))
        self.rng = rng or random.Random()
        self.transition_started = Signal("transition_started")
        self._operations: Dict[TransitionType, Callable[..., Transition]] = {
            TransitionType.SLAM: self.slam,
            TransitionType.BEAT_REPEAT: self.beat_repeat,
            TransitionType.CROSSFADE: self.crossfade,
            TransitionType.BEATMATCH: self.beatmatch_crossfade,
            TransitionType.BEATMATCH_MULTIPLE: self.beatmatch_multiple_crossfade,
            TransitionType.ECHO_FREEZE: self.echo_freeze,
            TransitionType.POWER_DOWN: self.power_down,
            TransitionType.EFFECTS: self.effects,
        }
        self.init()

    def init(self) -> None:
        """Start over with a fresh, empty timeline."""
        self.timeline = self.store.add_object(SEQUENCE)
        self.tracks: List[str] = []
        self.transition_automation: List[List[str]] = []
        self._transition_count = 0
        self._start_index = 0
        logger.debug(f"New mix timeline {self.timeline}")

    def get_timeline(self) -> str:
        return self.timeline

    def transition(self, transition_type: TransitionType, options: TransitionOptions) -> Transition:
        """Run the operation realizing `transition_type`."""
        operation = self._operations.get(transition_type)
        if operation is None:
            raise ValueError(f"No transition operation for {transition_type}")
        return operation(options)

    # -------------------------------------------------------------- strategies

    def start_mix_with_fade_in(self, options: TransitionOptions, num_bars: Optional[int] = None) -> Transition:
        num_bars = self._bars(options, num_bars, "fade_in_bars")
        new_bars = self._register_track_and_get_bars(options)
        self._start_index = len(self.store.find_parts(self.timeline))
        fade_bars = new_bars[:num_bars]
        duration = self._total_duration(fade_bars)
        ramp = self._add_ramp_with_trigger(duration)
        fade_in = self._make_ramp_constraint(ramp, fade_bars, AMPLITUDE, lambda s: s.control("r"), "Amplitude(d) == r")
        logger.info(f"Fading in for {len(fade_bars)} bars ({duration:.2f} seconds)")
        return self._end_transition(new_bars, TransitionType.FADE_IN, duration, [ramp, fade_in])

    def slam(self, options: TransitionOptions) -> Transition:
        state = self._init_transition(options)
        return self._end_transition(state.new_bars, TransitionType.SLAM, 0.0)

    def beat_repeat(self, options: TransitionOptions, times: Optional[int] = None) -> Transition:
        times = self._bars(options, times, "beat_repeat_times")
        state = self._init_transition(options)
        last_bar = self._find_last_bar()
        if last_bar is not None:
            self.store.set_parameter(last_bar, REVERB, 0.5)
        # half a bar of silence before the repeats
        reference_bar = state.removed_old_bars[0] if state.removed_old_bars else last_bar
        silence = self.store.duration(reference_bar) / 2 if reference_bar is not None else 0.0
        self._add_silence(silence)
        duration = silence
        if state.new_bars:
            first_beat = self.store.find_parts(state.new_bars[0])[0]
            self.store.add_parts(self.timeline, [first_beat] * times)
            duration += times * self.store.duration(first_beat)
        return self._end_transition(state.new_bars, TransitionType.BEAT_REPEAT, duration)

    def echo_freeze(self, options: TransitionOptions, num_bars_break: Optional[int] = None) -> Transition:
        num_bars_break = self._bars(options, num_bars_break, "echo_break_bars")
        state = self._init_transition(options)
        last_bar = self._find_last_bar()
        last_bar_duration = 0.0
        if last_bar is not None:
            self.store.set_parameter(last_bar, DELAY, 1.0)
            last_bar_duration = self.store.duration(last_bar)
        silence = last_bar_duration * num_bars_break
        self._add_silence(silence)
        return self._end_transition(state.new_bars, TransitionType.ECHO_FREEZE, last_bar_duration + silence)

    def effects(self, options: TransitionOptions, num_bars: Optional[int] = None) -> Transition:
        num_bars = self._bars(options, num_bars, "effects_bars")
        state = self._init_transition(options)
        effect_bars = state.removed_old_bars[:num_bars]
        duration = self._total_duration(effect_bars)
        ramp = self._add_ramp_with_trigger(duration)
        reverb = self._make_ramp_constraint(ramp, effect_bars, REVERB, lambda s: s.control("r"), "Reverb(d) == r")
        self.store.add_parts(self.timeline, effect_bars)
        return self._end_transition(state.new_bars, TransitionType.EFFECTS, duration, [ramp, reverb])

    def power_down(
        self,
        options: TransitionOptions,
        num_bars: Optional[int] = None,
        num_bars_break: Optional[int] = None,
    ) -> Transition:
        num_bars = self._bars(options, num_bars, "power_down_bars")
        if num_bars_break is None:
            num_bars_break = self.defaults["power_down_break_bars"]
        state = self._init_transition(options)
        power_bars = state.removed_old_bars[:num_bars]
        # slowing down linearly to zero takes twice as long
        duration = 2 * self._total_duration(power_bars)
        ramp = self._add_ramp_with_trigger(duration)
        rate = self._make_ramp_constraint(
            ramp, power_bars, PLAYBACK_RATE, lambda s: 1 - s.control("r"), "PlaybackRate(d) == 1-r")
        stretch = self._make_sets_constraint(
            power_bars, {}, DURATION_RATIO,
            lambda s: safe_inverse(s.parameter(PLAYBACK_RATE)), "DurationRatio(d) == 1/PlaybackRate(d)")
        self.store.add_parts(self.timeline, power_bars)
        silence = duration / 2 / num_bars * num_bars_break if num_bars > 0 else 0.0
        self._add_silence(silence)
        return self._end_transition(
            state.new_bars, TransitionType.POWER_DOWN, duration + silence, [ramp, rate, stretch])

    def crossfade(self, options: TransitionOptions, num_bars: Optional[int] = None) -> Transition:
        num_bars = self._bars(options, num_bars, "crossfade_bars")
        state = self._init_transition(options)
        new_transition_bars = state.new_bars[:num_bars]
        duration = self._total_duration(new_transition_bars)
        old_transition_bars = self._initial_bars(state.removed_old_bars, duration)
        automation = self._apply_crossfade(old_transition_bars, new_transition_bars, duration)
        self._add_aligned(old_transition_bars, new_transition_bars)
        return self._end_transition(
            state.new_bars[num_bars:], TransitionType.CROSSFADE, duration, automation)

    def beatmatch_crossfade(self, options: TransitionOptions, num_bars: Optional[int] = None) -> Transition:
        return self._beatmatch(options, num_bars, TransitionType.BEATMATCH)

    def beatmatch_multiple_crossfade(self, options: TransitionOptions, num_bars: Optional[int] = None) -> Transition:
        """Beatmatch at the nearest integer multiple of the tempos (half/double time)."""
        return self._beatmatch(options, num_bars, TransitionType.BEATMATCH_MULTIPLE)

    def transition_immediately_to_random_bars(self, track: str, num_bars: int = 2) -> List[str]:
        """Append a random run of `num_bars` bars of `track` to the timeline."""
        bars = self.store.find_parts(track)
        start = self.rng.randint(0, max(0, len(bars) - num_bars))
        chosen = bars[start:start + num_bars]
        self.store.add_parts(self.timeline, chosen)
        return chosen

    # ----------------------------------------------------------------- helpers

    def _beatmatch(self, options: TransitionOptions, num_bars: Optional[int],
                   transition_type: TransitionType) -> Transition:
        num_bars = self._bars(options, num_bars, "crossfade_bars")
        state = self._init_transition(options)
        new_transition_bars = state.new_bars[:num_bars]
        old_transition_bars = state.removed_old_bars[:num_bars]
        # minus the schedule-ahead time for a smoother tempo change
        duration = max(0.0, self._total_duration(old_transition_bars + new_transition_bars) / 2
                       - self.schedule_ahead_time)
        automation = self._apply_crossfade(old_transition_bars, new_transition_bars, duration)
        # tempos can only be matched bar for bar
        if old_transition_bars and len(new_transition_bars) == len(old_transition_bars):
            multiple = transition_type is TransitionType.BEATMATCH_MULTIPLE
            automation += self._apply_beatmatch(old_transition_bars, new_transition_bars, automation[0], multiple)
        self._add_zipped(old_transition_bars, new_transition_bars)
        return self._end_transition(state.new_bars[num_bars:], transition_type, duration, automation)

    def _apply_crossfade(self, old_parts: List[str], new_parts: List[str], duration: float) -> List[str]:
        ramp = self._add_ramp_with_trigger(duration)
        fade_in = self._make_ramp_constraint(ramp, new_parts, AMPLITUDE, lambda s: s.control("r"), "Amplitude(d) == r")
        fade_out = self._make_ramp_constraint(ramp, old_parts, AMPLITUDE, lambda s: 1 - s.control("r"), "Amplitude(d) == 1-r")
        logger.info(f"Crossfading for {len(new_parts)} bars ({duration:.2f} seconds)")
        return [ramp, fade_in, fade_out]

    def _apply_beatmatch(self, old_bars: List[str], new_bars: List[str], ramp: str, multiple: bool) -> List[str]:
        old_tempo = self._tempo_from_bars(old_bars)
        new_tempo = self._tempo_from_bars(new_bars)
        factor = tempo_multiple(old_tempo, new_tempo) if multiple else 1.0
        target = new_tempo * factor

        tempo = self.store.add_custom_parameter(TEMPO_PARAMETER, old_tempo)
        tempo_transition = self._make_sets_constraint(
            [tempo], {"r": ramp}, VALUE,
            lambda s: s.control("r") * target + (1 - s.control("r")) * old_tempo,
            f"t == r*{target}+(1-r)*{old_tempo}")
        old_beats = self._beats(old_bars)
        new_beats = self._beats(new_bars)
        old_match = self._make_sets_constraint(
            old_beats, {"t": tempo}, TIME_STRETCH_RATIO,
            lambda s: s.control("t") / 60 * s.feature(DURATION_FEATURE),
            "TimeStretchRatio(d) == t/60*DurationFeature(d)")
        new_match = self._make_sets_constraint(
            new_beats, {"t": tempo}, TIME_STRETCH_RATIO,
            lambda s: s.control("t") / (60 * factor) * s.feature(DURATION_FEATURE),
            f"TimeStretchRatio(d) == t/{60 * factor}*DurationFeature(d)")
        stretch = self._make_sets_constraint(
            old_beats + new_beats, {}, DURATION_RATIO,
            lambda s: safe_inverse(s.parameter(TIME_STRETCH_RATIO)),
            "DurationRatio(d) == 1/TimeStretchRatio(d)")
        logger.info(f"Beatmatched between tempos {old_tempo:.1f} and {target:.1f}")
        return [tempo, tempo_transition, old_match, new_match, stretch]

    def _init_transition(self, options: TransitionOptions) -> MixState:
        """Removes the timeline after the playback position plus offset, registers the new track."""
        new_bars = self._register_track_and_get_bars(options)
        if options.position is not None:
            offset = options.position
        else:
            offset = self.player.position(self.timeline) + self.offset_bars
        removed = self.store.remove_parts(self.timeline, offset)
        self._start_index = len(self.store.find_parts(self.timeline))
        logger.debug(f"Transition at timeline index {self._start_index}, {len(removed)} old parts available")
        return MixState(removed_old_bars=removed, new_bars=new_bars, start_index=self._start_index)

    def _end_transition(
        self,
        new_bars: List[str],
        transition_type: TransitionType,
        duration: float,
        automation: Optional[List[Optional[str]]] = None,
    ) -> Transition:
        """Installs the automation, appends the new track bars and returns the transition."""
        automation = [uri for uri in automation or [] if uri is not None]
        if automation:
            self._load_transition(automation)
        transition = Transition(type=transition_type, duration=duration, index=self._transition_count)
        self._transition_count += 1
        marker = self.store.add_custom_parameter(START_MARKER)
        self.store.add_event(self.timeline, self._start_index, marker)
        TransitionObserver(self.store, marker, lambda: self.transition_started.emit(transition))
        self.store.add_parts(self.timeline, new_bars)
        logger.info(f"✅ {transition_type.value} transition ({duration:.2f}s), timeline at {len(self.store.find_parts(self.timeline))} parts")
        return transition

    def _load_transition(self, uris: List[str]) -> None:
        self.player.load(*uris)
        self.transition_automation.append(uris)

    def _register_track_and_get_bars(self, options: TransitionOptions) -> List[str]:
        self.tracks.append(options.track)
        bars = self.store.find_parts(options.track)[options.cue_offset:]
        if options.num_bars is not None:
            bars = bars[:options.num_bars]
        return bars

    def _bars(self, options: TransitionOptions, explicit: Optional[int], key: str) -> int:
        if explicit is None:
            explicit = options.transition_bars if options.transition_bars is not None else self.defaults[key]
        if explicit < 0:
            raise ValueError(f"{key} must not be negative, got {explicit}")
        return explicit

    def _add_ramp_with_trigger(self, duration: float) -> str:
        ramp = self.store.add_ramp_control(duration)
        self.store.add_event(self.timeline, self._start_index, ramp)
        return ramp

    def _make_ramp_constraint(self, ramp: str, targets: List[str], function: str,
                              formula: Callable[[ConstraintScope], float], expression: str) -> Optional[str]:
        if not targets:
            return None
        return self._make_sets_constraint(targets, {"r": ramp}, function, formula, expression)

    def _make_sets_constraint(self, targets: Sequence[str], controls: Dict[str, str], function: str,
                              formula: Callable[[ConstraintScope], float], expression: str) -> Optional[str]:
        if not targets:
            return None
        return self.store.add_constraint(Constraint(
            function=function,
            targets=tuple(targets),
            controls=dict(controls),
            formula=formula,
            expression=expression,
            owner=self.timeline,
        ))

    def _add_silence(self, duration: float) -> None:
        if duration > 0:
            silence = self.store.add_object(SILENCE)
            self.store.set_feature(silence, DURATION_FEATURE, duration)
            self.store.add_part(self.timeline, silence)

    def _add_aligned(self, bars1: List[str], bars2: List[str]) -> str:
        """Plays the two runs of bars side by side."""
        sequences = []
        for bars in (bars1, bars2):
            sequence = self.store.add_object(SEQUENCE)
            self.store.add_parts(sequence, bars)
            sequences.append(sequence)
        return self.store.add_conjunction(self.timeline, sequences)

    def _add_zipped(self, bars1: List[str], bars2: List[str]) -> None:
        """Plays the bars pairwise in parallel; unpaired bars play alone."""
        for pair in itertools.zip_longest(bars1, bars2):
            parts = [bar for bar in pair if bar is not None]
            if len(parts) > 1:
                self.store.add_conjunction(self.timeline, parts)
            else:
                self.store.add_parts(self.timeline, parts)

    def _beats(self, segments: List[str]) -> List[str]:
        """Beat leaves under `segments`, through parallel segments and bar runs."""
        beats = []
        for segment in segments:
            if self.store.find_type(segment) == EVENT:
                beats.append(segment)
            else:
                beats.extend(self._beats(self.store.find_parts(segment)))
        return beats

    def _tempo_from_bars(self, bars: List[str]) -> float:
        durations = [self.store.find_feature_value(b, DURATION_FEATURE) for b in self._beats(bars)]
        durations = [d for d in durations if d]
        if not durations:
            return 60 / (self._total_duration(bars) / (4 * len(bars)))
        return 60 / float(np.mean(durations))

    def _initial_bars(self, bars: List[str], duration: float) -> List[str]:
        """The initial bars whose total duration does not exceed `duration`."""
        total = 0.0
        initial = []
        for bar in bars:
            total += self.store.duration(bar)
            if total > duration + 1e-9:
                break
            initial.append(bar)
        return initial

    def _find_last_bar(self) -> Optional[str]:
        return self.store.find_part_at(self.timeline, -1)

    def _total_duration(self, uris: List[str]) -> float:
        return float(sum(self.store.duration(u) for u in uris))


def tempo_multiple(old_tempo: float, new_tempo: float) -> float:
    """Integer multiple (or its inverse) that brings new_tempo closest to old_tempo."""
    if old_tempo >= new_tempo:
        return float(max(1, round(old_tempo / new_tempo)))
    return 1.0 / max(1, round(new_tempo / old_tempo))
