"""
Feature extraction services: beat, key and loudness events for a track.

Decoding and signal analysis happen in aubio (beats, loudness) and, when
installed, essentia (key). The orchestrator only depends on the
FeatureService interface, so any other extractor can be plugged in.
"""

import logging
from typing import List, Optional

from ..types import Beat, FeatureEvent

logger = logging.getLogger(__name__)

PITCH_CLASSES = {
    "C": 0, "C#": 1, "Db": 1, "D": 2, "D#": 3, "Eb": 3, "E": 4, "F": 5,
    "F#": 6, "Gb": 6, "G": 7, "G#": 8, "Ab": 8, "A": 9, "A#": 10, "Bb": 10, "B": 11,
}


class ExtractionError(RuntimeError):
    """Raised when a track cannot be decoded or analyzed."""
    pass


class FeatureService:
    """Interface for annotation backends."""

    def get_beats(self, audio_uri: str) -> List[Beat]:
        raise NotImplementedError

    def get_keys(self, audio_uri: str) -> Optional[List[FeatureEvent]]:
        raise NotImplementedError

    def get_loudnesses(self, audio_uri: str) -> Optional[List[FeatureEvent]]:
        raise NotImplementedError


class AubioExtractor(FeatureService):
    """
    Extracts beats and loudness with aubio and the key with essentia.

    aubio does not track downbeats, so beats are labelled "1".."4"
    cyclically from the first detected beat.
    """

    def __init__(self, config: Optional[dict] = None):
        config = config or {}
        self.hop_size = config.get("hop_size", 512)
        self.buf_size = config.get("buf_size", 1024)

    def _open(self, audio_uri: str):
        import aubio

        try:
            return aubio.source(audio_uri, hop_size=self.hop_size)
        except RuntimeError as e:
            raise ExtractionError(f"Cannot open {audio_uri}: {e}") from e

    def get_beats(self, audio_uri: str) -> List[Beat]:
        import aubio

        source = self._open(audio_uri)
        tempo = aubio.tempo("default", self.buf_size, self.hop_size, source.samplerate)

        beats = []
        while True:
            samples, num_read = source()
            if tempo(samples):
                beats.append(Beat(time=float(tempo.get_last_s()), label=str(len(beats) % 4 + 1)))
            if num_read < self.hop_size:
                break

        logger.info(f"✅ Beats extracted: {len(beats)} for {audio_uri} ({tempo.get_bpm():.1f} BPM)")
        return beats

    def get_loudnesses(self, audio_uri: str) -> Optional[List[FeatureEvent]]:
        import aubio

        source = self._open(audio_uri)
        sample_rate = source.samplerate

        loudnesses = []
        frame = 0
        while True:
            samples, num_read = source()
            if num_read == 0:
                break
            loudnesses.append(FeatureEvent(
                time=frame * self.hop_size / sample_rate,
                value=float(aubio.db_spl(samples[:num_read])),
            ))
            frame += 1
            if num_read < self.hop_size:
                break

        if not loudnesses:
            logger.warning(f"No loudness frames for {audio_uri}")
            return None
        return loudnesses

    def get_keys(self, audio_uri: str) -> Optional[List[FeatureEvent]]:
        try:
            import essentia.standard as es
        except ImportError:
            logger.debug(f"Essentia not available; no key for {audio_uri}")
            return None

        try:
            audio = es.MonoLoader(filename=audio_uri, sampleRate=44100)()
            key, scale, strength = es.KeyExtractor()(audio)
        except RuntimeError as e:
            logger.warning(f"Essentia key detection failed for {audio_uri}: {e}")
            return None

        pitch_class = PITCH_CLASSES.get(key)
        if pitch_class is None:
            logger.warning(f"Unknown note: {key}")
            return None
        logger.info(f"✅ Key detected: {key} {scale} -> {pitch_class} (strength: {strength:.2f})")
        return [FeatureEvent(time=0.0, value=float(pitch_class))]
