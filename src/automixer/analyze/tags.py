"""Display names for tracks, read from audio tags."""

import logging
from pathlib import Path

import mutagen
from mutagen import MutagenError

logger = logging.getLogger(__name__)


def track_name(audio_uri: str) -> str:
    """
    "Artist - Title" from the file's tags, falling back to the file stem.

    Args:
        audio_uri: Path (or URL) of the audio file

    Returns:
        Human-readable track name
    """
    fallback = Path(audio_uri.split("?")[0]).stem or audio_uri
    if not Path(audio_uri).is_file():
        return fallback

    try:
        tags = mutagen.File(audio_uri, easy=True)
    except MutagenError as e:
        logger.debug(f"Could not read tags of {audio_uri}: {e}")
        return fallback

    if not tags:
        return fallback
    title = (tags.get("title") or [None])[0]
    artist = (tags.get("artist") or [None])[0]
    if title and artist:
        return f"{artist} - {title}"
    return title or fallback
