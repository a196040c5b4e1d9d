#!/usr/bin/env python3
"""
Mix a Folder of Tracks Script

Usage: python src/scripts/mix_set.py [music_dir] [num_bars]

- Ingests every audio file in the folder, in name order
- Chooses and generates each transition with the configured policy
- Plays the mix on the offline player to fire every transition
- Writes the transition log to data/mixes/{timestamp}.transitions.json
"""

import sys
import json
import logging
from pathlib import Path
from datetime import datetime, timezone

# Add src/ to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from automixer.config import Config
from automixer.orchestrator import MixOrchestrator
from automixer.render.player import OfflinePlayer
from automixer.store import StructureStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

AUDIO_FORMATS = {".mp3", ".m4a", ".flac", ".wav", ".aif", ".aiff", ".ogg"}


def discover_audio_files(music_dir: str) -> list:
    """Audio files directly inside `music_dir`, sorted by name."""
    path = Path(music_dir)
    if not path.exists():
        logger.warning(f"Music folder not found: {music_dir}")
        return []
    files = sorted(str(p) for p in path.iterdir() if p.suffix.lower() in AUDIO_FORMATS)
    logger.info(f"Found {len(files)} audio files in {music_dir}")
    return files


def main():
    """Main mixing entrypoint."""
    music_dir = sys.argv[1] if len(sys.argv) > 1 else "data/music"
    num_bars = None
    if len(sys.argv) > 2:
        try:
            num_bars = int(sys.argv[2])
        except ValueError:
            logger.warning(f"Invalid bar count: {sys.argv[2]}; playing whole tracks")

    try:
        config = Config.load()
        logger.info(f"Config loaded: {config}")

        audio_files = discover_audio_files(music_dir)
        if not audio_files:
            logger.error("Nothing to mix")
            return 1

        store = StructureStore()
        player = OfflinePlayer(
            store,
            schedule_ahead_time=config.get("player", "schedule_ahead_time", 0.5),
            load_ahead_time=config.get("player", "load_ahead_time", 2.0),
        )
        dj = MixOrchestrator.from_config(config, store, player)
        dj.on_transition_started(
            lambda t: logger.info(f"▶ {t.type.value}: {' -> '.join(t.names or ())}")
        )

        transitions = dj.play_dj_set(audio_files, num_bars=num_bars)

        # run the offline clock to the end of the timeline
        timeline = dj.get_timeline()
        while player.is_playing(timeline):
            player.advance()

        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        output = Path("data/mixes") / f"{timestamp}.transitions.json"
        output.parent.mkdir(parents=True, exist_ok=True)
        with open(output, "w") as f:
            json.dump([t.to_dict() for t in transitions], f, indent=2)

        if dj.history is not None:
            dj.history.disconnect()

        logger.info(f"✅ Mix written: {output} ({len(transitions)} transitions)")
        return 0

    except KeyboardInterrupt:
        logger.warning("Mixing interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Mixing failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
