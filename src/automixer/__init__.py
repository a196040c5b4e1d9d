# automixer: automatic transition sequencing for continuous DJ mixes
# Package: src.automixer

__version__ = "1.0.0-dev"
__author__ = "automixer Contributors"
__description__ = "Decides and generates transitions between consecutive tracks of a mix"

# Module structure:
#   - automixer.analyze      : bar/beat structure, pair features, cue points, extraction
#   - automixer.generate     : decision trees & transition generation
#   - automixer.render       : offline playback engine
#   - automixer.store        : hierarchical structure store
#   - automixer.orchestrator : track ingestion and decision policies
#   - automixer.config       : Configuration management
