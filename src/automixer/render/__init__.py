"""
Playback Module: offline-clock playback of the mix timeline.

- Offline clock (advances only when asked)
- Fires transition triggers and ramps
- Reports playing beats to observers
"""

__all__ = ["player"]
