"""
Analysis Module: bar/beat structure, pairwise features and cue points.
"""

__all__ = ["features", "cues", "structure", "extraction", "tags"]
