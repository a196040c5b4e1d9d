"""
Transition Module: decide and generate transitions.

- Binary decision tree over pair features (no learning at runtime)
- One generator operation per transition strategy
- Greedy: one transition at a time, no global optimization
"""

__all__ = ["decision_tree", "standard_tree", "mixer"]
