"""The production decision tree mapping pair features to a transition."""

from ..analyze.features import Feature
from ..types import TransitionType
from .decision_tree import Leaf, Split

KEY_TREE = Split(
    column=Feature.KEY_DISTANCE,
    threshold=3,
    left=Leaf((TransitionType.EFFECTS, TransitionType.ECHO_FREEZE), "key similar"),
    right=Leaf((TransitionType.POWER_DOWN, TransitionType.BEAT_REPEAT), "give up"),
)

STANDARD_TREE = Split(
    column=Feature.REGULARITY_PRODUCT,
    threshold=0.015,
    message="regularity",
    left=Split(
        column=Feature.TEMPO_RATIO,
        threshold=0.85,
        message="both regular",
        left=Split(
            column=Feature.TEMPO_MULTIPLICITY,
            threshold=0.85,
            message="tempo not similar",
            left=KEY_TREE,
            right=Leaf((TransitionType.BEATMATCH_MULTIPLE,), "tempo multiple"),
        ),
        right=Leaf((TransitionType.BEATMATCH,), "tempo similar"),
    ),
    right=KEY_TREE,
)
