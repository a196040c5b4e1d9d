"""
Binary decision tree over a numeric feature vector.

A node is either a Split (go left when vector[column] < threshold, else
right) or a Leaf holding candidate labels. Leaves with several candidates
pick one at random; the random source is injectable.
"""

import logging
import random
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union

from ..types import TransitionType

logger = logging.getLogger(__name__)


class DecisionTreeError(IndexError):
    """Raised when a split refers to a column the feature vector does not have."""
    pass


@dataclass(frozen=True)
class Leaf:
    candidates: Tuple[Any, ...]
    message: Optional[str] = None

    def __post_init__(self):
        if not self.candidates:
            raise ValueError("Leaf needs at least one candidate")
        object.__setattr__(self, "candidates", tuple(self.candidates))


@dataclass(frozen=True)
class Split:
    column: int
    threshold: float
    left: "Node"
    right: "Node"
    message: Optional[str] = None


Node = Union[Split, Leaf]


class DecisionTree:
    """Immutable classifier; unknown (None) feature values take the right branch."""

    def __init__(self, root: Node, rng: Optional[random.Random] = None):
        self.root = root
        self.rng = rng or random.Random()

    def classify(self, features: Sequence[Optional[float]]):
        node = self.root
        while isinstance(node, Split):
            if node.message:
                logger.debug(node.message)
            if not 0 <= node.column < len(features):
                raise DecisionTreeError(
                    f"Split column {node.column} outside feature vector of length {len(features)}"
                )
            value = features[node.column]
            node = node.left if value is not None and value < node.threshold else node.right
        if node.message:
            logger.debug(node.message)
        return self.rng.choice(node.candidates)

    def labels(self) -> Tuple[Any, ...]:
        """All candidate labels reachable in the tree, in first-seen order."""
        seen = []
        stack = [self.root]
        while stack:
            node = stack.pop()
            if isinstance(node, Leaf):
                seen.extend(c for c in node.candidates if c not in seen)
            else:
                stack.extend([node.right, node.left])
        return tuple(seen)

    @classmethod
    def from_json(
        cls,
        data: Dict[str, Any],
        rng: Optional[random.Random] = None,
        parse_label: Callable[[Any], Any] = TransitionType.parse,
    ) -> "DecisionTree":
        return cls(parse_node(data, parse_label), rng=rng)


def parse_node(data: Dict[str, Any], parse_label: Callable[[Any], Any] = TransitionType.parse) -> Node:
    """
    Build a node from nested JSON:
    {"column", "threshold", "left", "right"} or {"candidates": [...]}
    (short keys "col", "val", "classes" and "mes" are accepted too).
    """
    if not isinstance(data, dict):
        raise ValueError(f"Tree node must be an object, got {type(data).__name__}")
    message = data.get("message", data.get("mes"))
    if "candidates" in data or "classes" in data:
        labels = data.get("candidates", data.get("classes"))
        return Leaf(tuple(parse_label(label) for label in labels), message)
    try:
        column = data["column"] if "column" in data else data["col"]
        threshold = data["threshold"] if "threshold" in data else data["val"]
        left, right = data["left"], data["right"]
    except KeyError as e:
        raise ValueError(f"Split node missing {e}") from None
    return Split(
        int(column),
        float(threshold),
        parse_node(left, parse_label),
        parse_node(right, parse_label),
        message,
    )
