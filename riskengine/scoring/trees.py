"""Fixed decision-tree ensemble.

The ensemble is hand-built rather than trained: tree i splits first on
the i-th feature of the importance table (cycling), then on either the
transaction amount or 24h velocity. Each tree has depth 2:

    primary < 0.5 ?
      amount_log < 0.3 ?          -> 0.1 / 0.3
      user_txn_count_24h < 0.7 ?  -> 0.5 / 0.8
"""

from dataclasses import dataclass
from typing import List, Optional, Set

from riskengine.models import FeatureVector


@dataclass(frozen=True)
class TreeNode:
    """A split node (feature + threshold) or a leaf (prediction)."""
    feature: Optional[str] = None
    threshold: float = 0.0
    left: Optional["TreeNode"] = None
    right: Optional["TreeNode"] = None
    prediction: Optional[float] = None

    @property
    def is_leaf(self) -> bool:
        return self.prediction is not None

    def predict(self, features: FeatureVector) -> float:
        node = self
        while not node.is_leaf:
            value = getattr(features, node.feature)
            node = node.left if value < node.threshold else node.right
        return node.prediction

    def referenced_features(self) -> Set[str]:
        if self.is_leaf:
            return set()
        return {self.feature} | self.left.referenced_features() | self.right.referenced_features()


def build_tree(primary_feature: str) -> TreeNode:
    return TreeNode(
        feature=primary_feature,
        threshold=0.5,
        left=TreeNode(
            feature="amount_log",
            threshold=0.3,
            left=TreeNode(prediction=0.1),   # low risk
            right=TreeNode(prediction=0.3),  # low-medium risk
        ),
        right=TreeNode(
            feature="user_txn_count_24h",
            threshold=0.7,
            left=TreeNode(prediction=0.5),   # medium risk
            right=TreeNode(prediction=0.8),  # high risk
        ),
    )


def build_ensemble(num_trees: int, feature_order: List[str]) -> List[TreeNode]:
    """Build `num_trees` trees whose primary splits cycle through `feature_order`."""
    return [build_tree(feature_order[i % len(feature_order)]) for i in range(num_trees)]
