"""Rating / embedding models trained with hand-written numpy gradients.

- `FactorizationModel`: biased matrix factorization, per-example SGD
- `MLPRatingModel`: feed-forward regression on encoded (user, item) pairs
- `TwoTowerModel`: user/item towers (tables or MLPs) trained contrastively
"""

from .base import RatingModel
from .factorization import FactorizationModel
from .mlp import MLPRatingModel
from .towers import EmbeddingTower, MLPTower, TwoTowerModel

__all__ = [
    "EmbeddingTower",
    "FactorizationModel",
    "MLPRatingModel",
    "MLPTower",
    "RatingModel",
    "TwoTowerModel",
]
