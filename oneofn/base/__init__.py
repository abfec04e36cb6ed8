"""Base classes for candidate priors and the one-of-n mixture."""

from .prior import MultivariatePrior
from .one_of_n import MultivariateOneOfNPrior

__all__ = [
    "MultivariatePrior",
    "MultivariateOneOfNPrior",
]
