"""
oneofn: Bayesian one-of-n model averaging over multivariate priors.

Maintains a mixture over candidate distribution families and updates it
online as multivariate observations arrive, so that a consumer can query a
model-averaged likelihood without committing to one family.

Key features:
- Sequential Bayesian model averaging with log-space weights
- Time decay of both candidate evidence and weight confidence
- Pruning of persistently negligible candidates
- Exact persist / restore through an abstract hierarchical state cursor
- Frozen dataclass configuration containers (oneofn.params)
"""

from oneofn.params import (
    DataType,
    NormalPriorParams,
    OneOfNParams,
    RestoreParams,
)
from oneofn.exceptions import DimensionMismatchError, RestoreError
from oneofn.base import MultivariatePrior, MultivariateOneOfNPrior
from oneofn.priors import MultivariateNormalConjugate, MultivariateLogNormalConjugate
from oneofn.registry import PRIOR_TYPES, register_prior
from oneofn import factory

__all__ = [
    # Configuration
    "DataType",
    "NormalPriorParams",
    "OneOfNParams",
    "RestoreParams",
    # Errors
    "DimensionMismatchError",
    "RestoreError",
    # Priors
    "MultivariatePrior",
    "MultivariateOneOfNPrior",
    "MultivariateNormalConjugate",
    "MultivariateLogNormalConjugate",
    "PRIOR_TYPES",
    "register_prior",
    "factory",
]
