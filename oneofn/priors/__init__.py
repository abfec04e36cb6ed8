"""
Concrete candidate priors.

Importing this package registers every prior under its type tag:

- MultivariateNormalConjugate (``"normal"``): Normal-Inverse-Wishart prior
- MultivariateLogNormalConjugate (``"lognormal"``): the same on log(x + offset)
"""

from .normal import MultivariateNormalConjugate
from .lognormal import MultivariateLogNormalConjugate

__all__ = [
    "MultivariateNormalConjugate",
    "MultivariateLogNormalConjugate",
]
