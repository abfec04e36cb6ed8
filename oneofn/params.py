"""
Frozen dataclass parameter containers for priors and the one-of-n mixture.

Each configuration object is a frozen dataclass with ``slots=True``. This
provides:

- **IDE autocompletion**: ``params.prune_patience`` instead of
  ``params['prune_patience']``
- **Immutability**: Prevents accidental mutation of shared configuration
- **Dict conversion**: ``dataclasses.asdict(params)`` when needed

Examples
--------
>>> from oneofn.params import OneOfNParams
>>> p = OneOfNParams(prune_patience=5)
>>> p.prune_patience
5
>>> p.prune_patience = 3  # Raises FrozenInstanceError
"""

import enum
import math
from dataclasses import dataclass, field, fields
from typing import Mapping, Optional, Type


class DataType(enum.Enum):
    """Kind of data a prior models; persisted by name."""

    DISCRETE = "discrete"
    INTEGER = "integer"
    CONTINUOUS = "continuous"
    MIXED = "mixed"

    @classmethod
    def from_name(cls, name: str) -> "DataType":
        """Look up a data type by its persisted name."""
        try:
            return cls[name]
        except KeyError:
            raise ValueError(f"Unknown data type {name!r}")


class _ParamsBase:
    """Mixin providing dict-style access on frozen dataclass params.

    Allows both ``params.scale`` and ``params['scale']`` access styles,
    plus ``items()``, ``keys()``, ``values()`` for iteration.
    """

    __slots__ = ()

    def __getitem__(self, key: str):
        try:
            return getattr(self, key)
        except AttributeError:
            raise KeyError(key)

    def __contains__(self, key: str) -> bool:
        return hasattr(self, key)

    def keys(self):
        """Yield field names."""
        return (f.name for f in fields(self))

    def values(self):
        """Yield field values."""
        return (getattr(self, f.name) for f in fields(self))

    def items(self):
        """Yield ``(name, value)`` pairs."""
        return ((f.name, getattr(self, f.name)) for f in fields(self))


@dataclass(frozen=True, slots=True)
class NormalPriorParams(_ParamsBase):
    """
    Non-informative hyperparameters of the Normal-Inverse-Wishart priors.

    Attributes
    ----------
    mean_precision : float
        Pseudo-count :math:`\\kappa_0 > 0` attached to the prior mean.
    extra_degrees_freedom : float
        :math:`\\nu_0 - d`, must be positive so the Wishart is proper.
    scale : float
        Prior scale matrix is :math:`\\Psi_0 = \\text{scale} \\cdot I`.
    """
    mean_precision: float = 1e-3
    extra_degrees_freedom: float = 1.0
    scale: float = 1.0

    def __post_init__(self):
        if not self.mean_precision > 0.0:
            raise ValueError(f"mean_precision must be positive, got {self.mean_precision}")
        if not self.extra_degrees_freedom > 0.0:
            raise ValueError(
                f"extra_degrees_freedom must be positive, got {self.extra_degrees_freedom}"
            )
        if not self.scale > 0.0:
            raise ValueError(f"scale must be positive, got {self.scale}")


@dataclass(frozen=True, slots=True)
class OneOfNParams(_ParamsBase):
    """
    Weight management settings of the one-of-n mixture.

    Attributes
    ----------
    log_weight_floor : float
        Smallest log-weight of any candidate relative to the best one.
        Keeps a disfavoured candidate recoverable.
    prune_weight_threshold : float
        Normalised weight below which a candidate counts as negligible.
    prune_patience : int
        Number of consecutive updates a candidate must stay negligible
        before :meth:`MultivariateOneOfNPrior.prune` removes it.
    """
    log_weight_floor: float = math.log(1e-30)
    prune_weight_threshold: float = 1e-3
    prune_patience: int = 20

    def __post_init__(self):
        if not (self.log_weight_floor < 0.0 and math.isfinite(self.log_weight_floor)):
            raise ValueError(
                f"log_weight_floor must be finite and negative, got {self.log_weight_floor}"
            )
        if not 0.0 <= self.prune_weight_threshold < 1.0:
            raise ValueError(
                f"prune_weight_threshold must be in [0, 1), got {self.prune_weight_threshold}"
            )
        if self.prune_patience < 1:
            raise ValueError(f"prune_patience must be at least 1, got {self.prune_patience}")


@dataclass(frozen=True, slots=True)
class RestoreParams(_ParamsBase):
    """
    Settings used when reconstructing priors from a persisted document.

    Attributes
    ----------
    candidate_types : Mapping[str, type], optional
        Type tag to prior class lookup. ``None`` means the global registry
        in :mod:`oneofn.registry`.
    one_of_n : OneOfNParams
        Weight management settings given to the restored mixture.
    tolerance : float
        Relative tolerance used when validating restored numbers.
    """
    candidate_types: Optional[Mapping[str, Type]] = None
    one_of_n: OneOfNParams = field(default_factory=OneOfNParams)
    tolerance: float = 1e-10
