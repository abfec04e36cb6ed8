"""
Base class for multivariate priors that can take part in a one-of-n mixture.

A prior represents one hypothesis about the distribution family of a
stream of :math:`d`-dimensional points. It owns the sufficient statistics
of its posterior and exposes:

- **Evidence**: :meth:`MultivariatePrior.joint_log_marginal_likelihood`,
  the log density of a batch under the current posterior predictive.
- **Updates**: :meth:`MultivariatePrior.add_samples` and
  :meth:`MultivariatePrior.propagate_forwards_by_time`.
- **Point estimates**: mean, mode and covariance of the marginal likelihood.
- **Persistence**: :meth:`MultivariatePrior.persist` and the
  :meth:`MultivariatePrior.restore` class method, keyed by ``type_tag``.

Subclasses implement the hooks ``_add_samples``, ``_joint_log_likelihood``,
``_age``, ``_persist_state``, ``_restore_value`` and ``_check_restored``;
input validation, sample counting and the shared persisted fields live here.
"""

import copy
import math
from abc import ABC, abstractmethod
from typing import ClassVar, Optional, Tuple, Union

import numpy as np
import structlog
from numpy.typing import ArrayLike, NDArray

from oneofn.exceptions import DimensionMismatchError, RestoreError
from oneofn.params import DataType, RestoreParams
from oneofn.state import StateReader, StateWriter, parse_float

log = structlog.get_logger(__name__)

DECAY_RATE_TAG = "decay_rate"
DATA_TYPE_TAG = "data_type"
NUMBER_SAMPLES_TAG = "number_samples"


def check_decay_rate(decay_rate: float) -> float:
    decay_rate = float(decay_rate)
    if not (math.isfinite(decay_rate) and decay_rate >= 0.0):
        raise ValueError(f"decay_rate must be finite and non-negative, got {decay_rate}")
    return decay_rate


def check_time(time: float) -> float:
    time = float(time)
    if not (math.isfinite(time) and time >= 0.0):
        raise ValueError(f"Bad propagation time {time}")
    return time


def as_generator(random_state: Optional[Union[int, np.random.Generator]]) -> np.random.Generator:
    """Turn ``None``, a seed or a Generator into a Generator."""
    if random_state is None:
        return np.random.default_rng()
    if isinstance(random_state, (int, np.integer)):
        return np.random.default_rng(random_state)
    return random_state


class MultivariatePrior(ABC):
    """
    Abstract base class for multivariate priors.

    Parameters
    ----------
    dimension : int
        Dimension :math:`d` of the points modelled.
    data_type : DataType, optional
        Kind of data modelled. Default is continuous.
    decay_rate : float, optional
        Rate at which old evidence is discounted per unit time.

    Attributes
    ----------
    type_tag : str
        Stable name under which the class is registered and persisted.
    _cached_attrs : tuple of str
        Names of ``cached_property`` entries cleared by ``_invalidate_cache``.
    """

    type_tag: ClassVar[str] = ""
    _cached_attrs: Tuple[str, ...] = ()

    def __init__(
        self,
        dimension: int,
        data_type: DataType = DataType.CONTINUOUS,
        decay_rate: float = 0.0,
    ):
        if int(dimension) <= 0:
            raise ValueError(f"dimension must be positive, got {dimension}")
        self._d = int(dimension)
        self._data_type = DataType(data_type)
        self._decay_rate = check_decay_rate(decay_rate)
        self._number_samples = 0.0

    # ============================================================
    # Construction
    # ============================================================

    @classmethod
    def non_informative(
        cls,
        dimension: int,
        data_type: DataType = DataType.CONTINUOUS,
        decay_rate: float = 0.0,
        **kwargs,
    ) -> 'MultivariatePrior':
        """Create a prior which encodes no observed evidence."""
        return cls(dimension, data_type=data_type, decay_rate=decay_rate, **kwargs)

    def clone(self) -> 'MultivariatePrior':
        """Deep copy; the clone shares no state with this prior."""
        return copy.deepcopy(self)

    @abstractmethod
    def set_to_non_informative(self) -> None:
        """Discard all evidence, keeping hyperparameters and decay rate."""

    @abstractmethod
    def is_non_informative(self) -> bool:
        """Whether the prior is in its non-informative state."""

    # ============================================================
    # Properties
    # ============================================================

    @property
    def dimension(self) -> int:
        return self._d

    @property
    def data_type(self) -> DataType:
        return self._data_type

    @data_type.setter
    def data_type(self, value: DataType) -> None:
        self._data_type = DataType(value)

    @property
    def decay_rate(self) -> float:
        return self._decay_rate

    @decay_rate.setter
    def decay_rate(self, value: float) -> None:
        self._decay_rate = check_decay_rate(value)

    @property
    def number_samples(self) -> float:
        """Weighted count of samples seen, aged along with the statistics."""
        return self._number_samples

    def _invalidate_cache(self) -> None:
        for attr in self._cached_attrs:
            self.__dict__.pop(attr, None)

    # ============================================================
    # Input validation
    # ============================================================

    def _check_samples(
        self, samples: ArrayLike, weights: Optional[ArrayLike] = None
    ) -> Tuple[NDArray, NDArray]:
        """
        Coerce a batch to shape ``(n, d)`` and its weights to shape ``(n,)``.

        A 1-D input is a single point.

        Raises
        ------
        DimensionMismatchError
            If the points are not :math:`d`-dimensional.
        ValueError
            If the weights are malformed.
        """
        X = np.asarray(samples, dtype=float)
        if X.ndim == 1:
            X = X.reshape(1, -1)
        if X.ndim != 2:
            raise ValueError(f"Expected a point or a 2-D batch, got shape {X.shape}")
        if X.shape[1] != self._d:
            raise DimensionMismatchError(self._d, X.shape[1])
        if not np.all(np.isfinite(X)):
            raise ValueError("Samples must be finite")

        n = X.shape[0]
        if weights is None:
            w = np.ones(n)
        else:
            w = np.asarray(weights, dtype=float).reshape(-1)
            if w.shape != (n,):
                raise ValueError(f"Expected {n} weights, got {w.shape[0]}")
            if not np.all(np.isfinite(w) & (w >= 0.0)):
                raise ValueError("Sample weights must be finite and non-negative")
        return X, w

    # ============================================================
    # Updates
    # ============================================================

    def add_samples(self, samples: ArrayLike, weights: Optional[ArrayLike] = None) -> None:
        """
        Update the posterior with a batch of points.

        Parameters
        ----------
        samples : array_like
            Shape ``(d,)`` for one point or ``(n, d)`` for n points.
        weights : array_like, optional
            Per-point counts, shape ``(n,)``. Default is one per point.
        """
        X, w = self._check_samples(samples, weights)
        if X.shape[0] == 0:
            return
        self._number_samples += self._add_samples(X, w)
        self._invalidate_cache()

    def propagate_forwards_by_time(self, time: float) -> None:
        """
        Age the evidence by ``exp(-decay_rate * time)``.

        Zero time or zero decay rate leave the prior unchanged.
        """
        time = check_time(time)
        alpha = math.exp(-self._decay_rate * time)
        if alpha == 1.0:
            return
        self._number_samples *= alpha
        self._age(alpha)
        self._invalidate_cache()

    @abstractmethod
    def _add_samples(self, X: NDArray, w: NDArray) -> float:
        """Update sufficient statistics; return the weight actually added."""

    @abstractmethod
    def _age(self, alpha: float) -> None:
        """Discount the evidence by the factor ``alpha`` in (0, 1)."""

    # ============================================================
    # Queries
    # ============================================================

    def joint_log_marginal_likelihood(
        self, samples: ArrayLike, weights: Optional[ArrayLike] = None
    ) -> float:
        """
        Log density of a batch under the current posterior predictive.

        Returns ``-inf`` for points outside the support of the prior.
        """
        X, w = self._check_samples(samples, weights)
        if X.shape[0] == 0:
            return 0.0
        return float(self._joint_log_likelihood(X, w))

    @abstractmethod
    def _joint_log_likelihood(self, X: NDArray, w: NDArray) -> float:
        pass

    @abstractmethod
    def marginal_likelihood_mean(self) -> NDArray:
        pass

    @abstractmethod
    def marginal_likelihood_mode(self) -> NDArray:
        pass

    @abstractmethod
    def marginal_likelihood_covariance(self) -> NDArray:
        pass

    def marginal_likelihood_variances(self) -> NDArray:
        return np.diag(self.marginal_likelihood_covariance()).copy()

    @abstractmethod
    def sample_marginal_likelihood(
        self, n: int, random_state: Optional[Union[int, np.random.Generator]] = None
    ) -> NDArray:
        """Draw ``n`` points from the marginal likelihood, shape ``(n, d)``."""

    # ============================================================
    # Persistence
    # ============================================================

    def persist(self, writer: StateWriter) -> None:
        """Write the prior's state to the current level of ``writer``."""
        writer.insert_value(DECAY_RATE_TAG, self._decay_rate)
        writer.insert_value(DATA_TYPE_TAG, self._data_type.name)
        writer.insert_value(NUMBER_SAMPLES_TAG, self._number_samples)
        self._persist_state(writer)

    @classmethod
    def restore(
        cls, dimension: int, params: RestoreParams, reader: StateReader
    ) -> 'MultivariatePrior':
        """
        Reconstruct a prior from a level written by :meth:`persist`.

        Raises
        ------
        RestoreError
            If the state is malformed or incomplete.
        """
        prior = cls._restore_instance(dimension, params)
        seen = set()
        for node in reader:
            name = node.name
            if name == DECAY_RATE_TAG:
                try:
                    prior._decay_rate = check_decay_rate(parse_float(node.value, name))
                except ValueError as e:
                    raise RestoreError(str(e))
            elif name == DATA_TYPE_TAG:
                try:
                    prior._data_type = DataType.from_name(node.value)
                except ValueError as e:
                    raise RestoreError(str(e))
            elif name == NUMBER_SAMPLES_TAG:
                number_samples = parse_float(node.value, name)
                if not np.isfinite(number_samples) or number_samples < 0.0:
                    raise RestoreError(f"Invalid number of samples {number_samples}")
                prior._number_samples = number_samples
            elif not prior._restore_value(node, params):
                log.debug("Ignoring unknown field", prior=cls.type_tag, field=name)
                continue
            seen.add(name)
        prior._check_restored(seen, params)
        prior._invalidate_cache()
        return prior

    @classmethod
    def _restore_instance(cls, dimension: int, params: RestoreParams) -> 'MultivariatePrior':
        """Blank instance which ``restore`` fills in."""
        return cls(dimension)

    @abstractmethod
    def _persist_state(self, writer: StateWriter) -> None:
        pass

    @abstractmethod
    def _restore_value(self, reader: StateReader, params: RestoreParams) -> bool:
        """Consume the current node; return False if its name is unknown."""

    @abstractmethod
    def _check_restored(self, seen: set, params: RestoreParams) -> None:
        """Raise :class:`RestoreError` unless the restored state is complete."""
