"""
Bayesian one-of-n mixture over candidate multivariate priors.

The mixture holds :math:`N` candidate priors, each a different hypothesis
about the family generating the data, and one log-weight per candidate:

.. math::
    p(x) = \\sum_{i=1}^N \\pi_i \\, p_i(x), \\qquad
    \\pi_i = \\frac{e^{w_i}}{\\sum_j e^{w_j}}

Sequential Bayesian model averaging
-----------------------------------
When a batch :math:`X` arrives, each log-weight gains the batch evidence
under that candidate's current posterior, and only then is the candidate
updated with :math:`X`:

.. math::
    w_i \\leftarrow w_i + \\log p_i(X \\mid \\text{data so far})

Log-weights are stored unnormalised. After each update they are shifted so
the best is zero, which keeps them bounded without changing any ratio, and
clamped from below at ``OneOfNParams.log_weight_floor`` so that no
candidate is ever ruled out for good. Normalisation happens at query time.

Time decay
----------
:meth:`MultivariateOneOfNPrior.propagate_forwards_by_time` ages every
candidate and flattens the weights towards uniform:

.. math::
    w_i \\leftarrow w_{\\max} + \\alpha (w_i - w_{\\max}), \\qquad
    \\alpha = e^{-\\lambda t}

Pruning
-------
Candidates whose normalised weight stays below
``OneOfNParams.prune_weight_threshold`` for ``prune_patience`` consecutive
updates are removed by :meth:`MultivariateOneOfNPrior.prune`. The best
candidate always survives.
"""

from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import structlog
from numpy.typing import ArrayLike, NDArray
from scipy.special import logsumexp

from oneofn.base.prior import MultivariatePrior, as_generator, check_time
from oneofn.exceptions import RestoreError
from oneofn.params import DataType, OneOfNParams, RestoreParams
from oneofn.registry import lookup_prior
from oneofn.state import (
    StateReader,
    StateWriter,
    parse_float,
    parse_int,
)

log = structlog.get_logger(__name__)

CANDIDATE_TAG = "candidate"
TYPE_TAG = "type"
STATE_TAG = "state"
LOG_WEIGHT_TAG = "log_weight"
BELOW_THRESHOLD_TAG = "updates_below_threshold"

_REQUIRED = ("decay_rate", "data_type", CANDIDATE_TAG)


class MultivariateOneOfNPrior(MultivariatePrior):
    """
    Weighted mixture of candidate priors updated by Bayesian model averaging.

    The mixture owns its candidates; pass clones if the originals must
    stay untouched (:func:`oneofn.factory.non_informative` does this).

    Parameters
    ----------
    dimension : int
        Dimension of the data, shared by every candidate.
    models : sequence of MultivariatePrior
        The candidates, at least one.
    data_type : DataType, optional
        Kind of data modelled.
    decay_rate : float, optional
        Rate at which old evidence is discounted; pushed to every candidate.
    params : OneOfNParams, optional
        Weight floor and pruning settings.
    log_weights : array_like, optional
        Initial log-weights. Default is :math:`-\\log N` for every candidate.

    Examples
    --------
    >>> from oneofn.priors import MultivariateNormalConjugate, MultivariateLogNormalConjugate
    >>> prior = MultivariateOneOfNPrior(
    ...     2, [MultivariateNormalConjugate(2), MultivariateLogNormalConjugate(2)]
    ... )
    >>> prior.weights()
    array([0.5, 0.5])
    """

    type_tag = "one_of_n"

    def __init__(
        self,
        dimension: int,
        models: Sequence[MultivariatePrior],
        data_type: DataType = DataType.CONTINUOUS,
        decay_rate: float = 0.0,
        params: Optional[OneOfNParams] = None,
        log_weights: Optional[ArrayLike] = None,
    ):
        super().__init__(dimension, data_type=data_type, decay_rate=decay_rate)
        models = list(models)
        if not models:
            raise ValueError("A one-of-n prior needs at least one candidate")
        for model in models:
            if model.dimension != self._d:
                raise ValueError(
                    f"Candidate {model!r} has dimension {model.dimension}, expected {self._d}"
                )
            model.decay_rate = self._decay_rate
            model.data_type = self._data_type

        if log_weights is None:
            log_weights = np.full(len(models), -np.log(len(models)))
        log_weights = np.asarray(log_weights, dtype=float)
        if log_weights.shape != (len(models),) or not np.all(np.isfinite(log_weights)):
            raise ValueError(f"Expected {len(models)} finite log-weights, got {log_weights}")

        self._params = params if params is not None else OneOfNParams()
        self._models: List[MultivariatePrior] = models
        self._log_weights = log_weights.copy()
        self._below_threshold = np.zeros(len(models), dtype=int)

    @classmethod
    def _restore_instance(cls, dimension: int, params: RestoreParams) -> 'MultivariateOneOfNPrior':
        prior = cls.__new__(cls)
        MultivariatePrior.__init__(prior, dimension)
        prior._params = params.one_of_n
        prior._models = []
        prior._log_weights = np.empty(0)
        prior._below_threshold = np.zeros(0, dtype=int)
        return prior

    # ============================================================
    # Properties
    # ============================================================

    @property
    def models(self) -> Tuple[MultivariatePrior, ...]:
        """The candidates, in weight order of :meth:`weights`."""
        return tuple(self._models)

    @property
    def params(self) -> OneOfNParams:
        return self._params

    @MultivariatePrior.decay_rate.setter
    def decay_rate(self, value: float) -> None:
        MultivariatePrior.decay_rate.fset(self, value)
        for model in self._models:
            model.decay_rate = self._decay_rate

    @MultivariatePrior.data_type.setter
    def data_type(self, value: DataType) -> None:
        MultivariatePrior.data_type.fset(self, value)
        for model in self._models:
            model.data_type = self._data_type

    def __len__(self) -> int:
        return len(self._models)

    def log_weights(self) -> NDArray:
        """Normalised log-weights :math:`\\log \\pi_i`."""
        return self._log_weights - logsumexp(self._log_weights)

    def weights(self) -> NDArray:
        """Normalised weights :math:`\\pi_i`, summing to one."""
        weights = np.exp(self.log_weights())
        return weights / weights.sum()

    def set_to_non_informative(self) -> None:
        for model in self._models:
            model.set_to_non_informative()
        n = len(self._models)
        self._log_weights = np.full(n, -np.log(n))
        self._below_threshold = np.zeros(n, dtype=int)
        self._number_samples = 0.0

    def is_non_informative(self) -> bool:
        return all(model.is_non_informative() for model in self._models)

    # ============================================================
    # Weight management
    # ============================================================

    def _candidate_log_likelihoods(self, X: NDArray, w: NDArray) -> NDArray:
        values = np.array([model.joint_log_marginal_likelihood(X, w) for model in self._models])
        return np.where(np.isnan(values), -np.inf, values)

    def _renormalize(self) -> None:
        """Shift the best log-weight to zero and apply the floor."""
        self._log_weights = np.maximum(
            self._log_weights - np.max(self._log_weights), self._params.log_weight_floor
        )

    def _add_samples(self, X: NDArray, w: NDArray) -> float:
        log_likelihoods = self._candidate_log_likelihoods(X, w)
        if np.all(np.isneginf(log_likelihoods)):
            log.warning(
                "No candidate supports the samples, weights unchanged",
                n=X.shape[0], candidates=[m.type_tag for m in self._models],
            )
        else:
            self._log_weights = self._log_weights + log_likelihoods
            self._renormalize()

        for model in self._models:
            model.add_samples(X, w)

        below = self.weights() < self._params.prune_weight_threshold
        self._below_threshold = np.where(below, self._below_threshold + 1, 0)
        return float(np.sum(w))

    def propagate_forwards_by_time(self, time: float) -> None:
        time = check_time(time)
        for model in self._models:
            model.propagate_forwards_by_time(time)
        super().propagate_forwards_by_time(time)

    def _age(self, alpha: float) -> None:
        best = np.max(self._log_weights)
        self._log_weights = best + alpha * (self._log_weights - best)
        recovered = self.weights() >= self._params.prune_weight_threshold
        self._below_threshold[recovered] = 0

    def prune(self) -> int:
        """
        Remove candidates which have stayed negligible for long enough.

        A candidate is removed once its normalised weight has been below
        ``prune_weight_threshold`` after ``prune_patience`` consecutive
        updates and still is. The most probable candidate is never removed.
        Surviving log-weights are renormalised to sum to one.

        Returns
        -------
        removed : int
            Number of candidates removed.
        """
        drop = (self._below_threshold >= self._params.prune_patience) & (
            self.weights() < self._params.prune_weight_threshold
        )
        drop[np.argmax(self._log_weights)] = False
        if not np.any(drop):
            return 0

        removed = [m.type_tag for m, d in zip(self._models, drop) if d]
        keep = ~drop
        self._models = [m for m, k in zip(self._models, keep) if k]
        self._log_weights = self._log_weights[keep]
        self._log_weights = self._log_weights - logsumexp(self._log_weights)
        self._below_threshold = self._below_threshold[keep]
        log.info("Pruned candidates", removed=removed, remaining=len(self._models))
        return len(removed)

    # ============================================================
    # Queries
    # ============================================================

    def _joint_log_likelihood(self, X: NDArray, w: NDArray) -> float:
        terms = self.log_weights() + self._candidate_log_likelihoods(X, w)
        if np.all(np.isneginf(terms)):
            return -np.inf
        return float(logsumexp(terms))

    def marginal_likelihood_mean(self) -> NDArray:
        weights = self.weights()
        return sum(wt * model.marginal_likelihood_mean() for wt, model in zip(weights, self._models))

    def marginal_likelihood_mode(self) -> NDArray:
        weights = self.weights()
        return sum(wt * model.marginal_likelihood_mode() for wt, model in zip(weights, self._models))

    def marginal_likelihood_covariance(self) -> NDArray:
        """
        Covariance of the mixture by the law of total covariance.

        .. math::
            \\text{Cov} = \\sum_i \\pi_i (C_i + m_i m_i^T) - m m^T
        """
        weights = self.weights()
        means = [model.marginal_likelihood_mean() for model in self._models]
        mean = sum(wt * m for wt, m in zip(weights, means))
        second = sum(
            wt * (model.marginal_likelihood_covariance() + np.outer(m, m))
            for wt, model, m in zip(weights, self._models, means)
        )
        cov = second - np.outer(mean, mean)
        return 0.5 * (cov + cov.T)

    def sample_marginal_likelihood(
        self, n: int, random_state: Optional[Union[int, np.random.Generator]] = None
    ) -> NDArray:
        """
        Draw ``n`` points, allocated to candidates in proportion to weight.

        The allocation uses largest remainders, so it is deterministic for
        given weights; samples are grouped by candidate.
        """
        if n <= 0:
            return np.empty((0, self._d))
        rng = as_generator(random_state)
        raw = n * self.weights()
        counts = np.floor(raw).astype(int)
        shortfall = n - counts.sum()
        if shortfall > 0:
            counts[np.argsort(counts - raw)[:shortfall]] += 1
        samples = [
            model.sample_marginal_likelihood(int(k), rng)
            for model, k in zip(self._models, counts) if k > 0
        ]
        return np.concatenate(samples, axis=0)

    # ============================================================
    # Persistence
    # ============================================================

    def _persist_state(self, writer: StateWriter) -> None:
        for model, log_weight, below in zip(self._models, self._log_weights, self._below_threshold):
            with writer.level(CANDIDATE_TAG):
                writer.insert_value(TYPE_TAG, model.type_tag)
                with writer.level(STATE_TAG):
                    model.persist(writer)
                writer.insert_value(LOG_WEIGHT_TAG, log_weight)
                writer.insert_value(BELOW_THRESHOLD_TAG, below)

    def _restore_value(self, reader: StateReader, params: RestoreParams) -> bool:
        if reader.name != CANDIDATE_TAG:
            return False
        model, log_weight, below = reader.traverse_sub_level(
            lambda r: self._restore_candidate(r, params)
        )
        self._models.append(model)
        self._log_weights = np.append(self._log_weights, log_weight)
        self._below_threshold = np.append(self._below_threshold, below)
        return True

    def _restore_candidate(
        self, reader: StateReader, params: RestoreParams
    ) -> Tuple[MultivariatePrior, float, int]:
        prior_cls = None
        model = None
        log_weight = None
        below = 0
        for node in reader:
            name = node.name
            if name == TYPE_TAG:
                prior_cls = lookup_prior(node.value, params.candidate_types)
                if prior_cls is None:
                    raise RestoreError(f"Unknown prior type {node.value!r}")
            elif name == STATE_TAG:
                if prior_cls is None:
                    raise RestoreError("Candidate state precedes its type")
                model = node.traverse_sub_level(
                    lambda r: prior_cls.restore(self._d, params, r)
                )
            elif name == LOG_WEIGHT_TAG:
                log_weight = parse_float(node.value, name)
            elif name == BELOW_THRESHOLD_TAG:
                below = parse_int(node.value, name)
                if below < 0:
                    raise RestoreError(f"Invalid {name} {below}")
            else:
                log.debug("Ignoring unknown candidate field", field=name)
        if model is None or log_weight is None:
            raise RestoreError("Candidate is missing its state or log-weight")
        if not np.isfinite(log_weight):
            raise RestoreError(f"Invalid log-weight {log_weight}")
        return model, log_weight, below

    def _check_restored(self, seen: set, params: RestoreParams) -> None:
        missing = [tag for tag in _REQUIRED if tag not in seen]
        if missing:
            raise RestoreError(f"One-of-n state is missing {missing}")

    # ============================================================
    # String representation
    # ============================================================

    def describe(self) -> str:
        """Multi-line summary of the candidates and their weights."""
        lines = [f"one-of-n (d={self._d}, decay_rate={self._decay_rate:g}):"]
        for weight, model in zip(self.weights(), self._models):
            lines.append(f"  weight {weight:.4g}: {model!r}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        parts = ", ".join(
            f"{model.type_tag}: {weight:.4f}"
            for weight, model in zip(self.weights(), self._models)
        )
        return f"MultivariateOneOfNPrior(d={self._d}, weights=[{parts}])"
