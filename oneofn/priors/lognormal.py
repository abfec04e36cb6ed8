"""
Multivariate log-normal prior.

Models :math:`y = \\log(x + c)` as multivariate normal, where :math:`c` is
a fixed offset, and reuses the Normal-Inverse-Wishart conjugate update of
:class:`~oneofn.priors.normal.MultivariateNormalConjugate` on :math:`y`.
The density of :math:`x` picks up the Jacobian of the transform:

.. math::
    \\log p(x) = \\log p_Y(\\log(x + c)) - \\sum_j \\log(x_j + c)

Points with any coordinate :math:`x_j \\le -c` lie outside the support and
have log likelihood :math:`-\\infty`; they are skipped when updating.

Moments of the marginal likelihood are plug-in log-normal moments using
the posterior mean :math:`m` and expected covariance :math:`\\bar\\Sigma`
of :math:`y`, since the Student-t predictive has no exponential moments.
"""

import math
from typing import Optional, Tuple, Union

import numpy as np
import structlog
from numpy.typing import NDArray

from oneofn.exceptions import RestoreError
from oneofn.params import DataType, NormalPriorParams, RestoreParams
from oneofn.priors.normal import MultivariateNormalConjugate
from oneofn.registry import register_prior
from oneofn.state import StateReader, StateWriter, parse_float

log = structlog.get_logger(__name__)

OFFSET_TAG = "offset"


@register_prior
class MultivariateLogNormalConjugate(MultivariateNormalConjugate):
    """
    Log-normal prior with a conjugate posterior on the log scale.

    Parameters
    ----------
    dimension : int
        Dimension of the data.
    data_type : DataType, optional
        Kind of data modelled.
    decay_rate : float, optional
        Rate at which old evidence is discounted per unit time.
    prior : NormalPriorParams, optional
        Non-informative hyperparameters of the log-scale normal.
    offset : float, optional
        Shift :math:`c` applied before taking logs. Default is 0.
    """

    type_tag = "lognormal"

    def __init__(
        self,
        dimension: int,
        data_type: DataType = DataType.CONTINUOUS,
        decay_rate: float = 0.0,
        prior: Optional[NormalPriorParams] = None,
        offset: float = 0.0,
    ):
        if not math.isfinite(offset):
            raise ValueError(f"offset must be finite, got {offset}")
        self._offset = float(offset)
        super().__init__(dimension, data_type=data_type, decay_rate=decay_rate, prior=prior)

    @property
    def offset(self) -> float:
        return self._offset

    def _in_support(self, X: NDArray) -> NDArray:
        return np.all(X + self._offset > 0.0, axis=1)

    def _transform(self, X: NDArray) -> NDArray:
        return np.log(X + self._offset)

    def _joint_log_likelihood(self, X: NDArray, w: NDArray) -> float:
        inside = self._in_support(X)
        if np.any(~inside & (w > 0.0)):
            return -np.inf
        X, w = X[inside], w[inside]
        if X.shape[0] == 0:
            return 0.0
        Y = self._transform(X)
        jacobian = float(w @ np.sum(Y, axis=1))
        return super()._joint_log_likelihood(Y, w) - jacobian

    def _add_samples(self, X: NDArray, w: NDArray) -> float:
        inside = self._in_support(X)
        if not np.all(inside):
            log.debug(
                "Skipping samples outside support",
                prior=self.type_tag, skipped=int(np.sum(~inside)), offset=self._offset,
            )
        X, w = X[inside], w[inside]
        if X.shape[0] == 0:
            return 0.0
        return super()._add_samples(self._transform(X), w)

    # ============================================================
    # Marginal likelihood moments
    # ============================================================

    def _log_moments(self) -> Tuple[NDArray, NDArray]:
        return self._mean, self.expected_covariance()

    def marginal_likelihood_mean(self) -> NDArray:
        m, S = self._log_moments()
        return np.exp(m + 0.5 * np.diag(S)) - self._offset

    def marginal_likelihood_mode(self) -> NDArray:
        m, S = self._log_moments()
        return np.exp(m - S.sum(axis=1)) - self._offset

    def marginal_likelihood_covariance(self) -> NDArray:
        m, S = self._log_moments()
        v = np.diag(S)
        location = m[:, None] + m[None, :] + 0.5 * (v[:, None] + v[None, :])
        return np.exp(location) * np.expm1(S)

    def sample_marginal_likelihood(
        self, n: int, random_state: Optional[Union[int, np.random.Generator]] = None
    ) -> NDArray:
        return np.exp(super().sample_marginal_likelihood(n, random_state)) - self._offset

    # ============================================================
    # Persistence
    # ============================================================

    def _persist_state(self, writer: StateWriter) -> None:
        writer.insert_value(OFFSET_TAG, self._offset)
        super()._persist_state(writer)

    def _restore_value(self, reader: StateReader, params: RestoreParams) -> bool:
        if reader.name == OFFSET_TAG:
            offset = parse_float(reader.value, OFFSET_TAG)
            if not math.isfinite(offset):
                raise RestoreError(f"Invalid offset {offset}")
            self._offset = offset
            return True
        return super()._restore_value(reader, params)

    def __repr__(self) -> str:
        return f"{super().__repr__()[:-1]}, offset={self._offset:g})"
