"""
Multivariate Normal prior with a conjugate Normal-Inverse-Wishart posterior.

The data are modelled as :math:`x \\sim N(\\mu, \\Sigma)` with unknown mean and
covariance, and the posterior over :math:`(\\mu, \\Sigma)` is

.. math::
    \\Sigma \\sim W^{-1}(\\Psi, \\nu), \\qquad
    \\mu | \\Sigma \\sim N(m, \\Sigma / \\kappa)

Normalising constant of the Normal-Inverse-Wishart density:

.. math::
    \\log Z(\\kappa, \\nu, \\Psi) = \\frac{d}{2}\\log\\frac{2\\pi}{\\kappa}
    + \\log\\Gamma_d(\\nu/2) + \\frac{\\nu d}{2}\\log 2
    - \\frac{\\nu}{2}\\log|\\Psi|

The evidence of a batch of :math:`n` points under the current posterior is
the ratio of normalisers after and before the update:

.. math::
    \\log p(X) = \\log Z_{post} - \\log Z_{cur} - \\frac{nd}{2}\\log(2\\pi)

and the posterior predictive is a multivariate Student-t with
:math:`\\nu - d + 1` degrees of freedom, location :math:`m` and shape
:math:`\\Psi (\\kappa + 1) / (\\kappa (\\nu - d + 1))`.

Time decay pulls the pseudo-counts :math:`\\kappa` and :math:`\\nu` back
towards their non-informative values and scales :math:`\\Psi` with
:math:`\\nu`, so the expected precision :math:`\\nu \\Psi^{-1}` is kept.

Internal storage
----------------
- ``_kappa``: mean pseudo-count :math:`\\kappa`
- ``_mean``: posterior mean :math:`m`, shape ``(d,)``
- ``_nu``: Wishart degrees of freedom :math:`\\nu`
- ``_scale``: Wishart scale :math:`\\Psi`, shape ``(d, d)``

The Cholesky factor of :math:`\\Psi` and the log normaliser are cached
properties invalidated whenever the state changes.
"""

from functools import cached_property
import math
from typing import Optional, Tuple, Union

import numpy as np
import structlog
from numpy.typing import NDArray
from scipy import stats
from scipy.linalg import LinAlgError, cholesky
from scipy.special import multigammaln

from oneofn.base.prior import MultivariatePrior, as_generator
from oneofn.exceptions import RestoreError
from oneofn.params import DataType, NormalPriorParams, RestoreParams
from oneofn.registry import register_prior
from oneofn.state import StateReader, StateWriter, array_to_string, parse_float, string_to_array
from oneofn.utils import log_det_from_cholesky, robust_cholesky

log = structlog.get_logger(__name__)

KAPPA_TAG = "kappa"
MEAN_TAG = "mean"
NU_TAG = "nu"
SCALE_TAG = "scale"
PRIOR_MEAN_PRECISION_TAG = "prior_mean_precision"
PRIOR_EXTRA_DOF_TAG = "prior_extra_degrees_freedom"
PRIOR_SCALE_TAG = "prior_scale"

_REQUIRED = (KAPPA_TAG, MEAN_TAG, NU_TAG, SCALE_TAG)


def niw_log_normalizer(kappa: float, nu: float, log_det_scale: float, d: int) -> float:
    """Log normalising constant of a Normal-Inverse-Wishart density."""
    return (
        0.5 * d * math.log(2.0 * math.pi / kappa)
        + multigammaln(0.5 * nu, d)
        + 0.5 * nu * d * math.log(2.0)
        - 0.5 * nu * log_det_scale
    )


@register_prior
class MultivariateNormalConjugate(MultivariatePrior):
    """
    Normal-Inverse-Wishart prior for multivariate normal data.

    Parameters
    ----------
    dimension : int
        Dimension of the data.
    data_type : DataType, optional
        Kind of data modelled.
    decay_rate : float, optional
        Rate at which old evidence is discounted per unit time.
    prior : NormalPriorParams, optional
        Non-informative hyperparameters.

    Examples
    --------
    >>> prior = MultivariateNormalConjugate.non_informative(2)
    >>> prior.add_samples(np.random.default_rng(0).normal(size=(100, 2)))
    >>> prior.marginal_likelihood_mean().shape
    (2,)
    """

    type_tag = "normal"

    _cached_attrs: Tuple[str, ...] = MultivariatePrior._cached_attrs + (
        'scale_cholesky', 'log_normalizer',
    )

    def __init__(
        self,
        dimension: int,
        data_type: DataType = DataType.CONTINUOUS,
        decay_rate: float = 0.0,
        prior: Optional[NormalPriorParams] = None,
    ):
        super().__init__(dimension, data_type=data_type, decay_rate=decay_rate)
        self._prior = prior if prior is not None else NormalPriorParams()
        self.set_to_non_informative()

    # ============================================================
    # Non-informative state
    # ============================================================

    @property
    def prior_params(self) -> NormalPriorParams:
        return self._prior

    @property
    def _kappa0(self) -> float:
        return self._prior.mean_precision

    @property
    def _nu0(self) -> float:
        return self._d + self._prior.extra_degrees_freedom

    def _scale0(self) -> NDArray:
        return self._prior.scale * np.eye(self._d)

    def set_to_non_informative(self) -> None:
        self._kappa = self._kappa0
        self._mean = np.zeros(self._d)
        self._nu = self._nu0
        self._scale = self._scale0()
        self._number_samples = 0.0
        self._invalidate_cache()

    def is_non_informative(self) -> bool:
        return (
            self._kappa == self._kappa0
            and self._nu == self._nu0
            and np.allclose(self._mean, 0.0)
            and np.allclose(self._scale, self._scale0())
        )

    # ============================================================
    # Cached derived quantities
    # ============================================================

    @cached_property
    def scale_cholesky(self) -> NDArray:
        """Lower Cholesky factor of :math:`\\Psi` (cached)."""
        return robust_cholesky(self._scale)

    @cached_property
    def log_normalizer(self) -> float:
        """:math:`\\log Z(\\kappa, \\nu, \\Psi)` of the current posterior (cached)."""
        return niw_log_normalizer(
            self._kappa, self._nu, log_det_from_cholesky(self.scale_cholesky), self._d
        )

    @property
    def degrees_freedom(self) -> float:
        """Degrees of freedom of the Student-t posterior predictive."""
        return self._nu - self._d + 1.0

    def predictive_shape(self) -> NDArray:
        """Shape matrix of the Student-t posterior predictive."""
        return self._scale * (self._kappa + 1.0) / (self._kappa * self.degrees_freedom)

    def expected_covariance(self) -> NDArray:
        """
        Posterior expectation of :math:`\\Sigma`.

        :math:`\\Psi / (\\nu - d - 1)` when it exists, otherwise
        :math:`\\Psi / \\nu`.
        """
        excess = self._nu - self._d - 1.0
        return self._scale / (excess if excess > 0.0 else self._nu)

    # ============================================================
    # Conjugate update
    # ============================================================

    def _posterior(self, X: NDArray, w: NDArray) -> Tuple[float, NDArray, float, NDArray]:
        """Posterior hyperparameters after adding the weighted batch."""
        n = float(np.sum(w))
        if n == 0.0:
            return self._kappa, self._mean, self._nu, self._scale

        x_bar = w @ X / n
        diff = X - x_bar
        scatter = (diff * w[:, None]).T @ diff

        kappa = self._kappa + n
        mean = (self._kappa * self._mean + n * x_bar) / kappa
        nu = self._nu + n
        shift = x_bar - self._mean
        scale = self._scale + scatter + (self._kappa * n / kappa) * np.outer(shift, shift)
        scale = 0.5 * (scale + scale.T)
        return kappa, mean, nu, scale

    def _joint_log_likelihood(self, X: NDArray, w: NDArray) -> float:
        kappa, _, nu, scale = self._posterior(X, w)
        if not np.all(np.isfinite(scale)):
            return -np.inf
        try:
            log_det = log_det_from_cholesky(robust_cholesky(scale))
        except LinAlgError:
            return -np.inf
        n = float(np.sum(w))
        result = (
            niw_log_normalizer(kappa, nu, log_det, self._d)
            - self.log_normalizer
            - 0.5 * n * self._d * math.log(2.0 * math.pi)
        )
        return result if np.isfinite(result) else -np.inf

    def _add_samples(self, X: NDArray, w: NDArray) -> float:
        kappa, mean, nu, scale = self._posterior(X, w)
        if not np.all(np.isfinite(scale)):
            log.warning("Skipping samples which overflow the posterior", prior=self.type_tag)
            return 0.0
        self._kappa, self._mean, self._nu, self._scale = kappa, mean, nu, scale
        return float(np.sum(w))

    def _age(self, alpha: float) -> None:
        kappa0, nu0 = self._kappa0, self._nu0
        nu = nu0 + alpha * (self._nu - nu0)
        self._scale = self._scale * (nu / self._nu)
        self._kappa = kappa0 + alpha * (self._kappa - kappa0)
        self._nu = nu

    # ============================================================
    # Marginal likelihood moments
    # ============================================================

    def marginal_likelihood_mean(self) -> NDArray:
        return self._mean.copy()

    def marginal_likelihood_mode(self) -> NDArray:
        return self._mean.copy()

    def marginal_likelihood_covariance(self) -> NDArray:
        return self.expected_covariance() * (self._kappa + 1.0) / self._kappa

    def sample_marginal_likelihood(
        self, n: int, random_state: Optional[Union[int, np.random.Generator]] = None
    ) -> NDArray:
        if n <= 0:
            return np.empty((0, self._d))
        rv = stats.multivariate_t(
            loc=self._mean, shape=self.predictive_shape(), df=self.degrees_freedom
        )
        samples = rv.rvs(size=n, random_state=as_generator(random_state))
        return np.reshape(samples, (n, self._d))

    # ============================================================
    # Persistence
    # ============================================================

    def _persist_state(self, writer: StateWriter) -> None:
        writer.insert_value(PRIOR_MEAN_PRECISION_TAG, self._prior.mean_precision)
        writer.insert_value(PRIOR_EXTRA_DOF_TAG, self._prior.extra_degrees_freedom)
        writer.insert_value(PRIOR_SCALE_TAG, self._prior.scale)
        writer.insert_value(KAPPA_TAG, self._kappa)
        writer.insert_value(MEAN_TAG, array_to_string(self._mean))
        writer.insert_value(NU_TAG, self._nu)
        writer.insert_value(SCALE_TAG, array_to_string(self._scale))

    def _restore_value(self, reader: StateReader, params: RestoreParams) -> bool:
        name, value = reader.name, reader.value
        d = self._d
        if name == KAPPA_TAG:
            self._kappa = parse_float(value, name)
        elif name == MEAN_TAG:
            self._mean = string_to_array(value, (d,))
        elif name == NU_TAG:
            self._nu = parse_float(value, name)
        elif name == SCALE_TAG:
            self._scale = string_to_array(value, (d, d))
        elif name in (PRIOR_MEAN_PRECISION_TAG, PRIOR_EXTRA_DOF_TAG, PRIOR_SCALE_TAG):
            key = {
                PRIOR_MEAN_PRECISION_TAG: "mean_precision",
                PRIOR_EXTRA_DOF_TAG: "extra_degrees_freedom",
                PRIOR_SCALE_TAG: "scale",
            }[name]
            hyper = dict(self._prior.items())
            hyper[key] = parse_float(value, name)
            try:
                self._prior = NormalPriorParams(**hyper)
            except ValueError as e:
                raise RestoreError(str(e))
        else:
            return False
        return True

    def _check_restored(self, seen: set, params: RestoreParams) -> None:
        missing = [tag for tag in _REQUIRED if tag not in seen]
        if missing:
            raise RestoreError(f"{self.type_tag} state is missing {missing}")
        if not (np.isfinite(self._kappa) and self._kappa > 0.0):
            raise RestoreError(f"Invalid kappa {self._kappa}")
        if not (np.isfinite(self._nu) and self._nu > self._d - 1.0):
            raise RestoreError(f"Invalid degrees of freedom {self._nu} for d={self._d}")
        if not (np.all(np.isfinite(self._mean)) and np.all(np.isfinite(self._scale))):
            raise RestoreError("Non-finite posterior parameters")
        if not np.allclose(self._scale, self._scale.T, rtol=params.tolerance, atol=params.tolerance):
            raise RestoreError("Scale matrix is not symmetric")
        try:
            cholesky(self._scale, lower=True)
        except LinAlgError:
            raise RestoreError("Scale matrix is not positive definite")

    # ============================================================
    # String representation
    # ============================================================

    def __repr__(self) -> str:
        name = type(self).__name__
        if self.is_non_informative():
            return f"{name}(d={self._d}, non-informative)"
        if self._d <= 3:
            mean_str = ", ".join(f"{x:.4f}" for x in self._mean)
            return f"{name}(m=[{mean_str}], ν={self._nu:.2f}, n={self._number_samples:.1f})"
        return f"{name}(d={self._d}, n={self._number_samples:.1f})"
