"""Linear algebra utilities for oneofn.

Provides numerically robust wrappers around the Cholesky decompositions
used by the conjugate priors.
"""

import numpy as np
from numpy.typing import NDArray
from scipy.linalg import cholesky, LinAlgError


def robust_cholesky(scale: NDArray, *, eps: float = 1e-8) -> NDArray:
    r"""
    Lower Cholesky factor of a posterior scale matrix.

    The scale matrix of a conjugate prior is a sum of outer products and
    drifts slightly from symmetry as batches are added, so it is
    symmetrised first. If the factorization still fails, the diagonal is
    shifted by :math:`|\lambda_{\min}| + \varepsilon \cdot \mathrm{tr}(S) / d`.

    Parameters
    ----------
    scale : ndarray, shape (d, d)
        Approximately symmetric positive definite matrix.
    eps : float, optional
        Relative size of the extra shift applied on failure. Default is ``1e-8``.

    Returns
    -------
    L : ndarray, shape (d, d)
        Lower triangular with :math:`L L^T \approx S`.

    Raises
    ------
    LinAlgError
        If the shifted matrix still cannot be factorized.

    Examples
    --------
    >>> import numpy as np
    >>> from oneofn.utils import robust_cholesky
    >>> S = np.array([[1.0, 0.5], [0.5, 1.0]])
    >>> L = robust_cholesky(S)
    >>> np.allclose(L @ L.T, S)
    True
    """
    sym = 0.5 * (scale + scale.T)
    try:
        return cholesky(sym, lower=True)
    except LinAlgError:
        d = sym.shape[0]
        level = max(abs(np.trace(sym)) / d, 1.0)
        shift = abs(min(np.linalg.eigvalsh(sym)[0], 0.0)) + eps * level
        return cholesky(sym + shift * np.eye(d), lower=True)


def log_det_from_cholesky(L: NDArray) -> float:
    r"""Log-determinant :math:`\log|A| = 2 \sum_i \log L_{ii}` from ``L``."""
    return float(2.0 * np.sum(np.log(np.diag(L))))
