"""
Factory for multivariate one-of-n priors.

Both entry points report failure by returning ``None`` rather than raising,
and log the reason:

- :func:`non_informative` builds a fresh mixture from candidate templates.
- :func:`restore` rebuilds a mixture from a persisted state document. It is
  all-or-nothing: a malformed document, an unregistered candidate type or a
  failing candidate restore yields ``None``, never a partial mixture.

Examples
--------
>>> from oneofn.priors import MultivariateNormalConjugate, MultivariateLogNormalConjugate
>>> from oneofn.params import DataType, RestoreParams
>>> from oneofn.state import DocumentWriter, DocumentReader
>>> templates = [MultivariateNormalConjugate(2), MultivariateLogNormalConjugate(2)]
>>> prior = non_informative(2, DataType.CONTINUOUS, 0.001, templates)
>>> writer = DocumentWriter()
>>> prior.persist(writer)
>>> restored = restore(2, RestoreParams(), DocumentReader.from_writer(writer))
>>> restored.weights()
array([0.5, 0.5])
"""

from typing import Optional, Sequence

import structlog
from scipy.linalg import LinAlgError

from oneofn.base import MultivariateOneOfNPrior, MultivariatePrior
from oneofn.exceptions import RestoreError
from oneofn.params import DataType, OneOfNParams, RestoreParams
from oneofn.state import StateReader

# Registers the shipped candidate types.
import oneofn.priors  # noqa: F401

log = structlog.get_logger(__name__)


def non_informative(
    dimension: int,
    data_type: DataType,
    decay_rate: float,
    models: Sequence[MultivariatePrior],
    params: Optional[OneOfNParams] = None,
) -> Optional[MultivariateOneOfNPrior]:
    """
    Create a non-informative one-of-n prior.

    Each template is cloned and reset to its non-informative state, and
    every candidate starts with log-weight :math:`-\\log N`.

    Parameters
    ----------
    dimension : int
        Dimension of the data, positive.
    data_type : DataType
        Kind of data modelled.
    decay_rate : float
        Non-negative rate at which old evidence is discounted.
    models : sequence of MultivariatePrior
        Candidate templates, at least one; they are not modified.
    params : OneOfNParams, optional
        Weight floor and pruning settings.

    Returns
    -------
    prior : MultivariateOneOfNPrior or None
        ``None`` if the arguments cannot make a prior.
    """
    if dimension <= 0:
        log.error("Cannot create one-of-n prior", reason="non-positive dimension", dimension=dimension)
        return None
    if not models:
        log.error("Cannot create one-of-n prior", reason="no candidate models")
        return None

    candidates = []
    for template in models:
        candidate = template.clone()
        candidate.set_to_non_informative()
        candidates.append(candidate)

    try:
        return MultivariateOneOfNPrior(
            dimension, candidates, data_type=data_type, decay_rate=decay_rate, params=params
        )
    except ValueError as e:
        log.error("Cannot create one-of-n prior", reason=str(e))
        return None


def restore(
    dimension: int,
    params: RestoreParams,
    reader: StateReader,
) -> Optional[MultivariateOneOfNPrior]:
    """
    Reconstruct a one-of-n prior from its persisted state.

    Parameters
    ----------
    dimension : int
        Dimension of the data.
    params : RestoreParams
        Registry of candidate types, tolerances and mixture settings.
    reader : StateReader
        Cursor on the first field of the persisted prior.

    Returns
    -------
    prior : MultivariateOneOfNPrior or None
        The fully restored prior, or ``None`` if the state is unusable.
    """
    try:
        return MultivariateOneOfNPrior.restore(dimension, params, reader)
    except (RestoreError, LinAlgError, ValueError) as e:
        log.error("Failed to restore one-of-n prior", dimension=dimension, reason=str(e))
        return None
