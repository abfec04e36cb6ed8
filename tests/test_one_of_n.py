"""
Tests for the one-of-n mixture of candidate priors.

Tests that:
- Normalised weights always sum to one
- The candidate explaining the data gains weight
- Degenerate points give -inf, never NaN or an exception
- Zero time propagation is a no-op and decay flattens the weights
- Pruning removes negligible candidates but never the last one
- Point estimates combine the candidates by weight
"""

import numpy as np
import pytest

from oneofn.base import MultivariateOneOfNPrior
from oneofn.exceptions import DimensionMismatchError
from oneofn.params import DataType, OneOfNParams
from oneofn.priors import MultivariateLogNormalConjugate, MultivariateNormalConjugate
from oneofn.state import DocumentWriter


def _mixture(d=2, decay_rate=0.0, params=None, models=None):
    if models is None:
        models = [MultivariateNormalConjugate(d), MultivariateLogNormalConjugate(d)]
    return MultivariateOneOfNPrior(d, models, decay_rate=decay_rate, params=params)


def _document(prior):
    writer = DocumentWriter()
    prior.persist(writer)
    return writer.to_dict()


@pytest.fixture
def signed_batch():
    """Normal data with negative values, outside the log-normal support."""
    rng = np.random.default_rng(0)
    return rng.multivariate_normal([0.0, 1.0], [[1.0, 0.2], [0.2, 1.0]], size=20)


@pytest.fixture
def positive_batch():
    rng = np.random.default_rng(1)
    return np.exp(rng.multivariate_normal([0.0, 0.5], [[1.0, 0.3], [0.3, 0.8]], size=50))


class TestConstruction:
    def test_equal_initial_weights(self):
        prior = _mixture()
        np.testing.assert_allclose(prior.weights(), [0.5, 0.5])
        np.testing.assert_allclose(prior.log_weights(), np.log([0.5, 0.5]))
        assert len(prior) == 2
        assert prior.is_non_informative()

    def test_no_models(self):
        with pytest.raises(ValueError, match="at least one candidate"):
            MultivariateOneOfNPrior(2, [])

    def test_dimension_mismatch_between_models(self):
        with pytest.raises(ValueError):
            MultivariateOneOfNPrior(2, [MultivariateNormalConjugate(3)])

    def test_decay_rate_pushed_to_models(self):
        prior = _mixture(decay_rate=0.25)
        assert all(m.decay_rate == 0.25 for m in prior.models)
        prior.decay_rate = 0.5
        assert prior.decay_rate == 0.5
        assert all(m.decay_rate == 0.5 for m in prior.models)

    def test_bad_log_weights(self):
        with pytest.raises(ValueError):
            MultivariateOneOfNPrior(
                2, [MultivariateNormalConjugate(2)], log_weights=[-np.inf]
            )


class TestWeights:
    def test_weights_sum_to_one(self, signed_batch, positive_batch):
        rng = np.random.default_rng(5)
        prior = _mixture(decay_rate=0.1)
        for step in range(30):
            if rng.uniform() < 0.5:
                batch = signed_batch if rng.uniform() < 0.5 else positive_batch
                prior.add_samples(batch[rng.integers(0, 20, size=5)])
            else:
                prior.propagate_forwards_by_time(rng.uniform(0.0, 5.0))
            np.testing.assert_allclose(prior.weights().sum(), 1.0, rtol=1e-12)
            assert np.all(np.isfinite(prior.log_weights()))

    def test_explaining_candidate_gains_weight(self, signed_batch):
        prior = _mixture()
        history = [prior.weights()[0]]
        for _ in range(5):
            prior.add_samples(signed_batch)
            history.append(prior.weights()[0])

        assert np.all(np.diff(history) >= -1e-12)
        assert np.any(np.diff(history) > 0.0)
        assert history[-1] > 0.99

    def test_log_normal_data_favours_log_normal(self, positive_batch):
        prior = _mixture()
        for _ in range(3):
            prior.add_samples(positive_batch)
        assert prior.weights()[1] > 0.9

    def test_weight_floor_keeps_recovery_possible(self, signed_batch):
        prior = _mixture()
        prior.add_samples(signed_batch)
        floor = prior.params.log_weight_floor
        np.testing.assert_allclose(prior._log_weights, [0.0, floor])
        assert prior.weights()[1] > 0.0

    def test_unsupported_samples_leave_weights(self):
        models = [MultivariateLogNormalConjugate(2), MultivariateLogNormalConjugate(2, offset=1.0)]
        prior = _mixture(models=models)
        prior.add_samples(np.array([[-5.0, -5.0]]))
        np.testing.assert_allclose(prior.weights(), [0.5, 0.5])
        assert prior.number_samples == 1.0

    def test_dimension_mismatch_fails_call_only(self, signed_batch):
        prior = _mixture()
        prior.add_samples(signed_batch)
        before = _document(prior)
        with pytest.raises(DimensionMismatchError):
            prior.add_samples(np.ones((3, 4)))
        assert _document(prior) == before
        prior.add_samples(signed_batch)
        assert prior.number_samples == 40.0


class TestLikelihood:
    def test_single_candidate_matches_candidate(self, signed_batch):
        normal = MultivariateNormalConjugate(2)
        prior = _mixture(models=[normal.clone()])
        normal.add_samples(signed_batch)
        prior.add_samples(signed_batch)
        x = np.array([0.3, 0.7])
        np.testing.assert_allclose(
            prior.joint_log_marginal_likelihood(x), normal.joint_log_marginal_likelihood(x)
        )

    def test_log_sum_exp_of_weighted_candidates(self, positive_batch):
        prior = _mixture()
        prior.add_samples(positive_batch[:10])
        x = np.array([1.0, 2.0])
        densities = np.array([m.joint_log_marginal_likelihood(x) for m in prior.models])
        expected = np.log(np.sum(prior.weights() * np.exp(densities)))
        np.testing.assert_allclose(prior.joint_log_marginal_likelihood(x), expected, rtol=1e-10)

    def test_point_outside_every_support(self):
        models = [MultivariateLogNormalConjugate(2), MultivariateLogNormalConjugate(2, offset=1.0)]
        prior = _mixture(models=models)
        value = prior.joint_log_marginal_likelihood(np.array([-1e6, -1e6]))
        assert value == -np.inf
        assert not np.isnan(value)

    def test_extreme_point_is_not_nan(self, signed_batch):
        prior = _mixture()
        prior.add_samples(signed_batch)
        value = prior.joint_log_marginal_likelihood(np.array([1e200, 1e200]))
        assert not np.isnan(value)

    def test_query_does_not_mutate(self, signed_batch):
        prior = _mixture()
        prior.add_samples(signed_batch)
        before = _document(prior)
        prior.joint_log_marginal_likelihood(signed_batch)
        assert _document(prior) == before


class TestDecay:
    def test_zero_time_is_noop(self, positive_batch):
        prior = _mixture(decay_rate=0.3)
        prior.add_samples(positive_batch)
        before = _document(prior)
        prior.propagate_forwards_by_time(0.0)
        assert _document(prior) == before

    def test_decay_flattens_weights(self, positive_batch):
        prior = _mixture(decay_rate=0.1)
        prior.add_samples(positive_batch)
        spread = abs(prior.log_weights()[0] - prior.log_weights()[1])
        prior.propagate_forwards_by_time(5.0)
        decayed = abs(prior.log_weights()[0] - prior.log_weights()[1])
        np.testing.assert_allclose(decayed, spread * np.exp(-0.5), rtol=1e-9)
        np.testing.assert_allclose(prior.number_samples, 50.0 * np.exp(-0.5))

    def test_decay_ages_candidates(self, positive_batch):
        prior = _mixture(decay_rate=0.1)
        prior.add_samples(positive_batch)
        prior.propagate_forwards_by_time(10.0)
        for model in prior.models:
            np.testing.assert_allclose(model.number_samples, 50.0 * np.exp(-1.0))

    def test_negative_time(self):
        with pytest.raises(ValueError):
            _mixture(decay_rate=0.1).propagate_forwards_by_time(-1.0)


class TestPruning:
    def test_negligible_candidate_removed(self, signed_batch):
        prior = _mixture(params=OneOfNParams(prune_patience=3))
        removed = 0
        for step in range(10):
            prior.add_samples(signed_batch)
            removed = prior.prune()
            if step < 2:
                assert removed == 0
                assert len(prior) == 2
            if removed:
                break

        assert removed == 1
        assert len(prior) == 1
        assert isinstance(prior.models[0], MultivariateNormalConjugate)
        np.testing.assert_allclose(prior.weights().sum(), 1.0)
        np.testing.assert_allclose(np.exp(prior._log_weights).sum(), 1.0)

    def test_best_candidate_always_survives(self, signed_batch):
        params = OneOfNParams(prune_weight_threshold=0.99, prune_patience=1)
        models = [MultivariateNormalConjugate(2) for _ in range(3)]
        prior = _mixture(params=params, models=models)
        prior.add_samples(signed_batch)
        assert prior.prune() == 2
        assert len(prior) == 1
        np.testing.assert_allclose(prior.weights(), [1.0])
        prior.add_samples(signed_batch)
        assert prior.prune() == 0
        assert len(prior) == 1

    def test_recovered_candidate_resets_count(self, signed_batch):
        params = OneOfNParams(prune_patience=2)
        prior = _mixture(params=params)
        prior.add_samples(signed_batch)
        prior.propagate_forwards_by_time(0.0)
        prior.decay_rate = 10.0
        prior.propagate_forwards_by_time(10.0)
        prior.add_samples(np.array([[1.0, 1.0]]))
        np.testing.assert_array_equal(prior._below_threshold, [0, 0])
        assert prior.prune() == 0

    def test_decay_back_above_threshold_prevents_pruning(self):
        prior = _mixture(decay_rate=10.0, params=OneOfNParams(prune_patience=1))
        prior.add_samples(np.array([[-1.0, 2.0]]))
        np.testing.assert_array_equal(prior._below_threshold, [0, 1])

        prior.propagate_forwards_by_time(100.0)
        np.testing.assert_allclose(prior.weights(), [0.5, 0.5])
        np.testing.assert_array_equal(prior._below_threshold, [0, 0])
        assert prior.prune() == 0
        assert len(prior) == 2

    def test_stale_streak_does_not_prune(self):
        prior = _mixture(params=OneOfNParams(prune_patience=1))
        prior.add_samples(np.array([[-1.0, 2.0]]))
        prior._log_weights = np.array([0.0, 0.0])
        assert prior.prune() == 0


class TestPointEstimates:
    def test_mean_is_weighted(self, positive_batch):
        prior = _mixture()
        prior.add_samples(positive_batch[:5])
        weights = prior.weights()
        expected = sum(w * m.marginal_likelihood_mean() for w, m in zip(weights, prior.models))
        np.testing.assert_allclose(prior.marginal_likelihood_mean(), expected)
        expected = sum(w * m.marginal_likelihood_mode() for w, m in zip(weights, prior.models))
        np.testing.assert_allclose(prior.marginal_likelihood_mode(), expected)

    def test_covariance_single_candidate(self, signed_batch):
        prior = _mixture(models=[MultivariateNormalConjugate(2)])
        prior.add_samples(signed_batch)
        np.testing.assert_allclose(
            prior.marginal_likelihood_covariance(),
            prior.models[0].marginal_likelihood_covariance(),
            atol=1e-12,
        )

    def test_covariance_includes_spread_of_means(self, positive_batch):
        prior = _mixture()
        prior.add_samples(positive_batch[:3])
        cov = prior.marginal_likelihood_covariance()
        np.testing.assert_allclose(cov, cov.T)
        within = sum(
            w * m.marginal_likelihood_covariance() for w, m in zip(prior.weights(), prior.models)
        )
        assert np.all(np.diag(cov) >= np.diag(within) - 1e-12)
        np.testing.assert_allclose(prior.marginal_likelihood_variances(), np.diag(cov))

    def test_sampling_allocates_by_weight(self, signed_batch):
        prior = _mixture()
        prior.add_samples(signed_batch)
        samples = prior.sample_marginal_likelihood(20, random_state=0)
        assert samples.shape == (20, 2)
        assert prior.sample_marginal_likelihood(0).shape == (0, 2)


class TestLifecycle:
    def test_set_to_non_informative(self, signed_batch):
        prior = _mixture()
        prior.add_samples(signed_batch)
        assert not prior.is_non_informative()
        prior.set_to_non_informative()
        assert prior.is_non_informative()
        np.testing.assert_allclose(prior.weights(), [0.5, 0.5])
        assert prior.number_samples == 0.0

    def test_clone_is_independent(self, signed_batch):
        prior = _mixture()
        clone = prior.clone()
        clone.add_samples(signed_batch)
        assert prior.is_non_informative()
        assert all(a is not b for a, b in zip(prior.models, clone.models))

    def test_repr_and_describe(self):
        prior = _mixture()
        assert repr(prior) == "MultivariateOneOfNPrior(d=2, weights=[normal: 0.5000, lognormal: 0.5000])"
        text = prior.describe()
        assert text.startswith("one-of-n (d=2")
        assert "MultivariateLogNormalConjugate" in text

    def test_data_type(self):
        prior = MultivariateOneOfNPrior(
            1, [MultivariateNormalConjugate(1)], data_type=DataType.INTEGER
        )
        assert prior.data_type is DataType.INTEGER
