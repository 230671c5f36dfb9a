# ABOUTME: Tests the BKT recall likelihood and the Monte Carlo new-skill marginal.
# ABOUTME: Checks hand-computed forward passes, log-space stability, and estimator consistency.

import numpy as np
import pytest
from scipy.special import betaln

from src.skill_discovery.observations import ObservationStore
from src.skill_discovery.partition import SkillCluster
from src.skill_discovery.recall_model import (
    BktRecallModel,
    ClusterLatents,
    RecallPriors,
    estimate_cluster_log_marginal,
    estimate_new_cluster_marginal,
    forward_log_likelihood,
    reflect_into_interval,
)


def _single_student_store(items, recalls, num_items):
    return ObservationStore([recalls], [items], num_students=1, num_items=num_items)


def test_forward_pass_matches_hand_computation():
    grid = np.array([[1, 0]], dtype=np.int8)
    result = forward_log_likelihood(grid, np.array([0.2]), np.array([0.1]), np.array([0.1]), beta=0.5)

    # step 1: p(correct) = 0.5 * 0.9 + 0.5 * 0.1 = 0.5, posterior 0.9, then learn -> 0.92
    # step 2: p(correct) = 0.92 * 0.9 + 0.08 * 0.1 = 0.836
    expected = np.log(0.5) + np.log(1.0 - 0.836)
    assert result.shape == (1,)
    assert result[0] == pytest.approx(expected)


def test_forward_pass_ignores_padding_and_vectorizes_over_draws():
    grid = np.array([[1, 1], [0, -1]], dtype=np.int8)
    learn = np.array([0.3, 0.0])
    guess = np.array([0.2, 0.25])
    slip = np.array([0.1, 0.4])
    batch = forward_log_likelihood(grid, learn, guess, slip, beta=0.4)
    singles = [forward_log_likelihood(grid, learn[i], guess[i], slip[i], beta=0.4)[0] for i in range(2)]
    np.testing.assert_allclose(batch, singles)


def test_empty_item_set_has_zero_log_likelihood():
    store = _single_student_store([0, 0], [True, False], num_items=2)
    model = BktRecallModel(store)
    latents = ClusterLatents(learn=0.3, guess=0.2, slip=0.1)
    assert model.log_likelihood([], latents, 0.5) == 0.0
    assert model.log_likelihood([1], latents, 0.5) == 0.0


def test_long_sequences_stay_finite():
    items = [0] * 5000
    recalls = [bool(i % 3) for i in range(5000)]
    model = BktRecallModel(_single_student_store(items, recalls, num_items=1))
    value = model.log_likelihood([0], ClusterLatents(learn=0.01, guess=0.2, slip=0.2), beta=0.5)
    assert np.isfinite(value)
    assert value < -1000


def test_extreme_latents_are_clipped_not_infinite():
    model = BktRecallModel(_single_student_store([0, 0], [False, True], num_items=1))
    value = model.log_likelihood([0], ClusterLatents(learn=1.0, guess=0.0, slip=0.0), beta=1.0)
    assert np.isfinite(value)


def test_prior_draws_respect_bounds():
    model = BktRecallModel(_single_student_store([0], [True], 1), RecallPriors(guess_max=0.3, slip_max=0.2))
    draws = model.sample_prior(np.random.default_rng(0), 1000)
    assert draws.shape == (1000, 3)
    assert (draws >= 0).all()
    assert draws[:, 0].max() <= 1.0
    assert draws[:, 1].max() <= 0.3
    assert draws[:, 2].max() <= 0.2


def test_monte_carlo_marginal_is_consistent_with_closed_form():
    # With beta = 1 every trial is correct with probability 1 - slip, and slip ~ U(0, 1),
    # so the marginal of c correct and f failed trials is the Beta function B(f + 1, c + 1).
    store = _single_student_store([0, 0, 0, 0], [True, True, True, False], num_items=1)
    model = BktRecallModel(store, RecallPriors(guess_max=1.0, slip_max=1.0))
    exact = np.exp(betaln(2, 4))

    def estimates(num_subsamples, repeats, seed):
        rng = np.random.default_rng(seed)
        return np.array(
            [np.exp(estimate_new_cluster_marginal(model, [0], 1.0, num_subsamples, rng).log_marginal) for _ in range(repeats)]
        )

    coarse = estimates(20, 400, seed=1)
    fine = estimates(500, 400, seed=2)

    assert fine.mean() == pytest.approx(exact, rel=0.05)
    assert coarse.mean() == pytest.approx(exact, rel=0.15)
    assert fine.var() < coarse.var() / 5


@pytest.mark.parametrize("center_slip", [0.1, 0.9])
def test_cluster_marginal_is_unbiased_wherever_latents_sit(center_slip):
    # beta = 1 and slip ~ U(0, 1): 180 correct and 20 failed trials integrate to B(21, 181)
    store = _single_student_store([0] * 200, [True] * 180 + [False] * 20, num_items=1)
    model = BktRecallModel(store, RecallPriors(guess_max=1.0, slip_max=1.0))
    latents = ClusterLatents(learn=0.5, guess=0.5, slip=center_slip)
    unit_draws = np.random.default_rng(12).uniform(size=(20000, 3))

    estimate = estimate_cluster_log_marginal(model, [0], latents, 1.0, unit_draws)
    assert estimate == pytest.approx(betaln(21, 181), abs=0.15)


def test_cluster_marginal_is_fixed_by_its_draws():
    store = _single_student_store([0, 1, 0, 1], [True, False, True, True], num_items=2)
    model = BktRecallModel(store)
    latents = ClusterLatents(learn=0.2, guess=0.3, slip=0.1)
    unit_draws = np.random.default_rng(4).uniform(size=(100, 3))

    first = estimate_cluster_log_marginal(model, [0, 1], latents, 0.5, unit_draws)
    second = estimate_cluster_log_marginal(model, [0, 1], latents, 0.5, unit_draws.copy())
    assert first == second
    assert np.isfinite(first)
    assert estimate_cluster_log_marginal(model, [], latents, 0.5, unit_draws) == 0.0
    with pytest.raises(ValueError):
        estimate_cluster_log_marginal(model, [0], latents, 0.5, unit_draws[:1])


def test_marginal_keeps_draws_for_seeding():
    model = BktRecallModel(_single_student_store([0, 0], [True, False], 1))
    estimate = estimate_new_cluster_marginal(model, [0], 0.5, 50, np.random.default_rng(3))
    assert estimate.draws.shape == (50, 3)
    assert estimate.log_likelihoods.shape == (50,)
    assert np.isfinite(estimate.log_marginal)


def test_marginal_requires_positive_subsamples():
    model = BktRecallModel(_single_student_store([0], [True], 1))
    with pytest.raises(ValueError):
        estimate_new_cluster_marginal(model, [0], 0.5, 0, np.random.default_rng(0))


def test_resample_latents_stays_in_support_and_refreshes_cache():
    store = _single_student_store([0, 1, 0, 1, 0], [True, True, False, True, True], num_items=2)
    model = BktRecallModel(store, RecallPriors(guess_max=0.4, slip_max=0.3, latent_step=0.5))
    cluster = SkillCluster(cluster_id=0, latents=ClusterLatents(0.5, 0.2, 0.1), members={0, 1})
    rng = np.random.default_rng(7)
    for _ in range(50):
        model.resample_cluster_latents(cluster, 0.5, rng)
        latents = cluster.latents
        assert 0.0 <= latents.learn <= 1.0
        assert 0.0 <= latents.guess <= 0.4
        assert 0.0 <= latents.slip <= 0.3
        assert cluster.log_likelihood == pytest.approx(model.log_likelihood(cluster.members, latents, 0.5))


def test_reflect_into_interval():
    assert reflect_into_interval(0.3, 0.0, 1.0) == pytest.approx(0.3)
    assert reflect_into_interval(-0.2, 0.0, 1.0) == pytest.approx(0.2)
    assert reflect_into_interval(1.3, 0.0, 1.0) == pytest.approx(0.7)
    assert reflect_into_interval(0.6, 0.0, 0.5) == pytest.approx(0.4)


def test_recall_priors_validation():
    with pytest.raises(ValueError):
        RecallPriors(guess_max=0.0)
    with pytest.raises(ValueError):
        RecallPriors(slip_max=1.5)
    with pytest.raises(ValueError):
        RecallPriors(latent_step=0.0)
