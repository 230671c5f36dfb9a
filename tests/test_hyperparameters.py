# ABOUTME: Tests resampling of the CRP concentration and the shared BKT prior knowledge.
# ABOUTME: Ensures fixed values are untouched and inferred values stay inside their supports.

import numpy as np
import pytest

from src.common.synthetic import generate_synthetic_recall
from src.skill_discovery.hyperparameters import (
    AlphaPrior,
    Fixed,
    HyperparameterSampler,
    Inferred,
    fixed_or_inferred,
)
from src.skill_discovery.observations import ObservationStore
from src.skill_discovery.partition import PartitionState
from src.skill_discovery.recall_model import BktRecallModel


@pytest.fixture
def setup():
    dataset = generate_synthetic_recall([0.8, 0.3], items_per_skill=2, num_students=15, seed=9)
    model = BktRecallModel(ObservationStore.from_dataset(dataset))
    rng = np.random.default_rng(5)
    partition = PartitionState.single_cluster(dataset.num_items, model.sample_prior_latents(rng))
    return model, partition, rng


def test_fixed_or_inferred():
    assert fixed_or_inferred(None, 1.5) == Inferred(1.5)
    assert fixed_or_inferred(0.0, 1.5) == Fixed(0.0)


def test_fixed_values_are_returned_unchanged(setup):
    model, partition, rng = setup
    sampler = HyperparameterSampler(model)
    alpha = Fixed(0.0)
    beta = Fixed(0.25)
    assert sampler.update_alpha(alpha, 1, 4, rng) is alpha
    assert sampler.update_beta(beta, partition, rng) is beta
    assert sampler.beta_proposals == 0


def test_alpha_stays_positive_and_tracks_cluster_count(setup):
    model, _, rng = setup
    sampler = HyperparameterSampler(model, AlphaPrior(shape=1.0, rate=1.0))

    def chain(num_clusters):
        alpha = Inferred(1.0)
        values = []
        for _ in range(2000):
            alpha = sampler.update_alpha(alpha, num_clusters, 50, rng)
            assert alpha.value > 0
            values.append(alpha.value)
        return np.mean(values[200:])

    assert chain(25) > chain(2)


def test_beta_stays_in_unit_interval_and_cache_matches(setup):
    model, partition, rng = setup
    sampler = HyperparameterSampler(model, beta_step=0.3)
    beta = Inferred(0.5)
    for _ in range(100):
        beta = sampler.update_beta(beta, partition, rng)
        assert isinstance(beta, Inferred)
        assert 0.0 <= beta.value <= 1.0
        for cluster in partition.clusters():
            assert cluster.log_likelihood == pytest.approx(
                model.log_likelihood(cluster.members, cluster.latents, beta.value)
            )
    assert sampler.beta_proposals == 100
    assert 0.0 < sampler.beta_acceptance_rate <= 1.0


def test_invalid_settings():
    with pytest.raises(ValueError):
        AlphaPrior(shape=0.0)
    with pytest.raises(ValueError):
        HyperparameterSampler(model=None, beta_step=0.0)
