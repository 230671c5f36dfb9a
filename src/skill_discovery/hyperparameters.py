# ABOUTME: Declares fixed/inferred hyperparameter variants and their resampling steps.
# ABOUTME: Updates the CRP concentration by auxiliary-variable Gibbs and the shared BKT prior by Metropolis.

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

import numpy as np

from .partition import PartitionState
from .recall_model import BktRecallModel, reflect_into_interval


@dataclass(frozen=True)
class Fixed:
    """A hyperparameter supplied by configuration; never resampled."""

    value: float


@dataclass(frozen=True)
class Inferred:
    """A hyperparameter resampled every iteration, holding its current value."""

    value: float


Hyperparameter = Union[Fixed, Inferred]


@dataclass(frozen=True)
class AlphaPrior:
    """Gamma(shape, rate) prior on the CRP concentration α'."""

    shape: float = 1.0
    rate: float = 1.0

    def __post_init__(self) -> None:
        if self.shape <= 0 or self.rate <= 0:
            raise ValueError(f"Gamma prior needs positive shape and rate, got ({self.shape}, {self.rate})")


def fixed_or_inferred(fixed_value: float | None, initial_value: float) -> Hyperparameter:
    """Config helper: a supplied value is fixed, otherwise the parameter starts at ``initial_value``."""

    if fixed_value is None:
        return Inferred(float(initial_value))
    return Fixed(float(fixed_value))


class HyperparameterSampler:
    """Resamples α' and β conditional on the current partition."""

    def __init__(
        self,
        model: BktRecallModel,
        alpha_prior: AlphaPrior | None = None,
        beta_step: float = 0.05,
    ) -> None:
        if beta_step <= 0:
            raise ValueError(f"beta_step must be positive, got {beta_step}")
        self.model = model
        self.alpha_prior = alpha_prior or AlphaPrior()
        self.beta_step = beta_step
        self.beta_proposals = 0
        self.beta_accepted = 0

    def update_alpha(
        self,
        alpha_prime: Hyperparameter,
        num_clusters: int,
        num_items: int,
        rng: np.random.Generator,
    ) -> Hyperparameter:
        """
        Escobar & West (1995) auxiliary-variable update for the concentration.

        Draw η ~ Beta(α'+1, n), then α' from a two-component Gamma mixture whose
        weights depend on the cluster count K.
        """

        if isinstance(alpha_prime, Fixed) or num_items <= 0:
            return alpha_prime

        shape, rate = self.alpha_prior.shape, self.alpha_prior.rate
        eta = rng.beta(alpha_prime.value + 1.0, num_items)
        posterior_rate = rate - np.log(max(eta, np.finfo(float).tiny))
        odds = (shape + num_clusters - 1.0) / (num_items * posterior_rate)
        mixture = odds / (1.0 + odds)
        posterior_shape = shape + num_clusters if rng.uniform() < mixture else shape + num_clusters - 1.0
        return Inferred(float(rng.gamma(posterior_shape, 1.0 / posterior_rate)))

    def update_beta(
        self,
        beta: Hyperparameter,
        partition: PartitionState,
        rng: np.random.Generator,
    ) -> Hyperparameter:
        """Random-walk Metropolis step on β over the summed cluster log-likelihoods."""

        if isinstance(beta, Fixed):
            return beta

        clusters = list(partition.clusters())
        current_ll = sum(self.model.cluster_log_likelihood(cluster, beta.value) for cluster in clusters)
        proposal = reflect_into_interval(beta.value + rng.normal(0.0, self.beta_step), 0.0, 1.0)
        proposal_lls = [self.model.log_likelihood(cluster.members, cluster.latents, proposal) for cluster in clusters]
        proposal_ll = sum(proposal_lls)

        self.beta_proposals += 1
        log_u = np.log(rng.uniform())
        if not np.isfinite(proposal_ll) or log_u >= proposal_ll - current_ll:
            return beta

        self.beta_accepted += 1
        for cluster, value in zip(clusters, proposal_lls):
            cluster.log_likelihood = value
        return Inferred(proposal)

    @property
    def beta_acceptance_rate(self) -> float:
        if self.beta_proposals == 0:
            return 0.0
        return self.beta_accepted / self.beta_proposals
