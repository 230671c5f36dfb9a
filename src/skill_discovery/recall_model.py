# ABOUTME: Scores recall sequences under a per-skill Bayesian Knowledge Tracing model.
# ABOUTME: Provides the Monte Carlo marginal likelihood used when a new skill is proposed.

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Optional

import numpy as np
from scipy.special import logsumexp

from .observations import MISSING_OUTCOME, ObservationStore

if TYPE_CHECKING:
    from .partition import SkillCluster

PROBABILITY_FLOOR = 1e-12
LATENT_NAMES = ("learn", "guess", "slip")


@dataclass(frozen=True)
class RecallPriors:
    """Uniform prior bounds for the per-skill BKT parameters and proposal widths."""

    guess_max: float = 0.5
    slip_max: float = 0.5
    latent_step: float = 0.05

    def __post_init__(self) -> None:
        if not 0.0 < self.guess_max <= 1.0:
            raise ValueError(f"guess_max must lie in (0, 1], got {self.guess_max}")
        if not 0.0 < self.slip_max <= 1.0:
            raise ValueError(f"slip_max must lie in (0, 1], got {self.slip_max}")
        if self.latent_step <= 0:
            raise ValueError(f"latent_step must be positive, got {self.latent_step}")

    @property
    def upper_bounds(self) -> np.ndarray:
        return np.array([1.0, self.guess_max, self.slip_max])


@dataclass(frozen=True)
class ClusterLatents:
    """BKT parameters owned by one skill cluster."""

    learn: float
    guess: float
    slip: float

    def as_array(self) -> np.ndarray:
        return np.array([self.learn, self.guess, self.slip])

    @classmethod
    def from_array(cls, values: np.ndarray) -> "ClusterLatents":
        return cls(learn=float(values[0]), guess=float(values[1]), slip=float(values[2]))


@dataclass(frozen=True)
class MarginalEstimate:
    """Monte Carlo estimate of a new cluster's marginal likelihood and the draws behind it."""

    log_marginal: float
    draws: np.ndarray  # (num_subsamples, 3): learn, guess, slip
    log_likelihoods: np.ndarray  # (num_subsamples,)


def forward_log_likelihood(
    grid: np.ndarray,
    learn: np.ndarray,
    guess: np.ndarray,
    slip: np.ndarray,
    beta: float,
) -> np.ndarray:
    """
    Log-likelihood of an outcome grid under BKT, vectorized over parameter draws.

    Each row of ``grid`` is one student's outcome sequence on the skill; the
    parameter arrays have shape (S,) and the result has shape (S,). The
    likelihood is accumulated as a sum of log predictive probabilities so long
    sequences never underflow.
    """

    learn = np.atleast_1d(np.asarray(learn, dtype=float))[:, None]
    guess = np.atleast_1d(np.asarray(guess, dtype=float))[:, None]
    slip = np.atleast_1d(np.asarray(slip, dtype=float))[:, None]
    total = np.zeros(learn.shape[0])
    if grid.size == 0:
        return total

    known = np.full((learn.shape[0], grid.shape[0]), float(beta))
    for step in range(grid.shape[1]):
        column = grid[:, step]
        observed = column != MISSING_OUTCOME
        correct = column == 1

        p_correct = np.clip(known * (1.0 - slip) + (1.0 - known) * guess, PROBABILITY_FLOOR, 1.0 - PROBABILITY_FLOOR)
        p_observed = np.where(correct, p_correct, 1.0 - p_correct)
        total += np.where(observed, np.log(p_observed), 0.0).sum(axis=1)

        posterior = np.where(
            correct,
            known * (1.0 - slip) / p_correct,
            known * slip / (1.0 - p_correct),
        )
        known = np.where(observed, posterior + (1.0 - posterior) * learn, known)
    return total


class BktRecallModel:
    """
    Recall likelihood for a skill cluster.

    Every cluster runs its own BKT chain per student over the student's trials
    on the cluster's items. ``beta`` is shared by all clusters and is the
    probability that a student already knows a skill before practicing it.
    """

    def __init__(self, observations: ObservationStore, priors: Optional[RecallPriors] = None) -> None:
        self.observations = observations
        self.priors = priors or RecallPriors()

    def log_likelihood(self, items: Iterable[int], latents: ClusterLatents, beta: float) -> float:
        grid = self.observations.outcome_grid(items)
        if grid.size == 0:
            return 0.0
        result = forward_log_likelihood(grid, latents.learn, latents.guess, latents.slip, beta)
        return float(result[0])

    def log_likelihood_batch(self, items: Iterable[int], draws: np.ndarray, beta: float) -> np.ndarray:
        grid = self.observations.outcome_grid(items)
        return forward_log_likelihood(grid, draws[:, 0], draws[:, 1], draws[:, 2], beta)

    def sample_prior(self, rng: np.random.Generator, size: int) -> np.ndarray:
        """Draw ``size`` latent vectors (learn, guess, slip) from the uniform prior."""

        return rng.uniform(0.0, 1.0, size=(size, 3)) * self.priors.upper_bounds

    def sample_prior_latents(self, rng: np.random.Generator) -> ClusterLatents:
        return ClusterLatents.from_array(self.sample_prior(rng, 1)[0])

    def cluster_log_likelihood(self, cluster: "SkillCluster", beta: float) -> float:
        """Cached log-likelihood of a cluster's current members under its latents."""

        if cluster.log_likelihood is None:
            cluster.log_likelihood = self.log_likelihood(cluster.members, cluster.latents, beta)
        return cluster.log_likelihood

    def resample_cluster_latents(self, cluster: "SkillCluster", beta: float, rng: np.random.Generator) -> None:
        """
        Metropolis update of the cluster's latents, one coordinate at a time.

        Proposals are Gaussian steps reflected back into the prior support, so
        they are symmetric and the uniform prior cancels from the ratio.
        """

        current = cluster.latents.as_array()
        current_ll = self.cluster_log_likelihood(cluster, beta)
        bounds = self.priors.upper_bounds
        for index in range(len(LATENT_NAMES)):
            proposal = current.copy()
            proposal[index] = reflect_into_interval(
                current[index] + rng.normal(0.0, self.priors.latent_step), 0.0, bounds[index]
            )
            proposal_ll = self.log_likelihood(cluster.members, ClusterLatents.from_array(proposal), beta)
            log_u = np.log(rng.uniform())
            if np.isfinite(proposal_ll) and log_u < proposal_ll - current_ll:
                current, current_ll = proposal, proposal_ll
        cluster.latents = ClusterLatents.from_array(current)
        cluster.log_likelihood = current_ll


def estimate_new_cluster_marginal(
    model: BktRecallModel,
    items: Iterable[int],
    beta: float,
    num_subsamples: int,
    rng: np.random.Generator,
) -> MarginalEstimate:
    """
    Monte Carlo estimate of log ∫ L(items | θ, β) p(θ) dθ.

    Draws ``num_subsamples`` latent vectors from the prior and averages their
    likelihoods in the probability domain through log-sum-exp.
    """

    if num_subsamples <= 0:
        raise ValueError(f"num_subsamples must be positive, got {num_subsamples}")
    draws = model.sample_prior(rng, num_subsamples)
    log_likelihoods = model.log_likelihood_batch(items, draws, beta)
    log_marginal = float(logsumexp(log_likelihoods) - np.log(num_subsamples))
    return MarginalEstimate(log_marginal=log_marginal, draws=draws, log_likelihoods=log_likelihoods)


def estimate_cluster_log_marginal(
    model: BktRecallModel,
    items: Iterable[int],
    latents: ClusterLatents,
    beta: float,
    unit_draws: np.ndarray,
    local_width: float = 0.05,
) -> float:
    """
    Defensive importance-sampling estimate of log ∫ L(items | θ, β) p(θ) dθ for a live cluster.

    ``unit_draws`` is an (S, 3) array of uniforms on [0, 1). The first half is
    mapped onto the prior box, the rest onto a box of half-width
    ``local_width`` (relative to each prior bound) around ``latents``. Every
    draw is weighted by p(θ) / q(θ) with q the mixture of the two boxes, so the
    estimate is unbiased and its draws concentrate where the likelihood is.
    Reusing the same ``unit_draws`` makes the estimate a deterministic
    function of the cluster state.
    """

    unit_draws = np.asarray(unit_draws, dtype=float)
    num_draws = unit_draws.shape[0]
    if num_draws < 2:
        raise ValueError(f"At least two draws are needed, got {num_draws}")
    grid = model.observations.outcome_grid(items)
    if grid.size == 0:
        return 0.0

    bounds = model.priors.upper_bounds
    center = latents.as_array()
    lower = np.maximum(center - local_width * bounds, 0.0)
    upper = np.minimum(center + local_width * bounds, bounds)

    num_prior = num_draws // 2
    draws = np.vstack([unit_draws[:num_prior] * bounds, lower + unit_draws[num_prior:] * (upper - lower)])
    log_likelihoods = forward_log_likelihood(grid, draws[:, 0], draws[:, 1], draws[:, 2], beta)

    log_prior = -np.sum(np.log(bounds))
    inside = np.all((draws >= lower) & (draws <= upper), axis=1)
    log_local = np.where(inside, -np.sum(np.log(upper - lower)), -np.inf)
    prior_share = num_prior / num_draws
    log_proposal = np.logaddexp(np.log(prior_share) + log_prior, np.log(1.0 - prior_share) + log_local)

    return float(logsumexp(log_likelihoods + log_prior - log_proposal) - np.log(num_draws))


def reflect_into_interval(value: float, lower: float, upper: float) -> float:
    """Fold ``value`` back into [lower, upper] by reflecting at the boundaries."""

    width = upper - lower
    offset = (value - lower) % (2.0 * width)
    if offset > width:
        offset = 2.0 * width - offset
    return float(lower + offset)
