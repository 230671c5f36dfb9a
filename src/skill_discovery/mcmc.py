# ABOUTME: Runs the MCMC loop that discovers skills and collects posterior item-to-skill samples.
# ABOUTME: Applies burn-in, tracks the MAP assignment, and exposes results once the run is done.

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Tuple

import numpy as np

from .crp import CrpSampler, SweepStats, crp_log_prior, initial_partition
from .hyperparameters import AlphaPrior, Fixed, Hyperparameter, HyperparameterSampler, fixed_or_inferred
from .observations import ObservationStore
from .partition import PartitionState
from .recall_model import BktRecallModel, RecallPriors, estimate_cluster_log_marginal

INIT_STRATEGIES = ("single", "singletons")


@dataclass(frozen=True)
class SamplerConfig:
    """Run configuration for the skill sampler, validated on construction."""

    num_iterations: int = 200
    burn: int = 100
    num_subsamples: int = 2000
    fix_alpha_prime: Optional[float] = None
    fix_beta: Optional[float] = None
    initial_alpha_prime: float = 1.0
    initial_beta: float = 0.5  # arbitrary starting value below 1
    shuffle_items: bool = False
    init: str = "single"
    beta_step: float = 0.05
    alpha_prior: AlphaPrior = field(default_factory=AlphaPrior)
    recall_priors: RecallPriors = field(default_factory=RecallPriors)

    def __post_init__(self) -> None:
        if self.num_iterations <= 0:
            raise ValueError(f"num_iterations must be positive, got {self.num_iterations}")
        if self.burn < 0:
            raise ValueError(f"burn must be non-negative, got {self.burn}")
        if self.num_iterations <= self.burn:
            raise ValueError(f"num_iterations ({self.num_iterations}) must exceed burn ({self.burn})")
        if self.num_subsamples <= 0:
            raise ValueError(f"num_subsamples must be positive, got {self.num_subsamples}")
        if self.fix_alpha_prime is not None and self.fix_alpha_prime < 0:
            raise ValueError(f"fixed alpha' must be >= 0, got {self.fix_alpha_prime}")
        if self.fix_beta is not None and not 0.0 <= self.fix_beta <= 1.0:
            raise ValueError(f"fixed beta must lie in [0, 1], got {self.fix_beta}")
        if self.initial_alpha_prime <= 0:
            raise ValueError(f"initial alpha' must be positive, got {self.initial_alpha_prime}")
        if not 0.0 <= self.initial_beta <= 1.0:
            raise ValueError(f"initial beta must lie in [0, 1], got {self.initial_beta}")
        if self.init not in INIT_STRATEGIES:
            raise ValueError(f"Unsupported init strategy '{self.init}'. Expected one of: {', '.join(INIT_STRATEGIES)}.")

    @property
    def num_samples(self) -> int:
        return self.num_iterations - self.burn


class RunPhase(str, Enum):
    INITIALIZING = "initializing"
    BURNING_IN = "burning_in"
    COLLECTING = "collecting"
    DONE = "done"


@dataclass(frozen=True)
class PosteriorSample:
    """Skill assignment vector captured after burn-in, with the state it came from."""

    iteration: int
    assignments: Tuple[int, ...]
    alpha_prime: float
    beta: float
    log_joint: float

    @property
    def num_skills(self) -> int:
        return len(set(self.assignments))


@dataclass(frozen=True)
class MapEstimate:
    """Highest joint log-probability assignment seen among collected iterations."""

    iteration: int
    assignments: Tuple[int, ...]
    log_joint: float


@dataclass(frozen=True)
class IterationStats:
    """Per-iteration progress record handed to the optional callback."""

    iteration: int
    phase: RunPhase
    num_clusters: int
    alpha_prime: float
    beta: float
    sweep: SweepStats
    log_joint: Optional[float] = None


def joint_log_probability(
    partition: PartitionState,
    model: BktRecallModel,
    alpha_prime: float,
    beta: float,
    unit_draws: np.ndarray,
) -> float:
    """
    Collapsed joint: CRP log prior plus each cluster's log marginal likelihood.

    Cluster latents are integrated out, so a partition gains nothing from extra
    clusters beyond what their data supports. The current latents only steer
    where the importance draws land.
    """

    clusters = list(partition.clusters())
    log_marginal = sum(
        estimate_cluster_log_marginal(model, cluster.members, cluster.latents, beta, unit_draws) for cluster in clusters
    )
    return crp_log_prior([cluster.size for cluster in clusters], alpha_prime) + log_marginal


class SkillDiscoveryModel:
    """
    CRP mixture over item-to-skill assignments with BKT recall per skill.

    The generator is owned by the model for the duration of ``run_mcmc`` and
    every random decision draws from it in a fixed order, so a seeded
    generator reproduces the run exactly.
    """

    def __init__(
        self,
        observations: ObservationStore,
        config: SamplerConfig,
        rng: np.random.Generator,
    ) -> None:
        self.observations = observations
        self.config = config
        self.rng = rng
        self.model = BktRecallModel(observations, config.recall_priors)
        self.crp = CrpSampler(self.model, config.num_subsamples, shuffle_items=config.shuffle_items)
        self.hyperparameters = HyperparameterSampler(self.model, config.alpha_prior, beta_step=config.beta_step)

        self.alpha_prime: Hyperparameter = fixed_or_inferred(config.fix_alpha_prime, config.initial_alpha_prime)
        self.beta: Hyperparameter = fixed_or_inferred(config.fix_beta, config.initial_beta)

        self.phase = RunPhase.INITIALIZING
        self.partition: Optional[PartitionState] = None
        self.samples: List[PosteriorSample] = []
        self.map_estimate: Optional[MapEstimate] = None
        self.map_trace: List[float] = []
        self.score_draws: Optional[np.ndarray] = None

    def run_mcmc(self, on_iteration: Optional[Callable[[IterationStats], None]] = None) -> None:
        config = self.config
        if config.num_iterations <= config.burn:
            raise ValueError(f"num_iterations ({config.num_iterations}) must exceed burn ({config.burn})")
        if self.phase is not RunPhase.INITIALIZING:
            raise RuntimeError("run_mcmc can only be called once per model.")

        self.partition = initial_partition(self.observations.num_items, self.model, self.rng, strategy=config.init)
        self.partition.check_invariants()
        # every MAP candidate is scored on these draws
        self.score_draws = self.rng.uniform(size=(max(2, config.num_subsamples), 3))

        for iteration in range(config.num_iterations):
            self.phase = RunPhase.BURNING_IN if iteration < config.burn else RunPhase.COLLECTING
            sweep = self._step()

            log_joint = None
            if self.phase is RunPhase.COLLECTING:
                log_joint = self._collect(iteration)

            if on_iteration is not None:
                on_iteration(
                    IterationStats(
                        iteration=iteration,
                        phase=self.phase,
                        num_clusters=self.partition.cluster_count(),
                        alpha_prime=self.alpha_prime.value,
                        beta=self.beta.value,
                        sweep=sweep,
                        log_joint=log_joint,
                    )
                )

        self.phase = RunPhase.DONE

    def _step(self) -> SweepStats:
        partition = self.partition
        sweep = self.crp.sweep(partition, self.alpha_prime.value, self.beta.value, self.rng)

        for cluster in partition.clusters():
            self.model.resample_cluster_latents(cluster, self.beta.value, self.rng)

        self.alpha_prime = self.hyperparameters.update_alpha(
            self.alpha_prime, partition.cluster_count(), partition.num_items, self.rng
        )
        self.beta = self.hyperparameters.update_beta(self.beta, partition, self.rng)

        partition.check_invariants()
        return sweep

    def _collect(self, iteration: int) -> float:
        log_joint = self.joint_log_probability()
        assignments = tuple(self.partition.assignment_vector())
        self.samples.append(
            PosteriorSample(
                iteration=iteration,
                assignments=assignments,
                alpha_prime=self.alpha_prime.value,
                beta=self.beta.value,
                log_joint=log_joint,
            )
        )
        if self.map_estimate is None or log_joint > self.map_estimate.log_joint:
            self.map_estimate = MapEstimate(iteration=iteration, assignments=assignments, log_joint=log_joint)
        self.map_trace.append(self.map_estimate.log_joint)
        return log_joint

    def joint_log_probability(self) -> float:
        if self.partition is None:
            raise RuntimeError("The partition is not initialized; call run_mcmc first.")
        return joint_log_probability(
            self.partition, self.model, self.alpha_prime.value, self.beta.value, self.score_draws
        )

    def get_skill_assignments(self) -> List[List[int]]:
        """All post-burn assignment vectors, ordered by iteration."""

        self._require_done()
        return [list(sample.assignments) for sample in self.samples]

    def get_most_likely_skill_assignments(self) -> List[int]:
        self._require_done()
        return list(self.map_estimate.assignments)

    @property
    def alpha_prime_is_fixed(self) -> bool:
        return isinstance(self.alpha_prime, Fixed)

    @property
    def beta_is_fixed(self) -> bool:
        return isinstance(self.beta, Fixed)

    def _require_done(self) -> None:
        if self.phase is not RunPhase.DONE:
            raise RuntimeError(f"Results are only available after the run completes (phase={self.phase.value}).")
