# ABOUTME: Implements the CRP Gibbs sweep that reassigns every item to a skill cluster.
# ABOUTME: Weighs existing clusters by size and likelihood gain, new clusters by a Monte Carlo marginal.

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np
from scipy.special import gammaln, logsumexp

from .partition import PartitionState
from .recall_model import BktRecallModel, ClusterLatents, estimate_new_cluster_marginal


def crp_log_prior(cluster_sizes: Sequence[int], alpha_prime: float) -> float:
    """
    Log-probability of a partition with the given cluster sizes under a CRP.

    Depends only on the multiset of sizes, so relabelling or reordering items
    never changes it. With ``alpha_prime == 0`` only the single-cluster
    partition has positive probability.
    """

    sizes = [int(size) for size in cluster_sizes if size > 0]
    total = sum(sizes)
    if not sizes:
        return 0.0
    if alpha_prime == 0:
        return 0.0 if len(sizes) == 1 else float("-inf")
    return float(
        len(sizes) * np.log(alpha_prime)
        + np.sum(gammaln(sizes))
        + gammaln(alpha_prime)
        - gammaln(alpha_prime + total)
    )


def draw_categorical(log_weights: np.ndarray, rng: np.random.Generator) -> int:
    """Draw an index with probability proportional to exp(log_weights) using one uniform."""

    normalized = np.exp(log_weights - logsumexp(log_weights))
    cumulative = np.cumsum(normalized)
    u = rng.uniform() * cumulative[-1]
    index = int(np.searchsorted(cumulative, u, side="right"))
    return min(index, len(log_weights) - 1)


@dataclass(frozen=True)
class SweepStats:
    """Bookkeeping for one CRP sweep."""

    clusters_created: int
    clusters_destroyed: int
    items_moved: int


class CrpSampler:
    """
    Collapsed Gibbs sweep over item assignments.

    For item i with cluster k of size n_k (i excluded), the option weights are

        existing k: log n_k + LL(k ∪ {i}) - LL(k)
        new:        log α' + log mean_s L(i | θ_s),  θ_s ~ prior

    Options with non-finite weight are treated as impossible.
    """

    def __init__(
        self,
        model: BktRecallModel,
        num_subsamples: int,
        shuffle_items: bool = False,
    ) -> None:
        if num_subsamples <= 0:
            raise ValueError(f"num_subsamples must be positive, got {num_subsamples}")
        self.model = model
        self.num_subsamples = num_subsamples
        self.shuffle_items = shuffle_items

    def sweep_order(self, num_items: int, rng: np.random.Generator) -> List[int]:
        if self.shuffle_items:
            return [int(item) for item in rng.permutation(num_items)]
        return list(range(num_items))

    def sweep(
        self,
        partition: PartitionState,
        alpha_prime: float,
        beta: float,
        rng: np.random.Generator,
    ) -> SweepStats:
        created = destroyed = moved = 0
        for item in self.sweep_order(partition.num_items, rng):
            before = partition.current_cluster_of(item)
            left_size = partition.cluster_size(before) if before is not None else 0
            after, opened = self.resample_item(partition, item, alpha_prime, beta, rng)
            destroyed += int(left_size == 1)
            created += int(opened)
            moved += int(after != before)
        return SweepStats(clusters_created=created, clusters_destroyed=destroyed, items_moved=moved)

    def resample_item(
        self,
        partition: PartitionState,
        item: int,
        alpha_prime: float,
        beta: float,
        rng: np.random.Generator,
    ) -> Tuple[int, bool]:
        """Orphan ``item``, score every option and move it. Returns (cluster id, opened new)."""

        partition.remove_item(item)
        candidates = partition.cluster_ids()

        log_weights = np.empty(len(candidates) + 1)
        merged_log_likelihoods = []
        prior_weights = np.empty(len(candidates) + 1)
        for index, cluster_id in enumerate(candidates):
            cluster = partition.cluster(cluster_id)
            without = self.model.cluster_log_likelihood(cluster, beta)
            merged = cluster.members | {item}
            with_item = self.model.log_likelihood(merged, cluster.latents, beta)
            merged_log_likelihoods.append(with_item)
            prior_weights[index] = np.log(cluster.size)
            log_weights[index] = prior_weights[index] + with_item - without

        marginal = estimate_new_cluster_marginal(self.model, [item], beta, self.num_subsamples, rng)
        prior_weights[-1] = np.log(alpha_prime) if alpha_prime > 0 else -np.inf
        log_weights[-1] = prior_weights[-1] + marginal.log_marginal

        choice = self._choose(log_weights, prior_weights, rng)
        if choice == len(candidates):
            seed = self._seed_index(marginal.log_likelihoods, rng)
            cluster_id = partition.move_item(item, None, latents=ClusterLatents.from_array(marginal.draws[seed]))
            partition.cluster(cluster_id).log_likelihood = float(marginal.log_likelihoods[seed])
            return cluster_id, True
        cluster_id = partition.move_item(item, candidates[choice])
        partition.cluster(cluster_id).log_likelihood = merged_log_likelihoods[choice]
        return cluster_id, False

    @staticmethod
    def _choose(log_weights: np.ndarray, prior_weights: np.ndarray, rng: np.random.Generator) -> int:
        log_weights = np.where(np.isfinite(log_weights), log_weights, -np.inf)
        if np.isfinite(log_weights).any():
            return draw_categorical(log_weights, rng)
        prior_weights = np.where(np.isfinite(prior_weights), prior_weights, -np.inf)
        if np.isfinite(prior_weights).any():
            return draw_categorical(prior_weights, rng)
        # No surviving cluster and α' = 0: the item has to found its own.
        return len(log_weights) - 1

    @staticmethod
    def _seed_index(log_likelihoods: np.ndarray, rng: np.random.Generator) -> int:
        """Importance-resample one of the Monte Carlo draws in proportion to its likelihood."""

        weights = np.where(np.isfinite(log_likelihoods), log_likelihoods, -np.inf)
        if not np.isfinite(weights).any():
            weights = np.zeros_like(weights)
        return draw_categorical(weights, rng)


def initial_partition(
    num_items: int,
    model: BktRecallModel,
    rng: np.random.Generator,
    strategy: str = "single",
) -> PartitionState:
    """Build the starting partition: every item in one cluster, or one cluster per item."""

    if strategy == "single":
        return PartitionState.single_cluster(num_items, model.sample_prior_latents(rng))
    if strategy == "singletons":
        partition = PartitionState(num_items)
        for item in range(num_items):
            partition.move_item(item, None, latents=model.sample_prior_latents(rng))
        return partition
    raise ValueError(f"Unsupported init strategy '{strategy}'. Expected 'single' or 'singletons'.")
