# ABOUTME: Tracks the item-to-skill partition mutated by the CRP sweep.
# ABOUTME: Stores clusters in an id-keyed arena with a free-list so destroyed slots get reused.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set

from .recall_model import ClusterLatents


class PartitionInvariantError(AssertionError):
    """Raised when the partition no longer covers every item exactly once."""


@dataclass
class SkillCluster:
    """One skill: its member items, BKT latents and cached log-likelihood."""

    cluster_id: int
    latents: ClusterLatents
    members: Set[int] = field(default_factory=set)
    log_likelihood: Optional[float] = None

    @property
    def size(self) -> int:
        return len(self.members)


class PartitionState:
    """
    Item→cluster assignment with incremental size bookkeeping.

    Items only ever hold cluster ids, never cluster objects, so destroying a
    cluster mid-sweep cannot leave a dangling reference. An item that has been
    removed and not yet placed is an orphan (``current_cluster_of`` returns
    None); ``check_invariants`` fails while orphans exist.
    """

    def __init__(self, num_items: int) -> None:
        self.num_items = int(num_items)
        self._slots: List[Optional[SkillCluster]] = []
        self._free_ids: List[int] = []
        self._assignment: List[Optional[int]] = [None] * self.num_items
        self._active: Set[int] = set()

    def create_cluster(self, latents: ClusterLatents) -> int:
        """Open an empty cluster, reusing the lowest freed slot id when one exists."""

        if self._free_ids:
            cluster_id = min(self._free_ids)
            self._free_ids.remove(cluster_id)
            self._slots[cluster_id] = SkillCluster(cluster_id=cluster_id, latents=latents)
        else:
            cluster_id = len(self._slots)
            self._slots.append(SkillCluster(cluster_id=cluster_id, latents=latents))
        self._active.add(cluster_id)
        return cluster_id

    def _destroy_cluster(self, cluster_id: int) -> None:
        self._slots[cluster_id] = None
        self._active.discard(cluster_id)
        self._free_ids.append(cluster_id)

    def cluster(self, cluster_id: int) -> SkillCluster:
        cluster = self._slots[cluster_id] if 0 <= cluster_id < len(self._slots) else None
        if cluster is None:
            raise KeyError(f"Cluster {cluster_id} does not exist.")
        return cluster

    def clusters(self) -> Iterator[SkillCluster]:
        """Active clusters in ascending id order."""

        for cluster_id in sorted(self._active):
            yield self._slots[cluster_id]

    def cluster_ids(self) -> List[int]:
        return sorted(self._active)

    def current_cluster_of(self, item: int) -> Optional[int]:
        return self._assignment[item]

    def members(self, cluster_id: int) -> Set[int]:
        return set(self.cluster(cluster_id).members)

    def cluster_size(self, cluster_id: int) -> int:
        return self.cluster(cluster_id).size

    def cluster_count(self) -> int:
        return len(self._active)

    def remove_item(self, item: int) -> Optional[int]:
        """
        Detach ``item`` from its cluster, destroying the cluster if it empties.

        Returns the id the item left, or None if it already was an orphan.
        """

        cluster_id = self._assignment[item]
        if cluster_id is None:
            return None
        cluster = self._slots[cluster_id]
        cluster.members.discard(item)
        cluster.log_likelihood = None
        self._assignment[item] = None
        if not cluster.members:
            self._destroy_cluster(cluster_id)
        return cluster_id

    def move_item(self, item: int, target: Optional[int], latents: Optional[ClusterLatents] = None) -> int:
        """
        Place ``item`` into cluster ``target``, or into a new cluster when target is None.

        A new cluster requires ``latents``. Returns the id the item ended up in.
        """

        if target is not None and target == self._assignment[item]:
            return target
        self.remove_item(item)
        if target is None:
            if latents is None:
                raise ValueError("A new cluster needs latents.")
            target = self.create_cluster(latents)
        cluster = self.cluster(target)
        cluster.members.add(item)
        cluster.log_likelihood = None
        self._assignment[item] = target
        return target

    def set_latents(self, cluster_id: int, latents: ClusterLatents) -> None:
        cluster = self.cluster(cluster_id)
        cluster.latents = latents
        cluster.log_likelihood = None

    def sizes(self) -> Dict[int, int]:
        return {cluster.cluster_id: cluster.size for cluster in self.clusters()}

    def assignment_vector(self) -> List[int]:
        """
        Dense skill index per item, numbered in order of first appearance.

        Two states describing the same partition always produce the same vector.
        """

        relabel: Dict[int, int] = {}
        vector = []
        for item, cluster_id in enumerate(self._assignment):
            if cluster_id is None:
                raise PartitionInvariantError(f"Item {item} has no cluster.")
            if cluster_id not in relabel:
                relabel[cluster_id] = len(relabel)
            vector.append(relabel[cluster_id])
        return vector

    def check_invariants(self) -> None:
        seen: Set[int] = set()
        for cluster in self.clusters():
            if not cluster.members:
                raise PartitionInvariantError(f"Cluster {cluster.cluster_id} is empty.")
            overlap = seen & cluster.members
            if overlap:
                raise PartitionInvariantError(f"Items {sorted(overlap)} belong to several clusters.")
            for item in cluster.members:
                if self._assignment[item] != cluster.cluster_id:
                    raise PartitionInvariantError(f"Item {item} is misfiled in cluster {cluster.cluster_id}.")
            seen |= cluster.members
        missing = set(range(self.num_items)) - seen
        if missing:
            raise PartitionInvariantError(f"Items {sorted(missing)} have no cluster.")

    @classmethod
    def single_cluster(cls, num_items: int, latents: ClusterLatents) -> "PartitionState":
        partition = cls(num_items)
        if num_items:
            cluster_id = partition.create_cluster(latents)
            for item in range(num_items):
                partition.move_item(item, cluster_id)
        return partition
