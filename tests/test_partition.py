# ABOUTME: Tests the cluster arena that holds the item-to-skill partition.
# ABOUTME: Covers slot reuse, moves between clusters, relabelled assignment vectors, and invariant checks.

import unittest

from src.skill_discovery.partition import PartitionInvariantError, PartitionState
from src.skill_discovery.recall_model import ClusterLatents

LATENTS = ClusterLatents(learn=0.3, guess=0.2, slip=0.1)


class PartitionStateTest(unittest.TestCase):
    def test_single_cluster_holds_every_item(self) -> None:
        partition = PartitionState.single_cluster(4, LATENTS)
        partition.check_invariants()
        self.assertEqual(1, partition.cluster_count())
        self.assertEqual([0, 0, 0, 0], partition.assignment_vector())

    def test_moving_last_member_destroys_cluster(self) -> None:
        partition = PartitionState.single_cluster(3, LATENTS)
        new_id = partition.move_item(2, None, latents=LATENTS)
        self.assertEqual(2, partition.cluster_count())

        partition.move_item(2, 0)
        self.assertEqual(1, partition.cluster_count())
        with self.assertRaises(KeyError):
            partition.cluster(new_id)
        partition.check_invariants()

    def test_freed_ids_are_reused_lowest_first(self) -> None:
        partition = PartitionState(4)
        ids = [partition.move_item(item, None, latents=LATENTS) for item in range(4)]
        self.assertEqual([0, 1, 2, 3], ids)

        partition.move_item(2, 0)
        partition.move_item(1, 0)
        self.assertEqual([0, 3], partition.cluster_ids())

        self.assertEqual(1, partition.move_item(1, None, latents=LATENTS))
        self.assertEqual(2, partition.create_cluster(LATENTS))

    def test_move_into_current_cluster_is_a_no_op(self) -> None:
        partition = PartitionState(2)
        partition.move_item(0, None, latents=LATENTS)
        partition.move_item(1, None, latents=LATENTS)
        self.assertEqual(1, partition.move_item(1, 1))
        self.assertEqual({1}, partition.members(1))
        partition.check_invariants()

    def test_new_cluster_needs_latents(self) -> None:
        partition = PartitionState.single_cluster(2, LATENTS)
        with self.assertRaises(ValueError):
            partition.move_item(0, None)

    def test_orphans_fail_invariants(self) -> None:
        partition = PartitionState.single_cluster(3, LATENTS)
        self.assertEqual(0, partition.remove_item(1))
        self.assertIsNone(partition.current_cluster_of(1))
        self.assertIsNone(partition.remove_item(1))
        with self.assertRaises(PartitionInvariantError):
            partition.check_invariants()
        with self.assertRaises(PartitionInvariantError):
            partition.assignment_vector()

    def test_assignment_vector_is_relabelled_by_first_appearance(self) -> None:
        first = PartitionState(4)
        second = PartitionState(4)
        for partition, groups in ((first, [[0, 2], [1, 3]]), (second, [[1, 3], [0, 2]])):
            for group in groups:
                cluster_id = partition.create_cluster(LATENTS)
                for item in group:
                    partition.move_item(item, cluster_id)
        self.assertEqual([0, 1, 0, 1], first.assignment_vector())
        self.assertEqual(first.assignment_vector(), second.assignment_vector())

    def test_membership_changes_clear_cached_likelihood(self) -> None:
        partition = PartitionState.single_cluster(3, LATENTS)
        cluster = partition.cluster(0)
        cluster.log_likelihood = -4.2
        partition.move_item(2, None, latents=LATENTS)
        self.assertIsNone(cluster.log_likelihood)

        cluster.log_likelihood = -3.0
        partition.set_latents(0, ClusterLatents(0.5, 0.1, 0.1))
        self.assertIsNone(cluster.log_likelihood)

    def test_sizes(self) -> None:
        partition = PartitionState.single_cluster(5, LATENTS)
        partition.move_item(4, None, latents=LATENTS)
        self.assertEqual({0: 4, 1: 1}, partition.sizes())


if __name__ == "__main__":
    unittest.main()
