# ABOUTME: Compares discovered skill assignments against expert-provided skill labels.
# ABOUTME: Computes partition agreement metrics and posterior co-assignment probabilities.

from typing import Iterable, Mapping, Sequence

import numpy as np
from sklearn.metrics import adjusted_rand_score, normalized_mutual_info_score

from .schemas import UNLABELED_SKILL


def evaluate_assignments(
    assignments: Sequence[int],
    provided_skills: Sequence[int],
    metrics: Iterable[str] = ("adjusted_rand", "normalized_mutual_info", "num_skills"),
) -> Mapping[str, float]:
    """
    Score one assignment vector against the provided labels.

    Items without a provided label are left out. Supported metrics:
    'adjusted_rand', 'normalized_mutual_info', 'num_skills' (discovered count)
    and 'num_provided_skills'.
    """

    if len(assignments) != len(provided_skills):
        raise ValueError(f"Assignment length {len(assignments)} does not match {len(provided_skills)} provided labels.")

    predicted = np.asarray(assignments)
    reference = np.asarray(provided_skills)
    labeled = reference != UNLABELED_SKILL

    results = {}
    for metric in metrics:
        if metric == "adjusted_rand":
            results[metric] = float(adjusted_rand_score(reference[labeled], predicted[labeled])) if labeled.any() else np.nan
        elif metric == "normalized_mutual_info":
            results[metric] = (
                float(normalized_mutual_info_score(reference[labeled], predicted[labeled])) if labeled.any() else np.nan
            )
        elif metric == "num_skills":
            results[metric] = float(len(np.unique(predicted)))
        elif metric == "num_provided_skills":
            results[metric] = float(len(np.unique(reference[labeled])))
        else:
            raise ValueError(f"Unsupported metric '{metric}'.")
    return results


def coassignment_matrix(samples: Sequence[Sequence[int]]) -> np.ndarray:
    """
    Fraction of samples in which each pair of items shares a skill.

    Invariant to how skills are numbered within each sample.
    """

    if len(samples) == 0:
        raise ValueError("At least one sample is required.")
    stacked = np.asarray(samples)
    same = stacked[:, :, None] == stacked[:, None, :]
    return same.mean(axis=0)


def same_partition(first: Sequence[int], second: Sequence[int]) -> bool:
    """True when two assignment vectors group items identically, up to relabelling."""

    if len(first) != len(second):
        return False
    forward, backward = {}, {}
    for a, b in zip(first, second):
        if forward.setdefault(a, b) != b or backward.setdefault(b, a) != a:
            return False
    return True
