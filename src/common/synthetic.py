# ABOUTME: Generates synthetic recall datasets with a known item-to-skill partition.
# ABOUTME: Used by demos and tests to check that skill discovery recovers the generating skills.

from __future__ import annotations

from typing import List, Sequence

import numpy as np

from .schemas import RecallDataset


def generate_synthetic_recall(
    skill_success_rates: Sequence[float],
    items_per_skill: int,
    num_students: int,
    trials_per_item: int = 1,
    seed: int = 0,
) -> RecallDataset:
    """
    Simulate students answering every item ``trials_per_item`` times in random order.

    Items are numbered skill by skill: items 0..items_per_skill-1 belong to
    skill 0, the next block to skill 1, and so on. Each answer is correct with
    its skill's success rate, independently of the student's history.
    """

    if items_per_skill <= 0 or num_students <= 0 or trials_per_item <= 0:
        raise ValueError("items_per_skill, num_students and trials_per_item must be positive")
    rates = np.asarray(skill_success_rates, dtype=float)
    if rates.size == 0 or ((rates < 0) | (rates > 1)).any():
        raise ValueError(f"skill_success_rates must be probabilities, got {list(skill_success_rates)}")

    rng = np.random.default_rng(seed)
    num_items = rates.size * items_per_skill
    provided_skills = [item // items_per_skill for item in range(num_items)]
    item_rates = rates[provided_skills]

    recall_sequences: List[List[bool]] = []
    item_sequences: List[List[int]] = []
    for _ in range(num_students):
        order = rng.permutation(np.repeat(np.arange(num_items), trials_per_item))
        outcomes = rng.uniform(size=order.size) < item_rates[order]
        item_sequences.append([int(item) for item in order])
        recall_sequences.append([bool(outcome) for outcome in outcomes])

    return RecallDataset(
        recall_sequences=recall_sequences,
        item_sequences=item_sequences,
        provided_skills=provided_skills,
        num_students=num_students,
        num_items=num_items,
        num_skills=int(rates.size),
    )
