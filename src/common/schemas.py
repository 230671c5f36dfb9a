# ABOUTME: Defines canonical data structures shared by the loader, simulator, and skill sampler.
# ABOUTME: Centralizes the recall dataset and per-run summary schema definitions.

from dataclasses import dataclass, field
from typing import List, Mapping, Optional

UNLABELED_SKILL = -1


@dataclass(frozen=True)
class RecallEvent:
    """One row of a recall dataset: a student's attempt at an item."""

    student_id: int
    item_id: int
    skill_id: int
    recalled: bool


@dataclass(frozen=True)
class RecallDataset:
    """
    Validated per-student recall sequences.

    ``recall_sequences[s][t]`` is the outcome of student s's t-th trial and
    ``item_sequences[s][t]`` the item it was on. ``provided_skills[i]`` is the
    expert label of item i (``UNLABELED_SKILL`` when none was given); it is
    kept for evaluation only.
    """

    recall_sequences: List[List[bool]]
    item_sequences: List[List[int]]
    provided_skills: List[int]
    num_students: int
    num_items: int
    num_skills: int

    @property
    def num_trials(self) -> int:
        return sum(len(sequence) for sequence in self.recall_sequences)

    def events(self) -> List[RecallEvent]:
        rows = []
        for student, (items, recalls) in enumerate(zip(self.item_sequences, self.recall_sequences)):
            for item, recalled in zip(items, recalls):
                rows.append(RecallEvent(student, item, self.provided_skills[item], bool(recalled)))
        return rows


@dataclass(frozen=True)
class SkillRunSummary:
    """Headline numbers of one skill-discovery run, written next to the assignments."""

    seed: int
    num_iterations: int
    burn: int
    num_samples: int
    map_iteration: int
    map_log_joint: float
    map_num_skills: int
    final_alpha_prime: float
    final_beta: float
    alpha_prime_fixed: bool
    beta_fixed: bool
    evaluation: Mapping[str, float] = field(default_factory=dict)
    datafile: Optional[str] = None
