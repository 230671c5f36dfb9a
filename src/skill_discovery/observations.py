# ABOUTME: Holds the immutable per-student trial sequences consumed by the skill sampler.
# ABOUTME: Extracts per-cluster outcome grids ordered by each student's experience with a skill.

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Sequence

import numpy as np

from src.common.schemas import RecallDataset

MISSING_OUTCOME = -1


@dataclass(frozen=True)
class TrialRef:
    """Reference to one trial: the student and the index within their sequence."""

    student: int
    position: int


class ObservationStore:
    """
    Read-only store of student recall sequences.

    Trials are kept in a flat table sorted by (student, position) so the
    subsequence of any set of items can be sliced out with array operations.
    Validation happens in the loader; the store trusts its input.
    """

    def __init__(
        self,
        recall_sequences: Sequence[Sequence[bool]],
        item_sequences: Sequence[Sequence[int]],
        num_students: int,
        num_items: int,
    ) -> None:
        self.num_students = int(num_students)
        self.num_items = int(num_items)

        students: List[int] = []
        positions: List[int] = []
        items: List[int] = []
        outcomes: List[int] = []
        for student in range(self.num_students):
            recalls = recall_sequences[student] if student < len(recall_sequences) else []
            student_items = item_sequences[student] if student < len(item_sequences) else []
            for position, (item, recalled) in enumerate(zip(student_items, recalls)):
                students.append(student)
                positions.append(position)
                items.append(int(item))
                outcomes.append(1 if recalled else 0)

        self.trial_students = np.asarray(students, dtype=np.int64)
        self.trial_positions = np.asarray(positions, dtype=np.int64)
        self.trial_items = np.asarray(items, dtype=np.int64)
        self.trial_outcomes = np.asarray(outcomes, dtype=np.int8)
        for array in (self.trial_students, self.trial_positions, self.trial_items, self.trial_outcomes):
            array.setflags(write=False)

        self._student_offsets = np.searchsorted(self.trial_students, np.arange(self.num_students + 1))
        self._item_trial_counts = np.bincount(self.trial_items, minlength=self.num_items)

    @classmethod
    def from_dataset(cls, dataset: RecallDataset) -> "ObservationStore":
        return cls(dataset.recall_sequences, dataset.item_sequences, dataset.num_students, dataset.num_items)

    @property
    def num_trials(self) -> int:
        return int(self.trial_items.shape[0])

    def trials_for_item(self, item: int) -> List[TrialRef]:
        """All (student, position) references touching ``item`` in temporal order per student."""

        rows = np.flatnonzero(self.trial_items == item)
        return [TrialRef(int(self.trial_students[r]), int(self.trial_positions[r])) for r in rows]

    def trial_count(self, item: int) -> int:
        return int(self._item_trial_counts[item])

    def outcomes_for_student(self, student: int) -> np.ndarray:
        start, stop = self._student_offsets[student], self._student_offsets[student + 1]
        return self.trial_outcomes[start:stop].astype(bool)

    def items_for_student(self, student: int) -> np.ndarray:
        start, stop = self._student_offsets[student], self._student_offsets[student + 1]
        return self.trial_items[start:stop]

    def outcome_grid(self, items: Iterable[int]) -> np.ndarray:
        """
        Build a padded (students x experience) outcome grid for an item set.

        Row r holds, in order, the outcomes of one student's trials on any of
        ``items``; column t is that student's t-th experience with the skill.
        Students with no such trials are omitted and unused cells hold
        ``MISSING_OUTCOME``. An empty item set yields a (0, 0) grid.
        """

        member_flags = np.zeros(self.num_items, dtype=bool)
        member_list = list(items)
        if member_list:
            member_flags[np.asarray(member_list, dtype=np.int64)] = True
        rows = np.flatnonzero(member_flags[self.trial_items]) if self.num_trials else np.empty(0, dtype=np.int64)
        if rows.size == 0:
            return np.empty((0, 0), dtype=np.int8)

        students = self.trial_students[rows]
        starts = np.r_[0, np.flatnonzero(np.diff(students)) + 1]
        counts = np.diff(np.r_[starts, students.size])
        experience = np.arange(students.size) - np.repeat(starts, counts)
        row_index = np.repeat(np.arange(starts.size), counts)

        grid = np.full((starts.size, int(counts.max())), MISSING_OUTCOME, dtype=np.int8)
        grid[row_index, experience] = self.trial_outcomes[rows]
        return grid
