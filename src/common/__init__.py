# ABOUTME: Makes the shared common package importable by the skill discovery engine.
# ABOUTME: Re-exports schema types, the dataset loader, and evaluation helpers for convenience.

from .schemas import RecallDataset, RecallEvent, SkillRunSummary
from .data_pipeline import DatasetError, load_recall_dataset
from .evaluation import evaluate_assignments

__all__ = [
    "DatasetError",
    "RecallDataset",
    "RecallEvent",
    "SkillRunSummary",
    "evaluate_assignments",
    "load_recall_dataset",
]
