# ABOUTME: Loads and validates tab-delimited student recall datasets.
# ABOUTME: Writes datasets back in the same format and exposes a small inspection CLI.

from pathlib import Path
from typing import List

import pandas as pd
import typer

from .schemas import UNLABELED_SKILL, RecallDataset

DATASET_COLUMNS = ["student_id", "item_id", "skill_id", "recall"]

app = typer.Typer(help="Inspect student recall datasets.")


class DatasetError(ValueError):
    """Raised when a recall dataset cannot be opened or fails validation."""


def load_recall_dataset(path: Path) -> RecallDataset:
    """
    Read a whitespace-delimited file with columns: student id, item id, skill id, recall.

    Ids start at 0 and are contiguous, so counts are the largest id + 1. Row
    order within a student is the student's temporal order. When an item shows
    up with several skill ids, the last one wins. A skill id of -1 marks the
    item as unlabeled.
    """

    path = Path(path)
    if not path.is_file():
        raise DatasetError(f"couldn't open {path}")

    try:
        df = pd.read_csv(path, sep=r"\s+", header=None, comment="#")
    except pd.errors.EmptyDataError as exc:
        raise DatasetError(f"{path} contains no trials") from exc
    except (pd.errors.ParserError, UnicodeDecodeError) as exc:
        raise DatasetError(f"{path} is not a whitespace-delimited table: {exc}") from exc

    return frame_to_dataset(df, source=str(path))


def frame_to_dataset(df: pd.DataFrame, source: str = "<frame>") -> RecallDataset:
    """Validate a four-column frame and convert it into per-student sequences."""

    if df.shape[1] != len(DATASET_COLUMNS):
        raise DatasetError(f"{source}: expected {len(DATASET_COLUMNS)} columns, found {df.shape[1]}")
    df = df.copy()
    df.columns = DATASET_COLUMNS
    if df.empty:
        raise DatasetError(f"{source} contains no trials")

    for column in DATASET_COLUMNS:
        numeric = pd.to_numeric(df[column], errors="coerce")
        invalid = numeric.isna() | (numeric != numeric.round())
        if invalid.any():
            raise DatasetError(f"{source}: non-integer value in column '{column}' at row {int(invalid.idxmax())}")
        df[column] = numeric.astype("int64")

    negative = df[["student_id", "item_id"]].lt(0).any(axis=1) | df["skill_id"].lt(UNLABELED_SKILL)
    if negative.any():
        raise DatasetError(f"{source}: negative id at row {int(negative.idxmax())}")
    invalid_recall = ~df["recall"].isin([0, 1])
    if invalid_recall.any():
        raise DatasetError(f"{source}: recall must be 0 or 1 (row {int(invalid_recall.idxmax())})")

    num_students = int(df["student_id"].max()) + 1
    num_items = int(df["item_id"].max()) + 1
    num_skills = int(df["skill_id"].max()) + 1

    provided_skills: List[int] = [UNLABELED_SKILL] * num_items
    for item, skill in zip(df["item_id"], df["skill_id"]):
        provided_skills[int(item)] = int(skill)

    recall_sequences: List[List[bool]] = [[] for _ in range(num_students)]
    item_sequences: List[List[int]] = [[] for _ in range(num_students)]
    for student, item, recall in zip(df["student_id"], df["item_id"], df["recall"]):
        recall_sequences[int(student)].append(bool(recall))
        item_sequences[int(student)].append(int(item))

    return RecallDataset(
        recall_sequences=recall_sequences,
        item_sequences=item_sequences,
        provided_skills=provided_skills,
        num_students=num_students,
        num_items=num_items,
        num_skills=num_skills,
    )


def dataset_to_frame(dataset: RecallDataset) -> pd.DataFrame:
    rows = [
        {
            "student_id": event.student_id,
            "item_id": event.item_id,
            "skill_id": event.skill_id,
            "recall": int(event.recalled),
        }
        for event in dataset.events()
    ]
    return pd.DataFrame(rows, columns=DATASET_COLUMNS)


def write_recall_dataset(dataset: RecallDataset, path: Path) -> None:
    """Write a dataset as tab-delimited rows, grouped by student in temporal order."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    dataset_to_frame(dataset).to_csv(path, sep="\t", header=False, index=False)


def describe_dataset(dataset: RecallDataset) -> str:
    return (
        f"dataset has {dataset.num_students} students, {dataset.num_items} items, "
        f"and {dataset.num_skills} expert-provided skills"
    )


@app.command()
def summarize(
    datafile: Path = typer.Option(..., "--datafile", help="Tab-delimited recall dataset."),
) -> None:
    """Print the dataset size and overall recall rate."""
    try:
        dataset = load_recall_dataset(datafile)
    except DatasetError as exc:
        typer.echo(f"[data] {exc}", err=True)
        raise typer.Exit(code=1) from exc

    typer.echo(f"[data] {describe_dataset(dataset)}")
    frame = dataset_to_frame(dataset)
    typer.echo(f"[data] {len(frame)} trials, recall rate {frame['recall'].mean():.3f}")


if __name__ == "__main__":
    app()
