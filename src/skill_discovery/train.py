# ABOUTME: Provides the Typer CLI entrypoint for running skill discovery on a recall dataset.
# ABOUTME: Loads configs, runs the MCMC sampler, and saves sampled or MAP skill assignments.

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import numpy as np
import typer
import yaml
from rich.console import Console
from rich.table import Table

from src.common.data_pipeline import DatasetError, describe_dataset, load_recall_dataset, write_recall_dataset
from src.common.evaluation import coassignment_matrix, evaluate_assignments
from src.common.schemas import SkillRunSummary
from src.common.synthetic import generate_synthetic_recall

from .export import read_skill_assignments, write_run_summary, write_skill_assignments
from .hyperparameters import AlphaPrior
from .mcmc import IterationStats, SamplerConfig, SkillDiscoveryModel
from .observations import ObservationStore
from .recall_model import RecallPriors

console = Console()
app = typer.Typer(help="Discover latent skills from student recall sequences.")


@dataclass(frozen=True)
class RunSettings:
    """Everything a skill-discovery run needs besides the data itself."""

    datafile: Path
    savefile: Path
    sampler: SamplerConfig
    seed: int
    map_estimate: bool = False
    summary_path: Optional[Path] = None
    log_every: int = 10


def load_run_settings(config_path: Optional[Path] = None, overrides: Optional[Mapping[str, Any]] = None) -> RunSettings:
    """
    Merge the YAML config (if any) with CLI overrides; overrides win when not None.

    Raises ValueError when a required path is missing or a value is out of range.
    """

    cfg: Dict[str, Any] = {}
    if config_path is not None:
        with open(config_path) as f:
            cfg = yaml.safe_load(f) or {}
    overrides = {key: value for key, value in (overrides or {}).items() if value is not None}

    data_cfg = cfg.get("data", {}) or {}
    sampler_cfg = cfg.get("sampler", {}) or {}
    hyper_cfg = cfg.get("hyperparameters", {}) or {}
    recall_cfg = cfg.get("recall_model", {}) or {}
    outputs_cfg = cfg.get("outputs", {}) or {}

    def pick(key: str, section: Mapping[str, Any], default: Any = None) -> Any:
        if key in overrides:
            return overrides[key]
        value = section.get(key)
        return default if value is None else value

    def pick_optional_float(key: str, section: Mapping[str, Any]) -> Optional[float]:
        value = pick(key, section)
        return None if value is None else float(value)

    datafile = pick("datafile", data_cfg)
    savefile = pick("savefile", data_cfg)
    if datafile is None:
        raise ValueError("A datafile is required (--datafile or data.datafile in the config).")
    if savefile is None:
        raise ValueError("A savefile is required (--savefile or data.savefile in the config).")

    prior_cfg = hyper_cfg.get("alpha_prime_prior", {}) or {}
    sampler = SamplerConfig(
        num_iterations=int(pick("num_iterations", sampler_cfg, 200)),
        burn=int(pick("burn", sampler_cfg, 100)),
        num_subsamples=int(pick("num_subsamples", sampler_cfg, 2000)),
        fix_alpha_prime=pick_optional_float("fix_alpha_prime", hyper_cfg),
        fix_beta=pick_optional_float("fix_beta", hyper_cfg),
        initial_alpha_prime=float(pick("initial_alpha_prime", hyper_cfg, 1.0)),
        initial_beta=float(pick("initial_beta", hyper_cfg, 0.5)),
        shuffle_items=bool(pick("shuffle_items", sampler_cfg, False)),
        init=str(pick("init", sampler_cfg, "single")),
        beta_step=float(pick("beta_step", recall_cfg, 0.05)),
        alpha_prior=AlphaPrior(
            shape=float(prior_cfg.get("shape", 1.0)),
            rate=float(prior_cfg.get("rate", 1.0)),
        ),
        recall_priors=RecallPriors(
            guess_max=float(recall_cfg.get("guess_max", 0.5)),
            slip_max=float(recall_cfg.get("slip_max", 0.5)),
            latent_step=float(recall_cfg.get("latent_step", 0.05)),
        ),
    )

    seed = pick("seed", cfg)
    if seed is None:
        seed = int(time.time())
    summary_path = pick("summary_path", outputs_cfg)
    log_every = int(pick("log_every", outputs_cfg, 10))
    if log_every < 0:
        raise ValueError(f"log_every must be non-negative, got {log_every}")

    return RunSettings(
        datafile=Path(datafile),
        savefile=Path(savefile),
        sampler=sampler,
        seed=int(seed),
        map_estimate=bool(pick("map_estimate", outputs_cfg, False)),
        summary_path=Path(summary_path) if summary_path is not None else None,
        log_every=log_every,
    )


def run_skill_discovery(
    settings: RunSettings,
    echo: Callable[[str], None] = typer.echo,
) -> Tuple[SkillDiscoveryModel, SkillRunSummary]:
    """Programmatic entrypoint mirrored by the Typer CLI."""

    dataset = load_recall_dataset(settings.datafile)
    echo(f"[skills] {describe_dataset(dataset)}")

    sampler = settings.sampler
    if sampler.fix_alpha_prime is not None:
        echo(f"[skills] alpha' will be fixed at {sampler.fix_alpha_prime}")
    if sampler.fix_beta is not None:
        echo(f"[skills] beta will be fixed at {sampler.fix_beta}")
    echo(f"[skills] Seed {settings.seed}; {sampler.num_iterations} iterations, {sampler.burn} burn-in")

    observations = ObservationStore.from_dataset(dataset)
    model = SkillDiscoveryModel(observations, sampler, np.random.default_rng(settings.seed))
    model.run_mcmc(on_iteration=_progress_reporter(settings, echo))

    if settings.map_estimate:
        write_skill_assignments([model.get_most_likely_skill_assignments()], settings.savefile)
        echo(f"[skills] MAP skill assignments saved to {settings.savefile}")
    else:
        write_skill_assignments(model.get_skill_assignments(), settings.savefile)
        echo(f"[skills] {len(model.samples)} sampled skill assignments saved to {settings.savefile}")

    map_estimate = model.map_estimate
    summary = SkillRunSummary(
        seed=settings.seed,
        num_iterations=sampler.num_iterations,
        burn=sampler.burn,
        num_samples=len(model.samples),
        map_iteration=map_estimate.iteration,
        map_log_joint=map_estimate.log_joint,
        map_num_skills=len(set(map_estimate.assignments)),
        final_alpha_prime=model.alpha_prime.value,
        final_beta=model.beta.value,
        alpha_prime_fixed=model.alpha_prime_is_fixed,
        beta_fixed=model.beta_is_fixed,
        evaluation=dict(evaluate_assignments(map_estimate.assignments, dataset.provided_skills)),
        datafile=str(settings.datafile),
    )
    if settings.summary_path is not None:
        write_run_summary(summary, settings.summary_path)
        echo(f"[skills] Run summary saved to {settings.summary_path}")
    return model, summary


def _progress_reporter(settings: RunSettings, echo: Callable[[str], None]) -> Optional[Callable[[IterationStats], None]]:
    if settings.log_every == 0:
        return None
    total = settings.sampler.num_iterations

    def report(stats: IterationStats) -> None:
        iteration = stats.iteration + 1
        if iteration % settings.log_every and iteration != total:
            return
        line = (
            f"[skills] Iteration {iteration}/{total} ({stats.phase.value}): {stats.num_clusters} skills, "
            f"alpha'={stats.alpha_prime:.3f}, beta={stats.beta:.3f}"
        )
        if stats.log_joint is not None:
            line += f", log_joint={stats.log_joint:.2f}"
        echo(line)

    return report


@app.command()
def run(
    config: Optional[Path] = typer.Option(None, "--config", help="Path to skill discovery config YAML."),
    datafile: Optional[Path] = typer.Option(None, "--datafile", help="File containing the student recall data."),
    savefile: Optional[Path] = typer.Option(None, "--savefile", help="File to put the skill assignments."),
    map_estimate: Optional[bool] = typer.Option(
        None, "--map-estimate/--all-samples", help="Save the MAP skill assignments instead of all sampled ones."
    ),
    num_iterations: Optional[int] = typer.Option(None, "--num-iterations", help="Number of iterations to run."),
    burn: Optional[int] = typer.Option(None, "--burn", help="Number of iterations to discard (less than num_iterations)."),
    fix_alpha_prime: Optional[float] = typer.Option(None, "--fix-alpha-prime", help="Fix alpha' instead of inferring it."),
    fix_beta: Optional[float] = typer.Option(None, "--fix-beta", help="Fix beta instead of inferring it."),
    num_subsamples: Optional[int] = typer.Option(
        None, "--num-subsamples", help="Samples used to approximate the marginal likelihood of new skills."
    ),
    seed: Optional[int] = typer.Option(None, "--seed", help="Random seed; defaults to the current time."),
    summary_path: Optional[Path] = typer.Option(None, "--summary-path", help="Optional JSON run summary output."),
    log_every: Optional[int] = typer.Option(None, "--log-every", help="Report progress every N iterations (0 disables)."),
) -> None:
    """Run the CRP skill sampler and save skill assignments."""
    overrides = {
        "datafile": datafile,
        "savefile": savefile,
        "map_estimate": map_estimate,
        "num_iterations": num_iterations,
        "burn": burn,
        "fix_alpha_prime": fix_alpha_prime,
        "fix_beta": fix_beta,
        "num_subsamples": num_subsamples,
        "seed": seed,
        "summary_path": summary_path,
        "log_every": log_every,
    }
    try:
        settings = load_run_settings(config, overrides)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    console.rule("[bold blue]Skill Discovery[/bold blue]")
    try:
        _, summary = run_skill_discovery(settings)
    except DatasetError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Metric")
    table.add_column("Value")
    table.add_row("MAP skills", str(summary.map_num_skills))
    table.add_row("MAP log joint", f"{summary.map_log_joint:.2f}")
    table.add_row("alpha'", f"{summary.final_alpha_prime:.3f}" + (" (fixed)" if summary.alpha_prime_fixed else ""))
    table.add_row("beta", f"{summary.final_beta:.3f}" + (" (fixed)" if summary.beta_fixed else ""))
    for name, value in summary.evaluation.items():
        table.add_row(name, f"{value:.3f}")
    console.print(table)


@app.command()
def simulate(
    output: Path = typer.Option(..., "--output", help="Where to write the synthetic recall dataset."),
    success_rates: str = typer.Option("0.9,0.3", "--success-rates", help="Comma-separated success rate per skill."),
    items_per_skill: int = typer.Option(5, "--items-per-skill", help="Items generated for each skill."),
    num_students: int = typer.Option(50, "--num-students", help="Number of simulated students."),
    trials_per_item: int = typer.Option(2, "--trials-per-item", help="Attempts each student makes on each item."),
    seed: int = typer.Option(0, "--seed", help="Random seed for the simulation."),
) -> None:
    """Write a synthetic dataset whose skills are known."""
    try:
        rates = [float(rate) for rate in success_rates.split(",") if rate.strip()]
        dataset = generate_synthetic_recall(rates, items_per_skill, num_students, trials_per_item, seed=seed)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--success-rates") from exc

    write_recall_dataset(dataset, output)
    typer.echo(f"[skills] Wrote {dataset.num_trials} trials to {output} ({describe_dataset(dataset)})")


@app.command()
def compare(
    datafile: Path = typer.Option(..., "--datafile", help="Recall dataset holding the provided skills."),
    assignments: Path = typer.Option(..., "--assignments", help="Saved skill assignments (one vector per line)."),
) -> None:
    """Compare saved skill assignments with the dataset's expert-provided skills."""
    try:
        dataset = load_recall_dataset(datafile)
    except DatasetError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    if not assignments.exists():
        console.print(f"[red]Missing assignments file at {assignments}[/red]")
        raise typer.Exit(code=1)

    samples = read_skill_assignments(assignments)
    if not samples or any(len(vector) != dataset.num_items for vector in samples):
        console.print(f"[red]Assignments in {assignments} do not cover {dataset.num_items} items.[/red]")
        raise typer.Exit(code=1)

    scores = [evaluate_assignments(vector, dataset.provided_skills) for vector in samples]
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Metric")
    table.add_column("Mean")
    table.add_column("Min")
    table.add_column("Max")
    for metric in scores[0]:
        values = np.array([score[metric] for score in scores])
        table.add_row(metric, f"{values.mean():.3f}", f"{values.min():.3f}", f"{values.max():.3f}")
    console.rule(f"[bold blue]{len(samples)} assignment(s) vs provided skills[/bold blue]")
    console.print(table)

    if len(samples) > 1:
        coassignment = coassignment_matrix(samples)
        upper = coassignment[np.triu_indices(dataset.num_items, k=1)]
        uncertain = int(((upper > 0.1) & (upper < 0.9)).sum())
        console.print(f"[dim]{uncertain} item pairs share a skill in between 10% and 90% of samples.[/dim]")


if __name__ == "__main__":
    app()
