"""Command-line interface for running differential-binding pitfall scenarios."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any, Iterable

from dbpitfalls.config import apply_overrides, load_json_config
from dbpitfalls.core.errors import DegenerateInput, InvalidParameter
from dbpitfalls.core.filters import FILTERS
from dbpitfalls.harness.contracts import ScenarioSummary
from dbpitfalls.pipeline_utils import setup_logger, write_summary_tables
from dbpitfalls.scenarios import SCENARIOS, get_scenario
from dbpitfalls.stats.testers import TESTERS, get_tester

EXIT_USAGE = 2


def _cli_overrides(args: argparse.Namespace) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if args.filter is not None:
        out["filter"] = args.filter
    if args.seed is not None:
        out["seed"] = args.seed
    if args.n_reps is not None:
        out["n_reps"] = args.n_reps
    return out


def _write_plots(summary: ScenarioSummary, outdir: Path) -> None:
    import matplotlib

    # Headless backend for batch runs.
    matplotlib.use("Agg")

    from dbpitfalls.plotting import (
        apply_plot_style,
        plot_calibration_curve,
        plot_pvalue_histogram,
        save_figure,
    )

    apply_plot_style()
    fig_dir = outdir / "figures"
    if summary.curves:
        fig = plot_calibration_curve(
            summary.curves, summary.calibration, title=f"{summary.scenario}: null calibration"
        )
        save_figure(fig, fig_dir / f"{summary.scenario}_calibration.png")
    if summary.null_pvalues.size:
        fig = plot_pvalue_histogram(
            summary.null_pvalues, title=f"{summary.scenario}: null p-values"
        )
        save_figure(fig, fig_dir / f"{summary.scenario}_null_pvalues.png")


def run_main(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir)
    logger = setup_logger(outdir / "logs" / "dbpitfalls.log", "dbpitfalls")

    config_cls, runner = get_scenario(args.scenario)
    overrides: dict[str, Any] = {}
    if args.config:
        try:
            overrides.update(load_json_config(args.config))
        except (FileNotFoundError, ValueError) as exc:
            raise InvalidParameter(str(exc)) from exc
    overrides.update(_cli_overrides(args))
    config = apply_overrides(config_cls(), overrides)
    logger.info("Running %s with %s (tester=%s)", args.scenario, config, args.tester)

    summary = runner(config, tester=get_tester(args.tester), n_jobs=args.n_jobs)
    written = write_summary_tables(summary, outdir)
    if not args.no_plots:
        _write_plots(summary, outdir)

    print(f"scenario={summary.scenario}")
    print(f"n_reps={summary.n_reps} n_failed={summary.n_failed}")
    print(summary.summary.to_string(index=False))
    logger.info("Wrote %d output files under %s", len(written), outdir)
    return 0


def list_main(_args: argparse.Namespace) -> int:
    print("scenarios:")
    for name, (config_cls, _) in SCENARIOS.items():
        print(f"  {name} ({config_cls.__name__})")
    print("testers:")
    for name, tester_cls in TESTERS.items():
        print(f"  {name} ({tester_cls.__name__})")
    print("filters:")
    for name, site_filter in FILTERS.items():
        print(f"  {name} -> {site_filter.name}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Differential-binding pitfall simulations")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run one scenario and write its tables")
    run.add_argument("scenario", help="Scenario name (see `dbpitfalls list`)")
    run.add_argument("--config", default=None, help="JSON file of config overrides")
    run.add_argument("--filter", default=None, help="Site filter (peak_selection only)")
    run.add_argument("--seed", type=int, default=None, help="Master seed")
    run.add_argument("--n-reps", type=int, default=None, help="Number of repetitions")
    run.add_argument(
        "--tester",
        default="qlf",
        choices=sorted(TESTERS),
        help="Differential tester (statsmodels fits one site at a time)",
    )
    run.add_argument("--n-jobs", type=int, default=1, help="Parallel workers")
    run.add_argument("--outdir", default="dbpitfalls_out", help="Output directory root")
    run.add_argument("--no-plots", action="store_true", help="Skip figure output")
    run.set_defaults(func=run_main)

    lst = sub.add_parser("list", help="List scenarios and site filters")
    lst.set_defaults(func=list_main)
    return parser


def main(argv: Iterable[str] | None = None) -> int:
    """Main CLI entry point.

    Args:
        argv: Command-line arguments (if None, uses sys.argv).

    Returns:
        Exit code.
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    try:
        return args.func(args)
    except (InvalidParameter, DegenerateInput) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_USAGE


if __name__ == "__main__":
    raise SystemExit(main())
