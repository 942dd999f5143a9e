"""
Command-line meta-analysis correcting for publication bias or p-hacking.

Usage:
  publipha studies.csv [--bias psma|phma|cma|all] [--yi yi] [--vi vi]
      [--alpha 0 0.025 0.05 1] [--tau-prior half-normal]
      [--n-samples 2000] [--n-tune 1000] [--n-chains 4] [--seed 42]
      [--output-dir results/]

Outputs (when --output-dir is given):
  - summary_<model>.csv: ArviZ posterior summary per model
  - posterior_<model>.png: posterior plots per model
  - run_info.json: arguments and sampling times
"""

import argparse
import json
from datetime import datetime
from pathlib import Path

import polars as pl

from publipha.config import (
    _VERSION,
    DEFAULT_ALPHA,
    N_CHAINS,
    N_SAMPLES,
    N_TUNE,
    RANDOM_SEED,
    TAU_PRIOR_CHOICES,
)
from publipha.ma import allma, ma, print_header
from publipha.model_spec import resolve_bias

BIAS_ARGS = ("psma", "phma", "cma", "all")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="publipha",
        description="Bayesian meta-analysis correcting for publication bias or p-hacking",
    )
    parser.add_argument("data", type=Path, help="CSV file with one row per study")
    parser.add_argument("--bias", choices=BIAS_ARGS, default="psma")
    parser.add_argument("--yi", default="yi", help="Effect size column")
    parser.add_argument("--vi", default="vi", help="Sampling variance column")
    parser.add_argument("--alpha", type=float, nargs="+", default=list(DEFAULT_ALPHA))
    parser.add_argument("--tau-prior", choices=TAU_PRIOR_CHOICES, default=None)
    parser.add_argument(
        "--prior",
        default=None,
        help='JSON object of prior overrides, e.g. \'{"theta0_sd": 10}\'',
    )
    parser.add_argument("--n-samples", type=int, default=N_SAMPLES)
    parser.add_argument("--n-tune", type=int, default=N_TUNE)
    parser.add_argument("--n-chains", type=int, default=N_CHAINS)
    parser.add_argument("--seed", type=int, default=RANDOM_SEED)
    parser.add_argument("--output-dir", type=Path, default=None)
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    prior = json.loads(args.prior) if args.prior else None

    df = pl.read_csv(args.data)
    print(f"Data: {args.data} ({df.height} studies)")

    kwargs = {
        "data": df,
        "alpha": args.alpha,
        "prior": prior,
        "tau_prior": args.tau_prior,
        "n_samples": args.n_samples,
        "n_tune": args.n_tune,
        "n_chains": args.n_chains,
        "seed": args.seed,
    }
    if args.bias == "all":
        fits = allma(args.yi, args.vi, **kwargs)
    else:
        bias = resolve_bias(args.bias)
        fits = {bias.short_name: ma(args.yi, args.vi, bias, **kwargs)}

    for name, fit in fits.items():
        print_header(f"POSTERIOR SUMMARY — {name}")
        print(fit.summary().to_string())

    if args.output_dir is None:
        return

    from publipha.plots import plot_posteriors

    out_dir = args.output_dir
    out_dir.mkdir(parents=True, exist_ok=True)
    print_header("OUTPUTS")
    for name, fit in fits.items():
        summary_path = out_dir / f"summary_{name}.csv"
        fit.summary().to_csv(summary_path)
        print(f"  Saved: {summary_path.name}")
        plot_posteriors(fit, out_dir)

    run_info = {
        "timestamp": datetime.now().isoformat(timespec="seconds"),
        "version": _VERSION,
        "params": {k: str(v) if isinstance(v, Path) else v for k, v in vars(args).items()},
        "sampling_time": {name: round(fit.sampling_time, 2) for name, fit in fits.items()},
    }
    info_path = out_dir / "run_info.json"
    with open(info_path, "w") as f:
        json.dump(run_info, f, indent=2, default=str)
    print(f"  Saved: {info_path.name}")


if __name__ == "__main__":
    main()
