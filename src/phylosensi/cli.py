from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from . import __version__


def _parse_float_list(raw: str) -> list[float]:
    return [float(x.strip()) for x in raw.split(",") if x.strip()]


def _parse_pairs(values: list[str] | None, label: str) -> dict[str, str]:
    pairs: dict[str, str] = {}
    for raw in values or []:
        if "=" not in raw:
            raise ValueError(f"{label} expects COLUMN=VALUE, got {raw!r}")
        key, value = raw.split("=", 1)
        if not key.strip() or not value.strip():
            raise ValueError(f"{label} expects COLUMN=VALUE, got {raw!r}")
        pairs[key.strip()] = value.strip()
    return pairs


def _parse_lambda(raw: str) -> float | str:
    return raw if raw.lower() == "ml" else float(raw)


def _write_json_file(path: str | Path, payload: Any) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2, sort_keys=True)
        handle.write("\n")


def _emit_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--data", required=True, metavar="CSV|TSV")
    p.add_argument("--tree", required=True, metavar="NEWICK")
    p.add_argument("--formula", required=True, metavar="'y ~ x'")
    p.add_argument("--taxon-col", default=None, metavar="COLUMN")
    p.add_argument("--model", choices=["pgls", "logistic"], default="pgls")
    p.add_argument("--lambda", dest="lambda_", type=_parse_lambda, default="ml", metavar="ml|VALUE")
    p.add_argument("--transform", action="append", default=None, metavar="COLUMN=log")
    p.add_argument("--plan", default=None, metavar="JSON")
    p.add_argument("--seed", type=int, default=None)
    p.add_argument("--jobs", type=int, default=1)
    p.add_argument("--out", default=None, metavar="DIR")
    p.add_argument("--json", action="store_true")
    p.add_argument("--no-progress", action="store_true")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="phylosensi",
        description="Sensitivity analysis for phylogenetic comparative regressions.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true")
    verbosity.add_argument("-q", "--quiet", action="store_true")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # influ
    influ = subparsers.add_parser("influ", help="Leave-one-out influential species.")
    _add_common(influ)
    influ.add_argument("--cutoff", type=float, default=None)

    # samp
    samp = subparsers.add_parser("samp", help="Random species removal at percentage breaks.")
    _add_common(samp)
    samp.add_argument("--breaks", type=_parse_float_list, default=None, metavar="0.1,0.2,...")
    samp.add_argument("--times", type=int, default=None)

    # clade
    clade = subparsers.add_parser("clade", help="Leave-clade-out with randomization test.")
    _add_common(clade)
    clade.add_argument("--clade-col", default=None, metavar="COLUMN")
    clade.add_argument("--n-species", type=int, default=None)
    clade.add_argument("--times", type=int, default=None)

    # tree
    tree = subparsers.add_parser("tree", help="Refit across trees of a posterior ensemble.")
    _add_common(tree)
    tree.add_argument("--times", type=int, default=None)

    # intra
    intra = subparsers.add_parser("intra", help="Resample traits from declared uncertainty.")
    _add_common(intra)
    intra.add_argument("--sd", action="append", default=None, metavar="COLUMN=SDCOLUMN")
    intra.add_argument("--distribution", choices=["normal", "uniform"], default=None)
    intra.add_argument("--times", type=int, default=None)

    return parser


def _resolve_plan(args: argparse.Namespace) -> Any:
    from .plan import PerturbationPlan, load_plan

    if args.plan:
        payload = load_plan(args.plan).to_dict()
        if payload["mode"] != args.command:
            raise ValueError(
                f"Plan mode {payload['mode']!r} does not match command {args.command!r}."
            )
    else:
        payload = {"mode": args.command}
    overrides = {
        "times": getattr(args, "times", None),
        "breaks": getattr(args, "breaks", None),
        "clade_col": getattr(args, "clade_col", None),
        "n_species": getattr(args, "n_species", None),
        "distribution": getattr(args, "distribution", None),
        "cutoff": getattr(args, "cutoff", None),
        "seed": args.seed,
    }
    for key, value in overrides.items():
        if value is not None:
            payload[key] = value
    if args.jobs != 1:
        payload["n_jobs"] = args.jobs
    return PerturbationPlan.from_dict({k: v for k, v in payload.items() if v is not None})


def _cmd_run(args: argparse.Namespace) -> int:
    from .analysis import run_analysis
    from .fitting import make_fitter
    from .formula import ModelSpec
    from .io import read_traits, read_trees, write_report
    from .provenance import run_manifest
    from .runner import ConsoleProgress

    plan = _resolve_plan(args)
    spec = ModelSpec.parse(
        args.formula,
        uncertainty=_parse_pairs(getattr(args, "sd", None), "--sd"),
        transforms=_parse_pairs(args.transform, "--transform"),
    )
    data = read_traits(args.data, taxon_col=args.taxon_col)
    trees = read_trees(args.tree)
    if args.command == "tree" and not isinstance(trees, list):
        trees = [trees]
    elif args.command != "tree" and isinstance(trees, list):
        raise ValueError(
            f"{args.tree} holds {len(trees)} trees; use the 'tree' command for ensembles."
        )

    progress = None if (args.no_progress or args.json) else ConsoleProgress()
    report = run_analysis(
        spec,
        data,
        trees,
        plan,
        fitter=make_fitter(args.model, args.lambda_),
        progress=progress,
    )

    if args.out:
        written = write_report(report, args.out)
        manifest = run_manifest(
            command=args.command,
            argv=args._argv,
            tool_version=__version__,
            plan_hash=report.plan_hash,
            inputs={"data": args.data, "tree": args.tree},
            data=data,
            outputs=written,
        )
        _write_json_file(Path(args.out) / "manifest.json", manifest)

    if args.json:
        _emit_json(report.to_dict())
    else:
        print(report.render())
        if args.out:
            print(f"Output directory: {Path(args.out).resolve()}")
    return 0


def _configure_logging(args: argparse.Namespace) -> None:
    level = logging.WARNING
    if args.verbose:
        level = logging.INFO
    elif args.quiet:
        level = logging.ERROR
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    args._argv = list(argv if argv is not None else sys.argv[1:])
    _configure_logging(args)
    try:
        if args.command in {"influ", "samp", "clade", "tree", "intra"}:
            return _cmd_run(args)
    except Exception as exc:
        parser.exit(status=2, message=f"error: {exc}\n")
    parser.exit(status=2, message="error: unknown command\n")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
