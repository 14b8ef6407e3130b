from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .config import load_config
from .io import read_expression, read_gene_sets, read_phenotype, save_model_artifacts, write_model_data
from .pipeline import generate_model_data, run_full_pipeline, score_from_model_dir, sgr_analysis

LOGO = r"""
   _____ ____  ____  ___
  / ___// __ \/ __ \/   |
  \__ \/ /_/ / /_/ / /| |
 ___/ / ____/ _, _/ ___ |
/____/_/   /_/ |_/_/  |_|
"""


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    fmt = "%(message)s" if not verbose else "%(asctime)s - %(levelname)s - %(message)s"
    logging.basicConfig(level=level, format=fmt, stream=sys.stdout)
    for logger_name in ["torch", "matplotlib", "PIL", "fontTools", "gseapy"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def _config_from_args(args: argparse.Namespace) -> dict:
    overrides = {
        'alpha': getattr(args, 'alpha', None),
        'family': getattr(args, 'family', None),
        'lambda_min': getattr(args, 'lambda_min', None),
        'nlambda': getattr(args, 'nlambda', None),
        'nfolds': getattr(args, 'nfolds', None),
        'seed': getattr(args, 'seed', None),
        'maxit': getattr(args, 'maxit', None),
        'workers': getattr(args, 'workers', None),
        'response_column': getattr(args, 'response_column', None),
        'positive_label': getattr(args, 'positive_label', None),
        'kcdf': getattr(args, 'kcdf', None),
        'device': getattr(args, 'device', None),
    }
    return load_config(args.config, **overrides)


def cmd_expand(args: argparse.Namespace) -> None:
    logging.info("--- Expanding expression by gene groups ---")
    expanded = generate_model_data(args.expression, args.gene_sets)
    out = write_model_data(expanded.latent, expanded.groups, args.output)
    logging.info(f"[OK] Latent matrix and group vector saved to: {out}")


def cmd_fit(args: argparse.Namespace) -> None:
    cfg = _config_from_args(args)
    logging.info(f"--- Fitting sparse-group model (alpha={cfg['alpha']}, folds={cfg['nfolds']}) ---")
    X = read_expression(args.expression)
    expanded = generate_model_data(X, read_gene_sets(args.gene_sets))
    y = read_phenotype(
        args.phenotype, column=cfg['response_column'], samples=X.index, positive_label=cfg['positive_label'],
    )
    output = Path(args.output)
    result = sgr_analysis(
        expanded.latent, y, expanded.groups,
        alpha=cfg['alpha'], lambda_min=cfg['lambda_min'], tolerance=cfg['tolerance'],
        nfolds=cfg['nfolds'], seed=cfg['seed'],
        plot_dir=None if args.no_plots else output / cfg['plot_dir'],
        family=cfg['family'], nlambda=cfg['nlambda'], maxit=cfg['maxit'], thresh=cfg['thresh'],
        gamma=cfg['gamma'], step=cfg['step'], standardize=cfg['standardize'],
        workers=cfg['workers'], device=cfg['device'],
    )
    meta = {
        'family': result.fit.family.name,
        'alpha': result.fit.alpha,
        'lambda': result.signature.lambda_,
        'lambda_index': result.signature.lambda_index,
    }
    save_model_artifacts(output, result.coefficients, result.pos, result.neg,
                         fold_errors=result.cv.fold_errors, meta=meta, lambdas=result.cv.lambdas)
    logging.info(f"[OK] {len(result.pos)} positive / {len(result.neg)} negative features.")
    logging.info(f"     Model: {output}")


def cmd_score(args: argparse.Namespace) -> None:
    cfg = _config_from_args(args)
    logging.info(f"--- Scoring {Path(args.expression).name} with model {args.model} ---")
    path = score_from_model_dir(args.expression, args.gene_sets, args.model, args.output, cfg=cfg)
    logging.info(f"[OK] Scores saved to: {path}")


def cmd_run(args: argparse.Namespace) -> None:
    logging.info(LOGO)
    logging.info("Starting Full SPRA Pipeline")
    logging.info("-" * 40)
    cfg = _config_from_args(args)
    run_full_pipeline(
        expression=args.expression,
        phenotype=args.phenotype,
        gene_sets=args.gene_sets,
        output_dir=args.output,
        validation=args.validation,
        cfg=cfg,
    )


def _add_model_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--alpha", type=float, help="Elastic mixing between group (0) and lasso (1) penalty")
    p.add_argument("--family", choices=["binomial", "gaussian"])
    p.add_argument("--lambda-min", type=float)
    p.add_argument("--nlambda", type=int)
    p.add_argument("--nfolds", type=int)
    p.add_argument("--seed", type=int)
    p.add_argument("--maxit", type=int)
    p.add_argument("--workers", type=int, help="Parallel CV folds")
    p.add_argument("--response-column", help="Phenotype column holding the response (default: Type)")
    p.add_argument("--positive-label", help="Label coded as 1 when the response column is not numeric")
    p.add_argument("--device", help="torch device for the solver, e.g. cpu or cuda")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="spra", description="Sparse-group regularized signature scoring")
    p.add_argument("--verbose", action="store_true", help="Enable verbose debug logging")
    p.add_argument("--config", default=None, help="JSON file overriding the default configuration")
    sub = p.add_subparsers(dest="command", required=True)

    groups_help = "Gene groups as a .gmt file or a JSON object {name: [genes]}"

    e = sub.add_parser("expand", help="Build the group-expanded latent matrix")
    e.add_argument("--expression", required=True, help="Tab-delimited genes x samples table")
    e.add_argument("--gene-sets", required=True, help=groups_help)
    e.add_argument("--output", default="result/model_data")
    e.set_defaults(func=cmd_expand)

    f = sub.add_parser("fit", help="Cross-validate the sparse-group model and save the signature")
    f.add_argument("--expression", required=True)
    f.add_argument("--phenotype", required=True, help="Tab-delimited sample sheet with a 'Type' column")
    f.add_argument("--gene-sets", required=True, help=groups_help)
    f.add_argument("--output", default="result/model")
    f.add_argument("--no-plots", action="store_true", help="Skip the CV error and coefficient plots")
    _add_model_args(f)
    f.set_defaults(func=cmd_fit)

    s = sub.add_parser("score", help="Score samples with a saved signature")
    s.add_argument("--expression", required=True)
    s.add_argument("--gene-sets", required=True, help=groups_help)
    s.add_argument("--model", required=True, help="Directory written by 'spra fit'")
    s.add_argument("--output", default="result/scores.tsv")
    s.add_argument("--kcdf", choices=["none", "gaussian"])
    s.set_defaults(func=cmd_score)

    r = sub.add_parser("run", help="Run full pipeline")
    r.add_argument("--expression", required=True)
    r.add_argument("--phenotype", required=True)
    r.add_argument("--gene-sets", required=True, help=groups_help)
    r.add_argument("--validation", default=None, help="Expression table to score instead of the training data")
    r.add_argument("--output", default="result")
    r.add_argument("--kcdf", choices=["none", "gaussian"])
    _add_model_args(r)
    r.set_defaults(func=cmd_run)

    return p


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    try:
        args.func(args)
    except KeyboardInterrupt:
        logging.info("\nAborted by user.")
        sys.exit(1)
    except Exception as e:
        if args.verbose:
            logging.exception("Fatal error occurred:")
        else:
            logging.error(f"[ERROR] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
