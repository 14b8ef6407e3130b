from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Union

import numpy as np
import pandas as pd

from .config import config as DEFAULT_CONFIG
from .cross_validation import CVResult, cv_sgl
from .enrichment import calculate_total_score
from .evaluation import cv_summary, score_auc
from .expansion import ExpandedFeatures, GroupDefinition, expand_features
from .io import (
    load_model_artifacts,
    read_expression,
    read_gene_sets,
    read_phenotype,
    save_model_artifacts,
    write_model_data,
    write_scores,
)
from .plotting import plot_coefficients, plot_cv_errors
from .signature import SignatureSets, extract_signature
from .solver import FittedModel

LOGGER = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def _as_expression(expression: Union[PathLike, pd.DataFrame]) -> pd.DataFrame:
    if isinstance(expression, pd.DataFrame):
        return expression
    return read_expression(expression)


def _as_gene_sets(gene_sets: Union[PathLike, GroupDefinition]) -> GroupDefinition:
    if isinstance(gene_sets, (str, Path)):
        return read_gene_sets(gene_sets)
    return gene_sets


def generate_model_data(
    expression: Union[PathLike, pd.DataFrame],
    gene_sets: Union[PathLike, GroupDefinition],
) -> ExpandedFeatures:
    """Latent matrix and group vector of an expression table (path or samples x genes frame)."""
    X = _as_expression(expression)
    expanded = expand_features(X, _as_gene_sets(gene_sets), strict=True)
    LOGGER.info(
        f"   🧩 [Expand] {X.shape[1]} genes -> {expanded.latent.shape[1]} latent features "
        f"in {len(expanded.group_names)} groups."
    )
    return expanded


@dataclass
class SGRResult:
    """Cross-validated sparse-group model and the signature extracted from it."""

    cv: CVResult
    signature: SignatureSets
    plots: List[Path] = field(default_factory=list)

    @property
    def fit(self) -> FittedModel:
        return self.cv.fit

    @property
    def coefficients(self) -> pd.DataFrame:
        return self.signature.coefficients

    @property
    def pos(self) -> List[str]:
        return self.signature.pos

    @property
    def neg(self) -> List[str]:
        return self.signature.neg

    @property
    def pos_coefficients(self) -> pd.DataFrame:
        return self.signature.pos_coefficients

    @property
    def neg_coefficients(self) -> pd.DataFrame:
        return self.signature.neg_coefficients


def sgr_analysis(
    latent: pd.DataFrame,
    y,
    groups,
    alpha: float = DEFAULT_CONFIG['alpha'],
    lambda_min: float = DEFAULT_CONFIG['lambda_min'],
    tolerance: float = DEFAULT_CONFIG['tolerance'],
    nfolds: int = DEFAULT_CONFIG['nfolds'],
    seed: int = DEFAULT_CONFIG['seed'],
    plot_dir: Optional[PathLike] = None,
    family: str = DEFAULT_CONFIG['family'],
    nlambda: int = DEFAULT_CONFIG['nlambda'],
    maxit: int = DEFAULT_CONFIG['maxit'],
    thresh: float = DEFAULT_CONFIG['thresh'],
    gamma: float = DEFAULT_CONFIG['gamma'],
    step: float = DEFAULT_CONFIG['step'],
    standardize: bool = DEFAULT_CONFIG['standardize'],
    lambdas=None,
    workers: int = DEFAULT_CONFIG['workers'],
    device=None,
) -> SGRResult:
    """
    Cross-validate a sparse-group model on the latent matrix and extract the signature.

    The lambda path is computed once from the full data and shared by every
    fold and by the final refit. With ``plot_dir`` set, the CV curve and the
    coefficient plot are written there as PDF files.
    """
    if isinstance(y, pd.Series) and isinstance(latent, pd.DataFrame) and not isinstance(y.index, pd.RangeIndex):
        if set(y.index) == set(latent.index):
            y = y.reindex(latent.index)
    y = np.asarray(y, dtype=float)

    cv = cv_sgl(
        latent, y, groups, family=family, alpha=alpha, lambdas=lambdas,
        lambda_min=lambda_min, nlambda=nlambda, maxit=maxit, thresh=thresh,
        gamma=gamma, step=step, standardize=standardize, nfolds=nfolds, seed=seed, workers=workers, device=device,
    )
    LOGGER.info(
        f"   📉 [CV] best lambda = {cv.best_lambda:.4g} (index {cv.best_index + 1}/{len(cv.lambdas)}), "
        f"mean CV error = {cv.mean_errors[cv.best_index]:.4f}"
    )

    signature = extract_signature(cv.fit, cv.best_lambda, tolerance)
    result = SGRResult(cv=cv, signature=signature)

    if plot_dir is not None:
        plot_dir = _ensure_dir(Path(plot_dir))
        cv_plot = plot_dir / f"cv_errors_{alpha}.pdf"
        coef_plot = plot_dir / f"coefficients_{alpha}.pdf"
        plot_cv_errors(cv, cv_plot)
        plot_coefficients(signature.coefficients, coef_plot, lambda_=signature.lambda_)
        result.plots = [cv_plot, coef_plot]
    return result


def score_samples(
    expression: Union[PathLike, pd.DataFrame],
    gene_sets: Union[PathLike, GroupDefinition],
    coefficients: pd.DataFrame,
    pos: Iterable[str],
    neg: Iterable[str],
    ssgsea_alpha: float = DEFAULT_CONFIG['ssgsea_alpha'],
    normalize: bool = DEFAULT_CONFIG['ssgsea_normalize'],
    kcdf: str = DEFAULT_CONFIG['kcdf'],
) -> pd.DataFrame:
    """Per-sample ``Pos``, ``Neg`` and ``Score`` for (possibly new) expression data."""
    X = _as_expression(expression)
    return calculate_total_score(
        X, _as_gene_sets(gene_sets), coefficients, list(pos), list(neg),
        alpha=ssgsea_alpha, normalize=normalize, kcdf=kcdf,
    )


def run_full_pipeline(
    expression: PathLike,
    phenotype: PathLike,
    gene_sets: PathLike,
    output_dir: PathLike,
    validation: Optional[PathLike] = None,
    cfg: Optional[dict] = None,
) -> Path:
    """
    Expand, fit, extract and score in one run.

    Output layout::

        output_dir/model/        coefficients.tsv, pos.txt, neg.txt, cv_errors.tsv, lambda_path.tsv, model.json
        output_dir/plots/        cv_errors_<alpha>.pdf, coefficients_<alpha>.pdf
        output_dir/cv_summary.tsv
        output_dir/scores.tsv    (training data, or ``validation`` when given)
    """
    cfg = dict(DEFAULT_CONFIG) if cfg is None else cfg
    output_dir = _ensure_dir(Path(output_dir))

    # 1. Expand
    LOGGER.info("\n[1/4] 🧩 Expanding expression by gene groups...")
    X = read_expression(expression)
    groups = read_gene_sets(gene_sets)
    expanded = generate_model_data(X, groups)

    # 2. Fit
    LOGGER.info(f"\n[2/4] 🤖 Cross-validating sparse-group model (alpha={cfg['alpha']}, folds={cfg['nfolds']})...")
    y = read_phenotype(
        phenotype, column=cfg['response_column'], samples=X.index, positive_label=cfg['positive_label'],
    )
    result = sgr_analysis(
        expanded.latent, y, expanded.groups,
        alpha=cfg['alpha'], lambda_min=cfg['lambda_min'], tolerance=cfg['tolerance'],
        nfolds=cfg['nfolds'], seed=cfg['seed'], plot_dir=output_dir / cfg['plot_dir'],
        family=cfg['family'], nlambda=cfg['nlambda'], maxit=cfg['maxit'], thresh=cfg['thresh'],
        gamma=cfg['gamma'], step=cfg['step'], standardize=cfg['standardize'],
        workers=cfg['workers'], device=cfg['device'],
    )

    # 3. Save
    LOGGER.info("\n[3/4] 📋 Saving model artifacts...")
    meta = {
        'family': result.fit.family.name,
        'alpha': result.fit.alpha,
        'lambda': result.signature.lambda_,
        'lambda_index': result.signature.lambda_index,
        'nfolds': cfg['nfolds'],
        'seed': cfg['seed'],
        'n_pos': len(result.pos),
        'n_neg': len(result.neg),
    }
    save_model_artifacts(
        output_dir / "model", result.coefficients, result.pos, result.neg,
        fold_errors=result.cv.fold_errors, meta=meta, lambdas=result.cv.lambdas,
    )
    write_model_data(expanded.latent, expanded.groups, output_dir / "model_data")
    cv_summary(result.cv).to_csv(output_dir / "cv_summary.tsv", sep="\t", index=False)

    # 4. Score
    target = validation if validation is not None else expression
    LOGGER.info(f"\n[4/4] 🎯 Scoring samples in {Path(target).name}...")
    scores = score_samples(
        read_expression(target) if validation is not None else X,
        groups, result.coefficients, result.pos, result.neg,
        ssgsea_alpha=cfg['ssgsea_alpha'], normalize=cfg['ssgsea_normalize'], kcdf=cfg['kcdf'],
    )
    if validation is None and cfg['family'] == 'binomial':
        LOGGER.info(f"   Training AUC of the signature score: {score_auc(scores['Score'], y):.3f}")
    scores_path = write_scores(scores, output_dir / "scores.tsv")

    LOGGER.info(f"\n[DONE] Final output at: {output_dir}")
    return scores_path


def score_from_model_dir(
    expression: PathLike,
    gene_sets: PathLike,
    model_dir: PathLike,
    output_path: PathLike,
    cfg: Optional[dict] = None,
) -> Path:
    """Score an expression file with artifacts written by ``run_full_pipeline``."""
    cfg = dict(DEFAULT_CONFIG) if cfg is None else cfg
    artifacts = load_model_artifacts(model_dir)
    scores = score_samples(
        expression, gene_sets, artifacts.coefficients, artifacts.pos, artifacts.neg,
        ssgsea_alpha=cfg['ssgsea_alpha'], normalize=cfg['ssgsea_normalize'], kcdf=cfg['kcdf'],
    )
    return write_scores(scores, output_path)
