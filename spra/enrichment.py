from __future__ import annotations

import logging
import warnings
from typing import Iterable, Mapping, Union

import gseapy as gp
import numpy as np
import pandas as pd
from scipy.stats import norm

from .errors import ConsistencyWarning, EmptySignatureError, ParameterRangeError
from .expansion import GroupDefinition, expand_features

LOGGER = logging.getLogger(__name__)

KCDF_CHOICES = ("none", "gaussian")


def _gaussian_kcdf(values: np.ndarray) -> np.ndarray:
    """Per-feature Gaussian kernel estimate of the CDF across samples (bandwidth sd/4)."""
    bw = values.std(axis=0, ddof=1) / 4.0 if values.shape[0] > 1 else np.ones(values.shape[1])
    bw = np.where(bw > 0, bw, 1.0)
    out = np.empty_like(values)
    for i in range(values.shape[0]):
        out[i] = norm.cdf((values[i] - values) / bw).mean(axis=0)
    return out


def ssgsea(
    X: pd.DataFrame,
    gene_sets: Mapping[str, Iterable[str]],
    alpha: float = 0.25,
    normalize: bool = True,
    abs_ranking: bool = True,
    kcdf: str = "none",
) -> pd.DataFrame:
    """
    Single-sample GSEA enrichment scores computed with ``gseapy.ssgsea``.

    Features are rank-normalized within each sample (on absolute values by
    default) and set members are weighted by ``rank**alpha``.

    Args:
        X: Samples x features matrix.
        gene_sets: Set name -> member feature names.
        alpha: Exponent applied to the ranks of set members.
        normalize: Return gseapy's NES (ES divided by the range of all
            scores) instead of the raw ES.
        abs_ranking: Rank on absolute values.
        kcdf: ``"gaussian"`` replaces each feature by its kernel CDF estimate
            across samples before ranking; ``"none"`` ranks the values directly.

    Returns:
        DataFrame of scores (samples x sets), indexed like ``X``.
    """
    if kcdf not in KCDF_CHOICES:
        raise ParameterRangeError(f"kcdf must be one of {KCDF_CHOICES}, got '{kcdf}'.")

    features = [str(c) for c in X.columns]
    present = set(features)
    sets = {}
    for name, members in gene_sets.items():
        hits = [str(m) for m in members if str(m) in present]
        if not hits:
            raise EmptySignatureError(f"Gene set '{name}' has no feature in the matrix.")
        sets[str(name)] = hits

    values = X.to_numpy(dtype=float)
    if kcdf == "gaussian":
        values = _gaussian_kcdf(values)
    if abs_ranking:
        values = np.abs(values)

    # positional sample labels so gseapy never has to round-trip the index
    labels = [f"sample_{i}" for i in range(values.shape[0])]
    data = pd.DataFrame(values.T, index=features, columns=labels)
    ss = gp.ssgsea(
        data=data,
        gene_sets=sets,
        outdir=None,
        sample_norm_method="rank",
        weight=alpha,
        min_size=1,
        max_size=max(len(features), 1),
        permutation_num=0,
        threads=1,
        no_plot=True,
        verbose=False,
    )

    column = "NES" if normalize else "ES"
    res = ss.res2d.copy()
    res[column] = res[column].astype(float)
    es = res.pivot(index="Name", columns="Term", values=column)
    es = es.reindex(index=labels, columns=list(sets))
    es.index = X.index
    es.columns = list(gene_sets)
    return es


def feature_weights(coefficients: Union[pd.DataFrame, pd.Series]) -> pd.Series:
    """``|coefficient| + 1`` per latent feature."""
    if isinstance(coefficients, pd.DataFrame):
        coefficients = coefficients["coefficients"]
    return (coefficients.astype(float).abs() + 1.0).rename("Weights")


def weight_features(latent: pd.DataFrame, weights: pd.Series) -> pd.DataFrame:
    """Scale the latent columns that have a weight; other columns are left as is."""
    common = latent.columns.intersection(weights.index)
    weighted = latent.copy()
    if len(common):
        weighted[common] = latent[common] * weights[common]
    return weighted


def check_sample_order(expected: pd.Index, observed: pd.Index) -> bool:
    if len(expected) == len(observed) and (expected == observed).all():
        LOGGER.debug("The sample order of the enrichment scores matches the input.")
        return True
    msg = "The sample order of the enrichment scores does not match the input; re-aligning by sample id."
    LOGGER.warning(msg)
    warnings.warn(msg, ConsistencyWarning, stacklevel=2)
    return False


def calculate_total_score(
    expression: pd.DataFrame,
    groups: GroupDefinition,
    coefficients: Union[pd.DataFrame, pd.Series],
    pos: Iterable[str],
    neg: Iterable[str],
    alpha: float = 0.25,
    normalize: bool = True,
    kcdf: str = "none",
) -> pd.DataFrame:
    """
    Score samples with a fitted signature: ``Score = ES(Pos) - ES(Neg)``.

    ``expression`` (samples x genes) is expanded with the training groups,
    the latent columns are weighted by ``|coefficient| + 1`` and ssGSEA is run
    on the positive and the negative set. A set that is empty, or whose
    features are all missing from ``expression``, scores 0.0 for every sample;
    if both are, ``EmptySignatureError`` is raised.

    Returns:
        DataFrame indexed by sample with columns ``Pos``, ``Neg``, ``Score``, ``Sample``.
    """
    expanded = expand_features(expression, groups, strict=False)
    latent = expanded.latent
    weighted = weight_features(latent, feature_weights(coefficients))

    columns = set(weighted.columns)
    gene_sets = {}
    for name, members in (("Pos", pos), ("Neg", neg)):
        present = [m for m in members if m in columns]
        if present:
            gene_sets[name] = present
        else:
            LOGGER.warning(f"Signature set '{name}' has no feature in the data; its score is set to 0.0.")
    if not gene_sets:
        raise EmptySignatureError("Both the positive and the negative signature sets are empty.")

    es = ssgsea(weighted, gene_sets, alpha=alpha, normalize=normalize, kcdf=kcdf)
    if not check_sample_order(latent.index, es.index):
        es = es.reindex(latent.index)

    result = pd.DataFrame(index=latent.index)
    for name in ("Pos", "Neg"):
        result[name] = es[name] if name in es.columns else 0.0
    result["Score"] = result["Pos"] - result["Neg"]
    result["Sample"] = result.index
    return result
