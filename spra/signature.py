from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

import numpy as np
import pandas as pd

from .errors import LambdaResolutionError
from .solver import FittedModel

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignatureSets:
    """Positive / negative latent features of a fitted model at one lambda."""

    pos: List[str]
    neg: List[str]
    coefficients: pd.DataFrame
    lambda_: float
    lambda_index: int

    @property
    def pos_coefficients(self) -> pd.DataFrame:
        return self.coefficients.loc[self.pos]

    @property
    def neg_coefficients(self) -> pd.DataFrame:
        return self.coefficients.loc[self.neg]

    @property
    def gene_sets(self) -> dict:
        return {"Pos": list(self.pos), "Neg": list(self.neg)}


def resolve_lambda_index(lambdas, lam: float, tolerance: float = 1e-6) -> int:
    """Position of ``lam`` on the path, matched within ``tolerance``."""
    lambdas = np.asarray(lambdas, dtype=float)
    dist = np.abs(lambdas - float(lam))
    hits = np.flatnonzero(dist < tolerance)
    if hits.size == 0:
        raise LambdaResolutionError(
            f"lambda={lam:.6g} is not on the path (closest {lambdas[np.argmin(dist)]:.6g}, "
            f"tolerance {tolerance:g})."
        )
    return int(hits[np.argmin(dist[hits])])


def extract_signature(fit: FittedModel, lam: float, tolerance: float = 1e-6) -> SignatureSets:
    """
    Split the coefficients at ``lam`` into positive and negative feature sets.

    Features with a coefficient of exactly zero belong to neither set.
    """
    idx = resolve_lambda_index(fit.lambdas, lam, tolerance)
    coefficients = fit.coef_at(idx).to_frame()

    values = coefficients["coefficients"]
    pos = values.index[values > 0].tolist()
    neg = values.index[values < 0].tolist()
    LOGGER.info(
        f"   🧾 [Signature] lambda={fit.lambdas[idx]:.4g}: {len(pos)} positive, {len(neg)} negative "
        f"of {len(values)} latent features."
    )
    return SignatureSets(
        pos=pos,
        neg=neg,
        coefficients=coefficients,
        lambda_=float(fit.lambdas[idx]),
        lambda_index=idx,
    )
