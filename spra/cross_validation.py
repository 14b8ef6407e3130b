from __future__ import annotations

import concurrent.futures
import logging
import warnings
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np
import pandas as pd

from .errors import NumericalDegeneracyError, NumericalDegeneracyWarning, ParameterRangeError
from .solver import (
    Family,
    FittedModel,
    ModelInputs,
    check_alpha,
    check_inputs,
    check_lambda_path,
    fit_sgl,
    get_family,
    lambda_sequence,
)

LOGGER = logging.getLogger(__name__)


@dataclass
class CVResult:
    """
    Outcome of k-fold cross-validation over a lambda path.

    ``fold_errors`` holds one row per lambda and one column per fold; cells
    with a non-finite loss are NaN and are left out of ``mean_errors``.
    """

    fold_errors: pd.DataFrame
    mean_errors: np.ndarray
    sd_errors: np.ndarray
    lambdas: np.ndarray
    best_index: int
    fold_ids: np.ndarray
    fit: FittedModel

    @property
    def best_lambda(self) -> float:
        return float(self.lambdas[self.best_index])

    @property
    def n_folds(self) -> int:
        return self.fold_errors.shape[1]

    @property
    def best_coefficients(self) -> pd.Series:
        return self.fit.coef_at(self.best_index)


def assign_folds(nobs: int, nfolds: int, rng: np.random.Generator) -> np.ndarray:
    """0-based fold id per observation; fold sizes differ by at most one."""
    return rng.permutation(np.resize(np.arange(nfolds), nobs))


def cv_errors_for_fold(
    inputs: ModelInputs,
    fold_ids: np.ndarray,
    fold: int,
    family: Family,
    alpha: float,
    lambdas: np.ndarray,
    **solver_kwargs,
) -> np.ndarray:
    """Held-out loss of fold ``fold`` for every lambda on the path."""
    train = fold_ids != fold
    test = ~train
    fit = fit_sgl(
        inputs.x[train], inputs.y[train], inputs.index,
        family=family, offset=inputs.offset[train], alpha=alpha, lambdas=lambdas,
        grp_weights=inputs.grp_weights, ind_weights=inputs.ind_weights,
        **solver_kwargs,
    )
    eta = fit.predict(inputs.x[test], offset=inputs.offset[test])
    y_test = inputs.y[test]
    return np.array([family.cv_error(y_test, eta[:, j]) for j in range(len(lambdas))])


def _select_lambda(errors: np.ndarray):
    errors = np.where(np.isfinite(errors), errors, np.nan)
    n_bad = int(np.isnan(errors).sum())
    if n_bad:
        msg = f"{n_bad} fold/lambda cell(s) gave a non-finite loss and are excluded from the mean."
        LOGGER.warning(msg)
        warnings.warn(msg, NumericalDegeneracyWarning, stacklevel=3)

    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=RuntimeWarning)
        mean = np.nanmean(errors, axis=1)
        sd = np.nanstd(errors, axis=1)
    if np.all(np.isnan(mean)):
        raise NumericalDegeneracyError("No lambda on the path has a finite cross-validation error.")
    # nanargmin keeps the first minimum along the path
    return errors, mean, sd, int(np.nanargmin(mean))


def cv_sgl(
    x,
    y,
    index,
    family: Union[str, Family] = "binomial",
    offset=None,
    alpha: float = 0.95,
    lambdas=None,
    lambda_min: float = 0.1,
    nlambda: int = 20,
    maxit: int = 1000,
    thresh: float = 1e-3,
    gamma: float = 0.8,
    step: float = 1.0,
    standardize: bool = False,
    grp_weights=None,
    ind_weights=None,
    nfolds: int = 10,
    seed: Optional[int] = 123456,
    workers: int = 1,
    device=None,
) -> CVResult:
    """
    Choose lambda for a sparse-group model by k-fold cross-validation.

    Every fold is fitted over the whole path, the held-out loss (MSE for
    gaussian, binary cross-entropy for binomial) is averaged per lambda, and
    the first minimum is selected. The final model is refitted on all
    observations with the same path.
    """
    fam = get_family(family)
    alpha = check_alpha(alpha)
    inputs = check_inputs(x, y, index, offset, grp_weights, ind_weights)
    fam.check_response(inputs.y)
    nobs = inputs.nobs
    nfolds = int(nfolds)
    if not 2 <= nfolds <= nobs:
        raise ParameterRangeError(f"'nfolds' must be between 2 and the number of observations ({nobs}).")

    if lambdas is None:
        x_path = inputs.x
        if standardize:
            sd = x_path.std(axis=0)
            sd[sd == 0] = 1.0
            x_path = (x_path - x_path.mean(axis=0)) / sd
        lambdas = lambda_sequence(
            x_path, inputs.y, inputs.index, fam, lambda_min, nlambda, alpha,
            inputs.grp_weights, inputs.ind_weights, inputs.offset,
        )
    else:
        lambdas = check_lambda_path(lambdas)

    solver_kwargs = dict(maxit=maxit, thresh=thresh, gamma=gamma, step=step,
                         standardize=standardize, device=device)

    rng = np.random.default_rng(seed)
    fold_ids = assign_folds(nobs, nfolds, rng)
    errors = np.full((len(lambdas), nfolds), np.nan)

    max_workers = max(1, int(workers))
    LOGGER.debug(f"Cross-validating {len(lambdas)} lambdas over {nfolds} folds ({max_workers} worker(s)).")
    with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_to_fold = {
            executor.submit(
                cv_errors_for_fold, inputs, fold_ids, i, fam, alpha, lambdas, **solver_kwargs
            ): i for i in range(nfolds)
        }
        for future in concurrent.futures.as_completed(future_to_fold):
            i = future_to_fold[future]
            errors[:, i] = future.result()
            LOGGER.debug(f"   fold {i + 1}/{nfolds} done")

    errors, mean, sd, best = _select_lambda(errors)

    fit = fit_sgl(
        x, inputs.y, inputs.index, family=fam, offset=inputs.offset,
        alpha=alpha, lambdas=lambdas,
        grp_weights=inputs.grp_weights, ind_weights=inputs.ind_weights,
        **solver_kwargs,
    )

    fold_errors = pd.DataFrame(
        errors,
        index=pd.Index(lambdas, name="lambda"),
        columns=[f"fold{i + 1}" for i in range(nfolds)],
    )
    return CVResult(
        fold_errors=fold_errors,
        mean_errors=mean,
        sd_errors=sd,
        lambdas=lambdas,
        best_index=best,
        fold_ids=fold_ids,
        fit=fit,
    )
