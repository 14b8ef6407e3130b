"""
Sparse-group lasso solver for linear and logistic models.

Penalty for a coefficient vector ``b`` split into groups ``g``::

    lambda * ((1 - alpha) * sum_g w_g * sqrt(p_g) * ||b_g||_2 + alpha * sum_i v_i * |b_i|)

The intercept is never penalized. Each lambda of the path is solved by
proximal gradient descent with backtracking, warm-started from the previous
solution. Gradients come from torch autograd.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union

import numpy as np
import pandas as pd
import torch
import torch.nn.functional as F
from scipy.optimize import brentq

from .errors import InputShapeError, ParameterRangeError

LOGGER = logging.getLogger(__name__)

DTYPE = torch.float64


def _sigmoid(eta: np.ndarray) -> np.ndarray:
    with np.errstate(over="ignore"):
        return 1.0 / (1.0 + np.exp(-eta))


def _gaussian_null(y: np.ndarray, offset: np.ndarray) -> float:
    return float(np.mean(y - offset))


def _binomial_null(y: np.ndarray, offset: np.ndarray) -> float:
    p = float(np.clip(np.mean(y), 1e-10, 1 - 1e-10))
    b0 = np.log(p / (1 - p))
    if np.any(offset != 0):
        # Newton steps on the intercept-only likelihood
        for _ in range(25):
            mu = _sigmoid(b0 + offset)
            w = np.mean(mu * (1 - mu))
            if w <= 0:
                break
            b0 -= np.mean(mu - y) / w
    return float(b0)


def _gaussian_cv_error(y: np.ndarray, eta: np.ndarray) -> float:
    return float(np.mean((y - eta) ** 2))


def _binomial_cv_error(y: np.ndarray, eta: np.ndarray) -> float:
    # log(1 + e^eta) - y*eta; only a non-finite eta gives a non-finite loss
    with np.errstate(invalid="ignore"):
        return float(np.mean(np.logaddexp(0.0, eta) - y * eta))


def _gaussian_check(y: np.ndarray) -> None:
    if not np.all(np.isfinite(y)):
        raise ParameterRangeError("the response 'y' must be finite for the gaussian family.")


def _binomial_check(y: np.ndarray) -> None:
    labels = set(np.unique(y).tolist())
    if not labels <= {0.0, 1.0}:
        raise ParameterRangeError(
            f"the response 'y' must be coded 0/1 for the binomial family, got {sorted(labels)[:5]}."
        )


@dataclass(frozen=True)
class Family:
    name: str
    loss: Callable[[torch.Tensor, torch.Tensor], torch.Tensor]
    inverse_link: Callable[[np.ndarray], np.ndarray]
    null_intercept: Callable[[np.ndarray, np.ndarray], float]
    cv_error: Callable[[np.ndarray, np.ndarray], float]
    check_response: Callable[[np.ndarray], None]


FAMILIES: Dict[str, Family] = {
    "gaussian": Family(
        name="gaussian",
        loss=lambda eta, y: 0.5 * torch.mean((y - eta) ** 2),
        inverse_link=lambda eta: eta,
        null_intercept=_gaussian_null,
        cv_error=_gaussian_cv_error,
        check_response=_gaussian_check,
    ),
    "binomial": Family(
        name="binomial",
        loss=lambda eta, y: F.binary_cross_entropy_with_logits(eta, y),
        inverse_link=_sigmoid,
        null_intercept=_binomial_null,
        cv_error=_binomial_cv_error,
        check_response=_binomial_check,
    ),
}


def get_family(family: Union[str, Family]) -> Family:
    if isinstance(family, Family):
        return family
    try:
        return FAMILIES[str(family).lower()]
    except KeyError:
        raise ParameterRangeError(
            f"Unknown family '{family}'. Choose one of: {', '.join(FAMILIES)}."
        ) from None


@dataclass
class ModelInputs:
    x: np.ndarray
    y: np.ndarray
    index: np.ndarray
    offset: np.ndarray
    grp_weights: np.ndarray
    ind_weights: np.ndarray
    feature_names: List[str]

    @property
    def nobs(self) -> int:
        return self.x.shape[0]


def check_alpha(alpha: float) -> float:
    alpha = float(alpha)
    if not 0.0 <= alpha <= 1.0:
        raise ParameterRangeError("the argument 'alpha' must be between 0 and 1.")
    return alpha


def check_lambda_path(lambdas) -> np.ndarray:
    lam = np.asarray(lambdas, dtype=float)
    if lam.ndim != 1 or lam.size == 0:
        raise ParameterRangeError("the lambda path must be a non-empty 1-D sequence.")
    if not np.all(np.isfinite(lam)) or np.any(lam <= 0):
        raise ParameterRangeError("the lambda path must contain positive, finite values only.")
    return lam


def _as_vector(v, name: str) -> np.ndarray:
    arr = np.asarray(v)
    if arr.ndim == 2 and 1 in arr.shape:
        arr = arr.ravel()
    if arr.ndim != 1:
        raise InputShapeError(f"the argument '{name}' must be a vector.")
    return arr


def check_inputs(x, y, index, offset=None, grp_weights=None, ind_weights=None) -> ModelInputs:
    """Validate and normalize the arguments shared by fitting and cross-validation."""
    if isinstance(x, pd.DataFrame):
        feature_names = [str(c) for c in x.columns]
        x = x.to_numpy()
    else:
        feature_names = None
    try:
        x = np.asarray(x, dtype=float)
    except (TypeError, ValueError) as e:
        raise InputShapeError(f"the argument 'x' must be a numeric matrix: {e}") from e
    if x.ndim != 2 or x.shape[1] < 2:
        raise InputShapeError("the argument 'x' must be a matrix with 2 or more columns.")
    if not np.all(np.isfinite(x)):
        raise InputShapeError("the argument 'x' must not contain missing or infinite values.")
    nobs, nvar = x.shape
    if feature_names is None:
        feature_names = [f"X{i}" for i in range(1, nvar + 1)]

    y = _as_vector(y, "y").astype(float)
    if len(y) != nobs:
        raise InputShapeError(
            f"the length of 'y' ({len(y)}) is not equal to the number of rows of 'x' ({nobs})."
        )
    index = _as_vector(index, "index")
    if len(index) != nvar:
        raise InputShapeError(
            f"the length of 'index' ({len(index)}) is not equal to the number of columns of 'x' ({nvar})."
        )

    offset = np.zeros(nobs) if offset is None else _as_vector(offset, "offset").astype(float)
    if len(offset) != nobs:
        raise InputShapeError(
            f"the length of 'offset' ({len(offset)}) is not equal to the number of rows of 'x' ({nobs})."
        )

    n_groups = len(np.unique(index))
    grp_weights = np.ones(n_groups) if grp_weights is None else _as_vector(grp_weights, "grp_weights").astype(float)
    if len(grp_weights) != n_groups:
        raise InputShapeError(
            f"the length of 'grp_weights' ({len(grp_weights)}) is not equal to the number of "
            f"unique elements of 'index' ({n_groups})."
        )
    ind_weights = np.ones(nvar) if ind_weights is None else _as_vector(ind_weights, "ind_weights").astype(float)
    if len(ind_weights) != nvar:
        raise InputShapeError(
            f"the length of 'ind_weights' ({len(ind_weights)}) is not equal to the number of columns of 'x' ({nvar})."
        )
    if np.any(grp_weights < 0) or np.any(ind_weights < 0):
        raise ParameterRangeError("penalty weights must be non-negative.")

    return ModelInputs(
        x=x, y=y, index=index, offset=offset,
        grp_weights=grp_weights, ind_weights=ind_weights,
        feature_names=feature_names,
    )


def _group_codes(index: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Map arbitrary group labels to 0..G-1 codes, plus each group's size."""
    _, codes = np.unique(index, return_inverse=True)
    sizes = np.bincount(codes)
    return codes, sizes


def _group_lambda_max(grad: np.ndarray, v: np.ndarray, w: float, alpha: float) -> float:
    """Smallest lambda that keeps one group at zero given the null-model gradient."""
    if not np.any(grad != 0):
        return 0.0
    penalized = v > 0
    if alpha == 1.0:
        return float(np.max(np.abs(grad[penalized]) / v[penalized])) if penalized.any() else 0.0

    def f(lam):
        soft = np.sign(grad) * np.maximum(np.abs(grad) - alpha * lam * v, 0.0)
        return np.linalg.norm(soft) - (1 - alpha) * lam * w

    if w > 0:
        hi = np.linalg.norm(grad) / ((1 - alpha) * w)
    elif alpha > 0 and penalized.any():
        hi = float(np.max(np.abs(grad[penalized]) / v[penalized])) / alpha
    else:
        return 0.0
    if f(hi) >= 0:
        return float(hi)
    return float(brentq(f, 0.0, hi))


def lambda_sequence(
    x,
    y,
    index,
    family: Union[str, Family] = "binomial",
    lambda_min: float = 0.1,
    nlambda: int = 20,
    alpha: float = 0.95,
    grp_weights=None,
    ind_weights=None,
    offset=None,
) -> np.ndarray:
    """
    Log-spaced decreasing lambda path from ``lambda_max`` down to
    ``lambda_max * lambda_min``.
    """
    fam = get_family(family)
    alpha = check_alpha(alpha)
    if not 0 < lambda_min < 1:
        raise ParameterRangeError("'lambda_min' must lie strictly between 0 and 1.")
    if int(nlambda) < 1:
        raise ParameterRangeError("'nlambda' must be at least 1.")
    inp = check_inputs(x, y, index, offset, grp_weights, ind_weights)
    fam.check_response(inp.y)

    b0 = fam.null_intercept(inp.y, inp.offset)
    resid = inp.y - fam.inverse_link(b0 + inp.offset)
    grad = inp.x.T @ resid / inp.nobs

    codes, sizes = _group_codes(inp.index)
    gw = inp.grp_weights * np.sqrt(sizes)
    lmax = max(
        _group_lambda_max(grad[codes == g], inp.ind_weights[codes == g], gw[g], alpha)
        for g in range(len(sizes))
    )
    if not np.isfinite(lmax) or lmax <= 0:
        raise ParameterRangeError("cannot derive a lambda path: the null model already fits the data.")
    return np.exp(np.linspace(np.log(lmax), np.log(lmax * lambda_min), int(nlambda)))


@dataclass
class FittedModel:
    """Coefficients of a sparse-group model along a lambda path."""

    beta: np.ndarray  # features x lambdas
    intercept: np.ndarray
    lambdas: np.ndarray
    family: Family
    alpha: float
    feature_names: List[str]
    index: np.ndarray
    n_iter: np.ndarray
    converged: np.ndarray

    @property
    def n_lambda(self) -> int:
        return len(self.lambdas)

    def predict(self, x, lambda_index: Optional[int] = None, type: str = "link", offset=None) -> np.ndarray:
        """Linear predictor (``type="link"``) or mean response for one or all lambdas."""
        x = x.to_numpy(dtype=float) if isinstance(x, pd.DataFrame) else np.asarray(x, dtype=float)
        if x.ndim != 2 or x.shape[1] != self.beta.shape[0]:
            raise InputShapeError(
                f"'x' must have {self.beta.shape[0]} columns to match the fitted model."
            )
        if lambda_index is None:
            eta = x @ self.beta + self.intercept
        else:
            eta = x @ self.beta[:, lambda_index] + self.intercept[lambda_index]
        if offset is not None:
            offset = np.asarray(offset, dtype=float)
            eta = eta + (offset if eta.ndim == 1 else offset[:, None])
        if type == "link":
            return eta
        if type == "response":
            return self.family.inverse_link(eta)
        raise ParameterRangeError(f"Unknown prediction type '{type}'.")

    def coef_at(self, lambda_index: int) -> pd.Series:
        return pd.Series(self.beta[:, lambda_index], index=self.feature_names, name="coefficients")

    def coef_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            self.beta,
            index=self.feature_names,
            columns=[f"lambda_{i}" for i in range(self.n_lambda)],
        )


class SparseGroupLasso:
    """Proximal-gradient solver bound to one design matrix and response."""

    def __init__(self, inputs: ModelInputs, family: Family, alpha: float,
                 maxit: int = 1000, thresh: float = 1e-3, gamma: float = 0.8,
                 step: float = 1.0, device=None):
        if not 0 < gamma < 1:
            raise ParameterRangeError("'gamma' must lie strictly between 0 and 1.")
        if step <= 0 or maxit < 1 or thresh <= 0:
            raise ParameterRangeError("'step', 'maxit' and 'thresh' must be positive.")
        self.family = family
        self.alpha = alpha
        self.maxit = int(maxit)
        self.thresh = float(thresh)
        self.gamma = float(gamma)
        self.step = float(step)
        self.device = torch.device(device) if device is not None else torch.device("cpu")

        codes, sizes = _group_codes(inputs.index)
        self.x = torch.as_tensor(inputs.x, dtype=DTYPE, device=self.device)
        self.y = torch.as_tensor(inputs.y, dtype=DTYPE, device=self.device)
        self.offset = torch.as_tensor(inputs.offset, dtype=DTYPE, device=self.device)
        self.codes = torch.as_tensor(codes, dtype=torch.long, device=self.device)
        self.n_groups = len(sizes)
        self.grp_scale = torch.as_tensor(inputs.grp_weights * np.sqrt(sizes), dtype=DTYPE, device=self.device)
        self.ind_weights = torch.as_tensor(inputs.ind_weights, dtype=DTYPE, device=self.device)
        self.b0_null = family.null_intercept(inputs.y, inputs.offset)

    def _loss(self, beta: torch.Tensor, b0: torch.Tensor) -> torch.Tensor:
        eta = self.x @ beta + b0 + self.offset
        return self.family.loss(eta, self.y)

    def _loss_and_grad(self, beta, b0):
        beta = beta.detach().requires_grad_(True)
        b0 = b0.detach().requires_grad_(True)
        loss = self._loss(beta, b0)
        g_beta, g_b0 = torch.autograd.grad(loss, (beta, b0))
        return loss.detach(), g_beta, g_b0

    def prox(self, z: torch.Tensor, t: float, lam: float) -> torch.Tensor:
        """Sparse-group proximal operator: soft-threshold, then group shrinkage."""
        u = torch.sign(z) * torch.clamp(z.abs() - t * self.alpha * lam * self.ind_weights, min=0.0)
        sq = torch.zeros(self.n_groups, dtype=DTYPE, device=self.device).index_add_(0, self.codes, u * u)
        norms = torch.sqrt(sq)
        safe = torch.where(norms > 0, norms, torch.ones_like(norms))
        shrink = torch.clamp(1 - t * (1 - self.alpha) * lam * self.grp_scale / safe, min=0.0)
        shrink = torch.where(norms > 0, shrink, torch.zeros_like(shrink))
        return u * shrink[self.codes]

    def solve(self, lam: float, beta: torch.Tensor, b0: torch.Tensor):
        t = self.step
        converged = False
        it = 0
        with torch.no_grad():
            for it in range(1, self.maxit + 1):
                with torch.enable_grad():
                    f0, g_beta, g_b0 = self._loss_and_grad(beta, b0)
                while True:
                    beta_new = self.prox(beta - t * g_beta, t, lam)
                    b0_new = b0 - t * g_b0
                    d, d0 = beta_new - beta, b0_new - b0
                    f1 = self._loss(beta_new, b0_new)
                    bound = f0 + (g_beta * d).sum() + g_b0 * d0 + ((d * d).sum() + d0 * d0) / (2 * t)
                    if f1 <= bound + 1e-12 or t < 1e-14:
                        break
                    t *= self.gamma
                change = max(float(d.abs().max()), float(d0.abs()))
                beta, b0 = beta_new, b0_new
                scale = max(1.0, float(beta.abs().max()))
                if change <= self.thresh * scale:
                    converged = True
                    break
        return beta, b0, it, converged

    def fit_path(self, lambdas: np.ndarray):
        p = self.x.shape[1]
        beta = torch.zeros(p, dtype=DTYPE, device=self.device)
        b0 = torch.tensor(self.b0_null, dtype=DTYPE, device=self.device)
        betas = np.zeros((p, len(lambdas)))
        intercepts = np.zeros(len(lambdas))
        n_iter = np.zeros(len(lambdas), dtype=int)
        converged = np.zeros(len(lambdas), dtype=bool)
        for k, lam in enumerate(lambdas):
            beta, b0, n_iter[k], converged[k] = self.solve(float(lam), beta, b0)
            betas[:, k] = beta.cpu().numpy()
            intercepts[k] = float(b0)
        return betas, intercepts, n_iter, converged


def fit_sgl(
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
    device=None,
) -> FittedModel:
    """
    Fit a sparse-group lasso along a lambda path.

    Args:
        x: Samples x features design (array or DataFrame, >= 2 columns).
        y: Response; 0/1 for ``family="binomial"``.
        index: Group label of every column of ``x``.
        lambdas: Explicit path. When ``None`` it is derived with ``lambda_sequence``.
        standardize: Fit on centred unit-variance columns and report
            coefficients on the original scale.

    Returns:
        FittedModel with one coefficient column per lambda.
    """
    fam = get_family(family)
    alpha = check_alpha(alpha)
    inp = check_inputs(x, y, index, offset, grp_weights, ind_weights)
    fam.check_response(inp.y)

    center = np.zeros(inp.x.shape[1])
    scale = np.ones(inp.x.shape[1])
    if standardize:
        center = inp.x.mean(axis=0)
        scale = inp.x.std(axis=0)
        scale[scale == 0] = 1.0
        inp.x = (inp.x - center) / scale

    if lambdas is None:
        lambdas = lambda_sequence(
            inp.x, inp.y, inp.index, fam, lambda_min, nlambda, alpha,
            inp.grp_weights, inp.ind_weights, inp.offset,
        )
    else:
        lambdas = check_lambda_path(lambdas)

    solver = SparseGroupLasso(inp, fam, alpha, maxit=maxit, thresh=thresh,
                              gamma=gamma, step=step, device=device)
    betas, intercepts, n_iter, converged = solver.fit_path(lambdas)
    if not converged.all():
        LOGGER.warning(f"{int((~converged).sum())}/{len(lambdas)} lambdas hit maxit={maxit} before converging.")

    if standardize:
        betas = betas / scale[:, None]
        intercepts = intercepts - center @ betas

    return FittedModel(
        beta=betas,
        intercept=intercepts,
        lambdas=lambdas,
        family=fam,
        alpha=alpha,
        feature_names=inp.feature_names,
        index=inp.index,
        n_iter=n_iter,
        converged=converged,
    )
