from __future__ import annotations
import numpy as np
import pandas as pd
from sklearn.metrics import roc_auc_score


def score_auc(scores, y):
    """
    ROC AUC of signature scores against a 0/1 phenotype.
    Returns NaN when only one class is present.
    """
    scores = pd.Series(scores).astype(float)
    y = pd.Series(y)
    if isinstance(scores.index, pd.RangeIndex) or isinstance(y.index, pd.RangeIndex):
        y = pd.Series(y.to_numpy(), index=scores.index)
    else:
        y = y.reindex(scores.index)
    ok = scores.notna() & y.notna()
    if y[ok].nunique() < 2:
        return float("nan")
    return float(roc_auc_score(y[ok].astype(int), scores[ok]))


def cv_summary(cv):
    """One row per lambda: mean/sd CV error and the number of finite folds."""
    errors = cv.fold_errors
    df = pd.DataFrame({
        'lambda': cv.lambdas,
        'log_lambda': np.log(cv.lambdas),
        'mean_error': cv.mean_errors,
        'sd_error': cv.sd_errors,
        'finite_folds': errors.notna().sum(axis=1).to_numpy(),
        'n_nonzero': (cv.fit.beta != 0).sum(axis=0),
    })
    df['selected'] = False
    df.loc[cv.best_index, 'selected'] = True
    return df
