"""Shared synthetic cohorts for the SPRA tests."""
import numpy as np
import pandas as pd
import pytest


def make_cohort(n_samples=20, n_genes=100, n_groups=5, seed=0, effect=1.5):
    """Samples x genes expression, balanced 0/1 response and disjoint gene groups."""
    rng = np.random.default_rng(seed)
    genes = [f"G{i}" for i in range(1, n_genes + 1)]
    samples = [f"S{i}" for i in range(1, n_samples + 1)]
    y = np.tile([0, 1], n_samples // 2)
    X = rng.normal(size=(n_samples, n_genes))
    size = n_genes // n_groups
    X[y == 1, :size] += effect
    X[y == 1, size:2 * size] -= effect
    groups = {
        f"set{k + 1}": genes[k * size:(k + 1) * size] for k in range(n_groups)
    }
    return (
        pd.DataFrame(X, index=samples, columns=genes),
        pd.Series(y, index=samples, name="Type"),
        groups,
    )


@pytest.fixture
def cohort():
    return make_cohort()


@pytest.fixture
def fast_solver():
    return dict(maxit=200, thresh=1e-3, nlambda=8)
