"""
End-to-end tests of the expand -> fit -> extract -> score workflow (spra.pipeline, spra.config).
"""
import json

import numpy as np
import pandas as pd
import pytest

from spra.config import config, load_config, validate_config
from spra.errors import ParameterRangeError
from spra.evaluation import cv_summary, score_auc
from spra.pipeline import (
    generate_model_data,
    run_full_pipeline,
    score_from_model_dir,
    score_samples,
    sgr_analysis,
)
from spra.solver import lambda_sequence
from tests.conftest import make_cohort

FAST = dict(maxit=100, nlambda=6, nfolds=3)


@pytest.fixture
def cohort_files(tmp_path):
    X, y, groups = make_cohort(n_samples=24, n_genes=60, n_groups=4, seed=2, effect=2.0)
    data = tmp_path / "data"
    data.mkdir()
    X.T.to_csv(data / "expression.txt", sep="\t")
    pd.DataFrame({"Sample": y.index, "Type": y.to_numpy()}).to_csv(
        data / "phenotype.txt", sep="\t", index=False
    )
    # overlapping groups: the last gene of each set also opens the next one
    with open(data / "groups.gmt", "w", encoding="utf-8") as fh:
        names = list(groups)
        for i, name in enumerate(names):
            members = list(groups[name])
            if i + 1 < len(names):
                members.append(groups[names[i + 1]][0])
            fh.write("\t".join([name, "na"] + members) + "\n")
    return data


class TestSgrAnalysis:

    def test_signature_from_cross_validation(self, cohort, tmp_path):
        X, y, groups = cohort
        expanded = generate_model_data(X, groups)
        result = sgr_analysis(
            expanded.latent, y, expanded.groups, nfolds=5, seed=123456,
            plot_dir=tmp_path / "plots", maxit=150, nlambda=8,
        )

        assert result.cv.fold_errors.shape[1] == 5
        assert result.cv.lambdas.min() <= result.signature.lambda_ <= result.cv.lambdas.max()
        assert set(result.pos).isdisjoint(result.neg)
        assert (result.pos_coefficients["coefficients"] > 0).all()
        assert (result.neg_coefficients["coefficients"] < 0).all()
        assert result.coefficients.index.tolist() == expanded.latent.columns.tolist()
        assert [p.name for p in result.plots] == ["cv_errors_0.95.pdf", "coefficients_0.95.pdf"]
        assert all(p.exists() for p in result.plots)

    def test_response_is_aligned_by_sample(self, cohort):
        X, y, groups = cohort
        expanded = generate_model_data(X, groups)
        shuffled = y.iloc[::-1]
        a = sgr_analysis(expanded.latent, y, expanded.groups, nfolds=4, maxit=80, nlambda=5)
        b = sgr_analysis(expanded.latent, shuffled, expanded.groups, nfolds=4, maxit=80, nlambda=5)
        np.testing.assert_allclose(a.cv.mean_errors, b.cv.mean_errors)

    def test_scoring_the_training_data(self, cohort):
        X, y, groups = cohort
        expanded = generate_model_data(X, groups)
        # every lambda on this path lies below lambda_max, so any selection keeps features
        path = lambda_sequence(expanded.latent, y, expanded.groups, lambda_min=0.05, nlambda=9)[1:]
        result = sgr_analysis(
            expanded.latent, y, expanded.groups, nfolds=4, seed=123456, maxit=150, thresh=1e-4, lambdas=path,
        )
        assert len(result.pos) + len(result.neg) > 0

        scores = score_samples(X, groups, result.coefficients, result.pos, result.neg)
        assert scores.index.equals(X.index)
        assert np.all(np.isfinite(scores["Score"]))
        assert 0.0 <= score_auc(scores["Score"], y) <= 1.0


class TestFullPipeline:

    def test_outputs(self, cohort_files, tmp_path):
        cfg = load_config(**FAST)
        out = tmp_path / "result"
        scores_path = run_full_pipeline(
            cohort_files / "expression.txt",
            cohort_files / "phenotype.txt",
            cohort_files / "groups.gmt",
            out,
            cfg=cfg,
        )

        model_files = ("coefficients.tsv", "pos.txt", "neg.txt", "cv_errors.tsv", "lambda_path.tsv", "model.json")
        for name in model_files:
            assert (out / "model" / name).exists()
        assert (out / "model_data" / "latent.tsv").exists()
        assert sorted(p.name for p in (out / "plots").iterdir()) == [
            "coefficients_0.95.pdf", "cv_errors_0.95.pdf",
        ]

        scores = pd.read_csv(scores_path, sep="\t")
        assert scores.columns.tolist() == ["Sample", "Pos", "Neg", "Score"]
        assert len(scores) == 24

        summary = pd.read_csv(out / "cv_summary.tsv", sep="\t")
        assert len(summary) == FAST["nlambda"]
        assert summary["selected"].sum() == 1

        meta = json.loads((out / "model" / "model.json").read_text(encoding="utf-8"))
        assert meta["family"] == "binomial"
        assert meta["nfolds"] == 3

        # 60 genes in 4 groups plus 3 shared genes
        coef = pd.read_csv(out / "model" / "coefficients.tsv", sep="\t", index_col=0)
        assert len(coef) == 63

    def test_rescoring_from_saved_model(self, cohort_files, tmp_path):
        cfg = load_config(**FAST)
        out = tmp_path / "result"
        first = run_full_pipeline(
            cohort_files / "expression.txt", cohort_files / "phenotype.txt",
            cohort_files / "groups.gmt", out, cfg=cfg,
        )
        second = score_from_model_dir(
            cohort_files / "expression.txt", cohort_files / "groups.gmt",
            out / "model", tmp_path / "rescored.tsv", cfg=cfg,
        )
        pd.testing.assert_frame_equal(
            pd.read_csv(first, sep="\t"), pd.read_csv(second, sep="\t"),
        )


class TestConfig:

    def test_defaults(self):
        cfg = load_config()
        assert cfg["seed"] == 123456
        assert cfg["alpha"] == 0.95
        assert cfg["lambda_min"] == 0.008
        assert cfg["nfolds"] == 10
        assert cfg["kcdf"] == "none"

    def test_file_then_overrides(self, tmp_path):
        path = tmp_path / "cfg.json"
        path.write_text(json.dumps({"alpha": 0.5, "nfolds": 4, "device": "cpu"}), encoding="utf-8")

        cfg = load_config(path, nfolds=6, seed=None)
        assert cfg["alpha"] == 0.5
        assert cfg["nfolds"] == 6
        assert cfg["seed"] == config["seed"]
        assert str(cfg["device"]) == "cpu"

    @pytest.mark.parametrize("key,value", [
        ("alpha", 1.2), ("lambda_min", 0.0), ("nfolds", 1), ("kcdf", "poisson"), ("unknown", 1),
    ])
    def test_invalid_values(self, key, value):
        cfg = dict(config)
        cfg[key] = value
        with pytest.raises(ParameterRangeError):
            validate_config(cfg)


def test_cv_summary_marks_the_selected_lambda(cohort, fast_solver):
    from spra.cross_validation import cv_sgl

    X, y, _ = cohort
    cv = cv_sgl(X, y, np.repeat(np.arange(1, 6), 20), nfolds=3, **fast_solver)
    summary = cv_summary(cv)
    assert summary.loc[summary["selected"], "lambda"].item() == cv.best_lambda
    assert (summary["finite_folds"] <= 3).all()


def test_auc_with_a_single_class():
    assert np.isnan(score_auc([0.1, 0.4], [1, 1]))
    assert score_auc([0.1, 0.4, 0.9], [0, 0, 1]) == 1.0
