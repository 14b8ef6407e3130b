"""
Tests for the spra command line.
"""
import json

import pandas as pd
import pytest

from spra.cli import _config_from_args, build_parser, main
from spra.io import save_model_artifacts
from tests.conftest import make_cohort


@pytest.fixture
def inputs(tmp_path):
    X, y, groups = make_cohort(n_samples=12, n_genes=20, n_groups=2, seed=4)
    X.T.to_csv(tmp_path / "expression.txt", sep="\t")
    pd.DataFrame({"Sample": y.index, "Type": y.to_numpy()}).to_csv(
        tmp_path / "phenotype.txt", sep="\t", index=False
    )
    (tmp_path / "groups.json").write_text(json.dumps(groups), encoding="utf-8")
    return tmp_path


def test_parser_requires_a_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_model_flags_become_config(inputs):
    args = build_parser().parse_args([
        "fit", "--expression", "e", "--phenotype", "p", "--gene-sets", "g",
        "--alpha", "0.5", "--nfolds", "4", "--lambda-min", "0.01",
    ])
    cfg = _config_from_args(args)
    assert cfg["alpha"] == 0.5
    assert cfg["nfolds"] == 4
    assert cfg["lambda_min"] == 0.01
    assert cfg["seed"] == 123456


def test_expand_command(inputs):
    out = inputs / "model_data"
    main([
        "expand", "--expression", str(inputs / "expression.txt"),
        "--gene-sets", str(inputs / "groups.json"), "--output", str(out),
    ])
    latent = pd.read_csv(out / "latent.tsv", sep="\t", index_col=0)
    groups = pd.read_csv(out / "groups.tsv", sep="\t")
    assert latent.shape == (12, 20)
    assert groups["group"].tolist() == [1] * 10 + [2] * 10


def test_fit_command(inputs):
    model = inputs / "model"
    main([
        "fit", "--expression", str(inputs / "expression.txt"),
        "--phenotype", str(inputs / "phenotype.txt"),
        "--gene-sets", str(inputs / "groups.json"), "--output", str(model),
        "--nfolds", "3", "--nlambda", "5", "--maxit", "80", "--no-plots", "--device", "cpu",
    ])
    assert not (model / "plots").exists()
    coef = pd.read_csv(model / "coefficients.tsv", sep="\t", index_col=0)
    assert len(coef) == 20
    assert len(pd.read_csv(model / "lambda_path.tsv", sep="\t")) == 5

    meta = json.loads((model / "model.json").read_text(encoding="utf-8"))
    pos = (model / "pos.txt").read_text(encoding="utf-8").split()
    assert pos == coef.index[coef["coefficients"] > 0].tolist()
    assert meta["family"] == "binomial"


def test_score_command(inputs):
    model = inputs / "model"
    latent = [f"grp1_G{i}" for i in range(1, 11)] + [f"grp2_G{i}" for i in range(11, 21)]
    coef = pd.DataFrame({"coefficients": 0.0}, index=latent)
    coef.loc["grp1_G1", "coefficients"] = 0.8
    coef.loc["grp2_G11", "coefficients"] = -0.6
    save_model_artifacts(model, coef, ["grp1_G1"], ["grp2_G11"])

    scores = inputs / "scores.tsv"
    main([
        "score", "--expression", str(inputs / "expression.txt"),
        "--gene-sets", str(inputs / "groups.json"), "--model", str(model), "--output", str(scores),
    ])
    table = pd.read_csv(scores, sep="\t")
    assert table.columns.tolist() == ["Sample", "Pos", "Neg", "Score"]
    assert len(table) == 12
    assert (table["Score"] - (table["Pos"] - table["Neg"])).abs().max() < 1e-12


def test_errors_exit_with_status_one(inputs, caplog):
    with pytest.raises(SystemExit) as exc:
        main([
            "expand", "--expression", str(inputs / "missing.txt"),
            "--gene-sets", str(inputs / "groups.json"),
        ])
    assert exc.value.code == 1
    assert "[ERROR]" in caplog.text
