"""
Tests for reading inputs and writing model artifacts (spra.io).
"""
import json

import numpy as np
import pandas as pd
import pytest

from spra.errors import InputShapeError, ParameterRangeError
from spra.io import (
    load_model_artifacts,
    read_expression,
    read_gene_sets,
    read_phenotype,
    save_model_artifacts,
    write_model_data,
    write_scores,
)


@pytest.fixture
def expression_file(tmp_path):
    df = pd.DataFrame(
        [[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]],
        index=pd.Index(["G1", "G2"], name="Gene"),
        columns=["S1", "S2", "S3"],
    )
    path = tmp_path / "expression.txt"
    df.to_csv(path, sep="\t")
    return path


class TestExpression:

    def test_genes_by_samples_is_transposed(self, expression_file):
        X = read_expression(expression_file)
        assert X.index.tolist() == ["S1", "S2", "S3"]
        assert X.columns.tolist() == ["G1", "G2"]
        assert X.loc["S3", "G2"] == 6.0

    def test_without_transpose(self, expression_file):
        X = read_expression(expression_file, transpose=False)
        assert X.shape == (2, 3)

    def test_csv_input(self, tmp_path):
        path = tmp_path / "expression.csv"
        pd.DataFrame({"S1": [1.0], "S2": [2.0]}, index=["G1"]).to_csv(path)
        assert read_expression(path).shape == (2, 1)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_expression(tmp_path / "nope.txt")

    def test_non_numeric_values(self, tmp_path):
        path = tmp_path / "bad.txt"
        pd.DataFrame({"S1": ["x"], "S2": [1.0]}, index=["G1"]).to_csv(path, sep="\t")
        with pytest.raises(InputShapeError, match="non-numeric"):
            read_expression(path)


class TestPhenotype:

    def test_aligned_by_sample_id(self, tmp_path):
        path = tmp_path / "pheno.txt"
        pd.DataFrame({"Sample": ["S3", "S1", "S2"], "Type": [1, 0, 1]}).to_csv(path, sep="\t", index=False)

        y = read_phenotype(path, samples=["S1", "S2", "S3"])
        assert y.name == "Type"
        assert y.index.tolist() == ["S1", "S2", "S3"]
        assert y.tolist() == [0, 1, 1]

    def test_aligned_by_row_order(self, tmp_path):
        path = tmp_path / "pheno.txt"
        pd.DataFrame({"Type": [1, 0]}).to_csv(path, sep="\t", index=False)
        y = read_phenotype(path, samples=["A", "B"])
        assert y.to_dict() == {"A": 1, "B": 0}

    def test_row_count_mismatch(self, tmp_path):
        path = tmp_path / "pheno.txt"
        pd.DataFrame({"Type": [1, 0]}).to_csv(path, sep="\t", index=False)
        with pytest.raises(InputShapeError, match="number of rows"):
            read_phenotype(path, samples=["A", "B", "C"])

    def test_label_coding(self, tmp_path):
        path = tmp_path / "pheno.txt"
        pd.DataFrame({"Status": ["tumor", "normal", "tumor"]}).to_csv(path, sep="\t", index=False)

        y = read_phenotype(path, column="Status", positive_label="tumor")
        assert y.tolist() == [1, 0, 1]
        with pytest.raises(ParameterRangeError):
            read_phenotype(path, column="Status")

    def test_missing_column(self, tmp_path):
        path = tmp_path / "pheno.txt"
        pd.DataFrame({"Group": [1, 0]}).to_csv(path, sep="\t", index=False)
        with pytest.raises(InputShapeError, match="Type"):
            read_phenotype(path)


class TestGeneSets:

    def test_gmt(self, tmp_path):
        path = tmp_path / "sets.gmt"
        path.write_text("A\tdesc\tG1\tG2\nB\t\tG3\n\nbroken\n", encoding="utf-8")
        assert read_gene_sets(path) == {"A": ["G1", "G2"], "B": ["G3"]}

    def test_gmt_trailing_whitespace_is_stripped(self, tmp_path):
        path = tmp_path / "sets.gmt"
        path.write_bytes(b"A\tdesc\tG1\tG2\r\nB\tdesc\tG3 \r\n")
        assert read_gene_sets(path) == {"A": ["G1", "G2"], "B": ["G3"]}

    def test_json_object_and_list(self, tmp_path):
        obj = tmp_path / "sets.json"
        obj.write_text(json.dumps({"A": ["G1"], "B": [0, 2]}), encoding="utf-8")
        assert read_gene_sets(obj) == {"A": ["G1"], "B": [0, 2]}

        lst = tmp_path / "list.json"
        lst.write_text(json.dumps([["G1"], ["G2", "G3"]]), encoding="utf-8")
        assert read_gene_sets(lst) == {"grp1": ["G1"], "grp2": ["G2", "G3"]}

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.gmt"
        path.write_text("", encoding="utf-8")
        with pytest.raises(InputShapeError):
            read_gene_sets(path)


class TestArtifacts:

    def test_save_and_load(self, tmp_path):
        coef = pd.DataFrame({"coefficients": [0.5, -0.2, 0.0]}, index=["grp1_G1", "grp1_G2", "grp2_G3"])
        errors = pd.DataFrame({"fold1": [1.0, 0.5]}, index=pd.Index([0.2, 0.1], name="lambda"))
        out = save_model_artifacts(
            tmp_path / "model", coef, ["grp1_G1"], ["grp1_G2"], fold_errors=errors, meta={"alpha": 0.95},
        )

        assert sorted(p.name for p in out.iterdir()) == [
            "coefficients.tsv", "cv_errors.tsv", "model.json", "neg.txt", "pos.txt",
        ]
        loaded = load_model_artifacts(out)
        pd.testing.assert_frame_equal(loaded.coefficients, coef)
        assert loaded.pos == ["grp1_G1"]
        assert loaded.neg == ["grp1_G2"]
        assert loaded.meta == {"alpha": 0.95}

    def test_empty_sets_round_trip(self, tmp_path):
        coef = pd.DataFrame({"coefficients": [0.0, 0.0]}, index=["a", "b"])
        loaded = load_model_artifacts(save_model_artifacts(tmp_path, coef, [], []))
        assert loaded.pos == [] and loaded.neg == []
        assert loaded.meta == {}

    def test_missing_model(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_model_artifacts(tmp_path)


def test_write_model_data(tmp_path):
    latent = pd.DataFrame(np.eye(2), index=["S1", "S2"], columns=["grp1_G1", "grp2_G1"])
    out = write_model_data(latent, np.array([1, 2]), tmp_path / "model_data")
    groups = pd.read_csv(out / "groups.tsv", sep="\t")
    assert groups.to_dict("list") == {"feature": ["grp1_G1", "grp2_G1"], "group": [1, 2]}
    assert (out / "latent.tsv").exists()


def test_write_scores_puts_sample_first(tmp_path):
    scores = pd.DataFrame({"Pos": [0.1], "Neg": [0.2], "Score": [-0.1], "Sample": ["S1"]}, index=["S1"])
    path = write_scores(scores, tmp_path / "out" / "scores.tsv")
    assert pd.read_csv(path, sep="\t").columns.tolist() == ["Sample", "Pos", "Neg", "Score"]
