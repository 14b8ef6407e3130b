from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .errors import InputShapeError, ParameterRangeError

LOGGER = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def load_data(path: PathLike) -> pd.DataFrame:
    """Load a delimited table with row names in the first column (.txt/.tsv tab, .csv comma)."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")
    if path.suffix.lower() == ".csv":
        return pd.read_csv(path, index_col=0)
    return pd.read_csv(path, sep="\t", index_col=0)


def read_expression(path: PathLike, transpose: bool = True) -> pd.DataFrame:
    """
    Read an expression table stored genes x samples and return samples x genes.

    Pass ``transpose=False`` for files already stored samples x genes.
    """
    df = load_data(path)
    if transpose:
        df = df.T
    df.index = df.index.astype(str)
    df.columns = df.columns.astype(str)
    try:
        df = df.astype(float)
    except ValueError as e:
        raise InputShapeError(f"Expression file {path} contains non-numeric values: {e}") from e
    LOGGER.info(f"   📊 [Data] Loaded {df.shape[0]} samples x {df.shape[1]} features from {Path(path).name}")
    return df


def read_phenotype(
    path: PathLike,
    column: str = "Type",
    samples: Optional[Sequence[str]] = None,
    positive_label: Optional[str] = None,
) -> pd.Series:
    """
    Read the response column of a tab-delimited sample sheet.

    When ``samples`` is given, rows are matched by sample id if some column of
    the sheet holds exactly those ids, otherwise by row order. Non-numeric
    labels are coded 1 for ``positive_label`` and 0 for everything else.
    """
    df = pd.read_csv(path, sep="\t")
    if column not in df.columns:
        raise InputShapeError(f"Sample information file {path} has no column named '{column}'.")
    y = df[column]

    if samples is not None:
        samples = pd.Index([str(s) for s in samples])
        id_col = next(
            (c for c in df.columns if c != column and set(df[c].astype(str)) == set(samples)),
            None,
        )
        if id_col is not None:
            y = pd.Series(y.to_numpy(), index=df[id_col].astype(str)).reindex(samples)
        else:
            if len(df) != len(samples):
                raise InputShapeError(
                    f"the number of rows in {path} ({len(df)}) is not equal to the number of samples ({len(samples)})."
                )
            y = pd.Series(y.to_numpy(), index=samples)

    if not pd.api.types.is_numeric_dtype(y):
        if positive_label is None:
            raise ParameterRangeError(
                f"Column '{column}' is not numeric; pass a positive label to code it as 0/1."
            )
        y = (y.astype(str) == str(positive_label)).astype(int)
    return y.rename(column)


def read_gmt(path: PathLike) -> Dict[str, List[str]]:
    gene_sets: Dict[str, List[str]] = {}
    with open(path, "r", encoding="utf-8") as fh:
        for line in fh:
            fields = line.strip().split("\t")
            if len(fields) < 3 or not fields[0]:
                continue
            gene_sets[fields[0]] = [g for g in fields[2:] if g]
    return gene_sets


def read_gene_sets(path: PathLike) -> Dict[str, list]:
    """Read gene groups from a .gmt file or a JSON object of ``name -> members``."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Gene set file not found: {path}")
    if path.suffix.lower() == ".json":
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
        if isinstance(data, dict):
            gene_sets = {str(k): list(v) for k, v in data.items()}
        elif isinstance(data, list):
            gene_sets = {f"grp{i}": list(v) for i, v in enumerate(data, start=1)}
        else:
            raise InputShapeError(f"{path} must hold a JSON object or list of gene groups.")
    else:
        gene_sets = read_gmt(path)
    if not gene_sets:
        raise InputShapeError(f"No gene groups found in {path}.")
    LOGGER.info(f"   🧬 [Groups] Loaded {len(gene_sets)} gene groups from {path.name}")
    return gene_sets


def write_model_data(latent: pd.DataFrame, groups: np.ndarray, output_dir: PathLike) -> Path:
    """Write the latent matrix and group vector of an expansion."""
    output_dir = _ensure_dir(Path(output_dir))
    latent.to_csv(output_dir / "latent.tsv", sep="\t")
    pd.DataFrame({"feature": latent.columns, "group": groups}).to_csv(
        output_dir / "groups.tsv", sep="\t", index=False
    )
    return output_dir


@dataclass
class ModelArtifacts:
    """What the scoring stage needs from a fitted model."""

    coefficients: pd.DataFrame
    pos: List[str]
    neg: List[str]
    meta: dict = field(default_factory=dict)


def _write_lines(path: Path, lines: Sequence[str]) -> None:
    path.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")


def _read_lines(path: Path) -> List[str]:
    if not path.exists():
        return []
    return [line for line in path.read_text(encoding="utf-8").splitlines() if line]


def save_model_artifacts(
    output_dir: PathLike,
    coefficients: pd.DataFrame,
    pos: Sequence[str],
    neg: Sequence[str],
    fold_errors: Optional[pd.DataFrame] = None,
    meta: Optional[dict] = None,
    lambdas: Optional[Sequence[float]] = None,
) -> Path:
    """
    Write ``coefficients.tsv`` (column ``coefficients``, rows = latent names),
    ``pos.txt``, ``neg.txt`` and, when given, ``cv_errors.tsv``, ``lambda_path.tsv``
    and ``model.json``.
    """
    output_dir = _ensure_dir(Path(output_dir))
    coefficients[["coefficients"]].to_csv(output_dir / "coefficients.tsv", sep="\t")
    _write_lines(output_dir / "pos.txt", pos)
    _write_lines(output_dir / "neg.txt", neg)
    if fold_errors is not None:
        fold_errors.to_csv(output_dir / "cv_errors.tsv", sep="\t")
    if lambdas is not None:
        pd.Series(np.asarray(lambdas, dtype=float), name="lambda").to_csv(
            output_dir / "lambda_path.tsv", sep="\t", index_label="step"
        )
    if meta is not None:
        with open(output_dir / "model.json", "w", encoding="utf-8") as fh:
            json.dump(meta, fh, indent=2)
    LOGGER.info(f"Saved model artifacts to {output_dir}")
    return output_dir


def load_model_artifacts(model_dir: PathLike) -> ModelArtifacts:
    model_dir = Path(model_dir)
    coef_path = model_dir / "coefficients.tsv"
    if not coef_path.exists():
        raise FileNotFoundError(f"No coefficients.tsv in {model_dir}")
    coefficients = pd.read_csv(coef_path, sep="\t", index_col=0)
    if "coefficients" not in coefficients.columns:
        raise InputShapeError(f"{coef_path} must have a 'coefficients' column.")
    meta = {}
    if (model_dir / "model.json").exists():
        with open(model_dir / "model.json", "r", encoding="utf-8") as fh:
            meta = json.load(fh)
    return ModelArtifacts(
        coefficients=coefficients,
        pos=_read_lines(model_dir / "pos.txt"),
        neg=_read_lines(model_dir / "neg.txt"),
        meta=meta,
    )


def write_scores(scores: pd.DataFrame, output_path: PathLike) -> Path:
    output_path = Path(output_path)
    _ensure_dir(output_path.parent)
    cols = ["Sample"] + [c for c in scores.columns if c != "Sample"]
    scores[cols].to_csv(output_path, sep="\t", index=False)
    LOGGER.info(f"Saved scores to {output_path}")
    return output_path
