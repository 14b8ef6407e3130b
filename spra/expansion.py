from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy import sparse

from .errors import GroupMatchError, InputShapeError

LOGGER = logging.getLogger(__name__)

GroupDefinition = Union[Mapping[str, Sequence], Sequence[Sequence]]


class GroupRef(enum.Enum):
    """How the members of a gene group address the columns of a matrix."""

    BY_INDEX = "index"
    BY_NAME = "name"


@dataclass(frozen=True)
class IncidenceMatrix:
    """Binary groups x features membership matrix."""

    matrix: sparse.csr_matrix
    group_names: List[str]
    # None for columns that no group touches
    feature_names: List[Optional[str]]
    ref: GroupRef

    @property
    def shape(self) -> Tuple[int, int]:
        return self.matrix.shape

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            self.matrix.toarray(),
            index=self.group_names,
            columns=self.feature_names,
        )


@dataclass(frozen=True)
class ExpandedFeatures:
    """
    Group-expanded ("latent") representation of a feature matrix.

    Attributes:
        latent: Samples x expanded features, one column per (group, feature) match,
            named ``grp<k>_<feature>``.
        groups: 1-based group id of every latent column (group-major order).
        incidence: Incidence matrix the expansion was built from.
        overlap: Sparse groups x groups overlap counts (``I @ I.T``).
        source_index: Position in the original matrix of every latent column.
        source_features: Original feature name of every latent column.
    """

    latent: pd.DataFrame
    groups: np.ndarray
    incidence: IncidenceMatrix
    overlap: sparse.csr_matrix
    source_index: np.ndarray
    source_features: List[str]

    @property
    def group_names(self) -> List[str]:
        return self.incidence.group_names

    @property
    def feature_index(self) -> Dict[str, int]:
        """Latent column name -> latent column position."""
        return {name: i for i, name in enumerate(self.latent.columns)}

    def group_sizes(self) -> pd.Series:
        return pd.Series(
            self.overlap.diagonal().astype(int),
            index=self.group_names,
            name="n_features",
        )


def resolve_feature_names(X) -> pd.DataFrame:
    """
    Return ``X`` as a samples x features DataFrame with usable column names.

    Columns without names (default integer labels, or a label count that does
    not match the number of columns) are renamed ``V1..Vp``. Duplicated names
    cannot be resolved and raise ``InputShapeError``.
    """
    if not isinstance(X, pd.DataFrame):
        arr = np.asarray(X)
        if arr.ndim != 2:
            raise InputShapeError(f"Expression matrix must be 2-D, got {arr.ndim} dimension(s).")
        X = pd.DataFrame(arr)

    p = X.shape[1]
    cols = X.columns
    if len(cols) != p or cols.equals(pd.RangeIndex(p)) or cols.isna().any():
        X = X.set_axis([f"V{i}" for i in range(1, p + 1)], axis=1)
    else:
        if cols.duplicated().any():
            dup = cols[cols.duplicated()].unique().tolist()
            raise InputShapeError(f"Duplicated feature names cannot be resolved: {dup[:10]}")
        X = X.set_axis(cols.astype(str), axis=1)

    if X.index.duplicated().any():
        raise InputShapeError("Sample identifiers (row names) must be unique.")
    return X


def _members(value) -> list:
    # a lone name is one member, not a sequence of characters
    if isinstance(value, (str, bytes)):
        return [value]
    return list(value)


def _named_groups(groups: GroupDefinition) -> List[Tuple[str, list]]:
    if isinstance(groups, Mapping):
        named = [(str(k), _members(v)) for k, v in groups.items()]
    elif isinstance(groups, Sequence) and not isinstance(groups, (str, bytes)):
        named = [(f"grp{i}", _members(v)) for i, v in enumerate(groups, start=1)]
    else:
        raise InputShapeError(
            "Argument 'groups' must be a mapping or a list of integer indices or names of variables!"
        )
    if not named:
        raise GroupMatchError("The group definition is empty.")
    return named


def _is_index(member) -> bool:
    return isinstance(member, (int, np.integer)) and not isinstance(member, (bool, np.bool_))


def resolve_group_refs(groups: GroupDefinition) -> GroupRef:
    """Decide once whether group members are column positions or feature names."""
    for _, members in _named_groups(groups):
        if members:
            return GroupRef.BY_INDEX if all(_is_index(m) for m in members) else GroupRef.BY_NAME
    raise GroupMatchError("Every group in the definition is empty.")


def _members_by_index(members: list, p: int, name: str) -> np.ndarray:
    if not all(_is_index(m) for m in members):
        raise GroupMatchError(f"Group '{name}' mixes names with integer column positions.")
    idx = np.asarray(members, dtype=int)
    bad = idx[(idx < 0) | (idx >= p)]
    if bad.size:
        raise GroupMatchError(
            f"Group '{name}' refers to column positions outside 0..{p - 1}: {bad[:10].tolist()}"
        )
    return np.unique(idx)


def _members_by_name(members: list, columns: pd.Index) -> np.ndarray:
    wanted = {str(m) for m in members}
    return np.flatnonzero(columns.isin(wanted))


def incidence_matrix(X: pd.DataFrame, groups: GroupDefinition, strict: bool = True) -> IncidenceMatrix:
    """
    Build the binary groups x features incidence matrix of ``groups`` over ``X``.

    With ``strict=True`` a single group without any matched column is an
    error; otherwise empty groups are only logged. A matrix without any match
    at all always raises ``GroupMatchError``.
    """
    named = _named_groups(groups)
    ref = resolve_group_refs(groups)
    columns = X.columns
    J, p = len(named), len(columns)

    mat = sparse.lil_matrix((J, p), dtype=np.int64)
    feature_names: List[Optional[str]] = [None] * p
    empty = []
    for i, (name, members) in enumerate(named):
        if ref is GroupRef.BY_INDEX:
            idx = _members_by_index(members, p, name)
        else:
            idx = _members_by_name(members, columns)
        if idx.size == 0:
            empty.append(name)
            continue
        mat[i, idx] = 1
        for j in idx:
            feature_names[j] = columns[j]

    mat = mat.tocsr()
    if mat.nnz == 0:
        raise GroupMatchError("The names of variables in X don't match with names in group!")
    if empty:
        if strict:
            raise GroupMatchError(
                f"{len(empty)} group(s) match no variable in X: {empty[:10]}"
            )
        LOGGER.warning(f"{len(empty)} group(s) have no matching feature and are skipped: {empty[:10]}")

    return IncidenceMatrix(
        matrix=mat,
        group_names=[name for name, _ in named],
        feature_names=feature_names,
        ref=ref,
    )


def group_overlap(incidence: sparse.spmatrix) -> sparse.csr_matrix:
    """Groups x groups overlap counts; the diagonal is each group's expanded width."""
    incidence = sparse.csr_matrix(incidence)
    return (incidence @ incidence.T).tocsr()


def group_vector(overlap: sparse.spmatrix) -> np.ndarray:
    """1-based group id per latent column, repeated by the overlap diagonal."""
    widths = np.asarray(overlap.diagonal(), dtype=int)
    return np.repeat(np.arange(1, len(widths) + 1), widths)


def expand_features(X, groups: GroupDefinition, strict: bool = True) -> ExpandedFeatures:
    """
    Expand ``X`` (samples x features) into one latent column per (group, feature).

    A feature that belongs to m groups is copied m times, once per owning
    group, so each copy can be penalized independently. Within a group the
    original column order is kept.
    """
    X = resolve_feature_names(X)
    try:
        values = X.to_numpy(dtype=float)
    except (TypeError, ValueError) as e:
        raise InputShapeError(f"Expression matrix must be numeric: {e}") from e

    incidence = incidence_matrix(X, groups, strict=strict)
    overlap = group_overlap(incidence.matrix)
    grp = group_vector(overlap)

    rows = incidence.matrix
    source_index = np.concatenate(
        [np.sort(rows.indices[rows.indptr[i]:rows.indptr[i + 1]]) for i in range(rows.shape[0])]
    ).astype(int)
    source_features = [X.columns[j] for j in source_index]
    names = [f"grp{g}_{f}" for g, f in zip(grp, source_features)]

    # ncol(latent) == len(grp) == trace(overlap)
    latent = pd.DataFrame(values[:, source_index], index=X.index, columns=names)
    LOGGER.debug(
        f"Expanded {X.shape[1]} features into {latent.shape[1]} latent features "
        f"over {incidence.shape[0]} groups."
    )
    return ExpandedFeatures(
        latent=latent,
        groups=grp,
        incidence=incidence,
        overlap=overlap,
        source_index=source_index,
        source_features=source_features,
    )
