"""
SPRA: sparse-group regularized signature scoring of expression data.
"""

from .expansion import expand_features, incidence_matrix, group_overlap, group_vector, resolve_feature_names
from .solver import fit_sgl, lambda_sequence
from .cross_validation import cv_sgl, assign_folds
from .signature import extract_signature, resolve_lambda_index
from .enrichment import ssgsea, calculate_total_score
from .pipeline import generate_model_data, sgr_analysis, score_samples, run_full_pipeline

__version__ = "0.1.0"

__all__ = [
    "expand_features",
    "incidence_matrix",
    "group_overlap",
    "group_vector",
    "resolve_feature_names",
    "fit_sgl",
    "lambda_sequence",
    "cv_sgl",
    "assign_folds",
    "extract_signature",
    "resolve_lambda_index",
    "ssgsea",
    "calculate_total_score",
    "generate_model_data",
    "sgr_analysis",
    "score_samples",
    "run_full_pipeline",
]
