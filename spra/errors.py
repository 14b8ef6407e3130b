"""
Error and warning types raised by the SPRA pipeline.
"""


class SpraError(Exception):
    """Base class for all SPRA errors."""


class InputShapeError(SpraError, ValueError):
    """Wrong dimensionality or mismatched lengths (x / y / index / weights)."""


class GroupMatchError(SpraError, ValueError):
    """A gene-group definition does not match the features of a matrix."""


class ParameterRangeError(SpraError, ValueError):
    """A parameter is outside its valid range (alpha, lambda path, folds...)."""


class LambdaResolutionError(SpraError, LookupError):
    """The selected lambda cannot be located on the regularization path."""


class NumericalDegeneracyError(SpraError, ArithmeticError):
    """Every lambda on the path produced a non-finite cross-validation error."""


class EmptySignatureError(SpraError, ValueError):
    """Both signature sets are empty, so there is nothing to score."""


class ConsistencyWarning(UserWarning):
    """Sample order returned by the enrichment step differs from the input."""


class NumericalDegeneracyWarning(RuntimeWarning):
    """Some cross-validation cells produced NaN/Inf losses and were dropped."""
