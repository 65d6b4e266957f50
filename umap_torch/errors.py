# errors.py

"""
Exception hierarchy for umap-torch.

Every failure raised by the embedding pipeline derives from :class:`UMAPError`,
so callers can catch a single base class. Subclasses also derive from the
matching builtin (``ValueError`` / ``RuntimeError``) to keep the usual
scikit-learn style ``except ValueError`` handling working.
"""


class UMAPError(Exception):
    """Base class for all umap-torch errors."""


class UMAPConfigError(UMAPError, ValueError):
    """
    Invalid hyper-parameter.

    Parameters
    ----------
    parameter : str
        Name of the offending parameter.
    message : str
        Human readable description of the violated constraint.
    """

    def __init__(self, parameter, message):
        super().__init__(f"{parameter}: {message}")
        self.parameter = parameter


class SpectralInitError(UMAPError, RuntimeError):
    """The eigensolver did not deliver enough eigenpairs for the layout."""


class CurveFitError(UMAPError, RuntimeError):
    """The (a, b) curve parameters could not be fitted."""


class UMAPDataError(UMAPError, ValueError):
    """The input data or a neighbor graph cannot be embedded."""


class LayoutError(UMAPError, RuntimeError):
    """The layout optimization produced an unusable embedding."""


class DeviceError(UMAPError, RuntimeError):
    """The requested compute device is not available."""
