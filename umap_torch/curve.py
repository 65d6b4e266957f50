# curve.py

"""
Low-dimensional similarity curve.

The embedding space uses the smooth family ``1 / (1 + a * x^(2b))`` in place
of the offset exponential decay governed by ``min_dist`` and ``spread``.
"""

import warnings

import numpy as np
from scipy.optimize import OptimizeWarning, curve_fit

from .errors import CurveFitError

N_CURVE_SAMPLES = 300


def curve(x, a, b):
    """The kernel: 1.0 / (1.0 + a * x ^ (2 * b))"""
    return 1.0 / (1.0 + a * x ** (2 * b))


def curve_jacobian(x, a, b):
    """Analytic gradient of :func:`curve` with respect to (a, b), one row per sample."""
    pow_ = x ** (2 * b)
    denom = (1.0 + a * pow_) ** 2
    d_a = -pow_ / denom
    d_b = -(2.0 * a * np.log(x) * pow_) / denom
    return np.column_stack([d_a, d_b])


def curve_samples(spread, min_dist, size=N_CURVE_SAMPLES):
    """
    Target offset exponential decay sampled on (0, 3 * spread].

    Returns
    -------
    xv, yv : numpy.ndarray of shape (size,)
        Sample positions ``(i + 1) * 3 * spread / size`` and target values,
        1 below ``min_dist`` and ``exp(-(x - min_dist) / spread)`` above.
    """
    xv = np.arange(1, size + 1) * (3.0 * spread / size)
    yv = np.where(xv < min_dist, 1.0, np.exp(-(xv - min_dist) / spread))
    return xv, yv


def find_ab_params(spread, min_dist):
    """
    Fit a, b params for the differentiable curve used in lower
    dimensional fuzzy simplicial complex construction. We want the
    smooth curve (from a pre-defined family with simple gradient) that
    best matches an offset exponential decay.

    Parameters
    ----------
    spread : float
        Effective scale of embedded points.
    min_dist : float
        Desired separation between close points in the embedding.

    Returns
    -------
    a, b : float
        Fitted curve parameters.

    Raises
    ------
    CurveFitError
        If Levenberg-Marquardt fails or produces unusable parameters.
    """
    xv, yv = curve_samples(spread, min_dist)

    try:
        with warnings.catch_warnings():
            # Covariance is not used
            warnings.simplefilter("ignore", OptimizeWarning)
            params, _ = curve_fit(curve, xv, yv, p0=(0.5, 0.0), jac=curve_jacobian, method="lm")
    except (RuntimeError, ValueError) as e:
        raise CurveFitError(f"could not fit curve for spread={spread}, min_dist={min_dist}: {e}") from e

    a, b = float(params[0]), float(params[1])
    if not (np.isfinite(a) and np.isfinite(b)) or a <= 0 or b <= 0:
        raise CurveFitError(f"degenerate curve parameters a={a}, b={b}")
    return a, b
