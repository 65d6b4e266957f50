# spectral.py

"""
Initial embedding layouts.

The default initialization uses the eigenvectors of the normalized graph
Laplacian with the smallest eigenvalues, i.e. a spectral embedding of the
fuzzy simplicial set.
"""

import numpy as np
import scipy.linalg
import scipy.sparse as sp
from loguru import logger
from scipy.sparse.linalg import ArpackError, ArpackNoConvergence, eigsh

from .errors import SpectralInitError

# Coordinates of the initial layout span [0, MAX_COORD] per dimension
MAX_COORD = 10.0
# Standard deviation of the tie-breaking jitter
NOISE = 0.0001
# Graphs up to this many vertices are solved densely
DENSE_EIGEN_LIMIT = 1000


def _smallest_eigenpairs(laplacian, k):
    """
    Eigenpairs of smallest magnitude of a symmetric sparse matrix.

    ARPACK is used for large graphs; small ones, and those too small for a
    comfortable Krylov subspace, go through a dense solver.
    """
    n = laplacian.shape[0]
    if n <= max(2 * k + 1, DENSE_EIGEN_LIMIT):
        eigenvalues, eigenvectors = scipy.linalg.eigh(laplacian.toarray())
        order = np.argsort(np.abs(eigenvalues))[:k]
        return eigenvalues[order], eigenvectors[:, order]

    # ARPACK may not find all needed eigen values for k = d + 1,
    # hence the generous Krylov subspace
    ncv = min(n, max(2 * k + 1, 20))
    return eigsh(
        laplacian,
        k=k,
        which="SM",
        ncv=ncv,
        tol=1e-4,
        v0=np.ones(n),
        maxiter=n * 5,
    )


def spectral_layout(laplacian, dim, random_state):
    """
    Compute the spectral embedding of the graph, the eigenvectors of its
    normalized Laplacian, rescaled to a box and jittered.

    Parameters
    ----------
    laplacian : scipy.sparse matrix of shape (n_samples, n_samples)
        Symmetric normalized Laplacian of the fuzzy simplicial set.
    dim : int
        Dimension of the embedding space.
    random_state : numpy.random.RandomState
        Source of the Gaussian jitter.

    Returns
    -------
    numpy.ndarray of shape (n_samples, dim), float32
        Coordinates, each column rescaled to span [0, 10].

    Raises
    ------
    SpectralInitError
        If fewer than ``dim + 1`` eigenpairs can be obtained.
    """
    laplacian = sp.csr_matrix(laplacian)
    n = laplacian.shape[0]
    k = min(10 * (dim + 1), n - 1)
    if k < dim + 1:
        raise SpectralInitError(
            f"spectral layout needs {dim + 1} eigenpairs but the graph has only {n} vertices"
        )

    try:
        eigenvalues, eigenvectors = _smallest_eigenpairs(laplacian, k)
    except ArpackNoConvergence as e:
        raise SpectralInitError(
            f"eigensolver converged on {len(e.eigenvalues)} of {k} eigenpairs"
        ) from e
    except ArpackError as e:
        raise SpectralInitError(f"eigensolver failed: {e}") from e

    if eigenvectors.shape[1] < dim + 1:
        raise SpectralInitError(
            f"eigensolver returned {eigenvectors.shape[1]} eigenpairs, {dim + 1} required"
        )

    order = np.argsort(eigenvalues)
    logger.debug(f"Smallest Laplacian eigenvalues: {eigenvalues[order][:dim + 1]}")
    # Skip the trivial eigenvector
    coordinates = eigenvectors[:, order[1:dim + 1]]

    abs_max = np.abs(coordinates).max()
    if not np.isfinite(abs_max) or abs_max == 0.0:
        raise SpectralInitError("spectral layout produced degenerate eigenvectors")

    # Add a little noise to avoid local minima for the optimization to come
    expansion = MAX_COORD / abs_max
    coordinates = coordinates * expansion + random_state.normal(0.0, NOISE, size=coordinates.shape)

    return _rescale_columns(coordinates).astype(np.float32)


def _rescale_columns(coordinates):
    """Map each column linearly onto [0, MAX_COORD]; constant columns become 0."""
    col_min = coordinates.min(axis=0)
    col_max = coordinates.max(axis=0)
    span = col_max - col_min
    result = np.zeros_like(coordinates)
    nonflat = span > 0
    if not nonflat.all():
        logger.warning(f"{int((~nonflat).sum())} embedding dimensions have zero range; set to 0")
    result[:, nonflat] = MAX_COORD * (coordinates[:, nonflat] - col_min[nonflat]) / span[nonflat]
    return result


def random_layout(n_samples, dim, random_state):
    """Uniform random coordinates in [0, 10]^dim."""
    return random_state.uniform(0.0, MAX_COORD, size=(n_samples, dim)).astype(np.float32)
