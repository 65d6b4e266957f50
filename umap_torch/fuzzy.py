# fuzzy.py

"""
Fuzzy simplicial set construction.

The local fuzzy simplicial set of each point is built by locally
approximating geodesic distance with a smooth k-NN kernel; the local sets are
then merged into a global one via a fuzzy union (probabilistic t-conorm).
The normalized graph Laplacian of the result seeds the spectral layout.
"""

from dataclasses import dataclass

import numpy as np
import scipy.sparse as sp
from loguru import logger

# Distances below this are treated as zero (duplicate points)
ZERO_TOLERANCE = 1e-10
# Bisection stops when the fuzzy set cardinality is this close to log2(k)
SMOOTH_K_TOLERANCE = 1e-5
# Lower bound of sigma relative to the mean neighbor distance
MIN_K_DIST_SCALE = 1e-3


@dataclass
class FuzzyGraph:
    """
    Global fuzzy simplicial set and its derived quantities.

    Attributes
    ----------
    strength : scipy.sparse.csr_matrix
        Symmetric membership strengths in [0, 1]; entry (i, j) is the
        membership of the 1-simplex {i, j}.
    laplacian : scipy.sparse.csr_matrix
        Normalized Laplacian ``I - D^-1/2 W D^-1/2`` with unit diagonal.
    sigma : numpy.ndarray
        Smooth k-NN distance scale of each point.
    rho : numpy.ndarray
        Distance of each point to its nearest non-identical neighbor.
    """
    strength: sp.csr_matrix
    laplacian: sp.csr_matrix
    sigma: np.ndarray
    rho: np.ndarray


def smooth_knn_dist(distances, k, n_iter=64):
    """
    Compute a continuous version of the distance to the kth nearest neighbor.

    For every point, find ``sigma`` such that

        sum_j exp(-max(0, d_ij - rho_i) / sigma_i) = log2(k)

    by bisection, where ``rho_i`` is the distance to the nearest neighbor at
    a non-zero distance. All points are searched simultaneously.

    Parameters
    ----------
    distances : numpy.ndarray of shape (n_samples, n_neighbors)
        Distances to the nearest neighbors of each point. Not modified.
    k : int
        Number of neighbors whose cardinality the fuzzy set should match.
    n_iter : int, default=64
        Maximum number of bisection steps. When exhausted, the last estimate
        is accepted as is.

    Returns
    -------
    sigma : numpy.ndarray of shape (n_samples,)
        Strictly positive kernel scale per point.
    rho : numpy.ndarray of shape (n_samples,)
        Nearest non-zero neighbor distance per point, 0 if none.
    """
    distances = np.asarray(distances, dtype=np.float64)
    n_samples = distances.shape[0]
    target = np.log2(k)

    valid = np.abs(distances) >= ZERO_TOLERANCE
    n_valid = valid.sum(axis=1)

    rho = np.where(valid, distances, np.inf).min(axis=1) if distances.size else np.zeros(0)
    rho[n_valid == 0] = 0.0

    # Shifted distances; zero-distance neighbors do not contribute
    shifted = np.maximum(distances - rho[:, None], 0.0)

    lo = np.zeros(n_samples)
    hi = np.full(n_samples, np.inf)
    mid = np.ones(n_samples)
    active = np.ones(n_samples, dtype=bool)

    for _ in range(n_iter):
        if not active.any():
            break
        rows = np.flatnonzero(active)
        kernel = np.exp(-shifted[rows] / mid[rows, None])
        psum = np.where(valid[rows], kernel, 0.0).sum(axis=1)

        converged = np.abs(psum - target) < SMOOTH_K_TOLERANCE
        active[rows[converged]] = False
        rows, psum = rows[~converged], psum[~converged]

        # psum decreases as mid shrinks, so bisect on mid
        too_big = psum > target
        shrink, grow = rows[too_big], rows[~too_big]
        hi[shrink] = mid[shrink]
        mid[shrink] = (lo[shrink] + hi[shrink]) / 2.0

        lo[grow] = mid[grow]
        unbounded = np.isinf(hi[grow])
        mid[grow[unbounded]] *= 2.0
        bounded = grow[~unbounded]
        mid[bounded] = (lo[bounded] + hi[bounded]) / 2.0

    if active.any():
        logger.debug(f"Smooth k-NN bisection budget exhausted for {int(active.sum())} points")

    sigma = mid

    nonzero_total = valid.sum()
    mean_distance = distances[valid].mean() if nonzero_total else 0.0
    with np.errstate(invalid="ignore", divide="ignore"):
        mean_ith = np.where(valid, distances, 0.0).sum(axis=1) / n_valid
    floor = np.where(rho > 0.0, MIN_K_DIST_SCALE * np.nan_to_num(mean_ith), MIN_K_DIST_SCALE * mean_distance)
    sigma = np.maximum(sigma, floor)

    return sigma, rho


def compute_membership_strengths(graph, sigma, rho):
    """
    Construct the fuzzy simplicial set of the k-NN graph and its Laplacian.

    1. Each directed edge i -> j gets ``exp(-max(0, d_ij - rho_i) / sigma_i)``.
    2. The directed views are merged with the probabilistic t-conorm
       ``w + w' - w * w'`` (a missing reverse edge counts as 0).
    3. ``D_i = 1 / sqrt(sum_j w_ij)``; points with zero degree get ``D_i = 0``.
    4. Laplacian entries are ``-D_i * w_ij * D_j`` with a unit diagonal.

    Parameters
    ----------
    graph : NeighborGraph
        The k-NN graph. Not modified.
    sigma, rho : numpy.ndarray of shape (n_samples,)
        Output of :func:`smooth_knn_dist`.

    Returns
    -------
    strength : scipy.sparse.csr_matrix
        Symmetric membership strengths.
    laplacian : scipy.sparse.csr_matrix
        Normalized graph Laplacian.
    """
    n = graph.n_vertices
    weights = np.exp(-np.maximum(0.0, graph.distances - rho[:, None]) / sigma[:, None])
    directed = graph.to_sparse(values=weights)
    transpose = directed.T.tocsr()

    # probabilistic t-conorm: (a + a' - a .* a')
    strength = (directed + transpose - directed.multiply(transpose)).tocsr()
    strength.eliminate_zeros()
    strength.sort_indices()

    degree = np.asarray(strength.sum(axis=1)).ravel()
    isolated = degree <= 0.0
    if isolated.any():
        logger.warning(f"{int(isolated.sum())} isolated points have zero degree; left unnormalized")
    D = np.zeros(n)
    D[~isolated] = 1.0 / np.sqrt(degree[~isolated])

    coo = strength.tocoo()
    # D_i * D_j is computed first so that (i, j) and (j, i) match exactly
    values = -(D[coo.row] * D[coo.col]) * coo.data
    off_diagonal = coo.row != coo.col
    rows = np.concatenate([coo.row[off_diagonal], np.arange(n)])
    cols = np.concatenate([coo.col[off_diagonal], np.arange(n)])
    values = np.concatenate([values[off_diagonal], np.ones(n)])
    laplacian = sp.csr_matrix((values, (rows, cols)), shape=(n, n))

    return strength, laplacian


def fuzzy_simplicial_set(graph, n_neighbors, n_iter=64):
    """
    Calibrate the smooth k-NN kernel and build the fuzzy simplicial set.

    Parameters
    ----------
    graph : NeighborGraph
        The k-NN graph.
    n_neighbors : int
        Neighborhood size used for the cardinality target ``log2(n_neighbors)``.
    n_iter : int, default=64
        Bisection budget of the calibration.

    Returns
    -------
    FuzzyGraph
    """
    sigma, rho = smooth_knn_dist(graph.distances, n_neighbors, n_iter=n_iter)
    strength, laplacian = compute_membership_strengths(graph, sigma, rho)
    return FuzzyGraph(strength=strength, laplacian=laplacian, sigma=sigma, rho=rho)
