# neighbors.py

"""
k-nearest-neighbor graph construction.

Two search paths are provided:

- Numeric matrices: exact chunked search with PyTorch (``torch.cdist`` or a
  user supplied tensor metric), or PyKeOps LazyTensors for low-dimensional
  data on CUDA.
- Arbitrary records: brute-force evaluation of a pairwise ``distance(x, y)``
  callable. Quadratic in the number of points, meant for small or exotic
  inputs (strings, sets, graphs...).

Both return a :class:`NeighborGraph`, the directed k-NN graph consumed by the
fuzzy simplicial set construction.
"""

import numpy as np
import scipy.sparse as sp
import torch
from loguru import logger

from .errors import UMAPConfigError, UMAPDataError

# PyKeOps for low-dimensional k-NN on GPU
try:
    from pykeops.torch import LazyTensor

    PYKEOPS_AVAILABLE = True
except ImportError:
    PYKEOPS_AVAILABLE = False
    logger.warning("PyKeOps not available. Install with: pip install pykeops")


def _compile_metric(metric):
    """
    Turn a metric setting into a callable metric(x, y) that returns a distance-like
    matrix with broadcasting:
      - Torch path:  x: (A, 1, D), y: (1, B, D)  -> (A, B) torch.Tensor
      - KeOps path:  x: LazyTensor(A,1,D), y: LazyTensor(1,B,D) -> LazyTensor(A,B)

    If metric is None or 'euclidean'/'l2', return None (fast-path Euclidean stays in backend).
    If metric is a str, it's eval'ed with {'x': x, 'y': y} and no builtins.
    If metric is callable, it's returned unchanged.
    """
    if metric is None:
        return None
    if isinstance(metric, str):
        expr = metric.strip().lower()
        if expr in ("euclidean", "l2"):
            return None  # use built-in fast Euclidean
        def _expr_metric(x, y, _expr=metric):
            # Use ONLY tensor methods like .sum(-1), .sqrt(), .abs(), etc.
            # Works for both torch.Tensor and KeOps LazyTensor.
            return eval(_expr, {"__builtins__": {}}, {"x": x, "y": y})
        return _expr_metric
    if callable(metric):
        return metric
    raise UMAPConfigError("metric", "must be None, a string expression, or a callable")


class NeighborGraph:
    """
    Directed k-nearest-neighbor graph.

    Row ``i`` of ``indices`` lists the k nearest neighbors of point ``i`` in
    ascending order of distance, ``distances`` the matching distances.

    Parameters
    ----------
    indices : array-like of shape (n_samples, n_neighbors)
        Neighbor indices. Self-loops are not allowed.
    distances : array-like of shape (n_samples, n_neighbors)
        Non-negative neighbor distances.

    Raises
    ------
    UMAPDataError
        If the arrays disagree in shape, contain self-loops, out of range
        indices, or negative / non-finite distances.
    """

    def __init__(self, indices, distances):
        indices = np.asarray(indices, dtype=np.int64)
        distances = np.asarray(distances, dtype=np.float64)
        if indices.ndim != 2 or indices.shape != distances.shape:
            raise UMAPDataError(
                f"indices and distances must be 2D arrays of equal shape, "
                f"got {indices.shape} and {distances.shape}"
            )
        n = indices.shape[0]
        if indices.size and (indices.min() < 0 or indices.max() >= n):
            raise UMAPDataError("neighbor indices out of range")
        if np.any(indices == np.arange(n)[:, None]):
            raise UMAPDataError("neighbor graph must not contain self-loops")
        if not np.all(np.isfinite(distances)) or np.any(distances < 0):
            raise UMAPDataError("neighbor distances must be finite and non-negative")

        self.indices = indices
        self.distances = distances

    @property
    def n_vertices(self):
        return self.indices.shape[0]

    @property
    def n_neighbors(self):
        return self.indices.shape[1]

    def weight(self, i, j):
        """
        Distance on the directed edge i -> j, or 0.0 if there is no such edge.

        Public query for the reverse edge of i -> j (``weight(j, i)``). The
        fuzzy union does not go through it; it works on the whole sparse
        transpose at once (see :func:`umap_torch.fuzzy.compute_membership_strengths`).
        """
        hits = np.flatnonzero(self.indices[i] == j)
        if hits.size == 0:
            return 0.0
        return float(self.distances[i, hits[0]])

    def to_sparse(self, values=None):
        """
        Sparse adjacency matrix of the graph.

        Parameters
        ----------
        values : array-like of shape (n_samples, n_neighbors), optional
            Per-edge values to store instead of the distances.

        Returns
        -------
        scipy.sparse.csr_matrix of shape (n_samples, n_samples)
        """
        n, k = self.indices.shape
        data = self.distances if values is None else np.asarray(values, dtype=np.float64)
        rows = np.repeat(np.arange(n), k)
        return sp.csr_matrix((data.ravel(), (rows, self.indices.ravel())), shape=(n, n))


def _drop_self(knn_indices, knn_distances, row_ids, k):
    """Remove each row's own index from a (k+1)-NN result, keeping k columns."""
    is_self = knn_indices == row_ids[:, None]
    # Rows that did not return themselves (duplicates) drop their farthest entry
    no_self = ~is_self.any(axis=1)
    is_self[no_self, -1] = True
    keep = ~is_self
    return (
        knn_indices[keep].reshape(-1, k),
        knn_distances[keep].reshape(-1, k),
    )


def compute_knn(X, n_neighbors, metric=None, device=None, chunk_size=None, log=logger):  # pylint: disable=too-many-branches,too-many-locals
    """
    Exact k-nearest neighbors of a numeric matrix with chunked PyTorch search.

    Parameters
    ----------
    X : numpy.ndarray of shape (n_samples, n_features)
        Input data.
    n_neighbors : int
        Number of neighbors per point (self excluded).
    metric : str, callable or None
        See :func:`_compile_metric`. None uses Euclidean distance.
    device : torch.device, optional
        Device to run on. Defaults to CUDA when available.
    chunk_size : int, optional
        Number of query rows per chunk. Adapted to free GPU memory when None.
    log : loguru.Logger
        Logger receiving progress messages.

    Returns
    -------
    NeighborGraph
    """
    n_samples, n_dims = X.shape
    if device is None:
        device = torch.device('cuda' if torch.cuda.is_available() else 'cpu')
    metric_fn = _compile_metric(metric)

    log.info(f"Computing {n_neighbors}-NN graph for {n_samples} points in {n_dims}D...")

    X_torch = torch.tensor(X, dtype=torch.float32, device=device)

    # PyKeOps is slower than PyTorch for high dimensions
    use_pykeops = PYKEOPS_AVAILABLE and n_dims < 200 and device.type == 'cuda'
    if use_pykeops:
        log.info("Using PyKeOps for k-NN (low dimension, GPU available)")
    else:
        log.info("Using PyTorch for k-NN")

    if chunk_size is None:
        chunk_size = 50000
        if device.type == 'cuda':
            gpu_mem_free = torch.cuda.mem_get_info()[0]
            # Use 30% of available memory for the distance block
            max_memory = gpu_mem_free * 0.3
            if chunk_size * n_samples * 4 > max_memory:
                chunk_size = max(1000, int(max_memory / (n_samples * 4)))
            log.info(f"Using chunk size: {chunk_size} (GPU memory: {gpu_mem_free/1024**3:.1f}GB)")
        else:
            # Keep the (chunk, N) block around 256MB on CPU
            chunk_size = max(1, min(chunk_size, (64 * 1024 ** 2) // max(n_samples, 1)))

    all_knn_indices = []
    all_knn_distances = []

    for start_idx in range(0, n_samples, chunk_size):
        end_idx = min(start_idx + chunk_size, n_samples)
        X_chunk = X_torch[start_idx:end_idx]
        row_ids = np.arange(start_idx, end_idx)

        if n_samples > 50000:  # Only log for large datasets
            log.info(f"Processing chunk {start_idx//chunk_size + 1}/{(n_samples + chunk_size - 1)//chunk_size}")

        if use_pykeops:
            X_i = LazyTensor(X_chunk[:, None, :].contiguous())
            X_j = LazyTensor(X_torch[None, :, :].contiguous())
            if metric_fn is None:
                D_ij = ((X_i - X_j) ** 2).sum(-1)
            else:
                D_ij = metric_fn(X_i, X_j)
            # k+1 so that the point itself can be dropped
            knn_dists, knn_indices = D_ij.Kmin_argKmin(K=n_neighbors + 1, dim=1)
            if metric_fn is None:
                knn_dists = torch.sqrt(torch.clamp(knn_dists, min=0))
            chunk_indices, chunk_distances = _drop_self(
                knn_indices.cpu().numpy(), knn_dists.cpu().numpy(), row_ids, n_neighbors
            )
        else:
            if metric_fn is None:
                distances = torch.cdist(X_chunk, X_torch, p=2)
            else:
                distances = metric_fn(X_chunk[:, None, :], X_torch[None, :, :])
            # Exclude self-matches before selecting
            local = torch.arange(end_idx - start_idx, device=device)
            distances[local, local + start_idx] = float('inf')
            knn_dists, knn_indices = torch.topk(distances, k=n_neighbors, dim=1, largest=False)
            chunk_indices = knn_indices.cpu().numpy()
            chunk_distances = knn_dists.cpu().numpy()

        all_knn_indices.append(chunk_indices)
        all_knn_distances.append(chunk_distances)

        if device.type == 'cuda' and start_idx % (chunk_size * 10) == 0:
            torch.cuda.empty_cache()

    knn_indices = np.vstack(all_knn_indices)
    # Tensor metrics may return tiny negatives through rounding
    knn_distances = np.maximum(np.vstack(all_knn_distances).astype(np.float64), 0.0)

    log.info(f"k-NN graph computed: shape {knn_indices.shape}")
    return NeighborGraph(knn_indices, knn_distances)


def compute_knn_generic(data, n_neighbors, distance, log=logger):
    """
    Exact k-nearest neighbors over arbitrary records.

    Parameters
    ----------
    data : sequence
        Input records, indexable by position.
    n_neighbors : int
        Number of neighbors per point (self excluded).
    distance : callable
        ``distance(x, y) -> float``, symmetric and non-negative. Called once
        per unordered pair of distinct records.
    log : loguru.Logger
        Logger receiving progress messages.

    Returns
    -------
    NeighborGraph
    """
    n_samples = len(data)
    log.info(f"Computing {n_neighbors}-NN graph for {n_samples} records with a pairwise distance...")

    # Upper triangle only, mirrored below the diagonal
    pairwise = np.zeros((n_samples, n_samples), dtype=np.float64)
    for i in range(n_samples - 1):
        pairwise[i, i + 1:] = np.fromiter(
            (distance(data[i], data[j]) for j in range(i + 1, n_samples)),
            dtype=np.float64, count=n_samples - i - 1,
        )
    upper = np.triu_indices(n_samples, k=1)
    pairwise[upper[1], upper[0]] = pairwise[upper]

    if not np.all(np.isfinite(pairwise)):
        raise UMAPDataError("distance function returned non-finite values")
    if np.any(pairwise < 0):
        raise UMAPDataError("distance function returned negative values")

    np.fill_diagonal(pairwise, np.inf)
    nearest = np.argpartition(pairwise, n_neighbors - 1, axis=1)[:, :n_neighbors]
    nearest_distances = np.take_along_axis(pairwise, nearest, axis=1)
    order = np.argsort(nearest_distances, axis=1, kind="stable")
    knn_indices = np.take_along_axis(nearest, order, axis=1).astype(np.int64)
    knn_distances = np.take_along_axis(nearest_distances, order, axis=1)

    log.info(f"k-NN graph computed: shape {knn_indices.shape}")
    return NeighborGraph(knn_indices, knn_distances)
