# umap-torch

"""
PyTorch accelerated Uniform Manifold Approximation and Projection (UMAP).

This package computes low-dimensional embeddings that preserve the local
neighborhood structure of the input data:

- **UMAPPyTorch**: scikit-learn style reducer running the full pipeline
- **create_umap**: factory with automatic device selection
- **UMAPConfig**: validated hyper-parameter container

The building blocks are available on their own for custom pipelines:
:mod:`umap_torch.neighbors` (k-NN graph), :mod:`umap_torch.fuzzy` (smooth
k-NN calibration, fuzzy simplicial set), :mod:`umap_torch.spectral`
(initialization), :mod:`umap_torch.curve` (a, b fit) and
:mod:`umap_torch.layout` (edge schedule, SGD layout).

Examples
--------
Basic usage::

    from umap_torch import create_umap

    reducer = create_umap(n_neighbors=15, random_state=42)
    embedding = reducer.fit_transform(X)

Non-numeric records with a pairwise distance::

    from umap_torch import UMAPPyTorch

    reducer = UMAPPyTorch(distance=jaccard_distance, n_neighbors=10)
    embedding = reducer.fit_transform(list_of_sets)
"""

from .config import UMAPConfig
from .errors import (
    CurveFitError,
    DeviceError,
    LayoutError,
    SpectralInitError,
    UMAPConfigError,
    UMAPDataError,
    UMAPError,
)
from .neighbors import NeighborGraph
from .umap_pytorch import UMAPPyTorch, create_umap

__all__ = [
    'UMAPPyTorch',
    'create_umap',
    'UMAPConfig',
    'NeighborGraph',
    'UMAPError',
    'UMAPConfigError',
    'UMAPDataError',
    'LayoutError',
    'DeviceError',
    'SpectralInitError',
    'CurveFitError',
]
