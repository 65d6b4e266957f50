# umap_pytorch.py

"""
PyTorch backend for UMAP dimensionality reduction.

This implementation features:
- Exact chunked k-NN search (PyTorch, or PyKeOps for low-dimensional data on GPU)
- Arbitrary records with a user supplied pairwise distance
- Smooth k-NN calibration and fuzzy simplicial set construction on sparse matrices
- Spectral initialization from the normalized graph Laplacian
- Batched stochastic gradient descent with negative sampling on the torch device

Pipeline:
1. k-NN graph
2. Smooth k-NN calibration (sigma, rho)
3. Fuzzy union of the local simplicial sets and its Laplacian
4. Spectral initialization
5. Curve fit of (a, b)
6. Edge sampling schedule
7. Layout optimization
"""

import gc
import sys

import numpy as np
import torch
from loguru import logger
from sklearn.base import TransformerMixin

from .config import UMAPConfig
from .curve import find_ab_params
from .errors import DeviceError, LayoutError, UMAPConfigError, UMAPDataError
from .fuzzy import fuzzy_simplicial_set
from .layout import EdgeSchedule, optimize_layout
from .neighbors import compute_knn, compute_knn_generic
from .spectral import random_layout, spectral_layout


class UMAPPyTorch(TransformerMixin):
    """
    Uniform Manifold Approximation and Projection with a PyTorch layout engine.

    UMAP models the data manifold with a fuzzy topological structure and
    searches for a low dimensional projection with the closest possible
    equivalent fuzzy topological structure. It assumes that the data is
    uniformly distributed on a locally connected Riemannian manifold whose
    metric is locally constant.

    Parameters
    ----------
    n_components : int, default=2
        Number of dimensions in the target embedding space (at least 2).
    n_neighbors : int, default=15
        Size of the local neighborhood. Larger values result in more global
        views of the manifold, smaller values preserve more local structure.
        Generally in the range 2 to 100.
    n_epochs : int or None, default=None
        Number of optimization epochs, at least 10. None uses 200 for datasets
        with more than 10000 samples and 500 otherwise.
    learning_rate : float, default=1.0
        Initial learning rate of the embedding optimization.
    min_dist : float, default=0.1
        Desired separation between close points in the embedding. Smaller
        values give a more clustered embedding, larger values a more even
        dispersal. Must be positive and no greater than ``spread``.
    spread : float, default=1.0
        Effective scale of embedded points.
    negative_sample_rate : int, default=5
        Number of negative samples per positive edge sample.
    repulsion_strength : float, default=1.0
        Weight applied to negative samples.
    init : {'spectral', 'random'}, default='spectral'
        Initialization of the embedding.
    metric : str, callable, or None, default=None
        Distance for the k-NN search on numeric data:

        - None or 'euclidean'/'l2': Use fast built-in Euclidean distance
        - str: String expression evaluated with x and y tensors (e.g., '(x - y).abs().sum(-1)' for L1)
        - callable: Custom function taking (x, y) tensors and returning distance matrix

    distance : callable or None, default=None
        Pairwise ``distance(x, y) -> float`` over arbitrary records. When
        given, ``X`` may be any sequence and the k-NN search is brute force.
    n_iter_calibration : int, default=64
        Bisection budget of the smooth k-NN calibration.
    verbose : bool, default=True
        Whether to print progress information.
    random_state : int or None, default=None
        Random seed for reproducible results.

    Attributes
    ----------
    device : torch.device
        The PyTorch device being used (CPU or CUDA).
    logger : loguru.Logger
        Instance-specific logger for this reducer.
    embedding_ : numpy.ndarray of shape (n_samples, n_components)
        The embedding of the last fitted data.
    graph_ : scipy.sparse.csr_matrix
        Membership strengths of the fuzzy simplicial set of the last fit.

    Examples
    --------
    Basic usage::

        from umap_torch import UMAPPyTorch
        import numpy as np

        X = np.random.randn(2000, 50)
        reducer = UMAPPyTorch(n_neighbors=15, random_state=42)
        embedding = reducer.fit_transform(X)

    Arbitrary records::

        words = ["kitten", "sitting", "mitten", ...]
        reducer = UMAPPyTorch(distance=levenshtein, n_neighbors=5)
        embedding = reducer.fit_transform(words)
    """

    def __init__(
            self,
            n_components=2,
            n_neighbors=15,
            n_epochs=None,
            learning_rate=1.0,
            min_dist=0.1,
            spread=1.0,
            negative_sample_rate=5,
            repulsion_strength=1.0,
            init="spectral",
            metric=None,
            distance=None,
            n_iter_calibration=64,
            verbose=True,
            random_state=None,
    ):
        self.n_components = n_components
        self.n_neighbors = n_neighbors
        self.n_epochs = n_epochs
        self.learning_rate = learning_rate
        self.min_dist = min_dist
        self.spread = spread
        self.negative_sample_rate = negative_sample_rate
        self.repulsion_strength = repulsion_strength
        self.init = init
        self.metric = metric
        self.distance = distance
        self.n_iter_calibration = n_iter_calibration
        self.verbose = verbose
        self.random_state = random_state if random_state is not None else np.random.randint(0, 2 ** 32)

        # Setup instance-specific logger
        self.logger = logger.bind(umap_instance=id(self))
        self.logger.remove()  # Remove all existing handlers

        if verbose:
            self.logger.add(
                sys.stderr,
                level="INFO"
            )
        else:
            # Add null handler that discards all messages
            self.logger.add(lambda msg: None, level="TRACE")

        # Internal state
        self._layout = None
        self._n_samples = None
        self._a = None
        self._b = None
        self._knn_graph = None
        self._fuzzy = None
        self._alphas = None
        self.n_epochs_ = None

        # Device management
        self.device = torch.device('cuda' if torch.cuda.is_available() else 'cpu')
        if self.device.type == 'cuda':
            self.logger.info(f"Using CUDA device: {torch.cuda.get_device_name()}")
        else:
            self.logger.warning("CUDA not available, using CPU")

    @property
    def config(self):
        """Current hyper-parameters as a :class:`UMAPConfig`."""
        return UMAPConfig(
            n_components=self.n_components,
            n_neighbors=self.n_neighbors,
            n_epochs=self.n_epochs,
            learning_rate=self.learning_rate,
            min_dist=self.min_dist,
            spread=self.spread,
            negative_sample_rate=self.negative_sample_rate,
            repulsion_strength=self.repulsion_strength,
            init=self.init,
            metric=self.metric,
            distance=self.distance,
            n_iter_calibration=self.n_iter_calibration,
        )

    @property
    def embedding_(self):
        return self._layout

    @property
    def graph_(self):
        return None if self._fuzzy is None else self._fuzzy.strength

    def _prepare_data(self, X):
        """
        Coerce the input and check it can be embedded.

        Numeric input becomes a float32 matrix; with a pairwise ``distance``
        arbitrary sequences are accepted as they are.
        """
        if self.distance is not None:
            data = X if hasattr(X, "__getitem__") else list(X)
            n_samples = len(data)
        else:
            data = np.asarray(X, dtype=np.float32)
            if data.ndim != 2:
                raise UMAPDataError(f"Expected 2D array of shape (n_samples, n_features), got shape {data.shape}")
            if not np.all(np.isfinite(data)):
                raise UMAPDataError("Input contains NaN or infinite values")
            n_samples = data.shape[0]

        if n_samples < 3:
            raise UMAPDataError(f"UMAP needs at least 3 samples, got {n_samples}")

        if self.n_neighbors >= n_samples:
            self.logger.warning(
                f"n_neighbors={self.n_neighbors} is not smaller than n_samples={n_samples}; "
                f"using {n_samples - 1}"
            )
            self.n_neighbors = n_samples - 1

        return data, n_samples

    def _compute_knn(self, data):
        """k-NN graph of the data with the configured distance."""
        if self.distance is not None:
            return compute_knn_generic(data, self.n_neighbors, self.distance, log=self.logger)
        return compute_knn(data, self.n_neighbors, metric=self.metric, device=self.device, log=self.logger)

    def _find_ab_params(self):
        """
        Fit the curve parameters of the low dimensional similarity kernel.

        Side Effects
        ------------
        Sets self._a and self._b attributes with the fitted parameters.
        """
        self._a, self._b = find_ab_params(self.spread, self.min_dist)
        self.logger.info(f"Found curve params: a={self._a:.4f}, b={self._b:.4f}")

    def _initialize_embedding(self, rng):
        """
        Initial low-dimensional coordinates.

        Returns
        -------
        torch.Tensor
            Initial embedding of shape (n_samples, n_components) on the target device.
        """
        if self.init == 'spectral':
            self.logger.info("Initializing with spectral layout")
            embedding = spectral_layout(self._fuzzy.laplacian, self.n_components, rng)
        elif self.init == 'random':
            self.logger.info("Initializing with random layout")
            embedding = random_layout(self._n_samples, self.n_components, rng)
        else:
            raise UMAPConfigError("init", f"unknown init method {self.init!r}")

        return torch.tensor(embedding, dtype=torch.float32, device=self.device)

    def fit_transform(self, X, y=None):  # pylint: disable=unused-argument,arguments-differ
        """
        Fit the UMAP model and transform data to low-dimensional embedding.

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features), or sequence
            High-dimensional input data. Any sequence of records when a
            pairwise ``distance`` is configured.
        y : array-like of shape (n_samples,), optional
            Ignored. Present for scikit-learn API compatibility.

        Returns
        -------
        numpy.ndarray of shape (n_samples, n_components)
            Low-dimensional embedding of the input data.

        Raises
        ------
        UMAPConfigError
            If a hyper-parameter is invalid; raised before touching the data.
        UMAPDataError
            If the input has fewer than 3 samples, is not a 2D numeric array
            or contains NaN or infinite values.
        SpectralInitError
            If the spectral initialization cannot be computed.
        CurveFitError
            If the curve parameters cannot be fitted.
        LayoutError
            If the optimized coordinates are not finite.
        """
        config = self.config.validate()

        data, self._n_samples = self._prepare_data(X)
        self.n_epochs_ = config.resolve_n_epochs(self._n_samples)

        self.logger.info(f"Processing {self._n_samples} samples into {self.n_components}D")

        rng = np.random.RandomState(self.random_state)  # pylint: disable=no-member
        generator = torch.Generator().manual_seed(int(self.random_state))

        # Construct the local fuzzy simplicial sets and combine them via a fuzzy union
        self._knn_graph = self._compute_knn(data)
        self._fuzzy = fuzzy_simplicial_set(self._knn_graph, self.n_neighbors, n_iter=self.n_iter_calibration)
        self.logger.info(f"Fuzzy simplicial set: {self._fuzzy.strength.nnz} edges")

        initial_embedding = self._initialize_embedding(rng)

        self._find_ab_params()

        schedule = EdgeSchedule.from_graph(self._fuzzy.strength, self.n_epochs_, self.negative_sample_rate)
        final_embedding, self._alphas = optimize_layout(
            initial_embedding,
            schedule,
            self._a,
            self._b,
            self.n_epochs_,
            initial_alpha=self.learning_rate,
            gamma=self.repulsion_strength,
            generator=generator,
            log=self.logger,
        )

        self._layout = final_embedding.cpu().numpy()
        if not np.all(np.isfinite(self._layout)):
            raise LayoutError("Layout optimization produced non-finite coordinates")

        if self.device.type == 'cuda':
            torch.cuda.empty_cache()
        gc.collect()

        return self._layout

    def fit(self, X, y=None):  # pylint: disable=unused-argument,arguments-differ
        """
        Fit the UMAP model to data.

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features), or sequence
            High-dimensional data to fit the model to.
        y : array-like of shape (n_samples,), optional
            Ignored. Present for scikit-learn API compatibility.

        Returns
        -------
        self : UMAPPyTorch
            The fitted instance; the embedding is available as ``embedding_``.
        """
        self.fit_transform(X, y)
        return self


def create_umap(backend='auto', **kwargs):
    """
    Create a UMAP reducer with automatic device selection.

    Parameters
    ----------
    backend : {'auto', 'pytorch', 'pytorch_gpu', 'pytorch_cpu'}, default='auto'
        Backend selection strategy:

        - 'auto' / 'pytorch': PyTorch on CUDA when available, CPU otherwise
        - 'pytorch_gpu': PyTorch on GPU (requires CUDA)
        - 'pytorch_cpu': PyTorch on CPU only

    **kwargs : dict
        Keyword arguments passed to :class:`UMAPPyTorch`.

    Returns
    -------
    UMAPPyTorch

    Raises
    ------
    DeviceError
        If the GPU backend is requested without CUDA.
    UMAPConfigError
        If an unknown backend name is specified.

    Examples
    --------
    ::

        from umap_torch import create_umap

        reducer = create_umap(backend='pytorch_cpu', n_neighbors=30, verbose=False)
        embedding = reducer.fit_transform(X)
    """
    verbose = kwargs.get('verbose', True)

    if backend in ('auto', 'pytorch'):
        if verbose:
            device = "GPU" if torch.cuda.is_available() else "CPU"
            logger.info(f"Using PyTorch backend ({device})")
        return UMAPPyTorch(**kwargs)

    if backend == 'pytorch_gpu':
        if not torch.cuda.is_available():
            raise DeviceError("GPU requested but CUDA not available")
        if verbose:
            logger.info("Using PyTorch backend (GPU)")
        return UMAPPyTorch(**kwargs)

    if backend == 'pytorch_cpu':
        if verbose:
            logger.info("Using PyTorch backend (forced CPU)")
        reducer = UMAPPyTorch(**kwargs)
        reducer.device = torch.device('cpu')
        return reducer

    raise UMAPConfigError(
        "backend",
        f"Unknown backend: {backend}. "
        f"Choose from: 'auto', 'pytorch', 'pytorch_gpu', 'pytorch_cpu'"
    )
