# config.py

"""
Hyper-parameter container and validation for the UMAP reducer.
"""

from dataclasses import asdict, dataclass, fields
from typing import Any, Callable, Dict, Optional, Union

from .errors import UMAPConfigError

_INIT_METHODS = ("spectral", "random")

# Default epoch budgets, smaller for large inputs
_LARGE_DATASET = 10000
_EPOCHS_LARGE = 200
_EPOCHS_SMALL = 500


@dataclass
class UMAPConfig:
    """
    Configuration of a UMAP run.

    All fields are mutable and can be changed after creation::

        config.n_epochs = 300
        config.validate()

    Attributes
    ----------
    n_components : int
        Target embedding dimension, at least 2.
    n_neighbors : int
        Size of the local neighborhood, at least 2.
    n_epochs : int or None
        Number of optimization epochs (at least 10). None picks 200 for more
        than 10000 samples and 500 otherwise.
    learning_rate : float
        Initial SGD learning rate, strictly positive.
    min_dist : float
        Minimum separation of close points in the embedding, in (0, spread].
    spread : float
        Effective scale of embedded points, strictly positive.
    negative_sample_rate : int
        Negative samples drawn per positive edge sample, strictly positive.
    repulsion_strength : float
        Weight (gamma) of the repulsive term.
    init : {'spectral', 'random'}
        Initialization of the embedding.
    metric : str, callable or None
        Tensor distance used for numeric k-NN search.
    distance : callable or None
        Pairwise distance over arbitrary records.
    n_iter_calibration : int
        Bisection budget of the smooth k-NN calibration.
    """
    n_components: int = 2
    n_neighbors: int = 15
    n_epochs: Optional[int] = None
    learning_rate: float = 1.0
    min_dist: float = 0.1
    spread: float = 1.0
    negative_sample_rate: int = 5
    repulsion_strength: float = 1.0
    init: str = "spectral"
    metric: Union[str, Callable, None] = None
    distance: Optional[Callable] = None
    n_iter_calibration: int = 64

    @classmethod
    def from_dict(cls, params: Dict[str, Any]) -> "UMAPConfig":
        """Build a config from a plain dict, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(params) - known)
        if unknown:
            raise UMAPConfigError(unknown[0], f"unknown parameter (known: {', '.join(sorted(known))})")
        return cls(**params)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def validate(self) -> "UMAPConfig":
        """
        Check every hyper-parameter and raise on the first violation.

        Returns
        -------
        UMAPConfig
            self, to allow chaining.

        Raises
        ------
        UMAPConfigError
            Naming the offending parameter and the violated constraint.
        """
        if self.n_components < 2:
            raise UMAPConfigError("n_components", f"must be greater than 1, got {self.n_components}")
        if self.n_neighbors < 2:
            raise UMAPConfigError("n_neighbors", f"must be greater than 1, got {self.n_neighbors}")
        if self.spread <= 0:
            raise UMAPConfigError("spread", f"must be greater than 0, got {self.spread}")
        if self.min_dist <= 0:
            raise UMAPConfigError("min_dist", f"must be greater than 0, got {self.min_dist}")
        if self.min_dist > self.spread:
            raise UMAPConfigError(
                "min_dist", f"must be less than or equal to spread, got {self.min_dist} > {self.spread}"
            )
        if self.n_epochs is not None and self.n_epochs < 10:
            raise UMAPConfigError("n_epochs", f"must be an integer of at least 10, got {self.n_epochs}")
        if self.learning_rate <= 0:
            raise UMAPConfigError("learning_rate", f"must be greater than 0, got {self.learning_rate}")
        if self.negative_sample_rate <= 0:
            raise UMAPConfigError(
                "negative_sample_rate", f"must be greater than 0, got {self.negative_sample_rate}"
            )
        if self.n_iter_calibration < 1:
            raise UMAPConfigError(
                "n_iter_calibration", f"must be at least 1, got {self.n_iter_calibration}"
            )
        if self.init not in _INIT_METHODS:
            raise UMAPConfigError("init", f"must be one of {_INIT_METHODS}, got {self.init!r}")
        if self.metric is not None and not isinstance(self.metric, str) and not callable(self.metric):
            raise UMAPConfigError("metric", "must be None, a string expression, or a callable")
        if self.distance is not None and not callable(self.distance):
            raise UMAPConfigError("distance", "must be a callable distance(x, y) -> float")
        return self

    def resolve_n_epochs(self, n_samples: int) -> int:
        """Number of epochs to run for a dataset of ``n_samples`` points."""
        if self.n_epochs is not None:
            return int(self.n_epochs)
        return _EPOCHS_LARGE if n_samples > _LARGE_DATASET else _EPOCHS_SMALL
