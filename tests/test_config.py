# test_config.py

"""
Hyper-parameter validation tests.
Invalid settings must be rejected before any neighbor search.
"""

import pytest
import numpy as np

import umap_torch.umap_pytorch as umap_module
from umap_torch import UMAPConfig, UMAPConfigError, UMAPError, UMAPPyTorch


class TestUMAPConfig:
    """Checks of the configuration container."""

    def test_defaults(self):
        """Default values of a fresh config."""
        config = UMAPConfig()
        assert config.n_components == 2
        assert config.n_neighbors == 15
        assert config.n_epochs is None
        assert config.learning_rate == 1.0
        assert config.min_dist == 0.1
        assert config.spread == 1.0
        assert config.negative_sample_rate == 5
        assert config.repulsion_strength == 1.0
        assert config.init == "spectral"
        assert config.validate() is config

    @pytest.mark.parametrize("params,parameter", [
        ({"n_components": 1}, "n_components"),
        ({"n_neighbors": 1}, "n_neighbors"),
        ({"spread": 0.0}, "spread"),
        ({"min_dist": 0.0}, "min_dist"),
        ({"min_dist": -0.5}, "min_dist"),
        ({"min_dist": 2.0, "spread": 1.0}, "min_dist"),
        ({"n_epochs": 5}, "n_epochs"),
        ({"learning_rate": 0.0}, "learning_rate"),
        ({"negative_sample_rate": 0}, "negative_sample_rate"),
        ({"n_iter_calibration": 0}, "n_iter_calibration"),
        ({"init": "pca"}, "init"),
        ({"metric": 42}, "metric"),
        ({"distance": "hamming"}, "distance"),
    ])
    def test_invalid_parameter(self, params, parameter):
        """Each violated constraint names the offending parameter."""
        config = UMAPConfig(**params)
        with pytest.raises(UMAPConfigError) as excinfo:
            config.validate()
        assert excinfo.value.parameter == parameter
        assert str(excinfo.value).startswith(parameter)

    def test_error_hierarchy(self):
        """Config errors are both library errors and ValueErrors."""
        with pytest.raises(ValueError):
            UMAPConfig(n_neighbors=1).validate()
        with pytest.raises(UMAPError):
            UMAPConfig(n_neighbors=1).validate()

    def test_min_dist_equal_to_spread_is_valid(self):
        """min_dist may reach spread."""
        UMAPConfig(min_dist=1.0, spread=1.0).validate()

    def test_resolve_n_epochs(self):
        """Epoch budget depends on the dataset size unless given."""
        config = UMAPConfig()
        assert config.resolve_n_epochs(100) == 500
        assert config.resolve_n_epochs(10000) == 500
        assert config.resolve_n_epochs(10001) == 200

        config.n_epochs = 42
        assert config.resolve_n_epochs(100) == 42
        assert config.resolve_n_epochs(100000) == 42

    def test_from_dict(self):
        """Configs round trip through plain dicts."""
        config = UMAPConfig.from_dict({"n_neighbors": 30, "min_dist": 0.5})
        assert config.n_neighbors == 30
        assert config.min_dist == 0.5
        assert UMAPConfig.from_dict(config.to_dict()) == config

    def test_from_dict_unknown_key(self):
        """Unknown keys are rejected."""
        with pytest.raises(UMAPConfigError) as excinfo:
            UMAPConfig.from_dict({"n_neighbours": 30})
        assert excinfo.value.parameter == "n_neighbours"


class TestReducerValidation:
    """Validation through the reducer entry point."""

    @pytest.fixture
    def no_knn(self, monkeypatch):
        """Fail the test if the neighbor search is reached."""
        def _forbidden(*args, **kwargs):
            raise AssertionError("neighbor search must not run")
        monkeypatch.setattr(umap_module, "compute_knn", _forbidden)
        monkeypatch.setattr(umap_module, "compute_knn_generic", _forbidden)

    def test_reducer_config_property(self):
        """The reducer exposes its hyper-parameters as a config."""
        model = UMAPPyTorch(n_neighbors=7, min_dist=0.2, verbose=False)
        config = model.config
        assert isinstance(config, UMAPConfig)
        assert config.n_neighbors == 7
        assert config.min_dist == 0.2

    @pytest.mark.usefixtures("no_knn")
    @pytest.mark.parametrize("params,parameter", [
        ({"n_neighbors": 1}, "n_neighbors"),
        ({"n_components": 1}, "n_components"),
        ({"min_dist": 0.0}, "min_dist"),
        ({"n_epochs": 3}, "n_epochs"),
    ])
    def test_rejected_before_neighbor_search(self, params, parameter):
        """Invalid settings fail before touching the data."""
        X = np.random.randn(50, 5)
        model = UMAPPyTorch(verbose=False, **params)
        with pytest.raises(UMAPConfigError) as excinfo:
            model.fit_transform(X)
        assert excinfo.value.parameter == parameter
