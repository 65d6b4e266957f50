# test_layout.py

"""
Tests for the edge sampling schedule and the SGD layout optimizer.
"""

import pytest
import numpy as np
import scipy.sparse as sp
import torch

import umap_torch.layout as layout
from umap_torch.layout import (
    COINCIDENT_GRAD,
    EdgeSchedule,
    _repulsion,
    learning_rate,
    make_epochs_per_sample,
    optimize_layout,
)


def _ring_strength(n):
    """Symmetric ring graph with alternating edge weights."""
    rows = np.arange(n)
    cols = (rows + 1) % n
    weights = np.where(rows % 2 == 0, 1.0, 0.5)
    upper = sp.coo_matrix((weights, (rows, cols)), shape=(n, n))
    return (upper + upper.T).tocsr()


class TestEpochsPerSample:
    """Edge sampling periods."""

    def test_periods(self):
        """Strongest edge fires every epoch, weaker ones proportionally less."""
        result = make_epochs_per_sample([1.0, 0.5, 0.25], 100)
        np.testing.assert_allclose(result, [1.0, 2.0, 4.0])

    def test_weak_edges_never_sampled(self):
        """Edges below max / n_epochs get 0."""
        result = make_epochs_per_sample([1.0, 0.005, 0.02], 100)
        assert result[1] == 0.0
        assert result[2] == pytest.approx(50.0)

    def test_empty(self):
        assert make_epochs_per_sample([], 10).shape == (0,)


class TestEdgeSchedule:
    """Schedule construction from a membership matrix."""

    def test_from_graph(self):
        strength = _ring_strength(10)
        schedule = EdgeSchedule.from_graph(strength, 200, negative_sample_rate=5)

        assert len(schedule) == strength.nnz
        np.testing.assert_array_equal(schedule.epoch_of_next_sample, schedule.epochs_per_sample)
        np.testing.assert_allclose(schedule.epochs_per_negative_sample, schedule.epochs_per_sample / 5)
        np.testing.assert_array_equal(
            schedule.epoch_of_next_negative_sample, schedule.epochs_per_negative_sample
        )
        assert set(np.unique(schedule.epochs_per_sample)) == {1.0, 2.0}

    def test_unsampled_edges_dropped(self):
        """Edges that would never fire are not scheduled."""
        strength = sp.csr_matrix(np.array([
            [0.0, 1.0, 1e-4],
            [1.0, 0.0, 0.0],
            [1e-4, 0.0, 0.0],
        ]))
        schedule = EdgeSchedule.from_graph(strength, 50, negative_sample_rate=5)
        assert len(schedule) == 2
        assert set(zip(schedule.head.tolist(), schedule.tail.tolist())) == {(0, 1), (1, 0)}


class TestLearningRate:
    """Linear learning rate decay."""

    def test_decay(self):
        assert learning_rate(1.0, 0, 100) == 1.0
        assert learning_rate(1.0, 50, 100) == pytest.approx(0.5)
        assert learning_rate(2.0, 100, 100) == 0.0


class TestOptimizeLayout:
    """Stochastic gradient descent on the embedding."""

    @pytest.fixture(autouse=True)
    def setup(self):
        np.random.seed(42)
        torch.manual_seed(42)
        self.device = torch.device('cpu')  # pylint: disable=attribute-defined-outside-init

    def test_learning_rate_schedule(self):
        """alpha after epoch t is initial * (1 - t / n_epochs), ending at 0."""
        strength = _ring_strength(12)
        schedule = EdgeSchedule.from_graph(strength, 20, 5)
        embedding = torch.rand(12, 2, generator=torch.Generator().manual_seed(0)) * 10

        _, alphas = optimize_layout(
            embedding, schedule, 1.58, 0.9, 20, initial_alpha=0.8,
            generator=torch.Generator().manual_seed(0),
        )
        assert len(alphas) == 20
        np.testing.assert_allclose(alphas, [0.8 * (1 - t / 20) for t in range(1, 21)])
        assert alphas[-1] == 0.0
        assert all(x > y for x, y in zip(alphas, alphas[1:]))

    def test_attraction_pulls_together(self):
        """Without repulsion, a connected pair moves closer."""
        strength = sp.csr_matrix(np.array([[0.0, 1.0], [1.0, 0.0]]))
        schedule = EdgeSchedule.from_graph(strength, 10, 1)
        embedding = torch.tensor([[0.0, 0.0], [10.0, 0.0]], device=self.device)

        result, _ = optimize_layout(
            embedding, schedule, 1.58, 0.9, 10, gamma=0.0,
            generator=torch.Generator().manual_seed(0),
        )
        assert torch.norm(result[0] - result[1]).item() < 10.0
        assert torch.all(torch.isfinite(result))

    def test_deterministic_with_generator(self):
        """Same seed, same result."""
        strength = _ring_strength(30)
        init = torch.rand(30, 2, generator=torch.Generator().manual_seed(1)) * 10

        results = []
        for _ in range(2):
            schedule = EdgeSchedule.from_graph(strength, 50, 5)
            result, _ = optimize_layout(
                init.clone(), schedule, 1.58, 0.9, 50,
                generator=torch.Generator().manual_seed(123),
            )
            results.append(result.numpy())
        np.testing.assert_array_equal(results[0], results[1])

    def test_schedule_not_modified(self):
        """The optimizer works on its own copy of the counters."""
        schedule = EdgeSchedule.from_graph(_ring_strength(8), 20, 5)
        before = schedule.epoch_of_next_sample.copy()
        optimize_layout(
            torch.rand(8, 2) * 10, schedule, 1.58, 0.9, 20,
            generator=torch.Generator().manual_seed(0),
        )
        np.testing.assert_array_equal(schedule.epoch_of_next_sample, before)

    def test_repulsion_coincident_points(self):
        """Distinct coincident points get a fixed push, a point against itself none."""
        positions = torch.tensor([[1.0, 1.0], [1.0, 1.0], [4.0, 5.0]])
        head = torch.tensor([0, 0, 0])
        negative = torch.tensor([1, 0, 2])
        grad = _repulsion(positions, head, negative, 1.58, 0.9, 1.0)

        np.testing.assert_array_equal(grad[0].numpy(), [COINCIDENT_GRAD, COINCIDENT_GRAD])
        np.testing.assert_array_equal(grad[1].numpy(), [0.0, 0.0])
        # Pushed away from the far point, within the clip
        assert torch.all(grad[2] < 0)
        assert torch.all(grad[2].abs() <= 4.0)


def _schedule(head, tail, epochs_per_sample, negative_sample_rate=None):
    """Hand-built schedule; without a rate no negative sample is ever due."""
    epochs_per_sample = np.asarray(epochs_per_sample, dtype=np.float64)
    if negative_sample_rate is None:
        epochs_per_negative_sample = np.full_like(epochs_per_sample, 1e9)
    else:
        epochs_per_negative_sample = epochs_per_sample / negative_sample_rate
    return EdgeSchedule(
        head=np.asarray(head, dtype=np.int64),
        tail=np.asarray(tail, dtype=np.int64),
        epochs_per_sample=epochs_per_sample,
        epoch_of_next_sample=epochs_per_sample.copy(),
        epochs_per_negative_sample=epochs_per_negative_sample,
        epoch_of_next_negative_sample=epochs_per_negative_sample.copy(),
    )


class TestUpdateRule:
    """Single-step behavior of the optimizer on tiny graphs."""

    @pytest.mark.parametrize("x_i,x_j,b,clipped", [
        ([0.0, 0.0], [3.0, 4.0], 0.9, False),
        ([-0.0005, 0.0], [0.0005, 0.0], 0.3, True),
    ])
    def test_attractive_step(self, x_i, x_j, b, clipped):
        """One epoch moves i by clamp(coeff * (x_i - x_j), +-4) * alpha and j by the opposite."""
        a, alpha = 1.58, 0.5
        embedding = torch.tensor([x_i, x_j], dtype=torch.float32)
        start = embedding.numpy().astype(np.float64)

        diff = start[0] - start[1]
        dist_squared = (diff * diff).sum()
        coeff = -2.0 * a * b * dist_squared ** (b - 1.0) / (a * dist_squared ** b + 1.0)
        expected = np.clip(coeff * diff, -4.0, 4.0) * alpha
        if clipped:
            assert np.abs(expected).max() == pytest.approx(4.0 * alpha)

        result, _ = optimize_layout(
            embedding, _schedule([0], [1], [1.0]), a, b, 1, initial_alpha=alpha,
            generator=torch.Generator().manual_seed(0),
        )
        moved_i = result[0].numpy().astype(np.float64) - start[0]
        moved_j = result[1].numpy().astype(np.float64) - start[1]
        np.testing.assert_allclose(moved_i, expected, rtol=1e-4, atol=1e-6)
        np.testing.assert_allclose(moved_j, -moved_i, rtol=1e-6, atol=1e-7)

    def test_sampling_period(self, monkeypatch):
        """An edge with two epochs per sample fires on even epochs only."""
        fired = []
        original = layout._attraction

        def _recording(positions, head, tail, a, b):
            fired.append(head.tolist())
            return original(positions, head, tail, a, b)

        monkeypatch.setattr(layout, "_attraction", _recording)
        embedding = torch.tensor([[0.0, 0.0], [5.0, 0.0], [0.0, 5.0]])
        optimize_layout(
            embedding, _schedule([0, 2], [1, 1], [1.0, 2.0]), 1.58, 0.9, 6,
            generator=torch.Generator().manual_seed(0),
        )
        assert fired == [[0], [0, 2], [0], [0, 2], [0], [0, 2]]

    def test_negative_sample_counts(self, monkeypatch):
        """Each due edge draws floor((t - next_neg) / per_neg) negatives, then next_neg advances."""
        drawn = []
        original = layout._repulsion

        def _recording(positions, head, negative, a, b, gamma):
            drawn.append((int((head == 0).sum()), int((head == 2).sum())))
            return original(positions, head, negative, a, b, gamma)

        monkeypatch.setattr(layout, "_repulsion", _recording)
        embedding = torch.tensor([[0.0, 0.0], [5.0, 0.0], [0.0, 5.0]])
        # Edge 0 -> 1: per_neg 0.25 from epoch 1; edge 2 -> 1: per_neg 0.5 on even epochs
        optimize_layout(
            embedding, _schedule([0, 2], [1, 1], [1.0, 2.0], negative_sample_rate=4), 1.58, 0.9, 4,
            generator=torch.Generator().manual_seed(0),
        )
        assert drawn == [(3, 0), (4, 3), (4, 0), (4, 4)]

    def test_negative_partner_does_not_move(self, monkeypatch):
        """Repulsion moves only the head of the edge, never the sampled point."""
        partners = []
        original = layout._repulsion

        def _recording(positions, head, negative, a, b, gamma):
            partners.extend(negative.tolist())
            return original(positions, head, negative, a, b, gamma)

        monkeypatch.setattr(layout, "_repulsion", _recording)
        embedding = torch.tensor([[0.0, 0.0], [1.0, 0.0], [0.5, 0.5]])
        start = embedding.clone()
        result, _ = optimize_layout(
            embedding, _schedule([0], [1], [1.0], negative_sample_rate=4), 1.58, 0.9, 10,
            generator=torch.Generator().manual_seed(0),
        )
        # Point 2 belongs to no edge; it only ever appears as a negative sample
        assert 2 in partners
        assert torch.equal(result[2], start[2])
        assert not torch.equal(result[0], start[0])
