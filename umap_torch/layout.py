# layout.py

"""
Edge sampling schedule and stochastic layout optimization.

The embedding is improved by stochastic gradient descent on the fuzzy set
cross entropy between the 1-skeletons of the high and low dimensional fuzzy
simplicial sets. Edges are sampled proportionally to their membership
strength; the (1 - p) terms come from negative sampling, similar to word2vec.

Each epoch processes every due edge in one batch on the torch device.
Updates touching the same point are summed with ``index_add_``.
"""

from dataclasses import dataclass

import numpy as np
import scipy.sparse as sp
import torch
from loguru import logger

# Per-dimension gradient clip
GRAD_CLIP = 4.0
# Fixed repulsive gradient for coincident distinct points
COINCIDENT_GRAD = 4.0
# Keeps repulsion finite at zero distance
REPULSION_EPS = 0.001


def make_epochs_per_sample(weights, n_epochs):
    """
    Given a set of weights and number of epochs generate the number of
    epochs per sample for each weight.

    Edges weaker than ``max(weights) / n_epochs`` would fire less than once
    and get 0 (never sampled); the others get ``max(weights) / weight``.

    Parameters
    ----------
    weights : array-like of shape (n_edges,)
        Membership strengths of the 1-simplices.
    n_epochs : int
        Total number of epochs.

    Returns
    -------
    numpy.ndarray of shape (n_edges,)
    """
    weights = np.asarray(weights, dtype=np.float64)
    result = np.zeros(weights.shape[0], dtype=np.float64)
    if weights.size == 0:
        return result
    w_max = weights.max()
    if w_max <= 0.0:
        return result
    sampled = weights >= w_max / n_epochs
    result[sampled] = w_max / weights[sampled]
    return result


@dataclass
class EdgeSchedule:
    """
    Sampling schedule of the graph edges during optimization.

    One entry per sampled directed edge ``head -> tail``. Counters are in
    units of epochs and advance as the optimizer consumes them.
    """
    head: np.ndarray
    tail: np.ndarray
    epochs_per_sample: np.ndarray
    epoch_of_next_sample: np.ndarray
    epochs_per_negative_sample: np.ndarray
    epoch_of_next_negative_sample: np.ndarray

    @classmethod
    def from_graph(cls, strength, n_epochs, negative_sample_rate):
        """
        Build the schedule of a membership strength matrix.

        Parameters
        ----------
        strength : scipy.sparse matrix of shape (n_samples, n_samples)
            Symmetric membership strengths. Not modified.
        n_epochs : int
            Total number of epochs.
        negative_sample_rate : int
            Negative samples per positive sample.

        Returns
        -------
        EdgeSchedule
        """
        coo = sp.coo_matrix(strength)
        epochs_per_sample = make_epochs_per_sample(coo.data, n_epochs)
        sampled = epochs_per_sample > 0.0
        epochs_per_sample = epochs_per_sample[sampled]
        epochs_per_negative_sample = epochs_per_sample / negative_sample_rate
        return cls(
            head=coo.row[sampled].astype(np.int64),
            tail=coo.col[sampled].astype(np.int64),
            epochs_per_sample=epochs_per_sample,
            epoch_of_next_sample=epochs_per_sample.copy(),
            epochs_per_negative_sample=epochs_per_negative_sample,
            epoch_of_next_negative_sample=epochs_per_negative_sample.copy(),
        )

    def __len__(self):
        return self.head.shape[0]


def learning_rate(initial_alpha, epoch, n_epochs):
    """Learning rate in effect after ``epoch`` of ``n_epochs`` epochs (linear decay)."""
    return initial_alpha * (1.0 - epoch / n_epochs)


def _attraction(positions, head, tail, a, b):
    """Clipped attractive gradient of each (head, tail) edge, applied to head."""
    diff = positions[head] - positions[tail]
    dist_squared = (diff * diff).sum(dim=1)
    grad_coeff = torch.zeros_like(dist_squared)
    apart = dist_squared > 0.0
    d2 = dist_squared[apart]
    grad_coeff[apart] = -2.0 * a * b * d2.pow(b - 1.0) / (a * d2.pow(b) + 1.0)
    return torch.clamp(grad_coeff[:, None] * diff, -GRAD_CLIP, GRAD_CLIP)


def _repulsion(positions, head, negative, a, b, gamma):
    """Clipped repulsive gradient of each (head, negative) pair, applied to head."""
    diff = positions[head] - positions[negative]
    dist_squared = (diff * diff).sum(dim=1)
    grad_coeff = torch.zeros_like(dist_squared)
    apart = dist_squared > 0.0
    d2 = dist_squared[apart]
    grad_coeff[apart] = 2.0 * gamma * b / ((REPULSION_EPS + d2) * (a * d2.pow(b) + 1.0))
    grad = torch.clamp(grad_coeff[:, None] * diff, -GRAD_CLIP, GRAD_CLIP)
    # Coincident but distinct points get a fixed push; a point drawn as its own
    # negative sample has a zero gradient already
    coincident = (~apart) & (head != negative)
    grad[coincident] = COINCIDENT_GRAD
    return grad


def optimize_layout(  # pylint: disable=too-many-arguments,too-many-locals
        embedding,
        schedule,
        a,
        b,
        n_epochs,
        initial_alpha=1.0,
        gamma=1.0,
        generator=None,
        log=logger,
):
    """
    Improve an embedding using stochastic gradient descent to minimize the
    fuzzy set cross entropy between the 1-skeletons of the high dimensional
    and low dimensional fuzzy simplicial sets.

    Parameters
    ----------
    embedding : torch.Tensor of shape (n_samples, n_components)
        Initial coordinates, updated in place.
    schedule : EdgeSchedule
        Edge sampling schedule. Not modified; the optimizer keeps its own
        counters on the device.
    a, b : float
        Curve parameters from :func:`umap_torch.curve.find_ab_params`.
    n_epochs : int
        Number of epochs.
    initial_alpha : float, default=1.0
        Initial learning rate.
    gamma : float, default=1.0
        Weight of the negative samples (repulsion strength).
    generator : torch.Generator, optional
        CPU generator drawing the negative samples.
    log : loguru.Logger
        Logger receiving progress messages.

    Returns
    -------
    embedding : torch.Tensor
        The optimized coordinates (same tensor as the input).
    alphas : list of float
        Learning rate in effect after each epoch.
    """
    device = embedding.device
    n_vertices = embedding.shape[0]
    a = float(a)
    b = float(b)

    head = torch.as_tensor(schedule.head, dtype=torch.long, device=device)
    tail = torch.as_tensor(schedule.tail, dtype=torch.long, device=device)
    counter_dtype = torch.float32 if device.type == 'mps' else torch.float64
    epochs_per_sample = torch.as_tensor(schedule.epochs_per_sample, dtype=counter_dtype, device=device)
    epoch_of_next_sample = torch.as_tensor(schedule.epoch_of_next_sample, dtype=counter_dtype, device=device).clone()
    epochs_per_negative_sample = torch.as_tensor(
        schedule.epochs_per_negative_sample, dtype=counter_dtype, device=device
    )
    epoch_of_next_negative_sample = torch.as_tensor(
        schedule.epoch_of_next_negative_sample, dtype=counter_dtype, device=device
    ).clone()

    alpha = float(initial_alpha)
    alphas = []
    log_every = max(1, n_epochs // 10)

    log.info(f"Optimizing layout of {n_vertices} points over {len(schedule)} edges for {n_epochs} epochs...")

    for epoch in range(1, n_epochs + 1):
        due = torch.nonzero(epoch_of_next_sample <= epoch, as_tuple=True)[0]

        if due.numel() > 0:
            due_head = head[due]
            due_tail = tail[due]

            grad = _attraction(embedding, due_head, due_tail, a, b) * alpha
            embedding.index_add_(0, due_head, grad)
            embedding.index_add_(0, due_tail, -grad)
            epoch_of_next_sample[due] += epochs_per_sample[due]

            n_neg_samples = torch.floor(
                (epoch - epoch_of_next_negative_sample[due]) / epochs_per_negative_sample[due]
            ).clamp_(min=0).long()
            total = int(n_neg_samples.sum())
            if total > 0:
                neg_head = torch.repeat_interleave(due_head, n_neg_samples)
                negative = torch.randint(0, n_vertices, (total,), generator=generator).to(device)
                grad = _repulsion(embedding, neg_head, negative, a, b, gamma) * alpha
                embedding.index_add_(0, neg_head, grad)
            epoch_of_next_negative_sample[due] += (
                n_neg_samples.to(counter_dtype) * epochs_per_negative_sample[due]
            )

        alpha = learning_rate(initial_alpha, epoch, n_epochs)
        alphas.append(alpha)

        if epoch % log_every == 0:
            log.info(f"Epoch {epoch}/{n_epochs} ({due.numel()} edges sampled, alpha={alpha:.4f})")

    return embedding, alphas
