"""
network.py
~~~~~~~~~~

Two-layer classifier composed from the layers in ``dlfs.layers``:

    x -> Affine1 -> ReLU -> Affine2 -> SoftmaxWithLoss

Gradients can be obtained two ways. ``gradient`` runs backpropagation and
is the one used for training. ``numerical_gradient`` probes every
parameter entry by finite differences and exists to check the first one.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from dlfs.errors import ShapeError
from dlfs.functions import argmax
from dlfs.layers import AffineLayer, ReluLayer, SoftmaxWithLossLayer
from dlfs.matrix import Matrix
from dlfs.optimizers import Optimizer

logger = logging.getLogger(__name__)

# Parameter slots in the order optimizers see them
PARAM_NAMES = ('w1', 'b1', 'w2', 'b2')


@dataclass
class Gradients:
    """One gradient matrix per learnable parameter, shaped like it."""

    dw1: Matrix
    db1: Matrix
    dw2: Matrix
    db2: Matrix

    def as_dict(self) -> Dict[str, Matrix]:
        return {'w1': self.dw1, 'b1': self.db1, 'w2': self.dw2, 'b2': self.db2}


def loss_with_params(params: Dict[str, Matrix], x: Matrix, t: Matrix) -> float:
    """
    Mean cross-entropy loss of the two-layer architecture for a parameter
    snapshot.

    Builds throwaway layers, so no network or layer state is touched.

    Args:
        params: Matrices keyed by 'w1', 'b1', 'w2', 'b2'
        x: Input batch
        t: One-hot target batch

    Returns:
        float: Loss averaged over the batch
    """
    h = ReluLayer().forward(AffineLayer(params['w1'], params['b1']).forward(x))
    scores = AffineLayer(params['w2'], params['b2']).forward(h)
    losses = SoftmaxWithLossLayer().forward(scores, t)
    return sum(losses) / len(losses) if losses else 0.0


class TwoLayerNet:
    """Affine-ReLU-Affine network with a softmax cross-entropy head."""

    def __init__(
        self,
        input_size: int,
        hidden_size: int,
        output_size: int,
        weight_init_std: float = 0.01,
        seed: Optional[int] = None
    ):
        """
        Initialize weights from a scaled normal distribution and biases
        with zeros.

        Args:
            input_size: Features per example (784 for MNIST)
            hidden_size: Width of the hidden layer
            output_size: Number of classes
            weight_init_std: Standard deviation of the initial weights
            seed: Seed for reproducible initialization
        """
        if min(input_size, hidden_size, output_size) < 1:
            raise ValueError(
                f"Layer sizes must be positive, got "
                f"{[input_size, hidden_size, output_size]}"
            )
        rng = np.random.default_rng(seed)
        self.weight_init_std = weight_init_std

        w1 = Matrix.with_randn(input_size, hidden_size, weight_init_std, rng)
        b1 = Matrix.zeros(1, hidden_size)
        w2 = Matrix.with_randn(hidden_size, output_size, weight_init_std, rng)
        b2 = Matrix.zeros(1, output_size)

        self.affine1_layer = AffineLayer(w1, b1)
        self.relu1_layer = ReluLayer()
        self.affine2_layer = AffineLayer(w2, b2)
        self.last_layer = SoftmaxWithLossLayer()

        logger.debug(
            f"Created TwoLayerNet {self.sizes} with "
            f"weight_init_std={weight_init_std}, seed={seed}"
        )

    @property
    def sizes(self) -> List[int]:
        """Layer widths ``[input, hidden, output]``."""
        return [
            self.affine1_layer.w.rows,
            self.affine1_layer.w.columns,
            self.affine2_layer.w.columns,
        ]

    @property
    def params(self) -> Dict[str, Matrix]:
        """The live parameter matrices, keyed by slot name."""
        return {
            'w1': self.affine1_layer.w,
            'b1': self.affine1_layer.b,
            'w2': self.affine2_layer.w,
            'b2': self.affine2_layer.b,
        }

    def predict(self, x: Matrix) -> Matrix:
        """Raw class scores (logits) for each row of ``x``."""
        x = self.affine1_layer.forward(x)
        x = self.relu1_layer.forward(x)
        return self.affine2_layer.forward(x)

    def loss(self, x: Matrix, t: Matrix) -> List[float]:
        """Per-example cross-entropy loss."""
        y = self.predict(x)
        return self.last_layer.forward(y, t)

    def mean_loss(self, x: Matrix, t: Matrix) -> float:
        losses = self.loss(x, t)
        return sum(losses) / len(losses) if losses else 0.0

    def accuracy(self, x: Matrix, t: Matrix) -> float:
        """Fraction of rows whose highest score matches the one-hot target."""
        if x.rows != t.rows:
            raise ShapeError(f"Inputs {x.shape} and targets {t.shape} differ in rows")
        if t.rows == 0:
            return 0.0
        y = self.predict(x)
        correct = sum(
            1 for i in range(y.rows) if argmax(y.row(i)) == argmax(t.row(i))
        )
        return correct / t.rows

    def gradient(self, x: Matrix, t: Matrix) -> Gradients:
        """
        Parameter gradients by backpropagation.

        One forward pass fills the layer state, then each layer's backward
        runs in reverse order.
        """
        self.loss(x, t)

        dout = self.last_layer.backward()
        dout = self.affine2_layer.backward(dout)
        dout = self.relu1_layer.backward(dout)
        self.affine1_layer.backward(dout)

        return Gradients(
            dw1=self.affine1_layer.dw.copy(),
            db1=self.affine1_layer.db.copy(),
            dw2=self.affine2_layer.dw.copy(),
            db2=self.affine2_layer.db.copy(),
        )

    def numerical_gradient(self, x: Matrix, t: Matrix) -> Gradients:
        """
        Parameter gradients by central finite differences.

        Costs two full loss evaluations per parameter entry; use it only to
        verify ``gradient``.
        """
        snapshot = {name: m.copy() for name, m in self.params.items()}
        grads = {}
        for name in PARAM_NAMES:
            def probe_loss(probe: Matrix, name: str = name) -> float:
                return loss_with_params({**snapshot, name: probe}, x, t)
            grads[name] = snapshot[name].numerical_gradient(probe_loss)
        return Gradients(
            dw1=grads['w1'], db1=grads['b1'], dw2=grads['w2'], db2=grads['b2']
        )

    def parameter_pairs(self, grads: Gradients) -> List[Tuple[Matrix, Matrix]]:
        """``(parameter, gradient)`` pairs in the fixed slot order."""
        params = self.params
        grad_map = grads.as_dict()
        return [(params[name], grad_map[name]) for name in PARAM_NAMES]

    def parameter_shapes(self) -> List[Tuple[int, int]]:
        params = self.params
        return [params[name].shape for name in PARAM_NAMES]

    def train(
        self,
        dataset,
        iterations: int,
        batch_size: int,
        optimizer: Optimizer,
        rng: Optional[np.random.Generator] = None,
        callback: Optional[Callable[[Dict[str, Any]], None]] = None,
        yield_func: Optional[Callable[[], None]] = None
    ) -> List[float]:
        """
        Train with mini-batches sampled uniformly with replacement.

        Each iteration samples a batch, computes the gradient, applies
        exactly one optimizer update, then records the batch loss.

        Args:
            dataset: Object with ``sample_batch(batch_size, rng)`` returning
                ``(x, t)`` matrices
            iterations: Number of update steps
            batch_size: Examples per batch
            optimizer: Update rule applied to the parameters
            rng: Random generator for batch sampling
            callback: Called after every iteration with a progress dict
            yield_func: Called after every iteration to let other
                cooperative tasks run

        Returns:
            list: Mean batch loss after each update
        """
        if iterations < 0:
            raise ValueError(f"iterations must be non-negative, got {iterations}")
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        if rng is None:
            rng = np.random.default_rng()

        logger.info(
            f"Training {self.sizes} for {iterations} iterations, "
            f"batch_size={batch_size}, optimizer={type(optimizer).__name__}"
        )
        start_time = time.time()
        history = []
        for i in range(iterations):
            x_batch, t_batch = dataset.sample_batch(batch_size, rng)
            grads = self.gradient(x_batch, t_batch)
            optimizer.update(self.parameter_pairs(grads))

            loss = self.mean_loss(x_batch, t_batch)
            history.append(loss)
            logger.info(f"[{i + 1}/{iterations}]: LOSS={loss:.6f}")

            if callback is not None:
                callback({
                    'iteration': i + 1,
                    'total_iterations': iterations,
                    'loss': loss,
                    'elapsed_time': time.time() - start_time,
                })
            if yield_func is not None:
                yield_func()

        logger.info(f"Training finished in {time.time() - start_time:.2f}s")
        return history
