"""
layers.py
~~~~~~~~~

Differentiable layers with a two-phase forward/backward interface.

Each layer keeps exactly what its backward pass needs from the most recent
forward pass. That slot starts out as ``None``; calling ``backward`` while
it is still ``None`` raises StateError. Retained tensors are copies, so a
caller mutating its own matrices never changes a layer's state.
"""

from typing import List, Optional

from dlfs.errors import ShapeError, StateError
from dlfs.functions import cross_entropy_error, sigmoid, softmax
from dlfs.matrix import Matrix


class Layer:
    """Base class for all layers."""

    def forward(self, x: Matrix) -> Matrix:
        """
        Compute the layer output and remember what backward needs.

        Args:
            x: Input batch, one example per row

        Returns:
            Matrix: Output batch
        """
        raise NotImplementedError

    def backward(self, dout: Matrix) -> Matrix:
        """
        Propagate the gradient of the loss back through the layer.

        Args:
            dout: Gradient of the loss w.r.t. this layer's output

        Returns:
            Matrix: Gradient of the loss w.r.t. this layer's input

        Raises:
            StateError: If no forward pass has run yet
        """
        raise NotImplementedError

    @property
    def ready(self) -> bool:
        """True once forward has run at least once."""
        raise NotImplementedError

    def _require_ready(self) -> None:
        if not self.ready:
            raise StateError(
                f"{type(self).__name__}.backward called before forward"
            )


class AffineLayer(Layer):
    """
    Linear transform ``x . W + b``.

    After ``backward`` the parameter gradients are available as ``dw`` and
    ``db``, shaped like ``w`` and ``b``.
    """

    def __init__(self, w: Matrix, b: Matrix):
        if b.rows != 1 or b.columns != w.columns:
            raise ShapeError(
                f"Bias shape {b.shape} does not match weight shape {w.shape}"
            )
        self.w = w
        self.b = b
        self.dw: Optional[Matrix] = None
        self.db: Optional[Matrix] = None
        self._x: Optional[Matrix] = None

    @property
    def ready(self) -> bool:
        return self._x is not None

    def forward(self, x: Matrix) -> Matrix:
        out = x.dot_product(self.w).add_vector(self.b)
        self._x = x.copy()
        return out

    def backward(self, dout: Matrix) -> Matrix:
        self._require_ready()
        dx = dout.dot_product(self.w.transpose())
        self.dw = self._x.transpose().dot_product(dout)
        self.db = dout.column_sum()
        return dx


class ReluLayer(Layer):
    """Rectified linear unit; remembers which entries were clipped."""

    def __init__(self):
        self._mask: Optional[List[List[bool]]] = None

    @property
    def ready(self) -> bool:
        return self._mask is not None

    def forward(self, x: Matrix) -> Matrix:
        # One mask row per example so masks line up with the batch
        self._mask = [[v <= 0 for v in x.row(i)] for i in range(x.rows)]
        return x.map(lambda v: 0.0 if v <= 0 else v)

    def backward(self, dout: Matrix) -> Matrix:
        self._require_ready()
        mask_shape = (len(self._mask), len(self._mask[0]) if self._mask else 0)
        if dout.shape != mask_shape:
            raise ShapeError(
                f"ReluLayer.backward: gradient shape {dout.shape} does not "
                f"match forward shape {mask_shape}"
            )
        return Matrix([
            [0.0 if masked else d for masked, d in zip(mask_row, dout.row(i))]
            for i, mask_row in enumerate(self._mask)
        ])


class SigmoidLayer(Layer):
    """Logistic activation; remembers its own output."""

    def __init__(self):
        self._out: Optional[Matrix] = None

    @property
    def ready(self) -> bool:
        return self._out is not None

    def forward(self, x: Matrix) -> Matrix:
        out = x.map(sigmoid)
        self._out = out.copy()
        return out

    def backward(self, dout: Matrix) -> Matrix:
        self._require_ready()
        y = self._out
        return dout.multiply(y).multiply(y.map(lambda v: 1.0 - v))


class SoftmaxWithLossLayer(Layer):
    """
    Softmax followed by cross-entropy loss.

    ``forward`` takes the target batch as well as the scores and returns one
    loss per example; ``backward`` takes no gradient argument.
    """

    def __init__(self):
        self._y: Optional[Matrix] = None
        self._t: Optional[Matrix] = None

    @property
    def ready(self) -> bool:
        return self._y is not None

    @property
    def output(self) -> Optional[Matrix]:
        """Softmax probabilities from the last forward pass."""
        return self._y

    def forward(self, x: Matrix, t: Matrix) -> List[float]:
        """
        Args:
            x: Raw scores, one example per row
            t: One-hot targets, same shape as ``x``

        Returns:
            list: Cross-entropy loss of each example
        """
        if x.shape != t.shape:
            raise ShapeError(
                f"SoftmaxWithLossLayer: scores {x.shape} and targets "
                f"{t.shape} differ"
            )
        y = x.map_row(softmax)
        self._y = y
        self._t = t.copy()
        return [cross_entropy_error(y.row(i), t.row(i)) for i in range(y.rows)]

    def backward(self) -> Matrix:
        """
        Gradient w.r.t. the scores, ``(y - t) / batch_size``.

        The loss is the mean over the batch, so the division happens here
        and nowhere else.
        """
        self._require_ready()
        batch_size = self._t.rows
        if batch_size == 0:
            return self._y.copy()
        return self._y.sub(self._t).scale(1.0 / batch_size)
