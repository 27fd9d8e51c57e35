"""
test_layers.py
~~~~~~~~~~~~~~

Unit tests for the forward/backward layers.
"""

import math
import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from dlfs.errors import ShapeError, StateError
from dlfs.functions import softmax
from dlfs.layers import AffineLayer, ReluLayer, SigmoidLayer, SoftmaxWithLossLayer
from dlfs.matrix import Matrix


@pytest.fixture
def affine():
    w = Matrix([[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]])
    b = Matrix([[0.5, -0.5, 1.0]])
    return AffineLayer(w, b)


@pytest.mark.unit
class TestBackwardBeforeForward:
    """Every layer must refuse backward until forward has run."""

    def test_affine(self, affine):
        assert affine.ready is False
        with pytest.raises(StateError):
            affine.backward(Matrix([[1.0, 1.0, 1.0]]))

    def test_relu(self):
        with pytest.raises(StateError):
            ReluLayer().backward(Matrix([[1.0]]))

    def test_sigmoid(self):
        with pytest.raises(StateError):
            SigmoidLayer().backward(Matrix([[1.0]]))

    def test_softmax_with_loss(self):
        with pytest.raises(StateError):
            SoftmaxWithLossLayer().backward()


@pytest.mark.unit
class TestAffineLayer:

    def test_forward(self, affine):
        out = affine.forward(Matrix([[1.0, 1.0], [0.0, 2.0]]))
        assert out.to_list() == [[5.5, 6.5, 10.0], [8.5, 9.5, 13.0]]
        assert affine.ready is True

    def test_backward_gradients(self, affine):
        x = Matrix([[1.0, 1.0], [0.0, 2.0]])
        dout = Matrix([[1.0, 0.0, -1.0], [2.0, 1.0, 0.0]])
        affine.forward(x)
        dx = affine.backward(dout)

        # dx = dout . W^T, dW = x^T . dout, db = column sums of dout
        assert dx.to_list() == [[-2.0, -2.0], [4.0, 13.0]]
        assert affine.dw.to_list() == [[1.0, 0.0, -1.0], [5.0, 2.0, -1.0]]
        assert affine.db.to_list() == [[3.0, 1.0, -1.0]]
        assert affine.dw.shape == affine.w.shape
        assert affine.db.shape == affine.b.shape

    def test_retained_input_is_a_copy(self, affine):
        """Mutating the caller's input after forward must not leak in."""
        x = Matrix([[1.0, 1.0]])
        affine.forward(x)
        x[0, 0] = 100.0
        affine.backward(Matrix([[1.0, 1.0, 1.0]]))
        assert affine.dw.to_list() == [[1.0, 1.0, 1.0], [1.0, 1.0, 1.0]]

    def test_forward_shape_mismatch(self, affine):
        with pytest.raises(ShapeError):
            affine.forward(Matrix([[1.0, 2.0, 3.0]]))

    def test_bias_shape_checked_at_construction(self):
        with pytest.raises(ShapeError):
            AffineLayer(Matrix.zeros(2, 3), Matrix.zeros(1, 2))

    def test_forward_is_idempotent(self, affine):
        x = Matrix([[1.0, 1.0], [0.0, 2.0]])
        assert affine.forward(x) == affine.forward(x)


@pytest.mark.unit
class TestReluLayer:

    def test_forward_clips_non_positive(self):
        out = ReluLayer().forward(Matrix([[1.0, -2.0, 0.0, 3.0]]))
        assert out.to_list() == [[1.0, 0.0, 0.0, 3.0]]

    def test_backward_zeroes_masked_entries(self):
        """Gradients for inputs <= 0 are zeroed; the rest pass unchanged."""
        layer = ReluLayer()
        layer.forward(Matrix([[1.0, -2.0, 0.0, 3.0], [-1.0, 2.0, 5.0, -0.5]]))
        dx = layer.backward(Matrix([[10.0, 20.0, 30.0, 40.0], [1.0, 2.0, 3.0, 4.0]]))
        assert dx.to_list() == [[10.0, 0.0, 0.0, 40.0], [0.0, 2.0, 3.0, 0.0]]

    def test_backward_uses_most_recent_forward(self):
        layer = ReluLayer()
        layer.forward(Matrix([[-1.0, 1.0]]))
        layer.forward(Matrix([[1.0, -1.0]]))
        assert layer.backward(Matrix([[5.0, 5.0]])).to_list() == [[5.0, 0.0]]

    def test_backward_shape_mismatch(self):
        layer = ReluLayer()
        layer.forward(Matrix([[1.0, 2.0]]))
        with pytest.raises(ShapeError):
            layer.backward(Matrix([[1.0, 2.0, 3.0]]))

    def test_forward_is_idempotent(self):
        layer = ReluLayer()
        x = Matrix([[0.5, -0.5], [2.0, -3.0]])
        assert layer.forward(x) == layer.forward(x)


@pytest.mark.unit
class TestSigmoidLayer:

    def test_forward(self):
        out = SigmoidLayer().forward(Matrix([[0.0]]))
        assert out.to_list() == [[0.5]]

    def test_backward_uses_own_output(self):
        layer = SigmoidLayer()
        y = layer.forward(Matrix([[0.0, 2.0]]))
        dx = layer.backward(Matrix([[4.0, 1.0]]))
        y1 = y[0, 1]
        assert dx[0, 0] == pytest.approx(1.0)
        assert dx[0, 1] == pytest.approx(y1 * (1 - y1))

    def test_forward_is_idempotent(self):
        layer = SigmoidLayer()
        x = Matrix([[0.1, -4.0]])
        assert layer.forward(x) == layer.forward(x)


@pytest.mark.unit
class TestSoftmaxWithLossLayer:

    def test_forward_returns_loss_per_example(self):
        layer = SoftmaxWithLossLayer()
        x = Matrix([[2.0, 1.0, 0.1], [0.0, 0.0, 0.0]])
        t = Matrix([[1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
        losses = layer.forward(x, t)

        assert len(losses) == 2
        assert losses[1] == pytest.approx(-math.log(1 / 3))
        assert layer.output.row(0) == pytest.approx(softmax([2.0, 1.0, 0.1]))

    def test_backward_divides_by_batch_size(self):
        layer = SoftmaxWithLossLayer()
        x = Matrix([[0.0, 0.0], [0.0, 0.0]])
        t = Matrix([[1.0, 0.0], [0.0, 1.0]])
        layer.forward(x, t)
        dx = layer.backward()
        assert dx.to_list() == [[-0.25, 0.25], [0.25, -0.25]]

    def test_target_shape_mismatch(self):
        with pytest.raises(ShapeError):
            SoftmaxWithLossLayer().forward(Matrix([[1.0, 2.0]]), Matrix([[1.0, 0.0, 0.0]]))

    def test_forward_is_idempotent(self):
        layer = SoftmaxWithLossLayer()
        x = Matrix([[1.0, 3.0]])
        t = Matrix([[0.0, 1.0]])
        assert layer.forward(x, t) == layer.forward(x, t)
