"""
test_matrix.py
~~~~~~~~~~~~~~

Unit tests for the dense Matrix type.
"""

import math
import os
import sys

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from dlfs.errors import ShapeError
from dlfs.functions import identity, sigmoid
from dlfs.matrix import Matrix


@pytest.fixture
def a():
    return Matrix([[1, 2], [3, 4]])


@pytest.fixture
def b():
    return Matrix([[5, 6], [7, 8]])


@pytest.mark.unit
class TestConstruction:
    """Test building matrices and reading their shape."""

    def test_zeros_has_requested_shape(self):
        m = Matrix.zeros(2, 3)
        assert m.shape == (2, 3)
        assert m.to_list() == [[0.0, 0.0, 0.0], [0.0, 0.0, 0.0]]

    def test_zero_rows_reports_zero_columns(self):
        """A matrix with no rows has no columns either."""
        m = Matrix.zeros(0, 5)
        assert m.rows == 0
        assert m.columns == 0

    def test_zero_columns_allowed(self):
        m = Matrix.zeros(3, 0)
        assert m.shape == (3, 0)

    def test_ragged_rows_rejected(self):
        """Test that rows of unequal length fail with ShapeError."""
        with pytest.raises(ShapeError):
            Matrix([[1, 2, 3], [4, 5]])

    def test_input_rows_are_copied(self):
        rows = [[1.0, 2.0]]
        m = Matrix(rows)
        rows[0][0] = 99.0
        assert m[0, 0] == 1.0

    def test_with_randn_is_reproducible_with_seed(self):
        m1 = Matrix.with_randn(3, 4, 0.01, np.random.default_rng(7))
        m2 = Matrix.with_randn(3, 4, 0.01, np.random.default_rng(7))
        assert m1 == m2
        assert m1.shape == (3, 4)
        assert all(abs(v) < 1.0 for row in m1.to_list() for v in row)

    def test_numpy_round_trip_preserves_shape(self):
        array = np.arange(6, dtype=float).reshape(2, 3)
        m = Matrix.from_numpy(array)
        assert m.shape == (2, 3)
        assert np.array_equal(m.to_numpy(), array)

    def test_from_numpy_rejects_1d(self):
        with pytest.raises(ShapeError):
            Matrix.from_numpy(np.zeros(3))

    def test_to_vector_requires_single_row(self, a):
        assert Matrix([[1, 2, 3]]).to_vector() == [1, 2, 3]
        with pytest.raises(ShapeError):
            a.to_vector()


@pytest.mark.unit
class TestDotProduct:
    """Test the matrix product."""

    def test_integer_fixture(self, a, b):
        assert a.dot_product(b).to_list() == [[19, 22], [43, 50]]

    def test_result_shape(self):
        x = Matrix.zeros(2, 3)
        y = Matrix.zeros(3, 4)
        assert x.dot_product(y).shape == (2, 4)

    def test_inner_dimension_mismatch(self):
        with pytest.raises(ShapeError):
            Matrix.zeros(2, 3).dot_product(Matrix.zeros(2, 3))

    def test_three_layer_forward_pass(self):
        """Forward pass of a small sigmoid network through dot products."""
        w1 = Matrix([[0.1, 0.3, 0.5], [0.2, 0.4, 0.6]])
        b1 = Matrix([[0.1, 0.2, 0.3]])
        w2 = Matrix([[0.1, 0.4], [0.2, 0.5], [0.3, 0.6]])
        b2 = Matrix([[0.1, 0.2]])
        w3 = Matrix([[0.1, 0.3], [0.2, 0.4]])
        b3 = Matrix([[0.1, 0.2]])

        x = Matrix([[1.0, 0.5]])
        z1 = x.dot_product(w1).add(b1).map(sigmoid)
        z2 = z1.dot_product(w2).add(b2).map(sigmoid)
        y = z2.dot_product(w3).add(b3).map(identity)

        assert y.to_vector() == pytest.approx([0.31682708, 0.69627909], abs=1e-7)


@pytest.mark.unit
class TestElementwise:
    """Test elementwise and broadcasting operations."""

    def test_add_and_sub(self, a, b):
        assert a.add(b).to_list() == [[6, 8], [10, 12]]
        assert b.sub(a).to_list() == [[4, 4], [4, 4]]

    def test_add_shape_mismatch(self, a):
        with pytest.raises(ShapeError):
            a.add(Matrix([[1, 2, 3]]))

    def test_sub_shape_mismatch(self, a):
        with pytest.raises(ShapeError):
            a.sub(Matrix([[1], [2]]))

    def test_add_does_not_mutate_operands(self, a, b):
        a.add(b)
        assert a.to_list() == [[1, 2], [3, 4]]
        assert b.to_list() == [[5, 6], [7, 8]]

    def test_in_place_add_and_sub(self, a, b):
        a.add_(b)
        assert a.to_list() == [[6, 8], [10, 12]]
        a.sub_(b)
        assert a.to_list() == [[1, 2], [3, 4]]

    def test_in_place_mismatch_leaves_matrix_untouched(self, a):
        with pytest.raises(ShapeError):
            a.sub_(Matrix([[1, 1, 1], [1, 1, 1]]))
        assert a.to_list() == [[1, 2], [3, 4]]

    def test_add_vector_broadcasts_bias(self, a):
        out = a.add_vector(Matrix([[10, 20]]))
        assert out.to_list() == [[11, 22], [13, 24]]

    def test_add_vector_rejects_multi_row_bias(self, a, b):
        with pytest.raises(ShapeError):
            a.add_vector(b)

    def test_add_vector_rejects_wrong_width(self, a):
        with pytest.raises(ShapeError):
            a.add_vector(Matrix([[1, 2, 3]]))

    def test_multiply_and_divide(self, a, b):
        assert a.multiply(b).to_list() == [[5, 12], [21, 32]]
        assert b.divide(Matrix([[5, 2], [7, 4]])).to_list() == [[1, 3], [1, 2]]

    def test_multiply_shape_mismatch(self, a):
        with pytest.raises(ShapeError):
            a.multiply(Matrix([[1, 2]]))

    def test_scale_and_operators(self, a):
        assert a.scale(2).to_list() == [[2, 4], [6, 8]]
        assert (a * 2).to_list() == [[2, 4], [6, 8]]
        assert (2 * a).to_list() == [[2, 4], [6, 8]]
        assert (a + 1).to_list() == [[2, 3], [4, 5]]
        assert (-a).to_list() == [[-1, -2], [-3, -4]]

    def test_sqrt_of_negative_is_nan(self):
        out = Matrix([[4.0, -1.0]]).sqrt()
        assert out[0, 0] == 2.0
        assert math.isnan(out[0, 1])


@pytest.mark.unit
class TestReductions:
    """Test reshaping and reducing operations."""

    def test_column_sum(self):
        m = Matrix([[1, 2, 3], [4, 5, 6]])
        assert m.column_sum().to_list() == [[5, 7, 9]]

    def test_transpose(self):
        m = Matrix([[1, 2, 3], [4, 5, 6]])
        t = m.transpose()
        assert t.shape == (3, 2)
        assert t.to_list() == [[1, 4], [2, 5], [3, 6]]

    def test_map_row_applies_per_row(self):
        m = Matrix([[1, 2], [3, 4]])
        out = m.map_row(lambda row: [sum(row)] * len(row))
        assert out.to_list() == [[3, 3], [7, 7]]

    def test_map_row_rejects_ragged_output(self):
        m = Matrix([[1, 2], [3, 4]])
        with pytest.raises(ShapeError):
            m.map_row(lambda row: row[:int(row[0])])


@pytest.mark.unit
class TestNumericalGradient:
    """Test finite-difference gradients on matrices."""

    def test_sum_of_squares(self):
        m = Matrix([[3.0, 4.0], [-1.0, 0.5]])

        def sum_of_squares(probe):
            return sum(v * v for row in probe.to_list() for v in row)

        grad = m.numerical_gradient(sum_of_squares)
        assert grad.shape == m.shape
        for g, v in zip(grad.to_list()[0] + grad.to_list()[1],
                        m.to_list()[0] + m.to_list()[1]):
            assert g == pytest.approx(2 * v, abs=1e-6)

    def test_receiver_left_bit_identical(self):
        """The matrix must be unchanged after probing."""
        values = [[0.1, 0.2, 0.3], [1e-9, -7.25, 3.0]]
        m = Matrix(values)
        m.numerical_gradient(lambda probe: probe[1, 1] ** 3)
        assert m.to_list() == values

    def test_probe_sees_one_perturbation_at_a_time(self):
        m = Matrix([[1.0, 2.0]])
        seen = []
        m.numerical_gradient(lambda probe: seen.append(probe.to_vector()) or 0.0)
        assert len(seen) == 4
        assert seen[0][1] == 2.0
        assert seen[2][0] == 1.0
