"""
matrix.py
~~~~~~~~~

Dense row-major 2-D matrix with shape-checked algebra.

Every binary operation validates shapes before touching any entry, so a
ShapeError never leaves a partially updated result behind. Non-mutating
operations return a new matrix; the ``add_``/``sub_`` variants mutate the
receiver in place.
"""

import math
from typing import Any, Callable, List, Optional, Sequence, Tuple

import numpy as np

from dlfs.errors import ShapeError

# Finite-difference step used by numerical_gradient
NUMERICAL_H = 1e-4


class Matrix:
    """
    A ``rows x columns`` matrix stored as a list of equal-length rows.

    The shape is fixed at construction; the contents are mutable. A
    zero-row matrix always reports zero columns.
    """

    __slots__ = ('_data', '_columns')
    __hash__ = None

    def __init__(self, rows: Sequence[Sequence[Any]] = ()):
        """
        Build a matrix from a sequence of rows.

        Args:
            rows: Sequence of equal-length sequences of numbers

        Raises:
            ShapeError: If the rows do not all have the same length
        """
        data = [list(row) for row in rows]
        columns = len(data[0]) if data else 0
        for i, row in enumerate(data):
            if len(row) != columns:
                raise ShapeError(
                    f"Row {i} has {len(row)} entries, expected {columns}"
                )
        self._data = data
        self._columns = columns

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_rows(cls, rows: Sequence[Sequence[Any]]) -> 'Matrix':
        """Alias of the constructor that reads better at call sites."""
        return cls(rows)

    @classmethod
    def zeros(cls, rows: int, columns: int, fill: Any = 0.0) -> 'Matrix':
        """
        Create a matrix with every entry set to ``fill``.

        Args:
            rows: Number of rows (may be 0)
            columns: Number of columns (may be 0)
            fill: Value of every entry

        Returns:
            Matrix: New ``rows x columns`` matrix
        """
        if rows < 0 or columns < 0:
            raise ShapeError(f"Negative shape ({rows}, {columns})")
        m = cls([[fill] * columns for _ in range(rows)])
        if rows == 0:
            m._columns = 0
        return m

    @classmethod
    def with_randn(
        cls,
        rows: int,
        columns: int,
        scale: float = 1.0,
        rng: Optional[np.random.Generator] = None
    ) -> 'Matrix':
        """
        Create a matrix of standard-normal samples multiplied by ``scale``.

        Args:
            rows: Number of rows
            columns: Number of columns
            scale: Standard deviation of the samples
            rng: Random generator (a fresh unseeded one if omitted)

        Returns:
            Matrix: New matrix of random entries
        """
        if rows < 0 or columns < 0:
            raise ShapeError(f"Negative shape ({rows}, {columns})")
        if rng is None:
            rng = np.random.default_rng()
        samples = rng.standard_normal((rows, columns)) * scale
        return cls(samples.tolist())

    @classmethod
    def from_numpy(cls, array: np.ndarray) -> 'Matrix':
        """Convert a 2-D numpy array into a float matrix."""
        array = np.asarray(array, dtype=float)
        if array.ndim != 2:
            raise ShapeError(f"Expected a 2-D array, got {array.ndim}-D")
        return cls(array.tolist())

    def to_numpy(self) -> np.ndarray:
        """Return the contents as a float numpy array of the same shape."""
        return np.array(self._data, dtype=float).reshape(self.shape)

    # ------------------------------------------------------------------
    # Shape and access
    # ------------------------------------------------------------------

    @property
    def rows(self) -> int:
        return len(self._data)

    @property
    def columns(self) -> int:
        return self._columns

    @property
    def shape(self) -> Tuple[int, int]:
        return (len(self._data), self._columns)

    def row(self, i: int) -> List[Any]:
        """Return a copy of row ``i``."""
        return list(self._data[i])

    def column(self, j: int) -> List[Any]:
        """Return a copy of column ``j``."""
        if not 0 <= j < self._columns:
            raise IndexError(f"Column {j} out of range for {self.shape}")
        return [row[j] for row in self._data]

    def to_list(self) -> List[List[Any]]:
        """Return the contents as a fresh list of row lists."""
        return [list(row) for row in self._data]

    def to_vector(self) -> List[Any]:
        """Return the single row of a ``1 x n`` matrix."""
        if self.rows != 1:
            raise ShapeError(
                f"Only a 1-row matrix converts to a vector, got {self.shape}"
            )
        return list(self._data[0])

    def copy(self) -> 'Matrix':
        m = Matrix.__new__(Matrix)
        m._data = [list(row) for row in self._data]
        m._columns = self._columns
        return m

    def __getitem__(self, index: Tuple[int, int]) -> Any:
        y, x = index
        return self._data[y][x]

    def __setitem__(self, index: Tuple[int, int], value: Any) -> None:
        y, x = index
        self._data[y][x] = value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Matrix):
            return NotImplemented
        return self.shape == other.shape and self._data == other._data

    def __repr__(self) -> str:
        return f"Matrix({self._data!r})"

    # ------------------------------------------------------------------
    # Shape checks
    # ------------------------------------------------------------------

    def _check_same_shape(self, other: 'Matrix', op: str) -> None:
        if self.shape != other.shape:
            raise ShapeError(
                f"{op}: shapes {self.shape} and {other.shape} differ"
            )

    def _zip_with(self, other: 'Matrix', f: Callable[[Any, Any], Any]) -> 'Matrix':
        m = Matrix.__new__(Matrix)
        m._data = [
            [f(a, b) for a, b in zip(row_a, row_b)]
            for row_a, row_b in zip(self._data, other._data)
        ]
        m._columns = self._columns
        return m

    # ------------------------------------------------------------------
    # Algebra
    # ------------------------------------------------------------------

    def dot_product(self, other: 'Matrix') -> 'Matrix':
        """
        Matrix product ``self . other``.

        Args:
            other: Matrix whose row count equals this matrix's column count

        Returns:
            Matrix: New ``self.rows x other.columns`` matrix

        Raises:
            ShapeError: If the inner dimensions differ
        """
        if self.columns != other.rows:
            raise ShapeError(
                f"dot_product: inner dimensions differ, "
                f"{self.shape} . {other.shape}"
            )
        other_columns = [other.column(j) for j in range(other.columns)]
        m = Matrix.__new__(Matrix)
        m._data = [
            [sum(a * b for a, b in zip(row, col)) for col in other_columns]
            for row in self._data
        ]
        m._columns = other.columns if self.rows else 0
        return m

    def add(self, other: 'Matrix') -> 'Matrix':
        self._check_same_shape(other, 'add')
        return self._zip_with(other, lambda a, b: a + b)

    def sub(self, other: 'Matrix') -> 'Matrix':
        self._check_same_shape(other, 'sub')
        return self._zip_with(other, lambda a, b: a - b)

    def multiply(self, other: 'Matrix') -> 'Matrix':
        """Elementwise (Hadamard) product."""
        self._check_same_shape(other, 'multiply')
        return self._zip_with(other, lambda a, b: a * b)

    def divide(self, other: 'Matrix') -> 'Matrix':
        """Elementwise quotient."""
        self._check_same_shape(other, 'divide')
        return self._zip_with(other, lambda a, b: a / b)

    def add_(self, other: 'Matrix') -> 'Matrix':
        """Add ``other`` into this matrix in place and return self."""
        self._check_same_shape(other, 'add_')
        for row, other_row in zip(self._data, other._data):
            for x, value in enumerate(other_row):
                row[x] += value
        return self

    def sub_(self, other: 'Matrix') -> 'Matrix':
        """Subtract ``other`` from this matrix in place and return self."""
        self._check_same_shape(other, 'sub_')
        for row, other_row in zip(self._data, other._data):
            for x, value in enumerate(other_row):
                row[x] -= value
        return self

    def add_vector(self, vector: 'Matrix') -> 'Matrix':
        """
        Add a ``1 x columns`` matrix to every row (bias broadcast).

        Raises:
            ShapeError: If ``vector`` is not a single row of matching width
        """
        if vector.rows != 1 or vector.columns != self.columns:
            raise ShapeError(
                f"add_vector: cannot broadcast {vector.shape} over {self.shape}"
            )
        bias = vector._data[0]
        m = Matrix.__new__(Matrix)
        m._data = [[a + b for a, b in zip(row, bias)] for row in self._data]
        m._columns = self._columns
        return m

    def column_sum(self) -> 'Matrix':
        """Return a ``1 x columns`` matrix of per-column sums."""
        return Matrix([[sum(self.column(j)) for j in range(self.columns)]])

    def transpose(self) -> 'Matrix':
        m = Matrix.__new__(Matrix)
        m._data = [list(col) for col in zip(*self._data)]
        m._columns = self.rows if m._data else 0
        return m

    def scale(self, k: Any) -> 'Matrix':
        """Multiply every entry by the scalar ``k``."""
        return self.map(lambda v: v * k)

    def map(self, f: Callable[[Any], Any]) -> 'Matrix':
        """Apply ``f`` to every entry, returning a new matrix."""
        m = Matrix.__new__(Matrix)
        m._data = [[f(v) for v in row] for row in self._data]
        m._columns = self._columns
        return m

    def map_row(self, f: Callable[[List[Any]], Sequence[Any]]) -> 'Matrix':
        """
        Apply a vector-to-vector function to each row independently.

        Raises:
            ShapeError: If ``f`` returns rows of differing lengths
        """
        return Matrix([f(list(row)) for row in self._data])

    def sqrt(self) -> 'Matrix':
        """
        Elementwise square root.

        Negative entries map to NaN, following IEEE float semantics.
        """
        return self.map(lambda v: math.sqrt(v) if v >= 0 else math.nan)

    def numerical_gradient(self, loss_fn: Callable[['Matrix'], float]) -> 'Matrix':
        """
        Central finite-difference gradient of ``loss_fn`` at this matrix.

        Each entry of a private copy is perturbed by ``+h`` and ``-h`` in
        turn and restored before the next entry; ``loss_fn`` is called with
        that copy. This matrix itself is never modified.

        Args:
            loss_fn: Scalar function of a matrix shaped like this one

        Returns:
            Matrix: Gradient estimate, same shape as this matrix
        """
        probe = self.copy()
        grad = Matrix.zeros(self.rows, self.columns)
        for y in range(self.rows):
            probe_row = probe._data[y]
            for x in range(self.columns):
                original = probe_row[x]
                probe_row[x] = original + NUMERICAL_H
                fxh1 = loss_fn(probe)

                probe_row[x] = original - NUMERICAL_H
                fxh2 = loss_fn(probe)

                grad._data[y][x] = (fxh1 - fxh2) / (2 * NUMERICAL_H)
                probe_row[x] = original
        return grad

    # ------------------------------------------------------------------
    # Operators
    # ------------------------------------------------------------------

    def __add__(self, other: Any) -> 'Matrix':
        if isinstance(other, Matrix):
            return self.add(other)
        return self.map(lambda v: v + other)

    def __sub__(self, other: Any) -> 'Matrix':
        if isinstance(other, Matrix):
            return self.sub(other)
        return self.map(lambda v: v - other)

    def __mul__(self, other: Any) -> 'Matrix':
        if isinstance(other, Matrix):
            return self.multiply(other)
        return self.scale(other)

    __rmul__ = __mul__

    def __truediv__(self, other: Any) -> 'Matrix':
        if isinstance(other, Matrix):
            return self.divide(other)
        return self.map(lambda v: v / other)

    def __neg__(self) -> 'Matrix':
        return self.map(lambda v: -v)

    def __iadd__(self, other: 'Matrix') -> 'Matrix':
        return self.add_(other)

    def __isub__(self, other: 'Matrix') -> 'Matrix':
        return self.sub_(other)
