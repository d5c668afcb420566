"""
Dense 2D float matrix used by the calibration network.

Provides:
- Arithmetic (add, sub, matrix and scalar multiply, element-wise product)
- Transpose, per-element unary/binary operations
- Explicit resize/pad (used to append bias rows and columns)

Dimensions are fixed at construction. Every operation returns a new matrix
and raises DimensionMismatch on incompatible shapes; nothing is silently
truncated or padded except through resize().
"""

from __future__ import annotations

from numbers import Real
from typing import Callable, Iterable, Sequence, Union

import numpy as np

from .errors import DimensionMismatch

DTYPE = np.float32

UnaryOp = Callable[[np.ndarray], np.ndarray]
BinaryOp = Callable[[np.ndarray, np.ndarray], np.ndarray]


class Matrix:
    """
    Row-major float32 matrix with value semantics.

    Usage:
        a = Matrix(2, 3)
        b = Matrix.from_rows([[1, 2], [3, 4], [5, 6]])
        c = a * b              # 2x2
        v = Matrix.column([1.0, 2.0, 3.0])
        v2 = v.resize(4, 1, pad=1.0)
    """

    __slots__ = ("_data",)
    __hash__ = None  # mutable through __setitem__

    def __init__(self, rows: int, cols: int):
        if rows < 0 or cols < 0:
            raise DimensionMismatch(f"Invalid matrix dimensions {rows}x{cols}")
        self._data = np.zeros((rows, cols), dtype=DTYPE)

    @classmethod
    def _wrap(cls, data: np.ndarray) -> "Matrix":
        m = cls.__new__(cls)
        m._data = data
        return m

    @classmethod
    def column(cls, values: Iterable[float]) -> "Matrix":
        """Build a column vector from a flat sequence of values."""
        if not isinstance(values, np.ndarray):
            values = list(values)
        arr = np.array(values, dtype=DTYPE)
        return cls._wrap(arr.reshape(-1, 1))

    @classmethod
    def from_rows(cls, rows: Sequence[Sequence[float]]) -> "Matrix":
        arr = np.array(rows, dtype=DTYPE)
        if arr.ndim != 2:
            raise DimensionMismatch("Rows must form a rectangular 2D grid")
        return cls._wrap(arr)

    @classmethod
    def from_array(cls, array: np.ndarray) -> "Matrix":
        arr = np.array(array, dtype=DTYPE)
        if arr.ndim != 2:
            raise DimensionMismatch(f"Expected a 2D array, got {arr.ndim}D")
        return cls._wrap(arr)

    @classmethod
    def identity(cls, rows: int, cols: int) -> "Matrix":
        return cls._wrap(np.eye(rows, cols, dtype=DTYPE))

    @property
    def rows(self) -> int:
        return self._data.shape[0]

    @property
    def cols(self) -> int:
        return self._data.shape[1]

    @property
    def shape(self) -> tuple:
        return self._data.shape

    @property
    def is_column(self) -> bool:
        return self.cols == 1

    def init(self, values: Sequence[float]) -> None:
        """
        Overwrite the first len(values) entries of a column vector.

        Raises:
            DimensionMismatch: If this is not a column vector or values is
                longer than the vector
        """
        if self.cols != 1:
            raise DimensionMismatch(
                f"init() requires a column vector, matrix is {self.rows}x{self.cols}"
            )
        vals = np.asarray(values, dtype=DTYPE).reshape(-1)
        if vals.shape[0] > self.rows:
            raise DimensionMismatch(
                f"Cannot init {self.rows}-row vector with {vals.shape[0]} values"
            )
        self._data[: vals.shape[0], 0] = vals

    def _check_same_shape(self, other: "Matrix", op: str) -> None:
        if self._data.shape != other._data.shape:
            raise DimensionMismatch(
                f"Cannot {op} {self.rows}x{self.cols} and {other.rows}x{other.cols} matrices"
            )

    def add(self, other: "Matrix") -> "Matrix":
        self._check_same_shape(other, "add")
        return Matrix._wrap(self._data + other._data)

    def sub(self, other: "Matrix") -> "Matrix":
        self._check_same_shape(other, "subtract")
        return Matrix._wrap(self._data - other._data)

    def mul(self, other: "Matrix") -> "Matrix":
        if self.cols != other.rows:
            raise DimensionMismatch(
                f"Cannot multiply {self.rows}x{self.cols} by {other.rows}x{other.cols}"
            )
        return Matrix._wrap(self._data @ other._data)

    def scale(self, factor: float) -> "Matrix":
        return Matrix._wrap(self._data * DTYPE(factor))

    def hadamard(self, other: "Matrix") -> "Matrix":
        """Element-wise product."""
        self._check_same_shape(other, "element-wise multiply")
        return Matrix._wrap(self._data * other._data)

    def transpose(self) -> "Matrix":
        return Matrix._wrap(self._data.T.copy())

    @property
    def T(self) -> "Matrix":
        return self.transpose()

    def invoke(self, op: UnaryOp) -> "Matrix":
        """Apply an element-wise array operation, returning a new matrix."""
        result = np.asarray(op(self._data), dtype=DTYPE)
        if result.shape != self._data.shape:
            raise DimensionMismatch("Per-element operation changed the matrix shape")
        return Matrix._wrap(result)

    @staticmethod
    def invoke_pair(op: BinaryOp, a: "Matrix", b: "Matrix") -> "Matrix":
        """Apply an element-wise binary operation over two equal-shaped matrices."""
        a._check_same_shape(b, "combine")
        result = np.asarray(op(a._data, b._data), dtype=DTYPE)
        if result.shape != a._data.shape:
            raise DimensionMismatch("Per-element operation changed the matrix shape")
        return Matrix._wrap(result)

    def resize(self, rows: int, cols: int, pad: float = 0.0) -> "Matrix":
        """
        Copy into a rows x cols matrix.

        The overlapping region is copied verbatim; everything outside it is
        filled with pad.
        """
        if rows < 0 or cols < 0:
            raise DimensionMismatch(f"Invalid matrix dimensions {rows}x{cols}")
        data = np.full((rows, cols), pad, dtype=DTYPE)
        r = min(rows, self.rows)
        c = min(cols, self.cols)
        data[:r, :c] = self._data[:r, :c]
        return Matrix._wrap(data)

    def copy(self) -> "Matrix":
        return Matrix._wrap(self._data.copy())

    def to_array(self) -> np.ndarray:
        """Return a copy of the underlying float32 array."""
        return self._data.copy()

    def flatten(self) -> np.ndarray:
        return self._data.reshape(-1).copy()

    def is_finite(self) -> bool:
        return bool(np.isfinite(self._data).all())

    def __getitem__(self, index):
        i, j = index
        return float(self._data[i, j])

    def __setitem__(self, index, value: float) -> None:
        i, j = index
        self._data[i, j] = value

    def __add__(self, other: "Matrix") -> "Matrix":
        if not isinstance(other, Matrix):
            return NotImplemented
        return self.add(other)

    def __sub__(self, other: "Matrix") -> "Matrix":
        if not isinstance(other, Matrix):
            return NotImplemented
        return self.sub(other)

    def __mul__(self, other: Union["Matrix", float]) -> "Matrix":
        if isinstance(other, Matrix):
            return self.mul(other)
        if isinstance(other, (Real, np.floating)):
            return self.scale(float(other))
        return NotImplemented

    def __rmul__(self, other: float) -> "Matrix":
        if isinstance(other, (Real, np.floating)):
            return self.scale(float(other))
        return NotImplemented

    def __neg__(self) -> "Matrix":
        return Matrix._wrap(-self._data)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Matrix):
            return NotImplemented
        return self._data.shape == other._data.shape and bool(np.array_equal(self._data, other._data))

    def __repr__(self) -> str:
        return f"Matrix({self.rows}x{self.cols}, {self._data.tolist()!r})"
