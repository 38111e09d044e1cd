"""Named, typed, shaped numeric buffers exchanged with the worker.

A ``TensorDescriptor`` pairs a declared shape (which may contain dynamic
``-1`` dimensions) with a concrete numpy buffer. The element type is a
closed tag, ``TensorType``, so readers must go through ``as_float()`` or
``as_int()``:

    - ``as_float()`` accepts integer buffers and widens them
    - ``as_int()`` refuses floating-point buffers (raises ``TensorTypeError``)

Invariant: after ``resize(batch)`` the buffer's shape equals
``(batch, *concretize_shape(shape[1:]))`` and the buffer is freshly
zero-filled. Resizing never reuses the previous step's buffer.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Iterable, Sequence

import numpy as np

from .errors import TensorTypeError


class TensorType(enum.Enum):
    """Element type tag of a tensor buffer."""

    FLOATING_POINT = "float"
    INTEGER = "int"

    @property
    def numpy_dtype(self) -> np.dtype:
        return np.dtype(np.float32) if self is TensorType.FLOATING_POINT else np.dtype(np.int32)

    @classmethod
    def from_numpy(cls, dtype: np.dtype) -> "TensorType":
        """Map a numpy dtype to its tag (bool and integer kinds are INTEGER)."""
        kind = np.dtype(dtype).kind
        return cls.INTEGER if kind in ("i", "u", "b") else cls.FLOATING_POINT


def concretize_shape(shape: Iterable[int]) -> tuple[int, ...]:
    """Replace unresolved (``-1``) dimensions with ``1``.

    Examples
    --------
    >>> concretize_shape((-1, 1, 16))
    (1, 1, 16)
    """
    return tuple(1 if dim == -1 else int(dim) for dim in shape)


@dataclass
class TensorDescriptor:
    """A named tensor with its declared shape, element type and buffer.

    Parameters
    ----------
    name : str
        Key unique within one step's tensor set.
    shape : tuple[int, ...]
        Declared shape; the leading dimension is the batch.
    dtype : TensorType
        Element type tag.
    data : np.ndarray | None
        Concrete buffer, allocated by ``allocate`` or ``resize``.
    """

    name: str
    shape: tuple[int, ...] = ()
    dtype: TensorType = TensorType.FLOATING_POINT
    data: np.ndarray | None = field(default=None, repr=False)

    @classmethod
    def from_array(cls, name: str, array: np.ndarray) -> "TensorDescriptor":
        """Wrap an existing array, deriving shape and type tag from it."""
        array = np.asarray(array)
        dtype = TensorType.from_numpy(array.dtype)
        return cls(
            name=name,
            shape=tuple(array.shape),
            dtype=dtype,
            data=np.ascontiguousarray(array, dtype=dtype.numpy_dtype),
        )

    @property
    def batch_size(self) -> int:
        return 0 if self.data is None or self.data.ndim == 0 else int(self.data.shape[0])

    @property
    def width(self) -> int:
        """Number of elements per batch row."""
        if self.data is None:
            return int(np.prod(concretize_shape(self.shape[1:]), dtype=np.int64))
        return int(np.prod(self.data.shape[1:], dtype=np.int64))

    def allocate(self, shape: Sequence[int] | None = None) -> np.ndarray:
        """Replace the buffer with zeros of ``shape`` (default: declared shape)."""
        concrete = concretize_shape(self.shape if shape is None else shape)
        self.data = np.zeros(concrete, dtype=self.dtype.numpy_dtype)
        return self.data

    def resize(self, batch_size: int) -> np.ndarray:
        """Reallocate with ``batch_size`` as the leading dimension."""
        if batch_size < 0:
            raise ValueError(f"batch_size must be >= 0, got {batch_size}")
        self.shape = (batch_size, *self.shape[1:])
        return self.allocate(self.shape)

    def rows(self) -> np.ndarray:
        """View of the buffer as ``[batch, width]``."""
        if self.data is None:
            raise ValueError(f"Tensor {self.name} has no buffer")
        return self.data.reshape(self.data.shape[0], -1)

    def fill_batch(self, batch_index: int, value: float) -> None:
        """Set every element of one batch row to ``value``."""
        self.rows()[batch_index, :] = value

    def as_float(self) -> np.ndarray:
        """Buffer as float32 (integer buffers are widened into a copy)."""
        if self.data is None:
            raise ValueError(f"Tensor {self.name} has no buffer")
        if self.dtype is TensorType.FLOATING_POINT:
            return self.data
        return self.data.astype(np.float32)

    def as_int(self) -> np.ndarray:
        """Buffer as int32; floating-point buffers are refused."""
        if self.data is None:
            raise ValueError(f"Tensor {self.name} has no buffer")
        if self.dtype is not TensorType.INTEGER:
            raise TensorTypeError(
                f"Tensor {self.name} holds {self.dtype.value} data, integer data required"
            )
        return self.data

    def release(self) -> None:
        self.data = None
