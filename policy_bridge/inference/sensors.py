"""Sensor boundary: observation specs, the writer sensors fill, and validation.

Sensor implementations live outside this package. The core only needs:

    - ``observation_spec``: declared shape (rank 1 = vector, rank 3 = visual)
    - ``write(writer)``: serialize the current observation, return the
      number of floats written
    - ``name``: used in error messages

The ``ObservationWriter`` points a sensor at one batch row of a tensor,
starting at an offset, so several sensors can be concatenated into one row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, Sequence, runtime_checkable

import numpy as np

from .tensors import TensorDescriptor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ObservationSpec:
    """Declared shape of the observations a sensor produces."""

    shape: tuple[int, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "shape", tuple(int(d) for d in self.shape))

    @classmethod
    def vector(cls, length: int) -> "ObservationSpec":
        return cls((length,))

    @classmethod
    def visual(cls, height: int, width: int, channels: int) -> "ObservationSpec":
        return cls((height, width, channels))

    @property
    def rank(self) -> int:
        return len(self.shape)

    @property
    def size(self) -> int:
        return int(np.prod(self.shape, dtype=np.int64))


@runtime_checkable
class Sensor(Protocol):
    """Anything that can write an observation into a batch tensor."""

    @property
    def name(self) -> str: ...

    @property
    def observation_spec(self) -> ObservationSpec: ...

    def write(self, writer: "ObservationWriter") -> int: ...


class ObservationWriter:
    """Writes one sensor's observation into a tensor row at an offset."""

    def __init__(self) -> None:
        self._row: np.ndarray | None = None
        self._offset = 0

    def set_target(self, tensor: TensorDescriptor, batch_index: int, offset: int) -> None:
        self._row = tensor.rows()[batch_index]
        self._offset = offset

    def _target(self) -> np.ndarray:
        if self._row is None:
            raise RuntimeError("ObservationWriter has no target; call set_target first")
        return self._row

    def __setitem__(self, index: int, value: float) -> None:
        self._target()[self._offset + index] = value

    def add_list(self, values: Sequence[float], write_offset: int = 0) -> int:
        """Write a flat sequence; returns the number of values written."""
        return self.write_array(np.asarray(values, dtype=np.float32), write_offset)

    def write_array(self, values: np.ndarray, write_offset: int = 0) -> int:
        """Write an array of any rank in C order; returns its element count."""
        flat = np.asarray(values, dtype=np.float32).ravel()
        start = self._offset + write_offset
        row = self._target()
        if start + flat.size > row.size:
            raise ValueError(
                f"Observation of {flat.size} values at offset {start} overflows row of {row.size}"
            )
        row[start:start + flat.size] = flat
        return int(flat.size)


class SensorShapeValidator:
    """Checks every agent feeding one runner exposes the same sensor layout.

    The first layout seen becomes the reference. Mismatches are logged as
    errors rather than raised; they usually indicate a misconfigured agent.
    """

    def __init__(self) -> None:
        self._shapes: list[tuple[int, ...]] | None = None

    def validate_sensors(self, sensors: Sequence[Sensor]) -> bool:
        shapes = [sensor.observation_spec.shape for sensor in sensors]
        if self._shapes is None:
            self._shapes = shapes
            return True

        if len(shapes) != len(self._shapes):
            logger.error(
                "Number of sensors must match. %d != %d", len(self._shapes), len(shapes)
            )
            return False

        valid = True
        for index, (expected, actual) in enumerate(zip(self._shapes, shapes)):
            if expected != actual:
                logger.error(
                    "Sensor shapes must match. %s != %s (sensor %s)",
                    expected,
                    actual,
                    sensors[index].name,
                )
                valid = False
        return valid
