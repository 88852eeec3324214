"""Native byte order detection and per-element byte swapping."""

import numpy as np

from .types import NATIVE_ENDIANNESS


def flip_array_endianness(array: np.ndarray) -> np.ndarray:
    """Reverse the bytes of every element of ``array`` in place."""
    if array.dtype.itemsize > 1:
        array.byteswap(inplace=True)
    return array


def array_to_native(array: np.ndarray, endianness: str) -> np.ndarray:
    """Convert ``array`` holding ``endianness`` data to native order in place."""
    if endianness == NATIVE_ENDIANNESS:
        return array
    return flip_array_endianness(array)


def native_to_endian(array: np.ndarray, endianness: str) -> np.ndarray:
    """Convert native-order ``array`` to ``endianness`` in place."""
    if endianness == NATIVE_ENDIANNESS:
        return array
    return flip_array_endianness(array)
