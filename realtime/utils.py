"""Audio codec helpers and id generation for realtime events."""

from __future__ import annotations

import base64
import random
from typing import Any

import numpy as np

DEFAULT_SAMPLE_RATE = 24000
EVENT_ID_PREFIX = "evt_"
EVENT_ID_LENGTH = 21
# No 0/O/I/l to keep ids unambiguous when read back.
ID_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"

PCM16 = np.dtype("<i2")


def float_to_16bit_pcm(samples: Any) -> bytes:
    """Convert float amplitudes in [-1, 1] to little-endian PCM16 bytes."""

    floats = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    scaled = np.where(floats < 0, floats * 32768.0, floats * 32767.0)
    return scaled.astype(PCM16).tobytes()


def base64_to_array_buffer(data: str) -> bytes:
    return base64.b64decode(data)


def to_int16_samples(data: Any) -> np.ndarray:
    """Return ``data`` as an int16 sample array.

    Accepts raw PCM16 bytes, int16 arrays, and float arrays (which are
    converted with :func:`float_to_16bit_pcm`).
    """

    if isinstance(data, (bytes, bytearray, memoryview)):
        return np.frombuffer(bytes(data), dtype=PCM16)
    if isinstance(data, np.ndarray):
        if np.issubdtype(data.dtype, np.floating):
            return np.frombuffer(float_to_16bit_pcm(data), dtype=PCM16)
        if data.dtype == np.int16:
            return data
    raise TypeError(f"Unsupported audio buffer type: {type(data).__name__}")


def array_buffer_to_base64(data: Any) -> str:
    """Encode bytes, int16 samples, or float samples as base64 PCM16."""

    if isinstance(data, np.ndarray):
        raw = to_int16_samples(data).astype(PCM16, copy=False).tobytes()
    elif isinstance(data, (bytes, bytearray, memoryview)):
        raw = bytes(data)
    else:
        raise TypeError(f"Unsupported audio buffer type: {type(data).__name__}")
    return base64.b64encode(raw).decode("utf-8")


def merge_int16_arrays(left: Any, right: Any) -> np.ndarray:
    """Concatenate two PCM16 buffers given as bytes or int16 arrays."""

    if isinstance(left, (bytes, bytearray)):
        left = np.frombuffer(bytes(left), dtype=PCM16)
    if isinstance(right, (bytes, bytearray)):
        right = np.frombuffer(bytes(right), dtype=PCM16)
    if not (
        isinstance(left, np.ndarray)
        and isinstance(right, np.ndarray)
        and left.dtype == np.int16
        and right.dtype == np.int16
    ):
        raise TypeError("Both items must be int16 arrays")
    return np.concatenate((left, right))


def empty_audio() -> np.ndarray:
    return np.zeros(0, dtype=np.int16)


def ms_to_sample_index(ms: float, sample_rate: int = DEFAULT_SAMPLE_RATE) -> int:
    return int(ms * sample_rate // 1000)


def generate_id(prefix: str, length: int = EVENT_ID_LENGTH) -> str:
    suffix = "".join(random.choices(ID_ALPHABET, k=length - len(prefix)))
    return f"{prefix}{suffix}"
