"""Small signal helpers: energy gate, linear resampler and PCM conversion."""

from __future__ import annotations

import math

import numpy as np

SILENCE_RMS_THRESHOLD = 0.01


def rms(samples: np.ndarray) -> float:
    if samples.size == 0:
        return 0.0
    data = samples.astype(np.float64, copy=False)
    return float(np.sqrt(np.mean(data * data)))


def is_silent(samples: np.ndarray, threshold: float = SILENCE_RMS_THRESHOLD) -> bool:
    """True when the root-mean-square energy is below ``threshold``.

    Samples are expected in [-1, 1]. An empty buffer counts as silence.
    """
    return rms(samples) < threshold


def resampled_length(length: int, from_rate: int, to_rate: int) -> int:
    ratio = from_rate / to_rate
    # Half-up rounding, not banker's rounding.
    return int(math.floor(length / ratio + 0.5))


def resample(samples: np.ndarray, from_rate: int, to_rate: int) -> np.ndarray:
    """Linear-interpolation resampler.

    Returns ``samples`` itself when the rates match. Output index ``i`` reads
    source position ``i * from_rate / to_rate``; positions at or past the
    second-to-last sample take the last sample.
    """
    if from_rate == to_rate:
        return samples
    if from_rate <= 0 or to_rate <= 0:
        raise ValueError(f"invalid sample rates: {from_rate} -> {to_rate}")

    length = int(samples.shape[0])
    new_length = resampled_length(length, from_rate, to_rate)
    if length == 0 or new_length == 0:
        return np.zeros(0, dtype=np.float32)

    ratio = from_rate / to_rate
    source = samples.astype(np.float64, copy=False)
    positions = np.arange(new_length, dtype=np.float64) * ratio
    index = np.floor(positions).astype(np.int64)
    fraction = positions - index

    at_end = index >= length - 1
    lower = np.minimum(index, max(length - 2, 0))
    upper = np.minimum(lower + 1, length - 1)
    mixed = source[lower] * (1.0 - fraction) + source[upper] * fraction
    out = np.where(at_end, source[length - 1], mixed)
    return out.astype(np.float32)


def float_to_pcm16(samples: np.ndarray) -> bytes:
    clipped = np.clip(samples, -1.0, 1.0)
    return (clipped * 32767.0).astype("<i2").tobytes()

