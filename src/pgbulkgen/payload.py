"""
Random row payloads (NumPy).

A PayloadGenerator owns its numpy Generator, which is not safe to share
between threads: give every worker/producer its own instance.
"""

from __future__ import annotations

import string

import numpy as np

ALPHABET = string.ascii_lowercase + string.ascii_uppercase + string.digits
_ALPHABET_U8 = np.frombuffer(ALPHABET.encode("ascii"), dtype=np.uint8)


class PayloadGenerator:
    def __init__(self, seed: int | None = None):
        self.rng = np.random.default_rng(seed)

    def generate(self, length: int) -> str:
        if length < 0:
            raise ValueError(f"length must be >= 0 (got {length})")
        if length == 0:
            return ""
        idx = self.rng.integers(0, len(ALPHABET), size=length, dtype=np.uint8)
        return _ALPHABET_U8[idx].tobytes().decode("ascii")

    def batch(self, rows: int, length: int) -> list[str]:
        """
        `rows` payloads of exactly `length` chars, drawn as one
        (rows, length) matrix and cut into strings.
        """
        if rows < 0 or length < 0:
            raise ValueError(f"rows/length must be >= 0 (got {rows}, {length})")
        if length == 0:
            return [""] * rows

        idx = self.rng.integers(0, len(ALPHABET), size=(rows, length), dtype=np.uint8)
        raw = _ALPHABET_U8[idx].tobytes().decode("ascii")
        return [raw[i : i + length] for i in range(0, rows * length, length)]


def random_payload(length: int) -> str:
    # fresh generator per call: safe from any thread
    return PayloadGenerator().generate(length)


def worker_seed(base_seed: int | None, index: int) -> int | None:
    if base_seed is None:
        return None
    return base_seed + index
