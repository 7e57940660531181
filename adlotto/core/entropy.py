# adlotto/core/entropy.py
from __future__ import annotations
from threading import Lock
from typing import Optional
import hashlib
import hmac
import time

import numpy as np

########################
# Clocks
########################

class SystemClock:
    def now_ms(self) -> int:
        return int(time.time() * 1000)


class SimClock:
    """Manually advanced millisecond clock for simulations and tests."""
    def __init__(self, start_ms: int = 0):
        self._lock = Lock()
        self._now = int(start_ms)

    def now_ms(self) -> int:
        with self._lock:
            return self._now

    def advance(self, ms: int) -> int:
        if ms < 0:
            raise ValueError("clock cannot go backwards")
        with self._lock:
            self._now += int(ms)
            return self._now

    def set(self, now_ms: int):
        with self._lock:
            if now_ms < self._now:
                raise ValueError("clock cannot go backwards")
            self._now = int(now_ms)

########################
# Randomness providers
########################

def vrf_bytes(secret: bytes, randomness: bytes, counter: int) -> bytes:
    msg = randomness + counter.to_bytes(8, "big")
    return hmac.new(secret, msg, hashlib.sha256).digest()


class VrfRandomness:
    """
    HMAC-SHA256 keyed draws over a rolling randomness beacon.
    Every call consumes one fresh output and rolls the beacon forward.
    """
    def __init__(self, secret: bytes, seed: bytes = b"genesis-R"):
        self._lock = Lock()
        self.secret = secret
        self.randomness = hashlib.sha256(seed).digest()
        self.draws = 0

    def randint(self, n: int) -> int:
        if n <= 0:
            raise ValueError("range must be non-empty")
        with self._lock:
            digest = vrf_bytes(self.secret, self.randomness, self.draws)
            self.draws += 1
            self.randomness = hashlib.sha256(self.randomness + digest).digest()
        # 256-bit value, modulo bias is negligible for realistic n
        return int.from_bytes(digest, "big") % n


class NumpyRandomness:
    def __init__(self, seed: Optional[int] = None):
        self._lock = Lock()
        self.rng = np.random.default_rng(seed)
        self.draws = 0

    def randint(self, n: int) -> int:
        if n <= 0:
            raise ValueError("range must be non-empty")
        with self._lock:
            self.draws += 1
            return int(self.rng.integers(0, n))
