# adlotto/storage/content_stub.py
from __future__ import annotations
from collections import Counter
from threading import Lock
from typing import Dict, Optional, Tuple
import hashlib
import random


def content_reference(creative: bytes, tag: str = "") -> str:
    h = hashlib.sha256(tag.encode())
    h.update(b"\x00")
    h.update(creative)
    return h.hexdigest()


class ContentStore:
    """
    In-memory stand-in for the host serving ad creatives.
    With `fail_rate` > 0 fetches are flaky, so viewers sometimes miss an ad.
    """
    def __init__(self, fail_rate: float = 0.0, seed: Optional[int] = None):
        if not 0.0 <= fail_rate <= 1.0:
            raise ValueError("fail_rate must be within [0, 1]")
        self._lock = Lock()
        self._blobs: Dict[str, bytes] = {}
        self.uploads: Counter = Counter()
        self.fetches: Counter = Counter()   # hit / miss / unavailable
        self.fail_rate = fail_rate
        self._rng = random.Random(seed)

    def put(self, creative, tag: str = "") -> str:
        if isinstance(creative, str):
            creative = creative.encode("utf-8")
        creative = bytes(creative)
        ref = content_reference(creative, tag)
        with self._lock:
            self._blobs.setdefault(ref, creative)
            self.uploads[ref] += 1
        return ref

    def get(self, ref: str) -> Tuple[bool, bytes]:
        with self._lock:
            if self.fail_rate and self._rng.random() < self.fail_rate:
                self.fetches["unavailable"] += 1
                return False, b""
            blob = self._blobs.get(ref)
            self.fetches["hit" if blob is not None else "miss"] += 1
        if blob is None:
            return False, b""
        return True, blob

    def mirror(self, other: "ContentStore"):
        """Copy every creative held by `other`."""
        with other._lock:
            blobs = dict(other._blobs)
        with self._lock:
            self._blobs.update(blobs)

    def __contains__(self, ref: str) -> bool:
        with self._lock:
            return ref in self._blobs
