"""
Payload sources for the speed test.

A source hands out the same fixed-size byte string on every ``fetch()``.
Sessions call ``fetch()`` from worker threads, so lazy loading is guarded by
a lock and happens at most once per source (unless caching is disabled).
"""

import abc
import logging
import os
import threading
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)


class PayloadError(Exception):
    """The payload could not be produced."""


class PayloadSource(abc.ABC):
    """Supplies the fixed-size test payload."""

    @abc.abstractmethod
    def fetch(self) -> bytes:
        """Return the payload. Raises PayloadError if it cannot be read."""

    @property
    @abc.abstractmethod
    def size(self) -> int:
        """Payload length in bytes."""


def generate_payload(size: int, seed: int = 0) -> bytes:
    """
    Generates ``size`` pseudo-random bytes. The same seed always gives the
    same bytes, and random data cannot be shrunk by transport compression.
    """
    if size <= 0:
        raise ValueError(f"payload size must be positive, got {size}")
    rng = np.random.default_rng(seed)
    data = rng.integers(0, 256, size=size, dtype=np.uint8)
    return data.tobytes()


def write_payload_file(path, size: int, seed: int = 0) -> int:
    """Writes a generated payload to ``path`` and returns its length."""
    data = generate_payload(size, seed)
    with open(path, "wb") as f:
        f.write(data)
    logger.info(f"Wrote {len(data)} byte payload to {path}")
    return len(data)


class GeneratedPayloadSource(PayloadSource):
    """
    In-memory payload built from a seeded generator the first time it is
    needed.
    """

    def __init__(self, size: int, seed: int = 0):
        if size <= 0:
            raise ValueError(f"payload size must be positive, got {size}")
        self._size = size
        self.seed = seed
        self._data: Optional[bytes] = None
        self._lock = threading.Lock()

    @property
    def size(self) -> int:
        return self._size

    def fetch(self) -> bytes:
        if self._data is None:
            with self._lock:
                if self._data is None:
                    self._data = generate_payload(self._size, self.seed)
                    logger.info(
                        f"Generated {self._size} byte payload (seed={self.seed})"
                    )
        return self._data


class FilePayloadSource(PayloadSource):
    """
    Payload read from a file on disk.

    With ``cache=True`` the file is read once and kept in memory. With
    ``cache=False`` every fetch re-reads the file; a read whose length differs
    from the first one is an error, since the payload size must not change.
    """

    def __init__(self, path, cache: bool = True):
        self.path = os.fspath(path)
        self.cache = cache
        self._data: Optional[bytes] = None
        self._size: Optional[int] = None
        self._lock = threading.Lock()

    @property
    def size(self) -> int:
        if self._size is None:
            self.fetch()
        return self._size

    def _read(self) -> bytes:
        try:
            with open(self.path, "rb") as f:
                data = f.read()
        except OSError as e:
            raise PayloadError(f"Could not read payload file {self.path}: {e}") from e

        if not data:
            raise PayloadError(f"Payload file {self.path} is empty")
        if self._size is None:
            self._size = len(data)
            logger.info(f"Loaded {self._size} byte payload from {self.path}")
        elif len(data) != self._size:
            raise PayloadError(
                f"Payload file {self.path} changed size: "
                f"expected {self._size} bytes, read {len(data)}"
            )
        return data

    def fetch(self) -> bytes:
        if not self.cache:
            with self._lock:
                return self._read()

        if self._data is None:
            with self._lock:
                if self._data is None:
                    self._data = self._read()
        return self._data


def build_payload_source(settings) -> PayloadSource:
    """Picks the payload source described by ``settings``."""
    if settings.payload_file:
        return FilePayloadSource(settings.payload_file, cache=settings.cache_payload)
    return GeneratedPayloadSource(settings.payload_size, seed=settings.payload_seed)
