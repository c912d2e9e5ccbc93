"""
Memory Cache
============

A size-bounded pool of reusable array buffers.

Training runs thousands of mini-batches whose activation buffers all have the
same handful of shapes. Instead of asking the allocator for fresh memory on
every batch, buffers are served from a pool keyed by size class (powers of
two) and handed back when the batch is done:

    cache = MemoryCache(megabytes=16)
    with cache.workspace() as ws:
        out = ws.empty((32, 128))     # ndarray view over a pooled buffer
        np.matmul(x, W, out=out)
    # every buffer taken by `ws` is free again here

The pool never frees memory on release. It only drops free buffers when a new
request would otherwise push the pool over its capacity. A request that
cannot fit even then raises CacheExhaustedError.

The cache is not thread-safe.
"""

import numpy as np

MEGABYTE = 1 << 20
MIN_SIZE_CLASS = 256


class CacheExhaustedError(MemoryError):
    """Raised when a request cannot be served within the configured capacity."""


class Buffer:
    """A pooled block of raw bytes."""

    __slots__ = ('data', 'size_class', 'in_use')

    def __init__(self, size_class):
        self.data = np.empty(size_class, dtype=np.uint8)
        self.size_class = size_class
        self.in_use = False

    @property
    def nbytes(self):
        return self.size_class

    def view(self, shape, dtype=np.float64):
        """Return an ndarray of the given shape backed by this buffer."""
        dtype = np.dtype(dtype)
        nbytes = int(np.prod(shape)) * dtype.itemsize
        if nbytes > self.size_class:
            raise ValueError(f"View of {nbytes} bytes does not fit in a "
                             f"{self.size_class}-byte buffer")
        return self.data[:nbytes].view(dtype).reshape(shape)

    def __repr__(self):
        state = 'in use' if self.in_use else 'free'
        return f"Buffer({self.size_class} bytes, {state})"


class MemoryCache:
    """
    Pool of reusable buffers with a fixed maximum footprint.

    Args:
        megabytes: Capacity of the pool. May be left out and set later
            (once) through set_cache_size().

    Attributes:
        n_allocations: Number of underlying allocations made so far
        allocated_bytes: Bytes currently held by the pool (free or in use)
    """

    def __init__(self, megabytes=None):
        self._capacity = None
        self._free = {}       # size class -> list of free buffers
        self._in_use = {}     # id(buffer) -> buffer
        self.allocated_bytes = 0
        self.n_allocations = 0

        if megabytes is not None:
            self.set_cache_size(megabytes)

    def set_cache_size(self, megabytes):
        """Fix the pool capacity. Allowed exactly once."""
        if self._capacity is not None:
            raise RuntimeError("Cache size has already been set")
        if megabytes <= 0:
            raise ValueError(f"Cache size must be positive, got {megabytes}")

        self._capacity = int(megabytes * MEGABYTE)

    @property
    def capacity(self):
        return self._capacity

    @property
    def in_use_bytes(self):
        return sum(buffer.size_class for buffer in self._in_use.values())

    @property
    def free_bytes(self):
        return self.allocated_bytes - self.in_use_bytes

    def _size_class(self, nbytes):
        size_class = max(MIN_SIZE_CLASS, 1 << max(nbytes - 1, 0).bit_length())
        # A power-of-two class may overshoot a small pool; fall back to the
        # exact request so that anything up to the capacity can be served.
        if size_class > self._capacity >= nbytes:
            size_class = nbytes
        return size_class

    def _take_free(self, size_class):
        """Pop the smallest free buffer that can hold `size_class` bytes."""
        for candidate in sorted(self._free):
            if candidate >= size_class and self._free[candidate]:
                return self._free[candidate].pop()
        return None

    def _reclaim(self):
        """Drop every free buffer so their memory can be reallocated."""
        for buffers in self._free.values():
            for buffer in buffers:
                self.allocated_bytes -= buffer.size_class
        self._free = {}

    def acquire(self, nbytes):
        """
        Get a buffer of at least `nbytes` bytes.

        A previously released buffer is reused when one is large enough;
        otherwise new memory is allocated as long as the pool stays within
        its capacity.

        Raises:
            CacheExhaustedError: If the request does not fit in the capacity
                even after dropping all free buffers.
        """
        if self._capacity is None:
            raise RuntimeError("set_cache_size() must be called before acquire()")

        nbytes = int(nbytes)
        if nbytes < 0:
            raise ValueError(f"Cannot acquire a negative number of bytes: {nbytes}")

        size_class = self._size_class(nbytes)
        buffer = self._take_free(size_class)

        if buffer is None:
            if self.allocated_bytes + size_class > self._capacity:
                self._reclaim()

            if self.allocated_bytes + size_class > self._capacity:
                raise CacheExhaustedError(
                    f"Cannot allocate {size_class} bytes: {self.in_use_bytes} of "
                    f"{self._capacity} bytes are in use. Increase the cache size.")

            buffer = Buffer(size_class)
            self.allocated_bytes += size_class
            self.n_allocations += 1

        buffer.in_use = True
        self._in_use[id(buffer)] = buffer
        return buffer

    def release(self, buffer):
        """Return a buffer to the pool without freeing its memory."""
        if self._in_use.get(id(buffer)) is not buffer:
            raise ValueError(f"{buffer!r} is not in use by this cache")

        del self._in_use[id(buffer)]
        buffer.in_use = False
        self._free.setdefault(buffer.size_class, []).append(buffer)

    def workspace(self):
        """Open a scope whose buffers are all released when it exits."""
        return Workspace(self)

    def __repr__(self):
        return (f"MemoryCache(capacity={self._capacity}, "
                f"allocated={self.allocated_bytes}, in_use={self.in_use_bytes})")


class Workspace:
    """
    Scoped buffer acquisition over a MemoryCache.

    Used as a context manager around one mini-batch. Every array handed out
    by empty() or zeros() stays valid until the scope exits.
    """

    def __init__(self, cache):
        self.cache = cache
        self._buffers = []

    def empty(self, shape, dtype=np.float64):
        """Uninitialized array of the given shape from the pool."""
        if isinstance(shape, int):
            shape = (shape,)
        dtype = np.dtype(dtype)

        buffer = self.cache.acquire(int(np.prod(shape)) * dtype.itemsize)
        self._buffers.append(buffer)
        return buffer.view(shape, dtype)

    def zeros(self, shape, dtype=np.float64):
        out = self.empty(shape, dtype)
        out.fill(0)
        return out

    def release(self):
        while self._buffers:
            self.cache.release(self._buffers.pop())

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


def empty(shape, dtype=np.float64, workspace=None):
    """np.empty, served from `workspace` when one is given."""
    if workspace is None:
        return np.empty(shape, dtype=dtype)
    return workspace.empty(shape, dtype)
