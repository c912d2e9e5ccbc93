"""
Mini-batch partitioning.

Splits sample indices [0, n) into contiguous, ascending ranges of a fixed
size. The order is the same every epoch; nothing is shuffled.
"""

from collections import namedtuple

Batch = namedtuple('Batch', ['offset', 'n_data'])
Batch.__doc__ = "Half-open index range [offset, offset + n_data)."


class Batches:
    """
    Restartable sequence of Batch ranges covering [0, n).

    Every batch holds `batch_size` samples except possibly the last one,
    which holds the remainder.

    Example:
        >>> [tuple(b) for b in Batches(32, 100)]
        [(0, 32), (32, 32), (64, 32), (96, 4)]
    """

    def __init__(self, batch_size, n):
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        if n < 0:
            raise ValueError(f"Number of samples must be non-negative, got {n}")

        self.batch_size = int(batch_size)
        self.n = int(n)

    def __iter__(self):
        for offset in range(0, self.n, self.batch_size):
            yield Batch(offset, min(self.batch_size, self.n - offset))

    def __len__(self):
        return (self.n + self.batch_size - 1) // self.batch_size

    def __repr__(self):
        return f"Batches(batch_size={self.batch_size}, n={self.n})"
