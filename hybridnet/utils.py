"""
Utility Functions
=================

Small helpers shared across the package.
"""

import time

import numpy as np


def one_hot_encode(labels, num_classes=None):
    """
    Convert integer labels to one-hot encoded vectors.

    Args:
        labels: Integer labels, shape (N,)
        num_classes: Number of classes (inferred if None)

    Returns:
        One-hot matrix, shape (N, num_classes)
    """
    labels = np.asarray(labels).astype(int)

    if num_classes is None:
        num_classes = labels.max() + 1

    one_hot = np.zeros((len(labels), num_classes), dtype=np.float64)
    one_hot[np.arange(len(labels)), labels] = 1.0

    return one_hot


def set_random_seed(seed, verbose=True):
    """Seed NumPy's global generator."""
    np.random.seed(seed)
    if verbose:
        print(f"Random seed set to {seed}")


class Timer:
    """Wall-clock stopwatch."""

    def __init__(self):
        self._start = time.perf_counter()

    def reset(self):
        self._start = time.perf_counter()

    def elapsed(self):
        """Seconds since construction or the last reset()."""
        return time.perf_counter() - self._start


def format_duration(seconds):
    """Human readable duration, e.g. '42.1s', '3.5m', '1.2h'."""
    if seconds >= 3600:
        return f"{seconds / 3600:.1f}h"
    if seconds >= 60:
        return f"{seconds / 60:.1f}m"
    return f"{seconds:.1f}s"
