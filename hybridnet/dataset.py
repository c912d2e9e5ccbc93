"""
Dataset Loading
===============

One sample per line, label first:

    dense:   3 0.0 0.5 0.25 ...          (exactly input_dim values)
    sparse:  3 1:0.5 7:0.25 ...          (1-based feature index : value)

Labels are shifted by `base` so that classes start at 0.

Normalization modes:
    0            no normalization
    1            rescale every dimension to [0, 1]
    2            standard score per dimension, z = (x - mean) / std
    <filename>   standard score with mean/std read from a file (two rows)

Statistics computed on one set can be reused for another (e.g. the
validation file) through the `stats` argument, so both sets share one
scale.
"""

from pathlib import Path

import numpy as np

NORMALIZE_NONE = 0
NORMALIZE_RESCALE = 1
NORMALIZE_ZSCORE = 2


def _parse_line(tokens, input_dim, path, lineno):
    features = np.zeros(input_dim)
    values = tokens[1:]

    if any(':' in token for token in values):
        for token in values:
            index, _, value = token.partition(':')
            i = int(index) - 1
            if not 0 <= i < input_dim:
                raise ValueError(f"{path}:{lineno}: feature index {index} out of range 1..{input_dim}")
            features[i] = float(value)
    else:
        if len(values) != input_dim:
            raise ValueError(f"{path}:{lineno}: expected {input_dim} features, got {len(values)}")
        features[:] = [float(v) for v in values]

    return features


def load_stats(path):
    """Read (mean, std) rows written by save_stats()."""
    stats = np.loadtxt(path, ndmin=2)
    if stats.shape[0] != 2:
        raise ValueError(f"{path}: expected 2 rows (mean, std), got {stats.shape[0]}")
    return stats[0], stats[1]


def save_stats(path, stats):
    np.savetxt(path, np.vstack(stats))


class DataSet:
    """
    Labeled samples held in memory.

    Args:
        X: Features, shape (N, input_dim)
        y: Integer labels starting at 0, shape (N,)

    Indexing with a Batch (or slice) returns the (x, y) pair for that range.
    """

    def __init__(self, X, y):
        self.X = np.ascontiguousarray(X, dtype=np.float64)
        self.y = np.asarray(y, dtype=np.int64)

        if self.X.ndim != 2:
            raise ValueError(f"Features must be 2-D (N, input_dim), got shape {self.X.shape}")
        if len(self.X) != len(self.y):
            raise ValueError(f"{len(self.X)} feature rows but {len(self.y)} labels")
        if len(self.y) and self.y.min() < 0:
            raise ValueError("Labels must be non-negative; check the label base")

        self.stats = None

    @classmethod
    def from_file(cls, path, input_dim, base=0, normalize=NORMALIZE_NONE, stats=None):
        """
        Load a dataset file.

        Args:
            path: Data file
            input_dim: Number of features per sample
            base: Id of the first class in the file (0 or 1)
            normalize: 0, 1, 2 or a statistics filename (see module docs)
            stats: (shift, scale) from another set; overrides `normalize`

        Returns:
            DataSet
        """
        path = Path(path)
        if not path.is_file():
            raise FileNotFoundError(f"Data file not found: {path}")

        rows, labels = [], []
        with open(path) as f:
            for lineno, line in enumerate(f, 1):
                tokens = line.split()
                if not tokens:
                    continue
                labels.append(int(float(tokens[0])) - base)
                rows.append(_parse_line(tokens, input_dim, path, lineno))

        if not rows:
            raise ValueError(f"Data file is empty: {path}")

        data = cls(np.vstack(rows), labels)
        if stats is not None:
            data.apply_stats(stats)
        else:
            data.normalize(normalize)
        return data

    @property
    def input_dim(self):
        return self.X.shape[1]

    @property
    def n_classes(self):
        return int(self.y.max()) + 1 if len(self.y) else 0

    def normalize(self, mode):
        """Normalize features in place and remember the statistics used."""
        if mode in (None, NORMALIZE_NONE, '0', ''):
            return None

        if mode in (NORMALIZE_RESCALE, '1'):
            low, high = self.X.min(axis=0), self.X.max(axis=0)
            stats = (low, high - low)
        elif mode in (NORMALIZE_ZSCORE, '2'):
            stats = (self.X.mean(axis=0), self.X.std(axis=0))
        elif isinstance(mode, (str, Path)) and Path(mode).is_file():
            stats = load_stats(mode)
        else:
            raise ValueError(f"Unknown normalization '{mode}': use 0, 1, 2 or a statistics file")

        return self.apply_stats(stats)

    def apply_stats(self, stats):
        """X = (X - shift) / scale, leaving constant dimensions unscaled."""
        shift, scale = (np.asarray(s, dtype=np.float64) for s in stats)
        if shift.shape != (self.input_dim,) or scale.shape != (self.input_dim,):
            raise ValueError(f"Statistics have {shift.size} dimensions, data has {self.input_dim}")

        scale = np.where(scale > 0, scale, 1.0)
        self.X -= shift
        self.X /= scale
        self.stats = (shift, scale)
        return self.stats

    def split(self, ratio, random_state=None):
        """
        Split into (train, valid) with |train| : |valid| ~= ratio : 1.

        Samples are assigned by a seeded permutation; within each part the
        original order is kept.
        """
        if ratio < 1:
            raise ValueError(f"Split ratio must be positive, got {ratio}")

        n_valid = len(self) // (ratio + 1)
        if n_valid == 0:
            raise ValueError(f"{len(self)} samples are too few for a 1/{ratio + 1} validation split")

        rng = np.random.RandomState(random_state)
        indices = rng.permutation(len(self))
        valid_idx = np.sort(indices[:n_valid])
        train_idx = np.sort(indices[n_valid:])

        train = DataSet(self.X[train_idx], self.y[train_idx])
        valid = DataSet(self.X[valid_idx], self.y[valid_idx])
        train.stats = valid.stats = self.stats
        return train, valid

    def __len__(self):
        return len(self.y)

    def __getitem__(self, batch):
        if isinstance(batch, slice):
            return self.X[batch], self.y[batch]

        offset, n_data = batch
        return self.X[offset:offset + n_data], self.y[offset:offset + n_data]

    def show_summary(self, name='Data'):
        counts = np.bincount(self.y) if len(self.y) else np.array([], dtype=int)
        print(f"{name}: {len(self)} samples, {self.input_dim} features, {len(counts)} classes")
        print("  samples per class: " + ' '.join(f"{c}:{n}" for c, n in enumerate(counts)))

    def __repr__(self):
        return f"DataSet(n={len(self)}, input_dim={self.input_dim})"
