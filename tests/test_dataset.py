"""
Tests for Dataset Loading
=========================

Dense and sparse files, label bases, normalization and splitting.
"""

import numpy as np
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from hybridnet.batches import Batch
from hybridnet.dataset import DataSet, load_stats, save_stats


def write_lines(path, lines):
    path.write_text('\n'.join(lines) + '\n')
    return path


class TestLoading:
    """Tests for reading data files."""

    def test_dense(self, tmp_path):
        """Label followed by every feature value."""
        path = write_lines(tmp_path / 'dense.dat', ["0 1 2 3", "2 4 5 6", "", "1 7 8 9"])
        data = DataSet.from_file(path, input_dim=3)

        assert len(data) == 3
        np.testing.assert_array_equal(data.y, [0, 2, 1])
        np.testing.assert_array_equal(data.X[1], [4, 5, 6])
        assert data.n_classes == 3

    def test_sparse_one_based(self, tmp_path):
        """index:value pairs with 1-based indices."""
        path = write_lines(tmp_path / 'sparse.dat', ["1 1:0.5 4:2", "0 2:1"])
        data = DataSet.from_file(path, input_dim=4)

        np.testing.assert_array_equal(data.X, [[0.5, 0, 0, 2], [0, 1, 0, 0]])

    def test_label_base(self, tmp_path):
        """Labels are shifted so classes start at 0."""
        path = write_lines(tmp_path / 'base1.dat', ["1 0 0", "2 1 1"])
        data = DataSet.from_file(path, input_dim=2, base=1)

        np.testing.assert_array_equal(data.y, [0, 1])

    def test_wrong_base_rejected(self, tmp_path):
        """A base larger than the smallest label fails."""
        path = write_lines(tmp_path / 'base0.dat', ["0 0 0", "1 1 1"])
        with pytest.raises(ValueError):
            DataSet.from_file(path, input_dim=2, base=1)

    def test_wrong_width(self, tmp_path):
        """Dense rows must have input_dim values."""
        path = write_lines(tmp_path / 'short.dat', ["0 1 2"])
        with pytest.raises(ValueError, match="expected 3 features"):
            DataSet.from_file(path, input_dim=3)

    def test_sparse_index_out_of_range(self, tmp_path):
        """Sparse indices must lie in 1..input_dim."""
        path = write_lines(tmp_path / 'oob.dat', ["0 5:1"])
        with pytest.raises(ValueError):
            DataSet.from_file(path, input_dim=4)

    def test_missing_file(self, tmp_path):
        """Missing files raise FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            DataSet.from_file(tmp_path / 'nope.dat', input_dim=3)

    def test_empty_file(self, tmp_path):
        """A file without samples is rejected."""
        path = write_lines(tmp_path / 'empty.dat', [""])
        with pytest.raises(ValueError):
            DataSet.from_file(path, input_dim=3)


class TestNormalization:
    """Tests for feature normalization."""

    def setup_method(self):
        self.X = np.array([[0.0, 5.0, 1.0], [2.0, 5.0, 3.0], [4.0, 5.0, 5.0]])

    def test_rescale(self):
        """Mode 1 maps each dimension to [0, 1]."""
        data = DataSet(self.X.copy(), [0, 1, 0])
        data.normalize(1)

        np.testing.assert_allclose(data.X[:, 0], [0, 0.5, 1])
        np.testing.assert_allclose(data.X[:, 1], 0)

    def test_zscore(self):
        """Mode 2 gives zero mean and unit variance."""
        data = DataSet(self.X.copy(), [0, 1, 0])
        data.normalize('2')

        np.testing.assert_allclose(data.X.mean(axis=0), 0, atol=1e-12)
        np.testing.assert_allclose(data.X[:, [0, 2]].std(axis=0), 1)

    def test_none(self):
        """Mode 0 leaves the features alone."""
        data = DataSet(self.X.copy(), [0, 1, 0])
        assert data.normalize(0) is None
        np.testing.assert_array_equal(data.X, self.X)

    def test_stats_file(self, tmp_path):
        """Mean and std rows read from a file."""
        stats_path = tmp_path / 'stats.txt'
        save_stats(stats_path, (np.array([1.0, 5.0, 1.0]), np.array([2.0, 1.0, 2.0])))
        mean, std = load_stats(stats_path)
        np.testing.assert_allclose(std, [2, 1, 2])

        data = DataSet(self.X.copy(), [0, 1, 0])
        data.normalize(str(stats_path))
        np.testing.assert_allclose(data.X[:, 0], [-0.5, 0.5, 1.5])

    def test_unknown_mode(self):
        """Anything else is an error."""
        with pytest.raises(ValueError):
            DataSet(self.X.copy(), [0, 1, 0]).normalize('no-such-file')

    def test_validation_reuses_training_stats(self, tmp_path):
        """The validation set is scaled with the training statistics."""
        train_path = write_lines(tmp_path / 'train.dat', ["0 0 10", "1 4 20"])
        valid_path = write_lines(tmp_path / 'valid.dat', ["0 2 30"])

        train = DataSet.from_file(train_path, 2, normalize=1)
        valid = DataSet.from_file(valid_path, 2, stats=train.stats)

        np.testing.assert_allclose(valid.X, [[0.5, 2.0]])


class TestSplitAndIndexing:
    """Tests for validation splits and batch access."""

    def test_split_sizes(self):
        """|valid| = N // (ratio + 1) and no sample is lost."""
        data = DataSet(np.arange(24, dtype=float).reshape(12, 2), np.arange(12) % 3)
        train, valid = data.split(5, random_state=0)

        assert len(train) == 10 and len(valid) == 2
        rows = sorted(train.X[:, 0].tolist() + valid.X[:, 0].tolist())
        assert rows == data.X[:, 0].tolist()

    def test_split_is_seeded(self):
        """Same seed, same split."""
        data = DataSet(np.arange(40, dtype=float).reshape(20, 2), np.zeros(20))
        a, _ = data.split(3, random_state=4)
        b, _ = data.split(3, random_state=4)
        np.testing.assert_array_equal(a.X, b.X)

    def test_split_too_small(self):
        """A split with no validation samples fails."""
        with pytest.raises(ValueError):
            DataSet(np.zeros((3, 2)), [0, 1, 0]).split(5)

    def test_batch_indexing(self):
        """data[Batch] returns the matching rows."""
        data = DataSet(np.arange(20, dtype=float).reshape(10, 2), np.arange(10))
        x, y = data[Batch(4, 3)]

        assert x.shape == (3, 2)
        np.testing.assert_array_equal(y, [4, 5, 6])

    def test_mismatched_lengths(self):
        """Features and labels must have the same length."""
        with pytest.raises(ValueError):
            DataSet(np.zeros((3, 2)), [0, 1])


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
