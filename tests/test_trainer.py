"""
Tests for the Training Loop
===========================

Early stopping, checkpointing and end-to-end training on small synthetic
problems.
"""

import numpy as np
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from hybridnet.cnn import CNN
from hybridnet.config import MAX_CNN_EPOCH, Config
from hybridnet.dataset import DataSet
from hybridnet.dnn import DNN
from hybridnet.memory import MemoryCache
from hybridnet.model_io import load_model
from hybridnet.structure import parse_structure
from hybridnet.trainer import Trainer, is_eout_stop_decrease, predict


def make_blobs(n, random_state=0):
    """Two well separated clusters in 2-D."""
    rng = np.random.RandomState(random_state)
    y = np.arange(n) % 2
    X = rng.randn(n, 2) * 0.3 + np.where(y[:, None] == 0, -2.0, 2.0)
    return DataSet(X, y)


def make_images(n, random_state=0):
    """6x6 images whose class is the brighter half (left or right)."""
    rng = np.random.RandomState(random_state)
    y = np.arange(n) % 2
    images = rng.rand(n, 6, 6) * 0.2
    for i, label in enumerate(y):
        if label == 0:
            images[i, :, :3] += 0.8
        else:
            images[i, :, 3:] += 0.8
    return DataSet(images.reshape(n, 36), y)


def scripted_trainer(eout, n_valid=100, **config):
    """A trainer whose evaluation pass replays a fixed Eout sequence."""
    dnn = DNN.init(2, [], 2, random_state=0, verbose=False)
    trainer = Trainer(dnn, Config(**config), verbose=False)
    errors = iter(eout)
    trainer.evaluate = lambda train_set, valid_set: (0, next(errors))
    return trainer, make_blobs(10), DataSet(np.zeros((n_valid, 2)), np.zeros(n_valid))


class TestStopPredicate:
    """Tests for is_eout_stop_decrease()."""

    def test_window_scenario(self):
        """Rise from 40 to 42 blocks epoch 3; epoch 4 is within the window."""
        eout = [50, 40, 42, 41, 41]

        assert not is_eout_stop_decrease(eout, 3, 3)
        assert is_eout_stop_decrease(eout, 4, 3)

    def test_first_epochs_are_permissive(self):
        """Missing early comparisons count as no increase."""
        assert is_eout_stop_decrease([10], 0, 6)
        assert is_eout_stop_decrease([10, 9], 1, 6)
        assert not is_eout_stop_decrease([10, 11], 1, 6)

    def test_any_increase_in_window(self):
        """An increase anywhere in the window blocks the stop."""
        eout = [5, 9, 8, 8]
        assert not is_eout_stop_decrease(eout, 3, 4)
        assert is_eout_stop_decrease(eout, 3, 3)

    def test_equal_errors_stop(self):
        """A flat error counts as not increasing."""
        assert is_eout_stop_decrease([7, 7, 7], 2, 3)


class TestControlFlow:
    """Tests for the epoch loop with scripted validation errors."""

    def test_stops_once_accuracy_and_window_agree(self, tmp_path):
        """Stop requires both the accuracy floor and the window."""
        model_out = tmp_path / 'scripted.model'
        trainer, train, valid = scripted_trainer([60, 55, 45, 40], min_valid_accuracy=0.5,
                                                 n_non_inc_epoch=3)
        history = trainer.train(train, valid, str(model_out))

        assert history['stopped_early']
        assert history['valid_errors'] == [60, 55, 45]
        assert history['valid_accuracy'][-1] == pytest.approx(0.55)

        # Checkpoints after every epoch that did not stop, then the final model
        assert (tmp_path / 'scripted.model.0').exists()
        assert (tmp_path / 'scripted.model.1').exists()
        assert not (tmp_path / 'scripted.model.2').exists()
        assert model_out.exists()

    def test_runs_to_max_epoch(self, tmp_path):
        """Without a stop the loop ends at max_epoch."""
        model_out = tmp_path / 'capped.model'
        trainer, train, valid = scripted_trainer([80, 70, 60], max_epoch=3)
        history = trainer.train(train, valid, str(model_out))

        assert not history['stopped_early']
        assert len(history['valid_errors']) == 3
        assert sorted(p.name for p in tmp_path.iterdir()) == [
            'capped.model', 'capped.model.0', 'capped.model.1', 'capped.model.2']

    def test_no_files_without_model_out(self, tmp_path):
        """Nothing is written without an output path."""
        trainer, train, valid = scripted_trainer([80, 70], max_epoch=2)
        trainer.train(train, valid)
        assert list(tmp_path.iterdir()) == []

    def test_learning_rate_history(self):
        """The rate recorded for an epoch is the one it trained with."""
        trainer, train, valid = scripted_trainer([80, 80, 80], max_epoch=3, learning_rate=0.1)
        history = trainer.train(train, valid)

        # Ein is scripted as 0, so every epoch passes the next threshold
        assert history['learning_rate'] == pytest.approx([0.1, 0.09, 0.081])

    def test_empty_sets_rejected(self):
        """Both sets must contain samples."""
        trainer, train, _ = scripted_trainer([])
        with pytest.raises(ValueError):
            trainer.train(train, DataSet(np.zeros((0, 2)), []))

    def test_cnn_epochs_are_capped(self):
        """Runs with a convolutional stage are capped."""
        specs, _ = parse_structure("2x3x3")
        cnn = CNN(specs, (5, 5), random_state=0)
        dnn = DNN.init(cnn.get_output_dimension(), [], 2, random_state=0, verbose=False)

        trainer = Trainer(dnn, Config(max_epoch=10 ** 6), cnn=cnn, verbose=False)
        assert trainer.max_epoch == MAX_CNN_EPOCH

    def test_stage_dimensions_must_match(self):
        """The stages must connect."""
        specs, _ = parse_structure("2x3x3")
        cnn = CNN(specs, (5, 5), random_state=0)
        dnn = DNN.init(10, [], 2, random_state=0, verbose=False)

        with pytest.raises(ValueError):
            Trainer(dnn, Config(), cnn=cnn, verbose=False)


class TestEndToEnd:
    """Real training runs on separable data."""

    def test_dnn_learns_blobs(self, tmp_path):
        """Softmax regression separates two clusters."""
        train, valid = make_blobs(40, random_state=0), make_blobs(20, random_state=1)
        dnn = DNN.init(2, [], 2, random_state=0, verbose=False)
        config = Config(learning_rate=0.5, batch_size=8, max_epoch=200)

        history = Trainer(dnn, config, verbose=False).train(train, valid, str(tmp_path / 'blobs.model'))

        assert history['stopped_early']
        assert history['valid_accuracy'][-1] > 0.5
        assert len(history['epoch_time']) == len(history['train_accuracy'])

    def test_hybrid_network_trains_and_reloads(self, tmp_path):
        """Conv + dense training, then the saved model predicts identically."""
        train, valid = make_images(48, random_state=0), make_images(16, random_state=1)
        specs, hidden = parse_structure("3x3x3-2s-6")
        cnn = CNN(specs, (6, 6), random_state=0)
        dnn = DNN.init(cnn.get_output_dimension(), hidden, 2, random_state=0, verbose=False)
        config = Config(learning_rate=0.5, batch_size=16, max_epoch=5, cache_size=1)
        model_out = tmp_path / 'hybrid.model'

        trainer = Trainer(dnn, config, cnn=cnn, verbose=False)
        history = trainer.train(train, valid, str(model_out))

        assert 1 <= len(history['valid_accuracy']) <= 5
        assert trainer.cache.in_use_bytes == 0

        loaded_cnn, loaded_dnn = load_model(model_out, verbose=False)
        np.testing.assert_allclose(predict(loaded_dnn, valid.X, cnn=loaded_cnn),
                                   predict(dnn, valid.X, cnn=cnn))

    def test_dropout_run(self):
        """Dropout is back on after every evaluation."""
        train, valid = make_blobs(40, random_state=0), make_blobs(20, random_state=1)
        dnn = DNN.init(2, [8], 2, random_state=0, verbose=False, dropout=0.5)
        config = Config(learning_rate=0.5, batch_size=8, max_epoch=3, dropout=0.5)

        Trainer(dnn, config, verbose=False).train(train, valid)
        assert dnn.dropout_active

    def test_small_cache_is_reported(self):
        """A batch that cannot fit in the cache fails loudly."""
        from hybridnet.memory import CacheExhaustedError

        train, valid = make_images(64), make_images(16)
        specs, _ = parse_structure("8x3x3")
        cnn = CNN(specs, (6, 6), random_state=0)
        dnn = DNN.init(cnn.get_output_dimension(), [], 2, random_state=0, verbose=False)

        cache = MemoryCache()
        cache.set_cache_size(0.001)
        trainer = Trainer(dnn, Config(batch_size=64, max_epoch=1), cnn=cnn, cache=cache,
                          verbose=False)
        before = [W.copy() for W in dnn.weights]

        with pytest.raises(CacheExhaustedError, match="batch of 64 samples"):
            trainer.train(train, valid)
        assert cache.in_use_bytes == 0

        # Reported before the first epoch, so no step was taken
        for W, old in zip(dnn.weights, before):
            np.testing.assert_array_equal(W, old)

    def test_evaluation_batches_shrink_to_fit(self):
        """Evaluation chunks are halved until they fit; counts are unchanged."""
        train, valid = make_images(300, random_state=0), make_images(40, random_state=1)
        specs, _ = parse_structure("8x3x3")
        cnn = CNN(specs, (6, 6), random_state=0)
        dnn = DNN.init(cnn.get_output_dimension(), [], 2, random_state=0, verbose=False)

        cache = MemoryCache(0.25)
        trainer = Trainer(dnn, Config(batch_size=8, max_epoch=1), cnn=cnn, cache=cache,
                          verbose=False)
        history = trainer.train(train, valid)

        assert 8 <= trainer.eval_batch_size < 300
        assert len(history['valid_errors']) == 1
        assert cache.in_use_bytes == 0

        expected = np.sum(np.argmax(predict(dnn, valid.X, cnn=cnn), axis=1) != valid.y)
        assert trainer.count_errors(valid) == expected

    def test_evaluation_batch_kept_when_it_fits(self):
        """A roomy cache keeps the configured evaluation batch."""
        trainer, train, valid = scripted_trainer([80], max_epoch=1)
        trainer.train(train, valid)
        assert trainer.eval_batch_size == trainer.config.eval_batch_size

    def test_labels_beyond_output_dim(self):
        """Labels the DNN cannot output are rejected before training."""
        X = np.random.RandomState(0).randn(10, 2)
        train = DataSet(X, np.arange(10) % 3)
        valid = DataSet(X, np.arange(10) % 2)
        dnn = DNN.init(2, [], 2, random_state=0, verbose=False)

        with pytest.raises(ValueError, match="out of range"):
            Trainer(dnn, Config(max_epoch=1), verbose=False).train(train, valid)

    def test_validation_labels_are_checked(self):
        """The validation set is checked too."""
        X = np.random.RandomState(0).randn(10, 2)
        dnn = DNN.init(2, [], 2, random_state=0, verbose=False)

        with pytest.raises(ValueError):
            Trainer(dnn, Config(max_epoch=1), verbose=False).train(
                DataSet(X, np.arange(10) % 2), DataSet(X, np.full(10, 5)))

    def test_verbose_output(self, capsys):
        """Epoch reports and the final summary are printed."""
        train, valid = make_blobs(20, random_state=0), make_blobs(10, random_state=1)
        dnn = DNN.init(2, [], 2, random_state=0, verbose=False)

        Trainer(dnn, Config(max_epoch=2, min_valid_accuracy=1.0)).train(train, valid)
        out = capsys.readouterr().out

        assert "Epoch    0" in out
        assert "[ Out-of-Sample ]" in out


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
