"""
Training Loop
=============

Drives mini-batch gradient descent over a convolutional stage (optional)
feeding a fully-connected stage:

    for epoch in range(max_epoch):
        for batch in Batches(batch_size, n_train):        # fixed order
            x, y = train[batch]
            fout  = dnn.feed_forward(cnn.feed_forward(x))
            error = fout - onehot(y)
            delta = dnn.back_propagate(error, lr / batch.n_data)
            cnn.back_propagate(delta, lr)
        Ein, Eout = zero-one errors on train / valid (dropout off, up to 2048 rows)
        stop if valid accuracy > min_valid_accuracy and Eout has not
            increased over the last n_non_inc_epoch epochs
        otherwise adapt lr from the training accuracy and checkpoint

The final model is written once more after the loop, however it ended.
"""

import numpy as np
from tqdm import tqdm

from .batches import Batches
from .config import MAX_CNN_EPOCH
from .losses import get_error, zero_one_error
from .memory import CacheExhaustedError, MemoryCache
from .model_io import checkpoint_path, save_model
from .optimizers import AccuracyDecay
from .utils import Timer, format_duration


def is_eout_stop_decrease(eout, epoch, n_non_inc_epoch):
    """
    Whether the validation error has stopped decreasing.

    True iff eout[epoch] <= eout[epoch - i] for every earlier epoch inside
    the window of the last `n_non_inc_epoch` recorded epochs (the current
    one included). Epochs before the first one are not compared, so a short
    history never blocks the decision.

    Example:
        >>> eout = [50, 40, 42, 41, 41]
        >>> [is_eout_stop_decrease(eout, e, 3) for e in range(5)]
        [True, True, False, False, True]
    """
    for i in range(1, n_non_inc_epoch):
        if epoch - i < 0:
            break
        if eout[epoch] > eout[epoch - i]:
            return False

    return True


def predict(dnn, x, cnn=None, workspace=None):
    """Class probabilities for `x` with dropout disabled."""
    if cnn is not None:
        x = cnn.feed_forward(x, workspace=workspace)
    return dnn.predict(x, workspace=workspace)


class Trainer:
    """
    Epoch-level training controller.

    Args:
        dnn: Fully-connected stage
        config: Config with the run's hyperparameters
        cnn: Convolutional stage feeding the DNN, or None
        cache: MemoryCache for per-batch buffers (built from
            config.cache_size when not given)
        verbose: Print progress

    Example:
        >>> trainer = Trainer(dnn, Config(batch_size=32), cnn=cnn)
        >>> history = trainer.train(train_set, valid_set, model_out='digits.model')
    """

    def __init__(self, dnn, config, cnn=None, cache=None, verbose=True):
        if cnn is not None and cnn.get_output_dimension() != dnn.input_dim:
            raise ValueError(f"Convolutional output dimension {cnn.get_output_dimension()} "
                             f"does not match DNN input dimension {dnn.input_dim}")

        self.dnn = dnn
        self.cnn = cnn
        self.config = config
        self.verbose = verbose
        self.cache = cache if cache is not None else MemoryCache(config.cache_size)
        self.error_measure = dnn.error_measure

        self.max_epoch = config.max_epoch
        if cnn is not None:
            self.max_epoch = min(self.max_epoch, MAX_CNN_EPOCH)

        self.eval_batch_size = config.eval_batch_size
        self.schedule = AccuracyDecay(config.learning_rate, verbose=verbose)
        self.history = self._new_history()

    @staticmethod
    def _new_history():
        return {
            'train_accuracy': [], 'valid_accuracy': [],
            'train_errors': [], 'valid_errors': [],
            'learning_rate': [], 'epoch_time': [],
            'stopped_early': False,
        }

    @property
    def learning_rate(self):
        return self.schedule.learning_rate

    def forward(self, x, workspace=None):
        """Both stages in sequence."""
        if self.cnn is not None:
            x = self.cnn.feed_forward(x, workspace=workspace)
        return self.dnn.feed_forward(x, workspace=workspace)

    def train_batch(self, x, y, workspace=None):
        """
        One gradient-descent step on a mini-batch.

        The DNN step is divided by the number of samples actually in the
        batch, so a short trailing batch does not take an oversized step.

        Returns:
            Number of misclassified samples in the forward pass
        """
        n_data = len(x)
        lr = self.schedule.learning_rate

        fout = self.forward(x, workspace=workspace)
        n_error = zero_one_error(fout, y)

        error = get_error(y, fout, self.error_measure)
        delta = self.dnn.back_propagate(error, lr / n_data)
        if self.cnn is not None:
            self.cnn.back_propagate(delta, lr)

        return n_error

    def run_epoch(self, train_set, epoch):
        """Every mini-batch of the training set, in order."""
        batches = Batches(self.config.batch_size, len(train_set))
        pbar = tqdm(batches, total=len(batches), desc=f"Epoch {epoch}",
                    leave=False, disable=not self.verbose)

        n_error, n_seen = 0, 0
        for batch in pbar:
            x, y = train_set[batch]
            with self.cache.workspace() as ws:
                n_error += self.train_batch(x, y, workspace=ws)
            n_seen += batch.n_data

            if self.verbose:
                pbar.set_postfix({'acc': f'{1 - n_error / n_seen:.4f}'})

    def count_errors(self, data):
        """Zero-one error over a whole dataset, forward pass only."""
        n_error = 0
        for batch in Batches(self.eval_batch_size, len(data)):
            x, y = data[batch]
            with self.cache.workspace() as ws:
                n_error += zero_one_error(self.forward(x, workspace=ws), y)
        return n_error

    def evaluate(self, train_set, valid_set):
        """(Ein, Eout) with dropout turned off for the duration."""
        self.dnn.set_dropout(False)
        try:
            return self.count_errors(train_set), self.count_errors(valid_set)
        finally:
            self.dnn.set_dropout(True)

    def save(self, path):
        save_model(path, self.dnn, self.cnn, verbose=self.verbose)

    def check_labels(self, *datasets):
        """Every label must index one of the DNN outputs."""
        for data in datasets:
            if len(data) and data.y.max() >= self.dnn.output_dim:
                raise ValueError(f"Label {data.y.max()} is out of range for {self.dnn.output_dim} "
                                 f"output classes (check --base and --output-dim)")

    def _fits_in_cache(self, batch_size, input_dim):
        x = np.zeros((batch_size, input_dim))
        try:
            with self.cache.workspace() as ws:
                self.forward(x, workspace=ws)
        except CacheExhaustedError:
            return False
        return True

    def fit_batches_to_cache(self, n_train, n_valid, input_dim):
        """
        Check the per-batch working set against the cache before training.

        A training batch that does not fit is fatal. The evaluation chunk is
        halved until its forward pass fits; it never affects the error counts.

        Raises:
            CacheExhaustedError: If one training batch does not fit
        """
        self.dnn.set_dropout(False)
        try:
            train_batch = min(self.config.batch_size, n_train)
            if not self._fits_in_cache(train_batch, input_dim):
                raise CacheExhaustedError(
                    f"A batch of {train_batch} samples does not fit in the "
                    f"{self.cache.capacity}-byte cache. Increase the cache size "
                    f"or lower the batch size.")

            n_largest = max(n_train, n_valid)
            eval_batch = self.config.eval_batch_size
            while (eval_batch > train_batch
                   and not self._fits_in_cache(min(eval_batch, n_largest), input_dim)):
                eval_batch //= 2
            self.eval_batch_size = eval_batch
        finally:
            self.dnn.set_dropout(True)

        if self.verbose and self.eval_batch_size < self.config.eval_batch_size:
            print(f"Evaluating in batches of {self.eval_batch_size} to fit the cache")

    def train(self, train_set, valid_set, model_out=None):
        """
        Train until early stop or max_epoch.

        Args:
            train_set: DataSet used for gradient steps
            valid_set: DataSet used for the stopping decision
            model_out: Final model path; checkpoints go to `<model_out>.<epoch>`.
                Nothing is written when None.

        Returns:
            History dictionary
        """
        n_train, n_valid = len(train_set), len(valid_set)
        if n_train == 0 or n_valid == 0:
            raise ValueError(f"Training needs non-empty sets, got {n_train} train "
                             f"and {n_valid} validation samples")

        self.check_labels(train_set, valid_set)
        self.fit_batches_to_cache(n_train, n_valid, train_set.input_dim)

        config = self.config
        self.history = history = self._new_history()
        eout = []
        ein = 0
        n_epochs = 0
        timer = Timer()

        if self.verbose:
            print(f"Training on {n_train} samples, validating on {n_valid} "
                  f"(max {self.max_epoch} epochs)")

        for epoch in range(self.max_epoch):
            epoch_timer = Timer()
            n_epochs = epoch + 1

            self.run_epoch(train_set, epoch)
            ein, e = self.evaluate(train_set, valid_set)
            eout.append(e)

            train_acc = 1.0 - ein / n_train
            valid_acc = 1.0 - eout[epoch] / n_valid
            elapsed = epoch_timer.elapsed()

            history['train_errors'].append(ein)
            history['valid_errors'].append(eout[epoch])
            history['train_accuracy'].append(train_acc)
            history['valid_accuracy'].append(valid_acc)
            history['learning_rate'].append(self.schedule.learning_rate)
            history['epoch_time'].append(elapsed)

            # Unstable early epochs: note it and keep going
            if not train_acc >= 0:
                if self.verbose:
                    print('.', end='', flush=True)
                continue

            if self.verbose:
                print(f"Epoch {epoch:4d} - Train Acc: {train_acc:.2%} ({n_train - ein}/{n_train})"
                      f" - Val Acc: {valid_acc:.2%} ({n_valid - eout[epoch]}/{n_valid})"
                      f" - LR: {self.schedule.learning_rate:.6f} - {elapsed:.2f}s")

            if (valid_acc > config.min_valid_accuracy
                    and is_eout_stop_decrease(eout, epoch, config.n_non_inc_epoch)):
                history['stopped_early'] = True
                break

            self.schedule.step(train_acc)

            if model_out is not None:
                self.save(checkpoint_path(model_out, epoch))

        if model_out is not None:
            self.save(model_out)

        if self.verbose:
            print(f"\n{n_epochs} epochs in total, elapsed {format_duration(timer.elapsed())}")
            print(f"[   In-Sample   ] accuracy {1 - ein / n_train:.2%} ({n_train - ein}/{n_train})")
            if eout:
                print(f"[ Out-of-Sample ] accuracy {1 - eout[-1] / n_valid:.2%} "
                      f"({n_valid - eout[-1]}/{n_valid})")

        return history

