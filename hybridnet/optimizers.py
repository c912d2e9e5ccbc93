"""
Optimization
============

- sgd_step: plain gradient descent, W -= learning_rate * grad, in place
- AccuracyDecay: learning-rate adaptation keyed on training accuracy

Both network stages own their parameter arrays, so updates are applied in
place and never rebind the arrays.
"""


def sgd_step(param, grad, learning_rate):
    """In-place update: param -= learning_rate * grad."""
    param -= learning_rate * grad
    return param


class AccuracyDecay:
    """
    Phased learning-rate decay driven by training accuracy.

    Each time the training accuracy climbs past the next threshold the
    learning rate is multiplied by `ratio`, at most once per threshold and
    in order.

    Args:
        learning_rate: Initial learning rate
        thresholds: Increasing accuracy thresholds
        ratio: Multiplicative decay applied at each threshold
        verbose: Print a line on every adjustment

    Example:
        >>> schedule = AccuracyDecay(0.1, verbose=False)
        >>> schedule.step(0.5), schedule.step(0.81)
        (0.1, 0.09000000000000001)
    """

    DEFAULT_THRESHOLDS = (0.80, 0.85, 0.90, 0.92, 0.95, 0.97)

    def __init__(self, learning_rate, thresholds=DEFAULT_THRESHOLDS, ratio=0.9,
                 verbose=True):
        if learning_rate <= 0:
            raise ValueError(f"learning_rate must be positive, got {learning_rate}")
        if not 0 < ratio <= 1:
            raise ValueError(f"ratio must be in (0, 1], got {ratio}")

        self.learning_rate = learning_rate
        self.initial_lr = learning_rate
        self.thresholds = tuple(thresholds)
        self.ratio = ratio
        self.verbose = verbose
        self.phase = 0

    def step(self, train_accuracy):
        """Update the rate for the latest training accuracy and return it."""
        if self.phase < len(self.thresholds) and train_accuracy > self.thresholds[self.phase]:
            new_lr = self.learning_rate * self.ratio
            if self.verbose:
                print(f"Adjust learning rate from {self.learning_rate:.7f} to {new_lr:.7f}")
            self.learning_rate = new_lr
            self.phase += 1

        return self.learning_rate

    def get_lr(self):
        return self.learning_rate

    def reset(self):
        """Back to the initial learning rate and first phase."""
        self.learning_rate = self.initial_lr
        self.phase = 0

    def __repr__(self):
        return (f"AccuracyDecay(learning_rate={self.learning_rate}, "
                f"phase={self.phase}/{len(self.thresholds)})")

