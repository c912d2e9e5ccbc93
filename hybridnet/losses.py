"""
Error Measures
==============

Each error measure provides:
- forward(predictions, targets): scalar loss, for reporting only
- backward(predictions, targets): the error signal that seeds back-propagation
- output_activation: the non-linearity the output layer must use with it

The gradient is *not* divided by the batch size here; the trainer scales the
learning rate by the number of samples in the batch instead.

zero_one_error() counts misclassified samples. It drives accuracy reporting
and early stopping and is never used as a gradient.
"""

import numpy as np

from .utils import one_hot_encode


def _as_one_hot(predictions, targets):
    """Accept integer labels or one-hot rows."""
    targets = np.asarray(targets)
    if targets.ndim == 1:
        return one_hot_encode(targets, predictions.shape[-1])
    return targets


class ErrorMeasure:
    """Base class for error measures."""

    name = None
    output_activation = None

    def forward(self, predictions, targets):
        """Compute loss value."""
        raise NotImplementedError

    def backward(self, predictions, targets):
        """Error signal at the output layer's pre-activation."""
        raise NotImplementedError

    def __call__(self, predictions, targets):
        return self.forward(predictions, targets)

    def __repr__(self):
        return f"{self.__class__.__name__}()"


class CrossEntropyError(ErrorMeasure):
    """
    Cross-entropy with a softmax output layer.

    Formula: L = -mean(sum(y_true * log(y_pred)))

    With softmax outputs the gradient at the logits reduces to
        dL/dz = predictions - targets

    Args:
        epsilon: Small constant to prevent log(0)
    """

    name = 'cross_entropy'
    output_activation = 'softmax'

    def __init__(self, epsilon=1e-15):
        self.epsilon = epsilon

    def forward(self, predictions, targets):
        targets = _as_one_hot(predictions, targets)
        predictions_clipped = np.clip(predictions, self.epsilon, 1 - self.epsilon)
        return float(np.mean(-np.sum(targets * np.log(predictions_clipped), axis=-1)))

    def backward(self, predictions, targets):
        return predictions - _as_one_hot(predictions, targets)


class L2Error(ErrorMeasure):
    """
    Squared error with a sigmoid output layer.

    Formula: L = 0.5 * mean(sum((y_pred - y_true)^2))

    Gradient at the pre-activation:
        dL/dz = (y_pred - y_true) * y_pred * (1 - y_pred)
    """

    name = 'l2'
    output_activation = 'sigmoid'

    def forward(self, predictions, targets):
        targets = _as_one_hot(predictions, targets)
        return float(0.5 * np.mean(np.sum((predictions - targets) ** 2, axis=-1)))

    def backward(self, predictions, targets):
        diff = predictions - _as_one_hot(predictions, targets)
        return diff * predictions * (1 - predictions)


def zero_one_error(predictions, targets):
    """
    Number of samples whose predicted class differs from the target.

    Args:
        predictions: Class scores, shape (batch, classes)
        targets: Integer labels (batch,) or one-hot rows (batch, classes)

    Returns:
        int
    """
    targets = np.asarray(targets)
    if targets.ndim > 1:
        targets = np.argmax(targets, axis=1)
    return int(np.count_nonzero(np.argmax(predictions, axis=1) != targets))


def get_error(targets, predictions, error_measure):
    """Back-propagation seed for `predictions` under `error_measure`."""
    return get_error_measure(error_measure).backward(predictions, targets)


# ============================================================================
# Error Measure Registry
# ============================================================================

ERROR_MEASURES = {
    'cross_entropy': CrossEntropyError,
    'crossentropy': CrossEntropyError,
    'ce': CrossEntropyError,
    'l2': L2Error,
    'mse': L2Error,
}


def get_error_measure(name):
    """
    Get error measure by name.

    Args:
        name: String name or ErrorMeasure instance

    Returns:
        ErrorMeasure instance
    """
    if isinstance(name, ErrorMeasure):
        return name

    name_lower = name.lower().replace('-', '_').replace(' ', '_')
    if name_lower not in ERROR_MEASURES:
        available = ', '.join(sorted(ERROR_MEASURES))
        raise ValueError(f"Unknown error measure '{name}'. Available: {available}")

    return ERROR_MEASURES[name_lower]()
