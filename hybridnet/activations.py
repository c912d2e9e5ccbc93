"""
Activation Functions
====================

Non-linearities used by both network stages.

Each activation can write its result into a caller-provided buffer (`out`),
so forward passes can run entirely inside pooled memory. Derivatives are
expressed in terms of the activation *output*, which is what the stages keep
around between feed-forward and back-propagation.

- Sigmoid: hidden units of both stages, and the output layer under L2 error
- Softmax: output layer under cross-entropy error
"""

import numpy as np


class Activation:
    """Base class for all activation functions."""

    def forward(self, x, out=None):
        """Apply activation function (into `out` when given)."""
        raise NotImplementedError

    def derivative(self, y):
        """Derivative w.r.t. the input, given the activation output `y`."""
        raise NotImplementedError

    def __call__(self, x, out=None):
        return self.forward(x, out=out)


class Sigmoid(Activation):
    """
    Sigmoid: f(x) = 1 / (1 + exp(-x))

    Derivative:
        f'(x) = f(x) * (1 - f(x))
    """

    def forward(self, x, out=None):
        if out is None:
            out = np.empty_like(x)
        # Clip for numerical stability
        np.clip(x, -500, 500, out=out)
        np.negative(out, out=out)
        np.exp(out, out=out)
        out += 1.0
        np.reciprocal(out, out=out)
        return out

    def derivative(self, y):
        return y * (1.0 - y)


class Softmax(Activation):
    """
    Softmax over the last axis: f(x_i) = exp(x_i) / sum(exp(x_j))

    The max is subtracted before exp to prevent overflow.

    Combined with cross-entropy the gradient at the logits is simply
    `softmax(x) - y_true`, so derivative() is never needed on that path.
    """

    def forward(self, x, out=None):
        if out is None:
            out = np.empty_like(x)
        np.subtract(x, np.max(x, axis=-1, keepdims=True), out=out)
        np.exp(out, out=out)
        out /= np.sum(out, axis=-1, keepdims=True)
        return out

    def derivative(self, y):
        raise RuntimeError("Softmax has no standalone derivative: it is only paired with "
                           "cross-entropy, whose output gradient is fout - y")


ACTIVATIONS = {
    'sigmoid': Sigmoid,
    'softmax': Softmax,
}


def get_activation(name):
    """
    Get activation function by name.

    Args:
        name: 'sigmoid' or 'softmax', or an Activation instance

    Returns:
        Activation instance
    """
    if isinstance(name, Activation):
        return name

    name_lower = name.lower()
    if name_lower not in ACTIVATIONS:
        available = ', '.join(ACTIVATIONS.keys())
        raise ValueError(f"Unknown activation '{name}'. Available: {available}")

    return ACTIVATIONS[name_lower]()
