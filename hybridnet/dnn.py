"""
Fully-Connected Stage
=====================

Dense layers with the bias unit folded into every weight matrix:

    o_0 = [x, 1]
    o_i = [sigmoid(o_{i-1} @ W_{i-1})[:, :-1], 1]      hidden layers
    p   = softmax((o_k @ W_k)[:, :-1])                 output (cross-entropy)

Every W_i has shape (fan_in + 1, fan_out + 1). The last column of the
output matrix corresponds to an unused bias unit and is ignored.

Back-propagation starts from the error measure's gradient at the output
pre-activation and walks the cached activations backwards, updating every
matrix in place with W -= learning_rate * o.T @ delta. The gradient at the
input layer is handed back so a convolutional stage below can continue.
"""

import numpy as np

from .activations import Sigmoid, get_activation
from .initializers import get_rand_weights
from .layers import Stage
from .losses import get_error_measure
from .memory import empty
from .optimizers import sgd_step


class DNN(Stage):
    """
    Fully-connected stage of a hybrid network.

    Args:
        weights: List of weight matrices, weights[i] of shape (d_i + 1, d_{i+1} + 1)
        error_measure: 'cross_entropy' (softmax output) or 'l2' (sigmoid output)
        dropout: Fraction of hidden units zeroed per training forward pass
        random_state: Seed / RandomState for dropout masks
    """

    def __init__(self, weights, error_measure='cross_entropy', dropout=0.0,
                 random_state=None):
        if not weights:
            raise ValueError("A fully-connected stage needs at least one weight matrix")
        if not 0 <= dropout < 1:
            raise ValueError(f"dropout must be in [0, 1), got {dropout}")

        self.weights = [np.array(w, dtype=np.float64) for w in weights]
        for i in range(len(self.weights) - 1):
            if self.weights[i].shape[1] != self.weights[i + 1].shape[0]:
                raise ValueError(f"weights[{i}] {self.weights[i].shape} does not connect "
                                 f"to weights[{i + 1}] {self.weights[i + 1].shape}")

        self.error_measure = get_error_measure(error_measure)
        self.hidden_activation = Sigmoid()
        self.output_activation = get_activation(self.error_measure.output_activation)

        self.dropout = dropout
        self._dropout_enabled = True
        if random_state is None or isinstance(random_state, int):
            random_state = np.random.RandomState(random_state)
        self._rng = random_state

        self.grads = []
        self._outputs = []
        self._masks = []

    @classmethod
    def init(cls, input_dim, structure, output_dim, random_state=None, verbose=True,
             **kwargs):
        """Randomly initialized stage of widths input_dim-structure-output_dim."""
        if isinstance(random_state, int):
            random_state = np.random.RandomState(random_state)
        weights = get_rand_weights(input_dim, structure, output_dim,
                                   random_state=random_state, verbose=verbose)
        return cls(weights, random_state=random_state, **kwargs)

    @property
    def input_dim(self):
        return self.weights[0].shape[0] - 1

    @property
    def output_dim(self):
        return self.weights[-1].shape[1] - 1

    def get_n_layers(self):
        """Number of layers including input and output."""
        return len(self.weights) + 1

    def set_dropout(self, flag):
        """Turn dropout on (training) or off (evaluation)."""
        self._dropout_enabled = bool(flag)

    @property
    def dropout_active(self):
        return self._dropout_enabled and self.dropout > 0

    def feed_forward(self, x, workspace=None):
        """
        Forward pass.

        Args:
            x: Input features, shape (N, input_dim)
            workspace: Optional Workspace the activations are drawn from

        Returns:
            Class probabilities, shape (N, output_dim)
        """
        x = np.asarray(x)
        batch_size = x.shape[0]
        if x.shape[1] != self.input_dim:
            raise ValueError(f"Expected {self.input_dim} input features, got {x.shape[1]}")

        o = empty((batch_size, self.input_dim + 1), workspace=workspace)
        o[:, :-1] = x
        o[:, -1] = 1.0

        outputs, masks = [o], []
        last = len(self.weights) - 1

        for i, W in enumerate(self.weights):
            z = empty((batch_size, W.shape[1]), workspace=workspace)
            np.matmul(o, W, out=z)

            if i < last:
                o = self.hidden_activation.forward(z, out=z)
                if self.dropout_active:
                    keep = (self._rng.random((batch_size, W.shape[1] - 1)) >= self.dropout)
                    o[:, :-1] *= keep / (1.0 - self.dropout)
                    masks.append(keep)
                else:
                    masks.append(None)
                o[:, -1] = 1.0
            else:
                o = empty((batch_size, W.shape[1] - 1), workspace=workspace)
                self.output_activation.forward(z[:, :-1], out=o)

            outputs.append(o)

        self._outputs = outputs
        self._masks = masks
        return o

    def backward(self, delta):
        """
        Compute weight gradients without applying them.

        Args:
            delta: Error signal at the output pre-activation, shape (N, output_dim)

        Returns:
            Gradient w.r.t. the stage input, shape (N, input_dim)
        """
        if not self._outputs:
            raise RuntimeError("backward() called before feed_forward()")

        delta_ext = np.zeros((delta.shape[0], self.output_dim + 1))
        delta_ext[:, :-1] = delta

        grads = [None] * len(self.weights)

        for i in range(len(self.weights) - 1, -1, -1):
            o = self._outputs[i]
            W = self.weights[i]
            grads[i] = o.T @ delta_ext

            back = delta_ext @ W.T
            if i == 0:
                input_grad = back[:, :-1]
                break

            # Undo the inverted-dropout scaling to recover the sigmoid output
            mask = self._masks[i - 1]
            if mask is None:
                back[:, :-1] *= self.hidden_activation.derivative(o[:, :-1])
            else:
                scale = 1.0 / (1.0 - self.dropout)
                y = o[:, :-1] / scale
                back[:, :-1] *= self.hidden_activation.derivative(y) * mask * scale
            back[:, -1] = 0.0
            delta_ext = back

        self.grads = grads
        return input_grad

    def update(self, learning_rate):
        for W, grad in zip(self.weights, self.grads):
            sgd_step(W, grad, learning_rate)

    def back_propagate(self, delta, learning_rate):
        """
        Chain rule through every layer, then W -= learning_rate * grad.

        Returns:
            Gradient w.r.t. the stage input, for the convolutional stage
        """
        input_grad = self.backward(delta)
        self.update(learning_rate)
        return input_grad

    def predict(self, x, workspace=None):
        """Forward pass with dropout disabled."""
        enabled = self._dropout_enabled
        self.set_dropout(False)
        try:
            return self.feed_forward(x, workspace=workspace)
        finally:
            self.set_dropout(enabled)

    def get_params(self):
        return {f'weight_{i}': W for i, W in enumerate(self.weights)}

    def get_weights(self):
        return self.weights

    @property
    def structure(self):
        """Widths of every layer, without bias units."""
        return [W.shape[0] - 1 for W in self.weights] + [self.output_dim]

    def status(self):
        """Print stage summary."""
        print("\n" + "=" * 70)
        print("Fully-connected stage")
        print("=" * 70)
        print(f"Layer widths: {'-'.join(str(d) for d in self.structure)}")
        print(f"Error measure: {self.error_measure.name}, dropout: {self.dropout}")
        print("-" * 70)

        total_params = 0
        for i, W in enumerate(self.weights):
            total_params += W.size
            print(f"{i:3d}. weights[{i}] {str(W.shape):<20} Params: {W.size:,}")

        print("-" * 70)
        print(f"Total trainable parameters: {total_params:,}")
        print("=" * 70 + "\n")

        return total_params

    def __repr__(self):
        return (f"DNN(structure={self.structure}, "
                f"error_measure='{self.error_measure.name}')")
