"""
Network Layers
==============

Building blocks of the convolutional stage, plus the capability interface
shared by both stages.

Layers implemented:
- ConvolutionLayer: valid-mode 2D convolution followed by a sigmoid
- SubSamplingLayer: non-overlapping average pooling by an integer ratio

Every layer splits back-propagation in two steps:
    backward(grad_output)  computes self.grads and returns the input gradient
    update(learning_rate)  applies W -= learning_rate * grad in place

Forward outputs are written into buffers from an optional Workspace so a
training run reuses the same memory batch after batch.
"""

import numpy as np

from .activations import Sigmoid
from .initializers import uniform_weights
from .memory import empty
from .optimizers import sgd_step


class Stage:
    """
    Capability interface of a network stage.

    A stage consumes a (batch, features) matrix and produces one. The trainer
    sequences the convolutional stage into the fully-connected one.
    """

    def feed_forward(self, x, workspace=None):
        """Forward pass for one mini-batch; caches what back_propagate needs."""
        raise NotImplementedError

    def back_propagate(self, delta, learning_rate):
        """Chain rule from the output gradient; updates parameters in place."""
        raise NotImplementedError

    def get_params(self):
        """Name -> array mapping of every trainable parameter."""
        raise NotImplementedError

    def set_params(self, params):
        """Copy parameters from a name -> array mapping."""
        own = self.get_params()
        missing = sorted(set(own) - set(params))
        if missing:
            raise ValueError(f"Missing parameters: {', '.join(missing)}")

        for name, param in own.items():
            value = np.asarray(params[name], dtype=param.dtype)
            if value.shape != param.shape:
                raise ValueError(f"Parameter '{name}' has shape {value.shape}, "
                                 f"expected {param.shape}")
            param[...] = value

    def n_params(self):
        """Total number of trainable scalars."""
        return sum(param.size for param in self.get_params().values())


class Layer:
    """Base class for convolutional-stage layers."""

    def __init__(self):
        self.params = {}    # Trainable parameters
        self.grads = {}     # Gradients of parameters
        self.cache = {}

    def output_shape(self, input_shape):
        """(channels, height, width) produced for a given input shape."""
        raise NotImplementedError

    def forward(self, x, workspace=None):
        """Forward pass."""
        raise NotImplementedError

    def backward(self, grad_output, need_input_grad=True):
        """Backward pass."""
        raise NotImplementedError

    def update(self, learning_rate):
        """Gradient-descent step on every parameter."""
        for name, grad in self.grads.items():
            sgd_step(self.params[name], grad, learning_rate)

    def __call__(self, x, workspace=None):
        return self.forward(x, workspace)


class ConvolutionLayer(Layer):
    """
    Valid-mode 2D convolution with a per-map bias and sigmoid output.

    Args:
        in_maps: Number of input feature maps
        out_maps: Number of output feature maps (kernels per input map)
        kernel_size: (height, width) of every kernel, or an int
        random_state: Seed / RandomState for kernel initialization

    Input shape: (batch, in_maps, height, width)
    Output shape: (batch, out_maps, height - kh + 1, width - kw + 1)

    Kernels are initialized uniformly in [-c/2, c/2] with
    c = 2 * sqrt(6 / (fan_in + fan_out)), fan_in = in_maps * kh * kw and
    fan_out = out_maps * kh * kw.
    """

    def __init__(self, in_maps, out_maps, kernel_size, random_state=None):
        super().__init__()

        self.in_maps = in_maps
        self.out_maps = out_maps
        self.kernel_size = kernel_size if isinstance(kernel_size, tuple) else (kernel_size, kernel_size)
        self.activation = Sigmoid()

        kh, kw = self.kernel_size
        self.params['weight'] = uniform_weights((out_maps, in_maps, kh, kw),
                                                fan_in=in_maps * kh * kw,
                                                fan_out=out_maps * kh * kw,
                                                random_state=random_state)
        self.params['bias'] = np.zeros(out_maps)

    def output_shape(self, input_shape):
        channels, height, width = input_shape
        kh, kw = self.kernel_size

        if channels != self.in_maps:
            raise ValueError(f"{self!r} expects {self.in_maps} input maps, got {channels}")
        if height < kh or width < kw:
            raise ValueError(f"Kernel {kh}x{kw} does not fit a {height}x{width} input")

        return (self.out_maps, height - kh + 1, width - kw + 1)

    def _im2col(self, x, h_out, w_out, workspace):
        """
        Gather every kernel-sized patch into one row.

        A strided view enumerates the patches without copying; the single
        copy lands in a pooled buffer.

        Returns:
            col: Shape (batch * h_out * w_out, in_maps * kh * kw)
        """
        batch_size, C, _, _ = x.shape
        kh, kw = self.kernel_size

        shape = (batch_size, C, kh, kw, h_out, w_out)
        strides = (x.strides[0], x.strides[1], x.strides[2], x.strides[3],
                   x.strides[2], x.strides[3])
        patches = np.lib.stride_tricks.as_strided(x, shape=shape, strides=strides)

        col = empty((batch_size, h_out, w_out, C, kh, kw), workspace=workspace)
        np.copyto(col, patches.transpose(0, 4, 5, 1, 2, 3))

        return col.reshape(batch_size * h_out * w_out, -1)

    def _col2im(self, dcol, x_shape, h_out, w_out):
        """Scatter patch gradients back onto the input (inverse of im2col)."""
        batch_size, C, _, _ = x_shape
        kh, kw = self.kernel_size

        dcol = dcol.reshape(batch_size, h_out, w_out, C, kh, kw)
        dx = np.zeros(x_shape, dtype=dcol.dtype)

        # Loop over kernel offsets; each step adds one shifted slab
        for i in range(kh):
            for j in range(kw):
                dx[:, :, i:i + h_out, j:j + w_out] += dcol[:, :, :, :, i, j].transpose(0, 3, 1, 2)

        return dx

    def forward(self, x, workspace=None):
        """
        Convolution as one matrix multiplication over im2col patches.

        Args:
            x: Input tensor, shape (batch, in_maps, height, width)
            workspace: Optional Workspace the output is drawn from

        Returns:
            Sigmoid feature maps, shape (batch, out_maps, h_out, w_out)
        """
        batch_size = x.shape[0]
        _, h_out, w_out = self.output_shape(x.shape[1:])

        col = self._im2col(x, h_out, w_out, workspace)
        W_col = self.params['weight'].reshape(self.out_maps, -1)

        # (batch * h_out * w_out, C * kh * kw) @ (C * kh * kw, out_maps)
        z = empty((batch_size * h_out * w_out, self.out_maps), workspace=workspace)
        np.matmul(col, W_col.T, out=z)
        z += self.params['bias']

        output = empty((batch_size, self.out_maps, h_out, w_out), workspace=workspace)
        np.copyto(output, z.reshape(batch_size, h_out, w_out, self.out_maps).transpose(0, 3, 1, 2))
        self.activation.forward(output, out=output)

        self.cache['x_shape'] = x.shape
        self.cache['col'] = col
        self.cache['output'] = output

        return output

    def backward(self, grad_output, need_input_grad=True):
        """
        Args:
            grad_output: Gradient w.r.t. the sigmoid output
            need_input_grad: Skip the input gradient for the first layer

        Returns:
            Gradient w.r.t. the input, or None
        """
        col = self.cache['col']
        output = self.cache['output']
        x_shape = self.cache['x_shape']
        _, _, h_out, w_out = output.shape

        delta = grad_output * self.activation.derivative(output)
        delta_2d = delta.transpose(0, 2, 3, 1).reshape(-1, self.out_maps)

        W = self.params['weight']
        self.grads['weight'] = (col.T @ delta_2d).T.reshape(W.shape)
        self.grads['bias'] = np.sum(delta, axis=(0, 2, 3))

        if not need_input_grad:
            return None

        dcol = delta_2d @ W.reshape(self.out_maps, -1)
        return self._col2im(dcol, x_shape, h_out, w_out)

    def __repr__(self):
        kh, kw = self.kernel_size
        return f"ConvolutionLayer({self.in_maps}, {self.out_maps}, kernel={kh}x{kw})"


class SubSamplingLayer(Layer):
    """
    Average pooling over non-overlapping `scale` x `scale` windows.

    Rows and columns that do not fill a whole window are dropped.
    Backprop: each window's gradient is shared equally by its elements.
    """

    def __init__(self, scale):
        super().__init__()

        if scale < 1:
            raise ValueError(f"Subsampling scale must be positive, got {scale}")
        self.scale = int(scale)

    def output_shape(self, input_shape):
        channels, height, width = input_shape
        if height < self.scale or width < self.scale:
            raise ValueError(f"Scale {self.scale} does not fit a {height}x{width} input")
        return (channels, height // self.scale, width // self.scale)

    def forward(self, x, workspace=None):
        batch_size, channels = x.shape[:2]
        _, h_out, w_out = self.output_shape(x.shape[1:])
        s = self.scale

        windows = x[:, :, :h_out * s, :w_out * s].reshape(batch_size, channels, h_out, s, w_out, s)

        output = empty((batch_size, channels, h_out, w_out), workspace=workspace)
        np.mean(windows, axis=(3, 5), out=output)

        self.cache['x_shape'] = x.shape
        return output

    def backward(self, grad_output, need_input_grad=True):
        if not need_input_grad:
            return None

        x_shape = self.cache['x_shape']
        _, _, h_out, w_out = grad_output.shape
        s = self.scale

        grad_input = np.zeros(x_shape, dtype=grad_output.dtype)
        spread = np.repeat(np.repeat(grad_output, s, axis=2), s, axis=3) / (s * s)
        grad_input[:, :, :h_out * s, :w_out * s] = spread

        return grad_input

    def __repr__(self):
        return f"SubSamplingLayer(scale={self.scale})"
