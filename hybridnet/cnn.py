"""
Convolutional Stage
===================

A stack of (convolution [+ subsampling])* layers that turns each input
image into a flat feature vector for the fully-connected stage.

    Input (N, H*W) -> reshape (N, 1, H, W)
    -> ConvolutionLayer(9 maps, 5x5) -> SubSamplingLayer(3)
    -> ConvolutionLayer(4 maps, 3x3) -> SubSamplingLayer(2)
    -> flatten (N, D)

The output dimension D is known right after construction, which is what
the fully-connected stage needs to size its input layer.
"""

import numpy as np

from .layers import ConvolutionLayer, Stage, SubSamplingLayer
from .structure import ConvSpec, format_structure


class CNN(Stage):
    """
    Convolutional stage of a hybrid network.

    Args:
        conv_specs: Sequence of ConvSpec(n_maps, kernel_height, kernel_width, scale)
        input_shape: (height, width) of the input images
        random_state: Seed / RandomState for kernel initialization

    Example:
        >>> from hybridnet.structure import parse_structure
        >>> specs, _ = parse_structure("4x3x3-2s")
        >>> cnn = CNN(specs, input_shape=(10, 10))
        >>> cnn.get_output_dimension()
        64
    """

    def __init__(self, conv_specs, input_shape, random_state=None):
        if not conv_specs:
            raise ValueError("A convolutional stage needs at least one convolution layer")

        self.conv_specs = [ConvSpec(*spec) for spec in conv_specs]
        self.input_shape = tuple(int(d) for d in input_shape)
        if isinstance(random_state, int):
            random_state = np.random.RandomState(random_state)

        self.layers = []
        shape = (1,) + self.input_shape

        for spec in self.conv_specs:
            conv = ConvolutionLayer(shape[0], spec.n_maps,
                                    (spec.kernel_height, spec.kernel_width),
                                    random_state=random_state)
            shape = conv.output_shape(shape)
            self.layers.append(conv)

            if spec.scale is not None:
                pool = SubSamplingLayer(spec.scale)
                shape = pool.output_shape(shape)
                self.layers.append(pool)

        self.output_shape = shape
        self._batch_size = None

    def get_output_dimension(self):
        """Width of the flattened feature vector per sample."""
        return int(np.prod(self.output_shape))

    def layer_shapes(self):
        """Output shape (maps, height, width) after every layer, in order."""
        shapes = []
        shape = (1,) + self.input_shape
        for layer in self.layers:
            shape = layer.output_shape(shape)
            shapes.append(shape)
        return shapes

    def feed_forward(self, x, workspace=None):
        """
        Forward pass through every layer.

        Args:
            x: Flattened images, shape (N, H*W)
            workspace: Optional Workspace the activations are drawn from

        Returns:
            Flattened features, shape (N, get_output_dimension())
        """
        x = np.asarray(x, dtype=np.float64)
        batch_size = x.shape[0]
        output = x.reshape((batch_size, 1) + self.input_shape)

        for layer in self.layers:
            output = layer.forward(output, workspace=workspace)

        self._batch_size = batch_size
        return output.reshape(batch_size, -1)

    def back_propagate(self, delta, learning_rate, need_input_grad=False):
        """
        Back-propagate the gradient at the flattened output.

        Each layer computes its gradients with the weights used in the
        forward pass and is then updated in place.

        Args:
            delta: Gradient w.r.t. the stage output, shape (N, D)
            learning_rate: Step size for the kernel update
            need_input_grad: Also compute the gradient w.r.t. the images

        Returns:
            Gradient w.r.t. the input, shape (N, H*W), or None
        """
        if self._batch_size is None:
            raise RuntimeError("back_propagate() called before feed_forward()")

        grad = np.asarray(delta).reshape((self._batch_size,) + self.output_shape)
        last = len(self.layers) - 1

        for i in range(last, -1, -1):
            layer = self.layers[i]
            grad = layer.backward(grad, need_input_grad=(i > 0 or need_input_grad))
            layer.update(learning_rate)

        if grad is None:
            return None
        return grad.reshape(self._batch_size, -1)

    def get_params(self):
        params = {}
        for i, layer in enumerate(self.layers):
            for name, param in layer.params.items():
                params[f'layer_{i}_{name}'] = param
        return params

    def get_filters(self):
        """Kernel tensors of every convolution layer, in order."""
        return [layer.params['weight'] for layer in self.layers
                if isinstance(layer, ConvolutionLayer)]

    @property
    def structure(self):
        return format_structure(self.conv_specs)

    def status(self):
        """Print stage summary."""
        print("\n" + "=" * 70)
        print("Convolutional stage")
        print("=" * 70)
        print(f"Input shape: {self.input_shape}")
        print("-" * 70)

        total_params = 0
        for i, (layer, shape) in enumerate(zip(self.layers, self.layer_shapes())):
            n_params = sum(param.size for param in layer.params.values())
            total_params += n_params
            print(f"{i:3d}. {str(layer):<40} -> {str(shape):<16} Params: {n_params:,}")

        print("-" * 70)
        print(f"Output dimension: {self.get_output_dimension()}")
        print(f"Total trainable parameters: {total_params:,}")
        print("=" * 70 + "\n")

        return total_params

    def __repr__(self):
        return f"CNN(structure='{self.structure}', input_shape={self.input_shape})"
