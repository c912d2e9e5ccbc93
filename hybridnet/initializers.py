"""
Weight Initialization
=====================

Fan-in/fan-out balanced uniform initialization (Glorot/Xavier style):

    c = 2 * sqrt(6 / (fan_in + fan_out))
    W ~ c * (U[0, 1) - 0.5)          i.e. uniform in [-c/2, c/2]

Dense weight matrices fold the bias unit into the matrix, so every layer
width is incremented by one before the range is computed.
"""

import numpy as np


def _get_rng(random_state):
    if random_state is None or random_state is np.random:
        return np.random
    if isinstance(random_state, (np.random.RandomState, np.random.Generator)):
        return random_state
    return np.random.RandomState(random_state)


def init_coefficient(fan_in, fan_out):
    """Width `c` of the uniform range for a layer."""
    return 2 * np.sqrt(6.0 / (fan_in + fan_out))


def uniform_weights(shape, fan_in, fan_out, random_state=None):
    """
    Uniformly initialized tensor of the given shape.

    Args:
        shape: Output shape
        fan_in: Number of input connections
        fan_out: Number of output connections
        random_state: Seed, RandomState/Generator, or None for np.random

    Returns:
        Array with entries in [-c/2, c/2]
    """
    rng = _get_rng(random_state)
    coeff = init_coefficient(fan_in, fan_out)
    return coeff * (rng.random(shape) - 0.5)


def get_rand_weights(input_dim, structure, output_dim, random_state=None,
                     verbose=True):
    """
    Random weights for a fully-connected stack.

    Args:
        input_dim: Width of the input layer (without bias)
        structure: Hidden widths, as a hyphen-delimited string ("256-128")
            or a sequence of ints. May be empty.
        output_dim: Number of output classes
        random_state: Seed, RandomState/Generator, or None for np.random
        verbose: Print one line per initialized tensor

    Returns:
        List of arrays, weights[i] of shape (dims[i], dims[i+1]) where every
        dim already includes the bias unit.

    Example:
        >>> [w.shape for w in get_rand_weights(64, "8", 3, verbose=False)]
        [(65, 9), (9, 4)]
    """
    if isinstance(structure, str):
        hidden = [int(d) for d in structure.split('-') if d]
    else:
        hidden = [int(d) for d in structure]

    dims = [int(input_dim)] + hidden + [int(output_dim)]
    if any(d < 1 for d in dims):
        raise ValueError(f"Layer widths must be positive, got {dims}")
    dims = [d + 1 for d in dims]

    rng = _get_rng(random_state)
    weights = []

    for i in range(len(dims) - 1):
        fan_in, fan_out = dims[i], dims[i + 1]
        weights.append(uniform_weights((fan_in, fan_out), fan_in, fan_out, rng))
        if verbose:
            print(f"Initialize weights[{i}] using {init_coefficient(fan_in, fan_out):.4f} "
                  f"x (rand({fan_in:3d},{fan_out:3d}) - 0.5)")

    return weights
