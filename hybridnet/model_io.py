"""
Model Files
===========

A model file is a single .npz archive holding the convolutional stage
(structure, input shape, kernels) followed by the fully-connected stage
(weight matrices, error measure). Checkpoints use the same format and are
named `<model_out>.<epoch>`.

Writes go to a temporary file next to the target and are moved into place
with os.replace(), so an interrupted write never leaves a truncated model
under the final name.
"""

import os
from pathlib import Path

import numpy as np

from .cnn import CNN
from .dnn import DNN
from .structure import parse_structure

FORMAT_VERSION = 1


def checkpoint_path(model_out, epoch):
    """Name of the checkpoint written after `epoch`."""
    return f"{model_out}.{epoch}"


def model_params(dnn, cnn=None):
    """Flat name -> array mapping of everything a model file stores."""
    params = {'format_version': np.array(FORMAT_VERSION)}

    if cnn is not None:
        params['cnn_structure'] = np.array(cnn.structure)
        params['cnn_input_shape'] = np.array(cnn.input_shape)
        for name, param in cnn.get_params().items():
            params[f'cnn_{name}'] = param

    params['dnn_error_measure'] = np.array(dnn.error_measure.name)
    params['dnn_n_weights'] = np.array(len(dnn.weights))
    for name, param in dnn.get_params().items():
        params[f'dnn_{name}'] = param

    return params


def save_model(path, dnn, cnn=None, verbose=True):
    """
    Write both stages to `path`, replacing any existing file.

    Args:
        path: Destination; used verbatim (no extension is appended)
        dnn: Fully-connected stage
        cnn: Convolutional stage, or None for a plain DNN
    """
    path = Path(path)
    tmp_path = path.with_name(path.name + '.tmp')

    try:
        with open(tmp_path, 'wb') as f:
            np.savez(f, **model_params(dnn, cnn))
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()

    if verbose:
        print(f"Model saved to {path}")


def load_model(path, verbose=True, **dnn_kwargs):
    """
    Read a model file written by save_model().

    Args:
        path: Model file
        **dnn_kwargs: Extra DNN arguments (e.g. dropout, random_state)

    Returns:
        (cnn, dnn); cnn is None when the file holds a plain DNN
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Model file not found: {path}")

    try:
        with np.load(path, allow_pickle=False) as data:
            cnn = None
            if 'cnn_structure' in data.files:
                conv_specs, _ = parse_structure(str(data['cnn_structure']))
                cnn = CNN(conv_specs, tuple(data['cnn_input_shape']),
                          random_state=np.random.RandomState(0))
                cnn.set_params({name[len('cnn_'):]: data[name]
                                for name in data.files if name.startswith('cnn_layer_')})

            n_weights = int(data['dnn_n_weights'])
            weights = [data[f'dnn_weight_{i}'] for i in range(n_weights)]
            error_measure = str(data['dnn_error_measure'])
    except KeyError as e:
        raise ValueError(f"Malformed model file {path}: missing {e}") from e

    dnn = DNN(weights, error_measure=error_measure, **dnn_kwargs)

    if cnn is not None and cnn.get_output_dimension() != dnn.input_dim:
        raise ValueError(f"Model file {path}: convolutional output "
                         f"{cnn.get_output_dimension()} does not match DNN input {dnn.input_dim}")

    if verbose:
        print(f"Model loaded from {path}")

    return cnn, dnn
