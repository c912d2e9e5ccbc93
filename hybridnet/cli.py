"""
Command-line training entry point.

Usage examples::

    hybridnet-train data/train.dat --input-dim 28x28 --struct 9x5x5-3s-256 --output-dim 10
    hybridnet-train data/train.dat data/valid.dat - digits.model --input-dim 28x28 \\
        --struct 12x5x5-2s-8x3x3-2s-128 --output-dim 10 --normalize 1
    hybridnet-train data/train.dat - digits.model.17 digits.model --input-dim 28x28

Positional arguments that are not needed can be given as '-'.
"""

import argparse
import sys
from pathlib import Path

from .cnn import CNN
from .config import Config
from .dataset import DataSet
from .dnn import DNN
from .losses import ERROR_MEASURES
from .memory import CacheExhaustedError, MemoryCache
from .model_io import load_model
from .structure import parse_input_dimension, parse_structure
from .trainer import Trainer
from .utils import set_random_seed
from .visualizations import plot_training_history


def _optional(value):
    """'-' and '' mean "not given"."""
    if value in (None, '', '-'):
        return None
    return value


def build_parser():
    parser = argparse.ArgumentParser(
        prog='hybridnet-train',
        description="Train a convolutional + fully-connected classifier with "
                    "mini-batch gradient descent.",
        epilog="Example usage: hybridnet-train data/train3.dat --input-dim 28x28 "
               "--struct 12x5x5-2s-8x3x3-2s-128 --output-dim 10",
    )

    parser.add_argument('training_set_file', help="Training data")
    parser.add_argument('valid_set_file', nargs='?', default=None,
                        help="Validation data; '-' to split the training data (see -v)")
    parser.add_argument('model_in', nargs='?', default=None,
                        help="Model to continue training; '-' to start from random weights")
    parser.add_argument('model_out', nargs='?', default=None,
                        help="Output model (default: <training_set_file>.model)")

    features = parser.add_argument_group('Feature options')
    features.add_argument('--input-dim', required=True,
                          help="Input dimension, HxW for images (e.g. 28x28) or D")
    features.add_argument('--normalize', default='0',
                          help="0: none, 1: rescale each dimension to [0, 1], "
                               "2: standard score z = (x - u) / sigma, "
                               "filename: read mean and std from file")
    features.add_argument('--base', type=int, default=0,
                          help="Label id of the first class (0 or 1)")
    features.add_argument('--output-dim', type=int, default=None,
                          help="Number of classes to predict")

    structure = parser.add_argument_group('Network structure')
    structure.add_argument('--struct', default='',
                           help="e.g. 9x5x5-3s-4x3x3-2s-256-128: a 9-map 5x5 convolution "
                                "subsampled by 3, a 4-map 3x3 convolution subsampled by 2, "
                                "then hidden layers of width 256 and 128")

    training = parser.add_argument_group('Training options')
    training.add_argument('-v', type=int, default=5, dest='ratio',
                          help="Ratio of training to validation samples when splitting")
    training.add_argument('--max-epoch', type=int, default=100000,
                          help="Maximum number of epochs")
    training.add_argument('--min-acc', type=float, default=0.5,
                          help="Minimum validation accuracy before stopping early")
    training.add_argument('--learning-rate', type=float, default=0.1,
                          help="Learning rate of back-propagation")
    training.add_argument('--batch-size', type=int, default=32,
                          help="Samples per mini-batch")
    training.add_argument('--non-inc-epoch', type=int, default=6,
                          help="Epochs without a validation error increase required to stop")
    training.add_argument('--dropout', type=float, default=0.0,
                          help="Fraction of hidden units dropped while training")
    training.add_argument('--error', default='cross_entropy',
                          choices=sorted(ERROR_MEASURES), help="Error measure")
    training.add_argument('--seed', type=int, default=None,
                          help="Random seed for initialization, dropout and splitting")

    hardware = parser.add_argument_group('Hardware options')
    hardware.add_argument('--cache', type=float, default=16,
                          help="Memory cache size in MB for per-batch buffers")

    output = parser.add_argument_group('Output options')
    output.add_argument('--plot', default=None,
                        help="Save accuracy curves to this image file")
    output.add_argument('--quiet', action='store_true',
                        help="Only print errors")

    return parser


def _build_model(args, parser, conv_specs, hidden, image_shape, config, verbose):
    """Random-weight stages; the convolutional one first, it sizes the DNN input."""
    if args.output_dim is None:
        parser.error("--output-dim is required when no model_in is given")

    try:
        cnn = CNN(conv_specs, image_shape, random_state=args.seed) if conv_specs else None
        input_dim = cnn.get_output_dimension() if cnn else image_shape[0] * image_shape[1]
        dnn = DNN.init(input_dim, hidden, args.output_dim, random_state=args.seed,
                       verbose=verbose, error_measure=config.error_measure,
                       dropout=config.dropout)
    except ValueError as e:
        parser.error(str(e))

    return cnn, dnn


def _load_data(args, input_dim, verbose):
    valid_fn = _optional(args.valid_set_file)

    if valid_fn is None:
        if args.ratio == 0:
            raise ValueError("A validation set file is required when -v is 0")
        data = DataSet.from_file(args.training_set_file, input_dim, args.base, args.normalize)
        train, valid = data.split(args.ratio, random_state=args.seed)
    else:
        train = DataSet.from_file(args.training_set_file, input_dim, args.base, args.normalize)
        valid = DataSet.from_file(valid_fn, input_dim, args.base, stats=train.stats)

    if verbose:
        train.show_summary('Training set')
        valid.show_summary('Validation set')

    return train, valid


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    verbose = not args.quiet

    try:
        config = Config(
            learning_rate=args.learning_rate,
            min_valid_accuracy=args.min_acc,
            max_epoch=args.max_epoch,
            n_non_inc_epoch=args.non_inc_epoch,
            batch_size=args.batch_size,
            dropout=args.dropout,
            cache_size=args.cache,
            error_measure=args.error,
            seed=args.seed,
        )
        image_shape = parse_input_dimension(args.input_dim)
        conv_specs, hidden = parse_structure(args.struct)
    except ValueError as e:
        parser.error(str(e))

    if args.ratio < 0:
        parser.error(f"-v must be non-negative, got {args.ratio}")

    model_in = _optional(args.model_in)
    model_out = _optional(args.model_out) or Path(args.training_set_file).name + '.model'

    if args.seed is not None:
        set_random_seed(args.seed, verbose=verbose)

    cache = MemoryCache()
    cache.set_cache_size(config.cache_size)

    if model_in is None:
        cnn, dnn = _build_model(args, parser, conv_specs, hidden, image_shape, config, verbose)

    try:
        if model_in is not None:
            cnn, dnn = load_model(model_in, verbose=verbose, dropout=config.dropout,
                                  random_state=args.seed)
            if cnn is not None and cnn.input_shape != image_shape:
                raise ValueError(f"{model_in} expects {cnn.input_shape[0]}x{cnn.input_shape[1]} "
                                 f"images, got --input-dim {args.input_dim}")

        train, valid = _load_data(args, image_shape[0] * image_shape[1], verbose)

        if verbose:
            if cnn is not None:
                cnn.status()
            dnn.status()
            config.show()

        trainer = Trainer(dnn, config, cnn=cnn, cache=cache, verbose=verbose)
        history = trainer.train(train, valid, model_out)

        if args.plot:
            plot_training_history(history, save_path=args.plot)

    except CacheExhaustedError as e:
        print(f"[Error] Out of cache memory: {e}", file=sys.stderr)
        return 1
    except (OSError, ValueError) as e:
        print(f"[Error] {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
