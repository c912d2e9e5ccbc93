"""
Hybrid CNN/DNN Training Engine
==============================

Mini-batch training of a convolutional stage feeding a fully-connected
stage, using only NumPy for the numerics. The library covers:
- Valid-mode convolution with sigmoid units and average subsampling
- Fully-connected layers with the bias folded into the weights
- Cross-entropy (softmax) and L2 (sigmoid) error measures
- Accuracy-driven learning-rate decay and early stopping
- A pooled memory cache for per-batch buffers
- Atomic model files and per-epoch checkpoints
"""

from .activations import Sigmoid, Softmax, get_activation
from .batches import Batch, Batches
from .cnn import CNN
from .config import Config
from .dataset import DataSet
from .dnn import DNN
from .initializers import get_rand_weights, init_coefficient
from .layers import ConvolutionLayer, Stage, SubSamplingLayer
from .losses import CrossEntropyError, L2Error, get_error, get_error_measure, zero_one_error
from .memory import CacheExhaustedError, MemoryCache
from .model_io import load_model, save_model
from .optimizers import AccuracyDecay
from .structure import parse_input_dimension, parse_structure
from .trainer import Trainer, is_eout_stop_decrease, predict
from . import visualizations

__version__ = "1.0.0"
__all__ = [
    # Activations
    'Sigmoid', 'Softmax', 'get_activation',
    # Batching and memory
    'Batch', 'Batches', 'CacheExhaustedError', 'MemoryCache',
    # Layers and stages
    'ConvolutionLayer', 'SubSamplingLayer', 'Stage', 'CNN', 'DNN',
    # Initialization
    'get_rand_weights', 'init_coefficient',
    # Error measures
    'CrossEntropyError', 'L2Error', 'get_error', 'get_error_measure', 'zero_one_error',
    # Training
    'AccuracyDecay', 'Config', 'Trainer', 'is_eout_stop_decrease', 'predict',
    # Data and model files
    'DataSet', 'load_model', 'save_model',
    'parse_input_dimension', 'parse_structure',
]
