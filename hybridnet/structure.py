"""
Network structure strings.

    9x5x5-3s-4x3x3-2s-256-128

"9x5x5" is a convolution layer with 9 output feature maps and a 5x5
kernel; "-3s" right after it adds a subsampling layer of scale 3. Bare
integers ("256-128") are hidden widths of the fully-connected stage.
Convolutions always come before the dense layers.
"""

import re
from collections import namedtuple

ConvSpec = namedtuple('ConvSpec', ['n_maps', 'kernel_height', 'kernel_width', 'scale'])
ConvSpec.__new__.__defaults__ = (None,)

_CONV = re.compile(r'^(\d+)x(\d+)x(\d+)$')
_SUBSAMPLE = re.compile(r'^(\d+)s$')
_DENSE = re.compile(r'^\d+$')
_DIMENSION = re.compile(r'^(\d+)(?:x(\d+))?$')


def parse_structure(structure):
    """
    Split a structure string into its two stages.

    Returns:
        (conv_specs, hidden_widths): list of ConvSpec and list of ints

    Raises:
        ValueError: On any malformed or misplaced layer

    Example:
        >>> parse_structure("4x3x3-2s-8")
        ([ConvSpec(n_maps=4, kernel_height=3, kernel_width=3, scale=2)], [8])
    """
    conv_specs, hidden = [], []
    structure = structure.strip()
    if not structure:
        return conv_specs, hidden

    for token in structure.split('-'):
        conv = _CONV.match(token)
        subsample = _SUBSAMPLE.match(token)

        if conv:
            if hidden:
                raise ValueError(f"Convolution '{token}' after a dense layer in '{structure}'")
            n_maps, kh, kw = (int(g) for g in conv.groups())
            if min(n_maps, kh, kw) < 1:
                raise ValueError(f"Convolution '{token}' must have positive sizes")
            conv_specs.append(ConvSpec(n_maps, kh, kw))
        elif subsample:
            if hidden or not conv_specs or conv_specs[-1].scale is not None:
                raise ValueError(f"Subsampling '{token}' must directly follow a convolution "
                                 f"in '{structure}'")
            scale = int(subsample.group(1))
            if scale < 1:
                raise ValueError(f"Subsampling scale must be positive in '{token}'")
            conv_specs[-1] = conv_specs[-1]._replace(scale=scale)
        elif _DENSE.match(token):
            width = int(token)
            if width < 1:
                raise ValueError(f"Dense layer width must be positive, got '{token}'")
            hidden.append(width)
        else:
            raise ValueError(f"Cannot parse layer '{token}' in '{structure}'")

    return conv_specs, hidden


def format_structure(conv_specs, hidden=()):
    """Inverse of parse_structure()."""
    tokens = []
    for spec in conv_specs:
        tokens.append(f"{spec.n_maps}x{spec.kernel_height}x{spec.kernel_width}")
        if spec.scale is not None:
            tokens.append(f"{spec.scale}s")
    tokens.extend(str(width) for width in hidden)
    return '-'.join(tokens)


def parse_input_dimension(text):
    """
    Parse "HxW" (image) or "D" (flat feature vector).

    Returns:
        (height, width); a flat vector is (1, D)
    """
    match = _DIMENSION.match(str(text).strip())
    if not match:
        raise ValueError(f"Cannot parse input dimension '{text}', expected HxW or D")

    first, second = match.groups()
    height, width = (1, int(first)) if second is None else (int(first), int(second))
    if height < 1 or width < 1:
        raise ValueError(f"Input dimension must be positive, got '{text}'")

    return height, width
