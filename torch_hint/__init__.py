from .dimensionality import (
    squeeze,
    tensor_cat,
    tensor_split,
    unsqueeze,
    wavelet_squeeze,
    wavelet_unsqueeze,
)
from .utils import ShapeError


__version__ = "0.1.0"
