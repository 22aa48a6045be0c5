"""Dimensionality operations for 4D (B, C, H, W) and 5D (B, C, D, H, W) tensors.

squeeze() trades spatial resolution for channels: every spatial axis is halved and
the channel count multiplied by 4 (4D) or 8 (5D). The three patterns decide which
input pixels end up in which output channel group. For a single-channel 4x4 image
the group each pixel is sent to looks like this:

    0 0 0 0        0 0 2 2        0 2 0 2
    1 1 1 1        0 0 2 2        1 3 1 3
    2 2 2 2        1 1 3 3        0 2 0 2
    3 3 3 3        1 1 3 3        1 3 1 3

    column          patch       checkerboard

(rows are the first spatial axis). unsqueeze() is the exact inverse of squeeze()
for the same pattern. wavelet_squeeze() replaces the plain reshuffling with a
single level discrete wavelet transform whose subbands are packed into channels.
"""

from __future__ import annotations

import numpy as np
import pywt
import torch
from torch import Tensor

from .utils import ShapeError, check_rank


PATTERNS = ("column", "patch", "checkerboard")


def _check_pattern(pattern: str) -> None:
    if pattern not in PATTERNS:
        raise ValueError(f"Unknown squeeze pattern {pattern!r}, expected one of {PATTERNS}")


def _check_even(x: Tensor) -> None:
    if any(n % 2 for n in x.shape[2:]):
        raise ShapeError(
            f"spatial dimensions must be multiples of 2, got shape {tuple(x.shape)}"
        )


def _check_divisible(y: Tensor, factor: int) -> None:
    if y.size(1) % factor:
        raise ShapeError(
            f"channel dimension must be a multiple of {factor}, got shape {tuple(y.shape)}"
        )


def _sublattice(k: int, spatial, pattern: str) -> tuple:
    """Index selecting the k-th group of a squeeze from a full size tensor.
    Bit i of k picks the second half (patch) or the odd entries (checkerboard)
    along spatial axis i.
    """
    idx = []
    for i, n in enumerate(spatial):
        offset = (k >> i) & 1
        if pattern == "patch":
            half = n // 2
            idx.append(slice(offset * half, (offset + 1) * half))
        else:
            idx.append(slice(offset, None, 2))
    return (slice(None), slice(None), *idx)


def squeeze(x: Tensor, pattern: str = "column") -> Tensor:
    """Halve each spatial dim of x and multiply its channel count by 2**n_spatial."""
    _check_pattern(pattern)
    n_spatial = check_rank(x)
    _check_even(x)

    batch_size, n_channels, *spatial = x.shape
    half = [n // 2 for n in spatial]
    factor = 2**n_spatial

    if pattern == "column":
        return x.reshape(batch_size, n_channels * factor, *half)

    groups = [x[_sublattice(k, spatial, pattern)] for k in range(factor)]
    return torch.cat(groups, dim=1)


def unsqueeze(y: Tensor, pattern: str = "column") -> Tensor:
    """Undo squeeze(): double each spatial dim and divide channels by 2**n_spatial."""
    _check_pattern(pattern)
    n_spatial = check_rank(y)
    factor = 2**n_spatial
    _check_divisible(y, factor)

    batch_size, n_channels, *spatial = y.shape
    full = [2 * n for n in spatial]
    n_out = n_channels // factor

    if pattern == "column":
        return y.reshape(batch_size, n_out, *full)

    x = y.new_zeros(batch_size, n_out, *full)
    for k, group in enumerate(y.split(n_out, dim=1)):
        x[_sublattice(k, full, pattern)] = group
    return x


def _subband_key(k: int, n_spatial: int) -> str:
    # pywt.dwtn names subbands by one letter per axis, "a" = lowpass, "d" = highpass
    return "".join("d" if (k >> i) & 1 else "a" for i in range(n_spatial))


def wavelet_squeeze(x: Tensor, wavelet: str = "db1") -> Tensor:
    """Single-level channel-wise wavelet transform of x, packed into channels with
    the patch pattern. Output channel j * 2**n_spatial + k holds subband k of input
    channel j. Not differentiable (goes through NumPy).

    Args:
        x (Tensor): 4D or 5D input tensor with even spatial dims.
        wavelet (str): Any wavelet name known to pywt, e.g. "haar", "db2", "coif1".
    """
    n_spatial = check_rank(x)
    _check_even(x)
    batch_size, n_channels, *spatial = x.shape
    axes = tuple(range(2, 2 + n_spatial))

    # periodization keeps every subband at exactly half the input size
    coeffs = pywt.dwtn(x.detach().cpu().numpy(), wavelet, mode="periodization", axes=axes)

    # arrange subbands in the quadrants (octants) of a full size array
    quadrants = np.empty(x.shape, dtype=coeffs["a" * n_spatial].dtype)
    for k in range(2**n_spatial):
        quadrants[_sublattice(k, spatial, "patch")] = coeffs[_subband_key(k, n_spatial)]
    quadrants = torch.from_numpy(quadrants).to(x)

    # squeeze every channel on its own so its subbands stay adjacent
    y = squeeze(quadrants.reshape(batch_size * n_channels, 1, *spatial), pattern="patch")
    return y.reshape(batch_size, -1, *y.shape[2:])


def wavelet_unsqueeze(y: Tensor, wavelet: str = "db1") -> Tensor:
    """Inverse of wavelet_squeeze(): unpack subbands and apply the inverse transform."""
    n_spatial = check_rank(y)
    factor = 2**n_spatial
    _check_divisible(y, factor)
    batch_size, n_channels, *spatial = y.shape
    n_out = n_channels // factor
    full = [2 * n for n in spatial]
    axes = tuple(range(2, 2 + n_spatial))

    quadrants = unsqueeze(y.reshape(batch_size * n_out, factor, *spatial), pattern="patch")
    quadrants = quadrants.reshape(batch_size, n_out, *full).detach().cpu().numpy()

    coeffs = {
        _subband_key(k, n_spatial): quadrants[_sublattice(k, full, "patch")]
        for k in range(factor)
    }
    x = pywt.idwtn(coeffs, wavelet, mode="periodization", axes=axes)
    return torch.from_numpy(np.ascontiguousarray(x)).to(y)


def tensor_split(x: Tensor, split_index: int = None) -> tuple[Tensor, Tensor]:
    """Split x along the channel axis (dim 1, or dim 0 for 1D tensors). Defaults
    to the midpoint. Inverse of tensor_cat().
    """
    dim = 0 if x.dim() == 1 else 1
    n = x.size(dim)
    if split_index is None:
        if n == 0:
            raise ShapeError(f"cannot split an empty channel axis, shape {tuple(x.shape)}")
        split_index = round(n / 2)
    if not 0 <= split_index <= n:
        raise ShapeError(f"split index {split_index} out of range for {n} channels")
    return x.narrow(dim, 0, split_index), x.narrow(dim, split_index, n - split_index)


def tensor_cat(x, y: Tensor = None) -> Tensor:
    """Concatenate two tensors along the channel axis. An operand with zero
    channels acts as identity element and the other one is returned as is.
    Accepts the two tensors as a single tuple as well.
    """
    if y is None:
        x, y = x
    dim = 0 if x.dim() == 1 else 1
    if x.size(dim) == 0:
        return y
    if y.size(dim) == 0:
        return x
    return torch.cat([x, y], dim=dim)
