import torch
from torch import Tensor


class ShapeError(ValueError):
    """Raised when a tensor's shape does not fit the operation or module it is
    passed to, e.g. odd spatial sizes, bad channel counts or wrong rank.
    """


def check_rank(x: Tensor, ranks=(4, 5)) -> int:
    """Return the number of spatial dims of x or raise if its rank is unsupported."""
    if x.dim() not in ranks:
        raise ShapeError(f"expected a tensor of rank {ranks}, got shape {tuple(x.shape)}")
    return x.dim() - 2


def check_channels(x: Tensor, n_channels: int, name: str = "input") -> None:
    """Raise if the channel axis (dim 1) of x does not have n_channels entries."""
    if x.size(1) != n_channels:
        raise ShapeError(
            f"{name} has {x.size(1)} channels, expected {n_channels} "
            f"(shape {tuple(x.shape)})"
        )


def log_likelihood(z: Tensor) -> Tensor:
    """Log-likelihood of z under a standard normal, up to the additive constant,
    averaged over the batch (dim 0).
    """
    return -0.5 * z.pow(2).sum() / z.size(0)


def grad_log_likelihood(z: Tensor) -> Tensor:
    """Gradient of log_likelihood w.r.t. z."""
    return -z / z.size(0)


def rel_error(x: Tensor, y: Tensor) -> float:
    """Relative norm difference ||x - y|| / ||x||."""
    return (torch.linalg.norm(x - y) / torch.linalg.norm(x)).item()
