from __future__ import annotations

import logging
import math

import torch
from torch import Tensor, nn

from ..utils import check_channels
from .core import FlowOutput, InvertibleLayer


logger = logging.getLogger(__name__)


class ActNorm(InvertibleLayer):
    """Scales + shifts every channel by learned constants (y = s * x + b), with
    activation normalization (similar to batch normalization) as data-dependent
    initialization: on the very first batch, s and b are set so that the output
    has zero mean and unit variance per channel. After initialization, s and b are
    treated as regular trainable params that are data independent.
    See Glow paper sec. 3.1. https://arxiv.org/abs/1807.03039.

    If inverse() sees the first batch instead, s and b are set so that the
    reconstructed input is normalized. backward() never initializes: it runs
    inverse() first and recomputes the affine map with the same s and b.
    """

    def __init__(self, k: int, logdet: bool = False) -> None:
        super().__init__()
        self.k = k
        self.logdet = logdet
        self.s = nn.Parameter(torch.ones(k))
        self.b = nn.Parameter(torch.zeros(k))
        self.data_dep_init_done = False

    def _broadcast(self, x: Tensor) -> tuple[Tensor, Tensor]:
        shape = (1, self.k) + (1,) * (x.dim() - 2)
        return self.s.view(shape), self.b.view(shape)

    @staticmethod
    def _moments(x: Tensor) -> tuple[Tensor, Tensor]:
        dims = [0, *range(2, x.dim())]
        return x.std(dim=dims).detach(), x.mean(dim=dims).detach()

    def _affine(self, x: Tensor) -> FlowOutput:
        s, b = self._broadcast(x)
        y = x * s + b
        logdet = None
        if self.logdet:
            n_pixels = math.prod(x.shape[2:])
            logdet = self.s.abs().log().sum() * n_pixels
        return FlowOutput(y, logdet)

    def forward(self, x: Tensor) -> FlowOutput:
        check_channels(x, self.k)
        # first batch is used for init
        if not self.data_dep_init_done:
            std, mean = self._moments(x)
            self.s.data = 1 / std
            self.b.data = -mean / std
            self.data_dep_init_done = True
            logger.debug("ActNorm(%d): data-dependent init on batch of %d", self.k, len(x))
        return self._affine(x)

    def inverse(self, y: Tensor) -> Tensor:
        check_channels(y, self.k)
        if not self.data_dep_init_done:
            std, mean = self._moments(y)
            self.s.data = std
            self.b.data = mean
            self.data_dep_init_done = True
            logger.debug("ActNorm(%d): data-dependent init in inverse", self.k)
        s, b = self._broadcast(y)
        return (y - b) / s

    def backward(self, grad_y: Tensor, y: Tensor) -> tuple[Tensor, Tensor]:
        """Returns the gradient w.r.t. the input and the reconstructed input."""
        with torch.no_grad():
            x = self.inverse(y)
        (grad_x,) = self._backprop(self._affine, [x], grad_y)
        return grad_x, x
