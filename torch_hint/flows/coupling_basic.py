"""Density estimation using Real NVP, Dinh et al. May 2016
https://arxiv.org/abs/1605.08803

The coupling layer here is conditional in the sense that the tensor to transform
and the tensor it is conditioned on are passed separately. The HINT layer builds
its recursion out of these.
"""

from __future__ import annotations

from typing import Any

import torch
import torch.nn.functional as F
from torch import Tensor

from ..layers import ResidualBlock
from ..utils import check_channels
from .core import FlowOutput, InvertibleLayer


class CouplingLayerBasic(InvertibleLayer):
    """Affine coupling y = sigmoid(s(c)) * x + t(c), where x is the half being
    transformed and c the untouched half it is conditioned on. Both have n_in
    channels. s and t are predicted by a ResidualBlock.
    """

    def __init__(
        self, n_in: int, n_hidden: int, ndim: int = 2, logdet: bool = False, **kwargs: Any
    ) -> None:
        """Args:
        n_in (int): number of channels of both the input and the conditioning tensor
        n_hidden (int): number of hidden channels in the residual block
        ndim (int, optional): number of spatial dims (2 or 3).
        logdet (bool, optional): whether forward() returns the log-determinant.
        **kwargs: kernel sizes, paddings and strides passed to ResidualBlock.
        """
        super().__init__()
        self.n_in = n_in
        self.logdet = logdet
        self.RB = ResidualBlock(n_in, n_hidden, ndim=ndim, **kwargs)

    def _scale_shift(self, cond: Tensor) -> tuple[Tensor, Tensor]:
        check_channels(cond, self.n_in, name="conditioning input")
        log_s, t = self.RB(cond).chunk(2, dim=1)
        return log_s, t

    def forward(self, x: Tensor, cond: Tensor) -> FlowOutput:
        check_channels(x, self.n_in)
        log_s, t = self._scale_shift(cond)
        # sigmoid(x) = 1 / (1 + exp(-x)) keeps the scale in (0, 1)
        y = torch.sigmoid(log_s) * x + t
        logdet = F.logsigmoid(log_s).sum() / x.size(0) if self.logdet else None
        return FlowOutput(y, logdet)

    def inverse(self, y: Tensor, cond: Tensor) -> Tensor:
        check_channels(y, self.n_in)
        log_s, t = self._scale_shift(cond)
        return (y - t) / torch.sigmoid(log_s)

    def backward(
        self, grad_y: Tensor, y: Tensor, cond: Tensor
    ) -> tuple[Tensor, Tensor, Tensor]:
        """Returns gradients w.r.t. the input and the conditioning tensor plus
        the reconstructed input.
        """
        with torch.no_grad():
            x = self.inverse(y, cond)
        grad_x, grad_cond = self._backprop(self.forward, [x, cond], grad_y)
        return grad_x, grad_cond, x
