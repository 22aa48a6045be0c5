from __future__ import annotations

import logging
from typing import Any

import torch
from torch import Tensor, nn

from torch_hint.flows import ActNorm, ConditionalLayerHINT, InvertibleLayer, ReversedLayer


logger = logging.getLogger(__name__)


class NetworkConditionalHINT(InvertibleLayer):
    """A sequence of conditional HINT layers is a conditional HINT network.
    Every step normalizes both lanes with ActNorm and then applies a
    ConditionalLayerHINT with channel permutations. The log-determinant is
    always tracked since the network is meant to be trained by maximum likelihood.
    """

    def __init__(
        self, n_in: int, n_hidden: int, depth: int, ndim: int = 2, **kwargs: Any
    ) -> None:
        """Args:
        n_in (int): number of channels of each lane
        n_hidden (int): number of hidden channels in the coupling blocks
        depth (int): number of (ActNorm, ActNorm, ConditionalLayerHINT) steps
        ndim (int, optional): number of spatial dims (2 or 3).
        **kwargs: kernel sizes, paddings and strides of the residual blocks.
        """
        super().__init__()
        self.logdet = True
        self.AN_X = nn.ModuleList(ActNorm(n_in, logdet=True) for _ in range(depth))
        self.AN_Y = nn.ModuleList(ActNorm(n_in, logdet=True) for _ in range(depth))
        self.CL = nn.ModuleList(
            ConditionalLayerHINT(n_in, n_hidden, ndim=ndim, logdet=True, **kwargs)
            for _ in range(depth)
        )
        logger.debug("NetworkConditionalHINT: depth=%d n_in=%d", depth, n_in)

    def _steps(self):
        return zip(self.AN_X, self.AN_Y, self.CL)

    def forward(self, x: Tensor, y: Tensor) -> tuple[Tensor, Tensor, Tensor]:  # (x, y) -> (zx, zy)
        logdet = torch.zeros([], device=x.device, dtype=x.dtype)
        for an_x, an_y, cl in self._steps():
            x, logdet1 = an_x(x)
            y, logdet2 = an_y(y)
            x, y, logdet3 = cl(x, y)
            logdet = logdet + logdet1 + logdet2 + logdet3
        return x, y, logdet

    def inverse(self, zx: Tensor, zy: Tensor) -> tuple[Tensor, Tensor]:  # (zx, zy) -> (x, y)
        x, y = zx, zy
        for an_x, an_y, cl in reversed(list(self._steps())):
            x, y = cl.inverse(x, y)
            x, y = an_x.inverse(x), an_y.inverse(y)
        return x, y

    def backward(
        self, grad_zx: Tensor, grad_zy: Tensor, zx: Tensor, zy: Tensor
    ) -> tuple[Tensor, Tensor, Tensor, Tensor]:
        """Returns (grad_x, grad_y, x, y)."""
        grad_x, grad_y, x, y = grad_zx, grad_zy, zx, zy
        for an_x, an_y, cl in reversed(list(self._steps())):
            grad_x, grad_y, x, y = cl.backward(grad_x, grad_y, x, y)
            grad_x, x = an_x.backward(grad_x, x)
            grad_y, y = an_y.backward(grad_y, y)
        return grad_x, grad_y, x, y

    def reverse(self) -> ReversedLayer:
        return ReversedLayer(self)

    def forward_y(self, y: Tensor) -> Tensor:
        for _, an_y, cl in self._steps():
            y = cl.forward_y(an_y(y).output)
        return y

    def inverse_y(self, zy: Tensor) -> Tensor:
        y = zy
        for _, an_y, cl in reversed(list(self._steps())):
            y = an_y.inverse(cl.inverse_y(y))
        return y

    def get_params(self) -> list[nn.Parameter]:
        params = []
        for an_x, an_y, cl in self._steps():
            params += an_x.get_params() + an_y.get_params() + cl.get_params()
        return params

    def clear_grad(self) -> None:
        for an_x, an_y, cl in self._steps():
            an_x.clear_grad()
            an_y.clear_grad()
            cl.clear_grad()
