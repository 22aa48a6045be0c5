from __future__ import annotations

import torch
from torch import Tensor, nn

from .core import FlowOutput, InvertibleLayer


class ReversedLayer(InvertibleLayer):
    """Two-lane invertible layer with forward and inverse swapped. Shares all
    parameters with the wrapped layer.

    forward() returns the log-determinant of the inverse map, which is minus
    the wrapped layer's log-determinant at the reconstructed input.
    backward() reconstructs the latents with the wrapped layer's forward and
    backpropagates through its inverse.
    """

    def __init__(self, layer: InvertibleLayer) -> None:
        super().__init__()
        self.layer = layer

    @property
    def logdet(self) -> bool:
        return self.layer.logdet

    def reverse(self) -> InvertibleLayer:
        return self.layer

    def _forward(self, zx: Tensor, zy: Tensor) -> FlowOutput:
        x, y = self.layer.inverse(zx, zy)
        logdet = None
        if self.logdet:
            logdet = -self.layer(x, y)[2]
        return FlowOutput((x, y), logdet)

    def forward(self, zx: Tensor, zy: Tensor) -> tuple[Tensor, Tensor, Tensor | None]:
        """(zx, zy) -> (x, y, logdet)"""
        (x, y), logdet = self._forward(zx, zy)
        return x, y, logdet

    def inverse(self, x: Tensor, y: Tensor) -> tuple[Tensor, Tensor]:
        """(x, y) -> (zx, zy)"""
        return self.layer(x, y)[:2]

    def backward(
        self, grad_x: Tensor, grad_y: Tensor, x: Tensor, y: Tensor
    ) -> tuple[Tensor, Tensor, Tensor, Tensor]:
        """Returns (grad_zx, grad_zy, zx, zy)."""
        with torch.no_grad():
            zx, zy = self.inverse(x, y)
        grad_zx, grad_zy = self._backprop(self._forward, [zx, zy], (grad_x, grad_y))
        return grad_zx, grad_zy, zx, zy

    def forward_y(self, zy: Tensor) -> Tensor:
        return self.layer.inverse_y(zy)

    def inverse_y(self, y: Tensor) -> Tensor:
        return self.layer.forward_y(y)

    def get_params(self) -> list[nn.Parameter]:
        return self.layer.get_params()

    def clear_grad(self) -> None:
        self.layer.clear_grad()
