from __future__ import annotations

import torch
from torch import Tensor, nn

from ..utils import check_channels
from .core import FlowOutput, InvertibleLayer


class Conv1x1(InvertibleLayer):
    """Invertible 1x1 convolution that mixes channels with a learned orthogonal matrix.
    Glow: Generative Flow with Invertible 1x1 Convolutions.
    Kingma and Dhariwal, Jul 2018, https://arxiv.org/abs/1807.03039.

    Instead of Glow's LU decomposition, W is the product of three Householder
    reflections H(v) = I - 2 v v^T / (v^T v) as in "Invert to Learn to Invert",
    Putzky and Welling, Nov 2019, https://arxiv.org/abs/1911.10914. W is
    orthogonal, so W^-1 = W^T and log|det W| = 0.
    """

    def __init__(self, k: int) -> None:
        super().__init__()
        self.k = k
        self.v1 = nn.Parameter(torch.randn(k))
        self.v2 = nn.Parameter(torch.randn(k))
        self.v3 = nn.Parameter(torch.randn(k))

    def _assemble_W(self) -> Tensor:
        """Assemble W from its Householder vectors."""
        eye = torch.eye(self.k, dtype=self.v1.dtype, device=self.v1.device)
        W = eye
        for v in (self.v1, self.v2, self.v3):
            W = W @ (eye - 2 * torch.outer(v, v) / v.dot(v))
        return W

    def _mix(self, x: Tensor, W: Tensor) -> Tensor:
        check_channels(x, self.k)
        # apply W along the channel axis at every pixel
        return torch.einsum("ij,bj...->bi...", W, x)

    def forward(self, x: Tensor) -> FlowOutput:
        # log|det W| = 0, nothing to track
        return FlowOutput(self._mix(x, self._assemble_W()))

    def inverse(self, y: Tensor) -> Tensor:
        return self._mix(y, self._assemble_W().T)

    def backward(self, grad_y, y: Tensor = None) -> tuple[Tensor, Tensor]:
        """Returns the gradient w.r.t. the input and the reconstructed input.
        Accepts (grad_y, y) as two arguments or as a single tuple.
        """
        if y is None:
            grad_y, y = grad_y
        with torch.no_grad():
            x = self.inverse(y)
        (grad_x,) = self._backprop(self.forward, [x], grad_y)
        return grad_x, x
