from __future__ import annotations

from typing import Any

from torch import Tensor, nn

from .conv1x1 import Conv1x1
from .core import InvertibleLayer, sum_logdets
from .coupling_basic import CouplingLayerBasic
from .hint import CouplingLayerHINT
from .reversed import ReversedLayer


class ConditionalLayerHINT(InvertibleLayer):
    """Conditional HINT layer for Bayesian inference with two lanes of equal shape:
    model parameters x and observed data y. Each lane is transformed by its own
    CouplingLayerHINT; the x lane is then coupled to the (permuted) data y. The y
    lane alone is invertible by itself, so forward_y()/inverse_y() can map data
    to and from its latent space without touching x.

    Kruse et al. 2020, https://arxiv.org/abs/1905.10687, sec. 3.3.
    """

    def __init__(
        self,
        n_in: int,
        n_hidden: int,
        ndim: int = 2,
        logdet: bool = False,
        permute: bool = True,
        **kwargs: Any,
    ) -> None:
        super().__init__()
        self.logdet = logdet
        self.CL_X = CouplingLayerHINT(n_in, n_hidden, ndim=ndim, logdet=logdet, **kwargs)
        self.CL_Y = CouplingLayerHINT(n_in, n_hidden, ndim=ndim, logdet=logdet, **kwargs)
        self.CL_YX = CouplingLayerBasic(n_in, n_hidden, ndim=ndim, logdet=logdet, **kwargs)
        self.C_X = Conv1x1(n_in) if permute else None
        self.C_Y = Conv1x1(n_in) if permute else None

    def _permute(self, C: Conv1x1 | None, x: Tensor) -> Tensor:
        return x if C is None else C(x).output

    def _unpermute(self, C: Conv1x1 | None, x: Tensor) -> Tensor:
        return x if C is None else C.inverse(x)

    def forward(self, x: Tensor, y: Tensor) -> tuple[Tensor, Tensor, Tensor | None]:
        """(x, y) -> (zx, zy, logdet)"""
        yp = self._permute(self.C_Y, y)
        zy, logdet_y = self.CL_Y(yp)

        xp = self._permute(self.C_X, x)
        x_hint, logdet_x = self.CL_X(xp)
        zx, logdet_yx = self.CL_YX(x_hint, yp)

        return zx, zy, sum_logdets(logdet_x, logdet_y, logdet_yx)

    def inverse(self, zx: Tensor, zy: Tensor) -> tuple[Tensor, Tensor]:
        """(zx, zy) -> (x, y)"""
        yp = self.CL_Y.inverse(zy)
        x_hint = self.CL_YX.inverse(zx, yp)
        xp = self.CL_X.inverse(x_hint)
        return self._unpermute(self.C_X, xp), self._unpermute(self.C_Y, yp)

    def backward(
        self, grad_zx: Tensor, grad_zy: Tensor, zx: Tensor, zy: Tensor
    ) -> tuple[Tensor, Tensor, Tensor, Tensor]:
        """Returns (grad_x, grad_y, x, y)."""
        grad_yp, yp = self.CL_Y.backward(grad_zy, zy)
        grad_x_hint, grad_yp_cond, x_hint = self.CL_YX.backward(grad_zx, zx, yp)
        # yp feeds both the y-lane HINT and the coupling of the x lane
        grad_yp = grad_yp + grad_yp_cond
        grad_xp, xp = self.CL_X.backward(grad_x_hint, x_hint)

        grad_x, x = (grad_xp, xp) if self.C_X is None else self.C_X.backward(grad_xp, xp)
        grad_y, y = (grad_yp, yp) if self.C_Y is None else self.C_Y.backward(grad_yp, yp)
        return grad_x, grad_y, x, y

    def reverse(self) -> ReversedLayer:
        """The same layer (shared parameters) mapping latents to (x, y)."""
        return ReversedLayer(self)

    def forward_y(self, y: Tensor) -> Tensor:
        """Map data y to its latent zy without the x lane."""
        return self.CL_Y(self._permute(self.C_Y, y)).output

    def inverse_y(self, zy: Tensor) -> Tensor:
        return self._unpermute(self.C_Y, self.CL_Y.inverse(zy))

    def get_params(self) -> list[nn.Parameter]:
        params = self.CL_X.get_params() + self.CL_Y.get_params() + self.CL_YX.get_params()
        for C in (self.C_X, self.C_Y):
            if C is not None:
                params += C.get_params()
        return params

    def clear_grad(self) -> None:
        for layer in (self.CL_X, self.CL_Y, self.CL_YX, self.C_X, self.C_Y):
            if layer is not None:
                layer.clear_grad()
