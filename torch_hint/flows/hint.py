"""Hierarchical Invertible Neural Transport (HINT)
Kruse, Detommaso, Köthe and Scheichl, Jun 2020, https://arxiv.org/abs/1905.10687.

HINT applies coupling layers recursively: the input is split in half along the
channel axis, both halves are transformed by a HINT layer of half the width and
the second half is then coupled to the first. The recursion stops once a tensor
has 4 channels or less. This makes the Jacobian of the whole transform
triangular with dense sub-blocks instead of the block structure of a single
coupling layer.

The recursion tree for 8 input channels (two coupling blocks CL[0], CL[1]):

    x (8) --split--> xa (4)  --HINT(CL[1])-------------------> ya
                     xb (4)  --HINT(CL[1])--> CL[0](. | xa) --> yb
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, NamedTuple

from torch import Tensor, nn

from ..dimensionality import tensor_cat, tensor_split
from ..utils import ShapeError, check_channels, check_rank
from .core import FlowOutput, InvertibleLayer, sum_logdets
from .conv1x1 import Conv1x1
from .coupling_basic import CouplingLayerBasic


logger = logging.getLogger(__name__)


class Permute(Enum):
    """Where to mix channels with a Conv1x1 before the recursion.
    FULL: the whole input, before splitting.
    LOWER: only the second half, after splitting.
    """

    NONE = "none"
    LOWER = "lower"
    FULL = "full"


class _Context(NamedTuple):
    scale: int  # 1-based recursion level, picks coupling block CL[scale - 1]
    permute: Permute


def get_depth(n_in: int) -> int:
    """Number of recursion levels (and coupling blocks) of a HINT layer
    with n_in input channels.
    """
    count, nc = 0, n_in
    while nc > 4:
        nc /= 2
        count += 1
    return count + 1


class CouplingLayerHINT(InvertibleLayer):
    """Recursive HINT-style invertible layer built from coupling blocks.

    Trainable parameters live in the coupling blocks self.CL and the optional
    channel permutation self.C. backward() reconstructs the input from the
    output, so no activations need to be kept between forward and backward.
    """

    def __init__(
        self,
        n_in: int,
        n_hidden: int,
        ndim: int = 2,
        logdet: bool = False,
        permute: Permute | str = "none",
        **kwargs: Any,
    ) -> None:
        """Args:
        n_in (int): number of input channels. Must be divisible by 2**depth.
        n_hidden (int): number of hidden channels in each coupling block
        ndim (int, optional): number of spatial dims, 2 for 4D and 3 for 5D input.
        logdet (bool, optional): whether forward() returns the log-determinant.
        permute (str, optional): "none", "lower" or "full". See Permute.
        **kwargs: kernel sizes k1, k2, paddings p1, p2 and strides s1, s2 of the
            residual blocks inside the coupling blocks.
        """
        super().__init__()
        self.n_in = n_in
        self.logdet = logdet
        self.permute = Permute(permute)
        self.depth = get_depth(n_in)
        if n_in % 2**self.depth:
            raise ShapeError(
                f"n_in={n_in} must be divisible by 2**depth={2**self.depth} "
                "so every recursion level splits into equal halves"
            )

        # CL[j - 1] operates on the halves at recursion level j
        self.CL = nn.ModuleList(
            CouplingLayerBasic(n_in // 2**j, n_hidden, ndim=ndim, logdet=logdet, **kwargs)
            for j in range(1, self.depth + 1)
        )

        if self.permute is Permute.FULL:
            self.C = Conv1x1(n_in)
        elif self.permute is Permute.LOWER:
            self.C = Conv1x1(n_in // 2)
        else:
            self.C = None

        logger.debug(
            "CouplingLayerHINT: n_in=%d depth=%d block widths=%s permute=%s",
            n_in,
            self.depth,
            [cl.n_in for cl in self.CL],
            self.permute.value,
        )

    def _block(self, ctx: _Context) -> CouplingLayerBasic:
        # n_in % 2**depth == 0, so the recursion never runs past CL[-1]
        return self.CL[ctx.scale - 1]

    @staticmethod
    def _descend(ctx: _Context) -> _Context:
        # the permutation only matches the width of the outermost level
        return _Context(ctx.scale + 1, Permute.NONE)

    def _check_input(self, x: Tensor) -> None:
        check_rank(x)
        check_channels(x, self.n_in)

    def forward(self, x: Tensor) -> FlowOutput:
        """x -> (y, logdet). logdet is None unless the layer tracks it."""
        self._check_input(x)
        return self._forward(x, _Context(1, self.permute))

    def _forward(self, x: Tensor, ctx: _Context) -> FlowOutput:
        if ctx.permute is Permute.FULL:
            x = self.C(x).output
        xa, xb = tensor_split(x)
        if ctx.permute is Permute.LOWER:
            xb = self.C(xb).output

        cl = self._block(ctx)
        if x.size(1) > 4:
            ya, logdet1 = self._forward(xa, self._descend(ctx))
            y_temp, logdet2 = self._forward(xb, self._descend(ctx))
            yb, logdet3 = cl(y_temp, xa)
            logdet = sum_logdets(logdet1, logdet2, logdet3)
        else:  # finest level
            ya = xa
            yb, logdet = cl(xb, xa)

        return FlowOutput(tensor_cat(ya, yb), logdet)

    def inverse(self, y: Tensor) -> Tensor:
        """y -> x"""
        self._check_input(y)
        return self._inverse(y, _Context(1, self.permute))

    def _inverse(self, y: Tensor, ctx: _Context) -> Tensor:
        ya, yb = tensor_split(y)

        cl = self._block(ctx)
        if y.size(1) > 4:
            xa = self._inverse(ya, self._descend(ctx))
            xb = self._inverse(cl.inverse(yb, xa), self._descend(ctx))
        else:
            xa = ya
            xb = cl.inverse(yb, ya)

        if ctx.permute is Permute.LOWER:
            xb = self.C.inverse(xb)
        x = tensor_cat(xa, xb)
        if ctx.permute is Permute.FULL:
            x = self.C.inverse(x)
        return x

    def backward(self, grad_y, y: Tensor = None) -> tuple[Tensor, Tensor]:
        """Backpropagate grad_y through the layer while reconstructing its input
        from y. Returns (grad_x, x). Accepts (grad_y, y) as two arguments or as
        a single tuple.
        """
        if y is None:
            grad_y, y = grad_y
        self._check_input(y)
        check_channels(grad_y, self.n_in, name="output gradient")
        return self._backward(grad_y, y, _Context(1, self.permute))

    def _backward(self, grad_y: Tensor, y: Tensor, ctx: _Context) -> tuple[Tensor, Tensor]:
        ya, yb = tensor_split(y)
        grad_ya, grad_yb = tensor_split(grad_y)

        cl = self._block(ctx)
        if y.size(1) > 4:
            grad_xa, xa = self._backward(grad_ya, ya, self._descend(ctx))
            grad_y_temp, grad_cond, y_temp = cl.backward(grad_yb, yb, xa)
            grad_xb, xb = self._backward(grad_y_temp, y_temp, self._descend(ctx))
        else:
            xa = ya
            grad_xa = grad_ya
            grad_xb, grad_cond, xb = cl.backward(grad_yb, yb, ya)
        # xa enters the coupling block as conditioning input
        grad_xa = grad_xa + grad_cond

        if ctx.permute is Permute.LOWER:
            grad_xb, xb = self.C.backward(grad_xb, xb)
        grad_x, x = tensor_cat(grad_xa, grad_xb), tensor_cat(xa, xb)
        if ctx.permute is Permute.FULL:
            grad_x, x = self.C.backward(grad_x, x)
        return grad_x, x

    def get_params(self) -> list[nn.Parameter]:
        """Parameters of all coupling blocks in order, then the permutation's."""
        params = [p for cl in self.CL for p in cl.get_params()]
        if self.C is not None:
            params += self.C.get_params()
        return params

    def clear_grad(self) -> None:
        for cl in self.CL:
            cl.clear_grad()
        if self.C is not None:
            self.C.clear_grad()
