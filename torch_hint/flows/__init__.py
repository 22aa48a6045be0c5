"""This package implements invertible layers for normalizing flows on image-like
4D (B, C, H, W) and volume-like 5D (B, C, D, H, W) tensors.

Every layer has forward(), inverse() and backward(). backward() is backprop, not
inversion: given the gradient w.r.t. the layer output and the output itself, it
reconstructs the layer input and returns the gradient w.r.t. that input, while
accumulating parameter gradients. Since inputs are recomputed from outputs,
training deep invertible networks needs no stored activations.

Layers constructed with logdet=True also return log|det J| of forward() as a
scalar. Coupling terms are divided by the batch size, and a permutation adds
nothing since it is orthogonal. backward() differentiates <y, grad_y> - logdet,
so the gradient of the log-determinant is included without ever forming J.

Two-lane layers can be reversed with reverse(), which swaps forward() and
inverse() while sharing parameters.
"""

from .act_norm import ActNorm
from .conditional_hint import ConditionalLayerHINT
from .conv1x1 import Conv1x1
from .core import FlowOutput, InvertibleLayer, sum_logdets
from .coupling_basic import CouplingLayerBasic
from .hint import CouplingLayerHINT, Permute, get_depth
from .reversed import ReversedLayer
