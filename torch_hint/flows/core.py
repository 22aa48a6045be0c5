from __future__ import annotations

from typing import Callable, NamedTuple, Sequence

import torch
from torch import Tensor, nn


class FlowOutput(NamedTuple):
    """Result of an invertible layer's forward pass. logdet is None when the layer
    does not track its log-determinant.
    """

    output: Tensor | tuple[Tensor, ...]
    logdet: Tensor | None = None


def sum_logdets(*logdets: Tensor | None) -> Tensor | None:
    """Add up log-determinants, ignoring untracked (None) ones."""
    tracked = [ld for ld in logdets if ld is not None]
    return sum(tracked) if tracked else None


class InvertibleLayer(nn.Module):
    """Base class for layers with forward(), inverse() and a memory-efficient
    backward() that reconstructs the layer input from its output instead of
    storing activations. backward() accumulates parameter gradients into .grad
    just like loss.backward() would.
    """

    def get_params(self) -> list[nn.Parameter]:
        """Trainable parameters in a fixed order."""
        return list(self.parameters())

    def clear_grad(self) -> None:
        """Reset the gradients of all trainable parameters."""
        for param in self.get_params():
            param.grad = None

    def _backprop(
        self,
        forward_fn: Callable[..., FlowOutput],
        inputs: Sequence[Tensor],
        grad_output: Tensor | Sequence[Tensor],
    ) -> list[Tensor]:
        """Rerun forward_fn on reconstructed inputs with grad tracking and
        backpropagate grad_output through it. A tracked logdet enters the
        objective with a minus sign, matching the loss -log p(z) - logdet.
        Layers with several outputs pass output and grad_output as tuples.
        Returns the gradients w.r.t. inputs.
        """
        inputs = [x.detach().requires_grad_() for x in inputs]
        with torch.enable_grad():
            output, logdet = forward_fn(*inputs)
            if isinstance(output, Tensor):
                output, grad_output = (output,), (grad_output,)
            objective = sum((out * dy.detach()).sum() for out, dy in zip(output, grad_output))
            if logdet is not None:
                objective = objective - logdet
            objective.backward()
        return [x.grad for x in inputs]
