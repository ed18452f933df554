"""
Weight decay gradient transform.

The decay term is built from the gradient seen on the previous step:

    g'_t = g_t + penalty * g_{t-1}

On the first step there is no history and the gradient passes through
unchanged. The raw incoming gradient is always kept as the new state.
"""

from dataclasses import dataclass, replace
from typing import Optional, Tuple

import torch

from .errors import ShapeMismatchError


@dataclass
class WeightDecayConfig:
    """
    Args:
        penalty (float): Weight applied to the previous gradient. Must be >= 0.
    """
    penalty: float

    def __post_init__(self):
        if not 0.0 <= self.penalty:
            raise ValueError(f"Invalid weight decay penalty: {self.penalty}")


@dataclass(frozen=True, eq=False)
class WeightDecayState:
    grad_last_step: torch.Tensor

    @property
    def shape(self) -> torch.Size:
        return self.grad_last_step.shape

    def to_device(self, device: torch.device,
                  dtype: Optional[torch.dtype] = None) -> "WeightDecayState":
        return replace(self, grad_last_step=self.grad_last_step.to(device=device, dtype=dtype))


class WeightDecay:
    """Stateful weight decay; see module docstring for the update rule."""

    def __init__(self, config: WeightDecayConfig):
        self.penalty = config.penalty

    def transform(
        self,
        grad: torch.Tensor,
        state: Optional[WeightDecayState] = None,
    ) -> Tuple[torch.Tensor, WeightDecayState]:
        """
        Apply weight decay to a gradient.

        Args:
            grad: Incoming gradient
            state: State from the previous step, or None

        Returns:
            Tuple of (decayed gradient, new state)

        Raises:
            ShapeMismatchError: If the stored gradient has a different shape
        """
        grad_last_step = grad.detach().clone()
        if state is not None:
            if state.shape != grad.shape:
                raise ShapeMismatchError(grad.shape, state.shape, what="weight decay state")
            grad = state.grad_last_step.mul(self.penalty).add(grad)

        return grad, WeightDecayState(grad_last_step)
