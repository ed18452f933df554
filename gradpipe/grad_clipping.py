"""
Per-tensor gradient clipping, applied by the adaptor before the update rule.
"""

from dataclasses import dataclass
from typing import Optional

import torch


@dataclass
class GradientClippingConfig:
    """
    Exactly one of ``value`` or ``norm`` must be set.

    Args:
        value (float, optional): Clamp every element to [-value, value]
        norm (float, optional): Rescale the gradient when its L2 norm exceeds this
    """
    value: Optional[float] = None
    norm: Optional[float] = None

    def __post_init__(self):
        if (self.value is None) == (self.norm is None):
            raise ValueError("Gradient clipping needs exactly one of 'value' or 'norm'")
        threshold = self.value if self.value is not None else self.norm
        if not threshold > 0.0:
            raise ValueError(f"Invalid clipping threshold: {threshold}")

    @classmethod
    def by_value(cls, threshold: float) -> "GradientClippingConfig":
        return cls(value=threshold)

    @classmethod
    def by_norm(cls, threshold: float) -> "GradientClippingConfig":
        return cls(norm=threshold)

    def init(self) -> "GradientClipping":
        return GradientClipping(self)


class GradientClipping:
    NORM_EPS = 1e-6

    def __init__(self, config: GradientClippingConfig):
        self.value = config.value
        self.norm = config.norm

    def clip_gradient(self, grad: torch.Tensor) -> torch.Tensor:
        """
        Clip a single gradient tensor.

        Args:
            grad: Gradient to clip

        Returns:
            Clipped gradient, a new tensor when clipping applies
        """
        if self.value is not None:
            return grad.clamp(min=-self.value, max=self.value)

        norm = grad.pow(2).sum().sqrt().item()
        if norm > self.norm:
            return grad.mul(self.norm / (norm + self.NORM_EPS))
        return grad
