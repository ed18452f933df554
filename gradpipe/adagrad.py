"""
AdaGrad built from two stateful gradient transforms.

Update rule for one parameter at step t (t starts at 1):

    g      = weight_decay(g)                        (optional)
    s_t    = s_{t-1} + g ⊙ g
    lr_t   = lr / (1 + (t - 1) * lr_decay)
    theta  = theta - lr_t * g / (sqrt(s_t) + eps)

Every coordinate gets its own effective step size through ``s_t``; the
``lr_decay`` factor is an independent, uniform time decay on top of it.

Usage Example:
    >>> from gradpipe import AdaGradConfig, GradientsParams
    >>> optimizer = AdaGradConfig(lr_decay=0.5, epsilon=1e-8).init()
    >>> loss.backward()
    >>> model = optimizer.step(1e-2, model, GradientsParams.from_module(model))
"""

from dataclasses import dataclass, replace
import math
from typing import Any, Dict, Optional, Tuple

import torch

from .adaptor import OptimizerAdaptor
from .decay import WeightDecay, WeightDecayConfig, WeightDecayState
from .errors import ShapeMismatchError
from .grad_clipping import GradientClippingConfig
from .optimizer import SimpleOptimizer


@dataclass(frozen=True, eq=False)
class LRDecayState:
    """
    Accumulated squared gradients of one parameter.

    Attributes:
        time: Number of steps taken, 1 after the first step
        sum: Elementwise sum of squared gradients, same shape as the parameter
    """
    time: int
    sum: torch.Tensor

    @property
    def shape(self) -> torch.Size:
        return self.sum.shape

    def to_device(self, device: torch.device,
                  dtype: Optional[torch.dtype] = None) -> "LRDecayState":
        return replace(self, sum=self.sum.to(device=device, dtype=dtype))


class LRDecay:
    """
    Adaptive per-coordinate scaling with an optional time decay.

    Args:
        lr_decay: Decay coefficient, 0 disables the time decay
        epsilon: Added to sqrt(sum) before dividing
    """

    def __init__(self, lr_decay: float, epsilon: float):
        self.lr_decay = lr_decay
        self.epsilon = epsilon

    def effective_lr(self, lr: float, time: int) -> float:
        return lr / (1.0 + (time - 1) * self.lr_decay)

    def transform(
        self,
        grad: torch.Tensor,
        lr: float,
        state: Optional[LRDecayState] = None,
    ) -> Tuple[torch.Tensor, LRDecayState]:
        """
        Scale a gradient by its accumulated magnitude.

        Args:
            grad: Incoming gradient
            lr: Base learning rate
            state: State from the previous step, or None on the first step

        Returns:
            Tuple of (scaled gradient, new state)

        Raises:
            ShapeMismatchError: If ``state.sum`` and ``grad`` differ in shape
        """
        if state is None:
            state = LRDecayState(time=1, sum=grad.pow(2))
        else:
            if state.shape != grad.shape:
                raise ShapeMismatchError(grad.shape, state.shape, what="squared gradient sum")
            state = LRDecayState(time=state.time + 1, sum=state.sum.add(grad.pow(2)))

        new_lr = self.effective_lr(lr, state.time)

        grad = grad.div(state.sum.sqrt().add(self.epsilon)).mul(new_lr)

        return grad, state


@dataclass(frozen=True, eq=False)
class AdaGradState:
    weight_decay_state: Optional[WeightDecayState]
    lr_decay_state: LRDecayState


class AdaGrad(SimpleOptimizer):
    """
    Per-tensor AdaGrad: weight decay (optional) followed by LR decay.

    The transform order is fixed: weight decay always sees the raw gradient.
    """

    def __init__(self, lr_decay: LRDecay, weight_decay: Optional[WeightDecay] = None):
        self.lr_decay = lr_decay
        self.weight_decay = weight_decay

    def step(
        self,
        lr: float,
        tensor: torch.Tensor,
        grad: torch.Tensor,
        state: Optional[AdaGradState] = None,
    ) -> Tuple[torch.Tensor, AdaGradState]:
        state_weight_decay = None
        state_lr_decay = None

        if state is not None:
            state_weight_decay = state.weight_decay_state
            state_lr_decay = state.lr_decay_state

        if self.weight_decay is not None:
            grad, state_weight_decay = self.weight_decay.transform(grad, state_weight_decay)

        grad, state_lr_decay = self.lr_decay.transform(grad, lr, state_lr_decay)

        return tensor - grad, AdaGradState(state_weight_decay, state_lr_decay)

    def to_device(self, state: AdaGradState, device: torch.device,
                  dtype: Optional[torch.dtype] = None) -> AdaGradState:
        weight_decay_state = state.weight_decay_state
        if weight_decay_state is not None:
            weight_decay_state = weight_decay_state.to_device(device, dtype)
        return AdaGradState(weight_decay_state, state.lr_decay_state.to_device(device, dtype))

    def state_to_record(self, state: AdaGradState) -> Dict[str, Any]:
        weight_decay_state = None
        if state.weight_decay_state is not None:
            weight_decay_state = {
                'grad_last_step': state.weight_decay_state.grad_last_step.detach().clone(),
            }
        return {
            'weight_decay_state': weight_decay_state,
            'lr_decay_state': {
                'time': int(state.lr_decay_state.time),
                'sum': state.lr_decay_state.sum.detach().clone(),
            },
        }

    def state_from_record(self, record: Dict[str, Any]) -> AdaGradState:
        weight_decay_state = None
        if record.get('weight_decay_state') is not None:
            weight_decay_state = WeightDecayState(record['weight_decay_state']['grad_last_step'])
        lr_decay = record['lr_decay_state']
        return AdaGradState(
            weight_decay_state,
            LRDecayState(time=int(lr_decay['time']), sum=lr_decay['sum']),
        )


@dataclass
class AdaGradConfig:
    """
    Configuration for an AdaGrad optimizer over a whole module.

    Args:
        lr_decay (float, optional): Time decay coefficient. Must be >= 0. Default: 0.0
        epsilon (float, optional): Term added to the denominator. Must be > 0. Default: 1e-5
        weight_decay (WeightDecayConfig, optional): Enables weight decay. Default: None
        grad_clipping (GradientClippingConfig, optional): Enables per-parameter
            gradient clipping before the update. Default: None
        log_level (int, optional): 0=silent, 1=errors, 2=warnings, 3=info. Default: 1
        num_workers (int, optional): Threads used to update parameters. 0 or 1 runs
            the updates sequentially. Default: 0

    Example:
        >>> config = AdaGradConfig(epsilon=1e-8, weight_decay=WeightDecayConfig(penalty=1e-4))
        >>> optimizer = config.init()
    """
    lr_decay: float = 0.0
    epsilon: float = 1e-5
    weight_decay: Optional[WeightDecayConfig] = None
    grad_clipping: Optional[GradientClippingConfig] = None
    log_level: int = 1
    num_workers: int = 0

    def __post_init__(self):
        if not (0.0 <= self.lr_decay and math.isfinite(self.lr_decay)):
            raise ValueError(f"Invalid lr_decay: {self.lr_decay}")
        if not (0.0 < self.epsilon and math.isfinite(self.epsilon)):
            raise ValueError(f"Invalid epsilon: {self.epsilon} (must be finite and > 0)")
        if self.num_workers < 0:
            raise ValueError(f"Invalid num_workers: {self.num_workers}")

    def with_lr_decay(self, lr_decay: float) -> "AdaGradConfig":
        return replace(self, lr_decay=lr_decay)

    def with_epsilon(self, epsilon: float) -> "AdaGradConfig":
        return replace(self, epsilon=epsilon)

    def with_weight_decay(self, weight_decay: Optional[WeightDecayConfig]) -> "AdaGradConfig":
        return replace(self, weight_decay=weight_decay)

    def with_grad_clipping(self, grad_clipping: Optional[GradientClippingConfig]) -> "AdaGradConfig":
        return replace(self, grad_clipping=grad_clipping)

    def build(self) -> AdaGrad:
        """Build the per-tensor optimizer only."""
        weight_decay = WeightDecay(self.weight_decay) if self.weight_decay is not None else None
        return AdaGrad(LRDecay(self.lr_decay, self.epsilon), weight_decay)

    def init(self) -> OptimizerAdaptor:
        """Build an ``OptimizerAdaptor`` running AdaGrad over every parameter."""
        optim = OptimizerAdaptor(self.build(), log_level=self.log_level,
                                 num_workers=self.num_workers)
        if self.grad_clipping is not None:
            optim = optim.with_grad_clipping(self.grad_clipping.init())
        return optim
