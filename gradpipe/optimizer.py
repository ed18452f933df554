"""
Optimizer interfaces and the gradient container they consume.

A ``SimpleOptimizer`` knows how to update one tensor given its gradient and its
own prior state. An ``Optimizer`` updates a whole ``torch.nn.Module``; the
``OptimizerAdaptor`` lifts the former into the latter.

Parameters are identified by their dotted name in ``module.named_parameters()``.
"""

import abc
from typing import Any, Dict, Iterator, Optional, Tuple

import torch


class SimpleOptimizer(abc.ABC):
    """
    Per-tensor update rule with explicit, immutable state.

    Implementations never mutate a state they were handed: every call returns a
    fresh state value, so a state held by a registry or a record stays valid.
    """

    @abc.abstractmethod
    def step(self, lr: float, tensor: torch.Tensor, grad: torch.Tensor,
             state: Optional[Any] = None) -> Tuple[torch.Tensor, Optional[Any]]:
        """
        Compute the updated tensor.

        Args:
            lr: Learning rate for this step
            tensor: Current parameter value
            grad: Gradient of the loss with respect to ``tensor``
            state: State returned by the previous step, or None on the first step

        Returns:
            Tuple of (updated tensor, new state)
        """

    @abc.abstractmethod
    def to_device(self, state: Any, device: torch.device,
                  dtype: Optional[torch.dtype] = None) -> Any:
        """
        Return a copy of ``state`` with every tensor moved to ``device``.

        When ``dtype`` is given, floating tensors are cast to it as well.
        """

    @abc.abstractmethod
    def state_to_record(self, state: Any) -> Dict[str, Any]:
        """Convert a state into a nested dict of plain values and tensors."""

    @abc.abstractmethod
    def state_from_record(self, record: Dict[str, Any]) -> Any:
        """Inverse of :meth:`state_to_record`."""


class Optimizer(abc.ABC):
    """Updates every parameter of a module from a set of gradients."""

    @abc.abstractmethod
    def step(self, lr: float, module: torch.nn.Module,
             grads: "GradientsParams") -> torch.nn.Module:
        """Apply one update and return the module."""

    @abc.abstractmethod
    def to_record(self) -> Dict[str, Dict[str, Any]]:
        """Snapshot the optimizer state."""

    @abc.abstractmethod
    def load_record(self, record: Dict[str, Dict[str, Any]]) -> "Optimizer":
        """Replace the optimizer state with ``record``."""


class GradientsParams:
    """
    Gradients keyed by parameter identity.

    A parameter missing from the container is not updated on the next step.

    Example:
        >>> loss.backward()
        >>> grads = GradientsParams.from_module(model)
        >>> model = optimizer.step(1e-2, model, grads)
    """

    def __init__(self, grads: Optional[Dict[str, torch.Tensor]] = None):
        self._grads: Dict[str, torch.Tensor] = dict(grads) if grads else {}

    @classmethod
    def from_module(cls, module: torch.nn.Module) -> "GradientsParams":
        """Collect the ``.grad`` of every parameter that has one."""
        grads = {}
        for param_id, param in module.named_parameters():
            if param.grad is not None:
                grads[param_id] = param.grad.detach().clone()
        return cls(grads)

    def get(self, param_id: str) -> Optional[torch.Tensor]:
        return self._grads.get(param_id)

    def remove(self, param_id: str) -> Optional[torch.Tensor]:
        return self._grads.pop(param_id, None)

    def register(self, param_id: str, grad: torch.Tensor) -> None:
        self._grads[param_id] = grad

    def is_empty(self) -> bool:
        return not self._grads

    def keys(self):
        return self._grads.keys()

    def __len__(self) -> int:
        return len(self._grads)

    def __contains__(self, param_id: object) -> bool:
        return param_id in self._grads

    def __iter__(self) -> Iterator[str]:
        return iter(self._grads)
