"""
OptimizerAdaptor: runs a SimpleOptimizer over every parameter of a module.

The adaptor owns a registry mapping parameter identity (the dotted name from
``module.named_parameters()``) to that parameter's optimizer state. The module
owns the parameters; the adaptor is the only place where the two meet.

Per-parameter updates are independent, so they may be computed on a thread pool.
Nothing is written back until every update has finished: a step either updates
all parameters that received a gradient, together with their states, or none.

Usage Example:
    >>> optimizer = OptimizerAdaptor(AdaGradConfig().build())
    >>> for batch in dataloader:
    ...     loss = model(batch)
    ...     loss.backward()
    ...     model = optimizer.step(1e-2, model, GradientsParams.from_module(model))
    ...     model.zero_grad()
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union
import logging

import torch

from .errors import ShapeMismatchError
from .grad_clipping import GradientClipping
from .optimizer import GradientsParams, Optimizer, SimpleOptimizer


class OptimizerAdaptor(Optimizer):
    """
    Module-level optimizer built from a per-tensor update rule.

    Args:
        optim (SimpleOptimizer): Update rule applied to each parameter
        grad_clipping (GradientClipping, optional): Applied to each gradient once,
            right before the update rule. Default: None
        log_level (int, optional): Logging verbosity. 0=silent, 1=errors, 2=warnings,
            3=info. Default: 1
        num_workers (int, optional): Size of the thread pool used for per-parameter
            updates. 0 or 1 updates sequentially. Default: 0

    Raises:
        ShapeMismatchError: If a gradient, or a stored state, does not match its
            parameter's shape
    """

    def __init__(
        self,
        optim: SimpleOptimizer,
        grad_clipping: Optional[GradientClipping] = None,
        log_level: int = 1,
        num_workers: int = 0,
    ):
        if num_workers < 0:
            raise ValueError(f"Invalid num_workers: {num_workers}")

        self.optim = optim
        self.grad_clipping = grad_clipping
        self.num_workers = num_workers
        self.records: Dict[str, Any] = {}

        # Setup logging
        self.logger = logging.getLogger('gradpipe')
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter('[gradpipe] %(message)s'))
            self.logger.addHandler(handler)
        self.logger.setLevel(self._get_log_level(log_level))

        self._step_count = 0

    def _get_log_level(self, level: int) -> int:
        """
        Convert custom log level to Python logging level.

        Args:
            level: Custom level (0=silent, 1=error, 2=warning, 3=info)

        Returns:
            Python logging level constant
        """
        level_map = {
            0: logging.CRITICAL + 1,  # Silent
            1: logging.ERROR,
            2: logging.WARNING,
            3: logging.INFO,
        }
        return level_map.get(level, logging.WARNING)

    def _log(self, level: int, message: str) -> None:
        if level == 1:
            self.logger.error(message)
        elif level == 2:
            self.logger.warning(message)
        elif level == 3:
            self.logger.info(message)

    def with_grad_clipping(self, grad_clipping: GradientClipping) -> "OptimizerAdaptor":
        self.grad_clipping = grad_clipping
        return self

    def _step_param(
        self,
        lr: float,
        param_id: str,
        tensor: torch.Tensor,
        grad: torch.Tensor,
        state: Optional[Any],
    ) -> Tuple[torch.Tensor, Optional[Any]]:
        """
        Compute the update of one parameter without writing anything back.

        Args:
            lr: Learning rate
            param_id: Parameter identity, used for error messages
            tensor: Detached parameter value
            grad: Gradient for this parameter
            state: Prior state from the registry, or None

        Returns:
            Tuple of (updated tensor, new state)
        """
        if grad.shape != tensor.shape:
            self._log(1, f"Gradient for '{param_id}' has shape {tuple(grad.shape)}, "
                         f"parameter has {tuple(tensor.shape)}")
            raise ShapeMismatchError(tensor.shape, grad.shape, param_id=param_id)

        if self.grad_clipping is not None:
            grad = self.grad_clipping.clip_gradient(grad)

        # Registry states may live elsewhere, or at another precision, after a load_record
        if state is not None:
            state = self.optim.to_device(state, tensor.device, tensor.dtype)

        try:
            return self.optim.step(lr, tensor, grad, state)
        except ShapeMismatchError as err:
            self._log(1, f"Stored state for '{param_id}' does not fit the parameter: {err}")
            raise err.with_param_id(param_id) from err

    @torch.no_grad()
    def step(
        self,
        lr: float,
        module: torch.nn.Module,
        grads: Union[GradientsParams, Mapping[str, torch.Tensor]],
    ) -> torch.nn.Module:
        """
        Update every parameter of ``module`` that has a gradient in ``grads``.

        Parameters without a gradient keep their value, and their registry entry
        (if any) is left as it is.

        Args:
            lr: Learning rate for this step
            module: Module whose parameters are updated in place
            grads: Gradients keyed by parameter identity

        Returns:
            The updated module
        """
        if not isinstance(grads, GradientsParams):
            grads = GradientsParams(dict(grads))

        pending: List[Tuple[str, torch.nn.Parameter, torch.Tensor]] = []
        skipped = 0
        for param_id, param in module.named_parameters():
            grad = grads.get(param_id)
            if grad is None:
                skipped += 1
                continue
            pending.append((param_id, param, grad))

        if self.num_workers > 1 and len(pending) > 1:
            with ThreadPoolExecutor(max_workers=self.num_workers) as executor:
                futures = [
                    executor.submit(self._step_param, lr, param_id, param.detach(), grad,
                                    self.records.get(param_id))
                    for param_id, param, grad in pending
                ]
                results = [future.result() for future in futures]
        else:
            results = [
                self._step_param(lr, param_id, param.detach(), grad, self.records.get(param_id))
                for param_id, param, grad in pending
            ]

        for (param_id, param, _), (tensor, state) in zip(pending, results):
            param.copy_(tensor)
            if state is not None:
                self.records[param_id] = state

        self._step_count += 1
        self._log(3, f"Step {self._step_count} - updated {len(pending)} parameters, "
                     f"skipped {skipped}")

        return module

    def state(self, param_id: str) -> Optional[Any]:
        """Return the stored state of one parameter, or None."""
        return self.records.get(param_id)

    def to_record(self) -> Dict[str, Dict[str, Any]]:
        """
        Snapshot the registry.

        Returns:
            dict: ``{param_id: state record}``, where each state record is the
            optimizer's nested dict form (see ``SimpleOptimizer.state_to_record``).
            Tensors are copies, so the snapshot is unaffected by later steps.
        """
        return {
            param_id: self.optim.state_to_record(state)
            for param_id, state in self.records.items()
        }

    def load_record(
        self,
        record: Dict[str, Dict[str, Any]],
        module: Optional[torch.nn.Module] = None,
    ) -> "OptimizerAdaptor":
        """
        Replace the registry with ``record``.

        The previous registry is discarded, not merged. Entries whose identity
        matches no parameter are kept but never consulted, unless ``module`` is
        given, in which case they are dropped.

        Args:
            record: Snapshot produced by :meth:`to_record`
            module (optional): Module the record will be used with; enables pruning

        Returns:
            self
        """
        records = {
            param_id: self.optim.state_from_record(state)
            for param_id, state in record.items()
        }

        if module is not None:
            live = {param_id for param_id, _ in module.named_parameters()}
            stale = [param_id for param_id in records if param_id not in live]
            for param_id in stale:
                del records[param_id]
            if stale:
                self._log(2, f"Pruned {len(stale)} record entries with no matching parameter: "
                             f"{', '.join(sorted(stale)[:5])}")

        self.records = records
        return self

    def to_device(self, device: Union[str, torch.device]) -> "OptimizerAdaptor":
        """
        Move every stored state to ``device``.

        Must not run concurrently with :meth:`step`.
        """
        device = torch.device(device)
        self.records = {
            param_id: self.optim.to_device(state, device)
            for param_id, state in self.records.items()
        }
        self._log(3, f"Moved {len(self.records)} parameter states to {device}")
        return self

    def __len__(self) -> int:
        return len(self.records)

    def __contains__(self, param_id: object) -> bool:
        return param_id in self.records
