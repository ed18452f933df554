"""
gradpipe: stateful gradient-transform optimizers for PyTorch modules.

A per-tensor update rule (``SimpleOptimizer``) is composed from stateful
gradient transforms, then lifted over every parameter of a module by
``OptimizerAdaptor``, which keeps one independently addressable state per
parameter and can snapshot, restore, and move that state between devices.

Example:
    >>> from gradpipe import AdaGradConfig, GradientsParams
    >>> optimizer = AdaGradConfig(lr_decay=0.01).init()
    >>> loss.backward()
    >>> model = optimizer.step(1e-2, model, GradientsParams.from_module(model))
"""

from .adagrad import AdaGrad, AdaGradConfig, AdaGradState, LRDecay, LRDecayState
from .adaptor import OptimizerAdaptor
from .decay import WeightDecay, WeightDecayConfig, WeightDecayState
from .errors import RecordError, ShapeMismatchError
from .grad_clipping import GradientClipping, GradientClippingConfig
from .optimizer import GradientsParams, Optimizer, SimpleOptimizer
from .record import (
    BinFileRecorder,
    DoublePrecisionSettings,
    FileRecorder,
    FullPrecisionSettings,
    HalfPrecisionSettings,
    NpzFileRecorder,
)

__version__ = "0.1.0"

__all__ = [
    "AdaGrad",
    "AdaGradConfig",
    "AdaGradState",
    "BinFileRecorder",
    "DoublePrecisionSettings",
    "FileRecorder",
    "FullPrecisionSettings",
    "GradientClipping",
    "GradientClippingConfig",
    "GradientsParams",
    "HalfPrecisionSettings",
    "LRDecay",
    "LRDecayState",
    "NpzFileRecorder",
    "Optimizer",
    "OptimizerAdaptor",
    "RecordError",
    "ShapeMismatchError",
    "SimpleOptimizer",
    "WeightDecay",
    "WeightDecayConfig",
    "WeightDecayState",
]
