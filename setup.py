"""
gradpipe: Stateful gradient-transform optimizers for PyTorch modules

Composes per-tensor optimizers from stateful gradient transforms (weight decay,
adaptive learning-rate decay) and maps them over every parameter of a model,
keeping one serializable, device-movable state per parameter.

Key Features:
- AdaGrad with optional time decay, weight decay and gradient clipping
- Per-parameter state registry keyed by parameter name
- Record snapshots with torch and numpy file recorders
- Optional thread-pool parameter updates

Example:
    >>> from gradpipe import AdaGradConfig, GradientsParams
    >>> optimizer = AdaGradConfig(lr_decay=0.01).init()
    >>> model = optimizer.step(1e-2, model, GradientsParams.from_module(model))
"""

from setuptools import setup, find_packages
import os

# Read long description from README if it exists
long_description = ""
readme_path = os.path.join(os.path.dirname(__file__), "README.md")
if os.path.exists(readme_path):
    with open(readme_path, "r", encoding="utf-8") as f:
        long_description = f.read()
else:
    long_description = __doc__

setup(
    name="gradpipe",
    version="0.1.0",
    description="Stateful gradient-transform optimizers with per-parameter state for PyTorch",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "Intended Audience :: Developers",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "Topic :: Scientific/Engineering :: Mathematics",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.8",
    install_requires=[
        "torch>=2.0.0",
        "numpy>=1.20.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=3.0.0",
            "black>=22.0.0",
            "flake8>=4.0.0",
            "mypy>=0.950",
        ],
    },
    keywords="pytorch optimizer adagrad optimizer-state machine-learning deep-learning",
)
