"""
Pytest configuration and shared fixtures for gradpipe tests.
"""

import pytest
import torch
import torch.nn as nn
import random
import numpy as np


@pytest.fixture(scope="function")
def seed():
    """Set random seeds for reproducibility."""
    random.seed(42)
    np.random.seed(42)
    torch.manual_seed(42)
    if torch.cuda.is_available():
        torch.cuda.manual_seed_all(42)
    yield
    # Cleanup after test
    torch.manual_seed(torch.initial_seed())


@pytest.fixture(scope="function")
def device():
    """Provide device for testing (CPU by default, GPU if available)."""
    return torch.device("cuda" if torch.cuda.is_available() else "cpu")


class TwoLayerModel(nn.Module):
    """Two linear layers whose weights share a shape."""
    def __init__(self):
        super().__init__()
        self.fc1 = nn.Linear(4, 4)
        self.fc2 = nn.Linear(4, 4)

    def forward(self, x):
        return self.fc2(torch.relu(self.fc1(x)))


@pytest.fixture(scope="function")
def model(seed):
    """Provide a small model with same-shaped parameters."""
    return TwoLayerModel()
