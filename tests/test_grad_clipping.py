"""
Unit tests for per-tensor gradient clipping.
"""

import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import torch
import pytest
from gradpipe import GradientClippingConfig


class TestClipByValue:

    def test_clamps_elements(self):
        """Elements outside [-t, t] are clamped, others untouched."""
        clipping = GradientClippingConfig.by_value(0.5).init()
        grad = torch.tensor([[-2.0, 0.1], [0.5, 3.0]])

        clipped = clipping.clip_gradient(grad)

        assert torch.equal(clipped, torch.tensor([[-0.5, 0.1], [0.5, 0.5]]))
        assert grad[1, 1] == 3.0


class TestClipByNorm:

    def test_rescales_large_gradient(self):
        """Gradients above the threshold are rescaled to it."""
        clipping = GradientClippingConfig.by_norm(2.0).init()

        clipped = clipping.clip_gradient(torch.tensor([6.0, 8.0]))

        assert torch.allclose(clipped.norm(), torch.tensor(2.0), atol=1e-5)
        assert torch.allclose(clipped / clipped.norm(), torch.tensor([0.6, 0.8]))

    def test_small_gradient_unchanged(self):
        """Gradients within the threshold pass through."""
        clipping = GradientClippingConfig.by_norm(10.0).init()
        grad = torch.tensor([1.0, 2.0, 2.0])

        assert torch.equal(clipping.clip_gradient(grad), grad)


class TestConfigValidation:

    def test_requires_exactly_one_mode(self):
        """Neither or both modes raise errors."""
        with pytest.raises(ValueError):
            GradientClippingConfig()
        with pytest.raises(ValueError):
            GradientClippingConfig(value=1.0, norm=1.0)

    @pytest.mark.parametrize("threshold", [0.0, -1.0])
    def test_threshold_must_be_positive(self, threshold):
        """Non-positive thresholds raise errors."""
        with pytest.raises(ValueError):
            GradientClippingConfig.by_value(threshold)
        with pytest.raises(ValueError):
            GradientClippingConfig.by_norm(threshold)


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
