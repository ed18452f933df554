"""
Unit tests for the WeightDecay transform and its place in the AdaGrad pipeline.
"""

import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import torch
import torch.nn as nn
import pytest
from gradpipe import (
    AdaGradConfig,
    GradientsParams,
    ShapeMismatchError,
    WeightDecay,
    WeightDecayConfig,
    WeightDecayState,
)


class TestWeightDecayTransform:
    """Test the transform in isolation."""

    def test_first_step_passes_through(self):
        """Without history the gradient is unchanged."""
        grad = torch.tensor([1.0, -1.0, 2.0])
        decayed, state = WeightDecay(WeightDecayConfig(penalty=0.1)).transform(grad)

        assert torch.equal(decayed, grad)
        assert torch.equal(state.grad_last_step, grad)

    def test_second_step_adds_penalized_history(self):
        """Later steps add penalty times the previous raw gradient."""
        transform = WeightDecay(WeightDecayConfig(penalty=0.1))
        g1 = torch.tensor([1.0, -1.0, 2.0])
        g2 = torch.tensor([0.5, 0.5, 0.5])

        _, state = transform.transform(g1)
        decayed, state = transform.transform(g2, state)

        assert torch.allclose(decayed, g2 + 0.1 * g1)
        assert torch.equal(state.grad_last_step, g2)

    def test_mismatched_state_raises(self):
        """A stored gradient with another shape is rejected."""
        transform = WeightDecay(WeightDecayConfig(penalty=0.1))
        state = WeightDecayState(torch.ones(2, 2))

        with pytest.raises(ShapeMismatchError, match="weight decay state"):
            transform.transform(torch.ones(4), state)

    def test_state_does_not_alias_gradient(self):
        """Zeroing the incoming gradient in place leaves the saved gradient intact."""
        transform = WeightDecay(WeightDecayConfig(penalty=0.1))
        grad = torch.tensor([1.0, -1.0, 2.0])

        _, state = transform.transform(grad)
        grad.zero_()

        assert torch.equal(state.grad_last_step, torch.tensor([1.0, -1.0, 2.0]))

    def test_negative_penalty_rejected(self):
        """Invalid configuration fails at construction."""
        with pytest.raises(ValueError):
            WeightDecayConfig(penalty=-0.1)


class TestComposition:
    """Test how weight decay composes with the LR decay transform."""

    def test_zero_penalty_matches_disabled_weight_decay(self, seed):
        """An identity weight decay changes nothing but the state layout."""
        without = AdaGradConfig(lr_decay=0.1, epsilon=1e-8).build()
        identity = AdaGradConfig(
            lr_decay=0.1, epsilon=1e-8, weight_decay=WeightDecayConfig(penalty=0.0)
        ).build()

        tensor_a = tensor_b = torch.randn(3, 3)
        state_a = state_b = None
        for _ in range(5):
            grad = torch.randn(3, 3)
            tensor_a, state_a = without.step(0.01, tensor_a, grad, state_a)
            tensor_b, state_b = identity.step(0.01, tensor_b, grad, state_b)

        assert torch.allclose(tensor_a, tensor_b, atol=1e-7)
        assert torch.allclose(state_a.lr_decay_state.sum, state_b.lr_decay_state.sum)
        assert state_a.weight_decay_state is None
        assert state_b.weight_decay_state is not None

    def test_weight_decay_runs_before_lr_decay(self):
        """The accumulator sees the decayed gradient, not the raw one."""
        optim = AdaGradConfig(epsilon=1e-8, weight_decay=WeightDecayConfig(penalty=0.5)).build()
        g1 = torch.tensor([2.0])
        g2 = torch.tensor([1.0])

        _, state = optim.step(0.1, torch.zeros(1), g1)
        _, state = optim.step(0.1, torch.zeros(1), g2, state)

        # Decayed second gradient: 1 + 0.5 * 2 = 2
        assert torch.allclose(state.lr_decay_state.sum, torch.tensor([4.0 + 4.0]))
        assert torch.equal(state.weight_decay_state.grad_last_step, g2)

    @pytest.mark.parametrize("from_module", [True, False])
    def test_zero_grad_keeps_saved_gradient(self, seed, from_module):
        """model.zero_grad(set_to_none=False) does not reach into optimizer state."""
        model = nn.Linear(3, 1)
        optimizer = AdaGradConfig(weight_decay=WeightDecayConfig(penalty=0.5)).init()
        model(torch.randn(4, 3)).sum().backward()
        if from_module:
            grads = GradientsParams.from_module(model)
        else:
            grads = {name: p.grad for name, p in model.named_parameters()}

        optimizer.step(0.1, model, grads)
        saved = optimizer.state('bias').weight_decay_state.grad_last_step.clone()
        model.zero_grad(set_to_none=False)

        assert torch.all(model.bias.grad == 0)
        assert torch.equal(optimizer.state('bias').weight_decay_state.grad_last_step, saved)
        assert torch.equal(saved, torch.tensor([4.0]))


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
