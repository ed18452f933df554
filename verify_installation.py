#!/usr/bin/env python3
"""
Quick verification script to test gradpipe installation and basic functionality.
"""

import sys
import tempfile
import torch
import torch.nn as nn

# Test import
try:
    from gradpipe import AdaGradConfig, BinFileRecorder, GradientsParams
    print("✅ gradpipe imported successfully")
except ImportError as e:
    print(f"❌ Failed to import gradpipe: {e}")
    sys.exit(1)

# Test basic initialization
try:
    model = nn.Linear(10, 2)
    optimizer = AdaGradConfig(lr_decay=0.01).init()
    print("✅ AdaGrad optimizer initialized")
except Exception as e:
    print(f"❌ Failed to initialize optimizer: {e}")
    sys.exit(1)

# Test basic training step
try:
    x = torch.randn(4, 10)
    y = torch.randint(0, 2, (4,))
    criterion = nn.CrossEntropyLoss()

    model.zero_grad()
    loss = criterion(model(x), y)
    loss.backward()
    model = optimizer.step(1e-2, model, GradientsParams.from_module(model))
    print(f"✅ Training step completed successfully ({len(optimizer)} parameter states)")
except Exception as e:
    print(f"❌ Training step failed: {e}")
    sys.exit(1)

# Test record save/load
try:
    with tempfile.TemporaryDirectory() as tmp:
        recorder = BinFileRecorder()
        path = recorder.record(optimizer.to_record(), f"{tmp}/optim")
        new_optimizer = AdaGradConfig(lr_decay=0.01).init().load_record(recorder.load(path))
    assert len(new_optimizer) == len(optimizer)
    print("✅ Record save/load works")
except Exception as e:
    print(f"❌ Record failed: {e}")
    sys.exit(1)

print("\n" + "="*50)
print("All basic functionality tests passed! ✨")
print("="*50)
print("\nTo run full test suite: pytest tests/ -v")
print("To install package: pip install -e .")
