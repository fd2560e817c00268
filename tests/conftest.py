"""Shared fixtures: tiny in-memory classifiers standing in for the pretrained model."""

import os
import sys

import pytest
import torch
import torch.nn as nn

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fgsm_demo.models.classifier import ImageClassifier

CLASS_NAMES = ["daisy", "rose", "tulip", "vase", "pot"]


class TinyNet(nn.Module):
    def __init__(self, num_classes: int = len(CLASS_NAMES)):
        super().__init__()
        self.pool = nn.AdaptiveAvgPool2d(4)
        self.fc = nn.Linear(3 * 4 * 4, num_classes)

    def forward(self, x):
        return self.fc(self.pool(x).flatten(1))


class ConstantClassifier:
    """Returns the same logits whatever the input, so every gradient is zero."""

    num_classes = 4
    in_channels = 3

    def __init__(self):
        self.logits = torch.tensor([2.0, 0.5, -1.0, 0.0])

    def infer(self, image):
        return self.logits


class FixedGradient:
    """Differentiator returning a constant gradient."""

    def __init__(self, value: float):
        self.value = value

    def gradient(self, fn):
        return lambda x: torch.full_like(x, self.value)


@pytest.fixture
def classifier():
    torch.manual_seed(0)
    return ImageClassifier(TinyNet(), CLASS_NAMES, input_size=(8, 8))


@pytest.fixture
def image():
    """8x8 RGB image with integer pixel values away from the clip bounds."""
    torch.manual_seed(1)
    return torch.randint(20, 236, (8, 8, 3)).float()
