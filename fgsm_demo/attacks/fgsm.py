"""
Targeted Fast Gradient Sign Method (FGSM) - Goodfellow et al., 2014

A single gradient-descent step on the cross-entropy loss against a chosen
target label. Subtracting the signed gradient nudges the classifier's
prediction towards the target class:

    x_adv = clip(x - ε * sign(∇_x L(θ, x, y_target)), 0, 255)

Images are (H, W, C) tensors in pixel space [0, 255]. This is a one-step
attack, so it is weak and often fails to reach the target class.
"""

import logging
import math
from typing import Callable, Protocol

import torch
import torch.nn.functional as F

logger = logging.getLogger(__name__)

PIXEL_MIN = 0.0
PIXEL_MAX = 255.0


class InvalidArgumentError(ValueError):
    """Raised for a bad image shape, target class or epsilon."""


class Classifier(Protocol):
    num_classes: int
    in_channels: int

    def infer(self, image: torch.Tensor) -> torch.Tensor: ...


class Differentiator(Protocol):
    def gradient(
        self, fn: Callable[[torch.Tensor], torch.Tensor]
    ) -> Callable[[torch.Tensor], torch.Tensor]: ...


class TorchAutograd:
    """Gradient of a scalar function w.r.t. its tensor input via torch.autograd."""

    def gradient(
        self, fn: Callable[[torch.Tensor], torch.Tensor]
    ) -> Callable[[torch.Tensor], torch.Tensor]:
        def calculate_gradient(x: torch.Tensor) -> torch.Tensor:
            x = x.clone().detach().requires_grad_(True)
            with torch.enable_grad():
                value = fn(x)
                if not value.requires_grad:
                    # fn ignores its input entirely
                    return torch.zeros_like(x)
                (grad,) = torch.autograd.grad(value, x, allow_unused=True)
            if grad is None:
                return torch.zeros_like(x)
            return grad.detach()

        return calculate_gradient


class TargetedCrossEntropy:
    """Softmax cross-entropy of the classifier's logits against a one-hot target."""

    def __init__(self, classifier: Classifier, target_class: int, num_classes: int):
        self.classifier = classifier
        self.target_class = target_class
        self.num_classes = num_classes
        self.target_one_hot: torch.Tensor | None = None

    def evaluate(self, image: torch.Tensor) -> torch.Tensor:
        logits = self.classifier.infer(image)
        if logits.dim() == 1:
            logits = logits.unsqueeze(0)
        if self.target_one_hot is None or self.target_one_hot.device != logits.device:
            self.target_one_hot = F.one_hot(
                torch.tensor([self.target_class], device=logits.device),
                num_classes=self.num_classes,
            ).to(logits.dtype)
        return F.cross_entropy(logits, self.target_one_hot)

    def release(self) -> None:
        self.target_one_hot = None


class IntermediateScope:
    """
    Holds intermediate tensors for the duration of a ``with`` block.

    All references are dropped on exit, also when the block raises. On CUDA
    the caching allocator is emptied as well so repeated attacks from a
    long-lived caller do not grow device memory.
    """

    def __init__(self, device: torch.device | str = "cpu"):
        self.device = torch.device(device)
        self._tensors: list[torch.Tensor] = []

    def keep(self, tensor: torch.Tensor) -> torch.Tensor:
        self._tensors.append(tensor)
        return tensor

    def __len__(self) -> int:
        return len(self._tensors)

    def __enter__(self) -> "IntermediateScope":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._tensors.clear()
        if self.device.type == "cuda":
            torch.cuda.empty_cache()


def signed_perturbation(gradient: torch.Tensor, epsilon: float) -> torch.Tensor:
    """Elementwise sign of the gradient scaled by epsilon: values in {-ε, 0, ε}."""
    return gradient.sign() * epsilon


def _check_arguments(
    classifier: Classifier,
    image: torch.Tensor,
    target_class: int,
    epsilon: float,
) -> None:
    num_classes = classifier.num_classes
    if isinstance(target_class, bool) or not isinstance(target_class, int):
        raise InvalidArgumentError(f"target_class must be an int, got {target_class!r}")
    if not 0 <= target_class < num_classes:
        raise InvalidArgumentError(
            f"target_class {target_class} out of range [0, {num_classes - 1}]"
        )
    if not math.isfinite(epsilon) or epsilon < 0:
        raise InvalidArgumentError(f"epsilon must be a finite value >= 0, got {epsilon}")
    if not isinstance(image, torch.Tensor) or image.dim() != 3:
        shape = tuple(image.shape) if isinstance(image, torch.Tensor) else type(image).__name__
        raise InvalidArgumentError(f"image must be an (H, W, C) tensor, got {shape}")
    height, width, channels = image.shape
    if height == 0 or width == 0:
        raise InvalidArgumentError(f"image has an empty dimension: {tuple(image.shape)}")
    if channels != classifier.in_channels:
        raise InvalidArgumentError(
            f"image has {channels} channels, classifier expects {classifier.in_channels}"
        )


class PerturbationEngine:
    """Produces targeted FGSM adversarial images for a given classifier."""

    def __init__(self, differentiator: Differentiator | None = None):
        self.differentiator = differentiator or TorchAutograd()

    def generate(
        self,
        classifier: Classifier,
        image: torch.Tensor,
        target_class: int,
        epsilon: float,
    ) -> torch.Tensor:
        """
        Generate an adversarial image pushed towards ``target_class``.

        Args:
            classifier: Object exposing ``num_classes``, ``in_channels`` and a
                differentiable ``infer(image) -> logits``
            image: Original image, shape (H, W, C), values in [0, 255]
            target_class: Class index the classifier should (mis)predict
            epsilon: Per-element step size, >= 0

        Returns:
            Adversarial image, shape (H, W, C), values in [0, 255]

        Raises:
            InvalidArgumentError: On a bad target class, epsilon or image shape
        """
        _check_arguments(classifier, image, target_class, epsilon)
        if not image.is_floating_point():
            image = image.to(torch.float32)
        original = image.detach()

        loss = TargetedCrossEntropy(classifier, target_class, classifier.num_classes)
        calculate_gradient = self.differentiator.gradient(loss.evaluate)

        try:
            with IntermediateScope(getattr(classifier, "device", original.device)) as scope:
                gradient = scope.keep(calculate_gradient(original))
                perturbation = scope.keep(signed_perturbation(gradient, epsilon))
                with torch.no_grad():
                    adversarial = (original - perturbation).clamp(PIXEL_MIN, PIXEL_MAX)
                del gradient, perturbation
        finally:
            loss.release()

        logger.debug(
            "Targeted FGSM: target=%d epsilon=%.3f shape=%s",
            target_class, epsilon, tuple(original.shape),
        )
        return adversarial.detach()


def targeted_fgsm(
    classifier: Classifier,
    image: torch.Tensor,
    target_class: int,
    epsilon: float,
) -> torch.Tensor:
    """Shortcut for ``PerturbationEngine().generate(...)`` with torch autograd."""
    return PerturbationEngine().generate(classifier, image, target_class, epsilon)
