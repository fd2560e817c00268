"""
The attack workflow: classify original, generate adversarial, classify again.

Every step waits for the previous one's result; nothing runs concurrently.
"""

import logging
import math
from dataclasses import dataclass

import torch

from fgsm_demo.attacks.fgsm import PerturbationEngine
from fgsm_demo.models.classifier import Prediction
from fgsm_demo.utils.metrics import memory_in_use, perturbation_norms

logger = logging.getLogger(__name__)


@dataclass
class AttackReport:
    original_predictions: list[Prediction]
    adversarial_predictions: list[Prediction]
    adversarial: torch.Tensor
    target_class: int
    epsilon: float
    l2_norm: float
    linf_norm: float
    target_hit: bool
    leaked_bytes: int | None = None


def format_prediction(prediction: Prediction) -> str:
    """``"className (p)"`` with p rounded half up to two decimals, no trailing zeros."""
    probability = math.floor(prediction.probability * 100 + 0.5) / 100
    return f"{prediction.class_name} ({probability:g})"


def run_attack(
    classifier,
    image: torch.Tensor,
    target_class: int,
    epsilon: float,
    top_k: int = 3,
    engine: PerturbationEngine | None = None,
) -> AttackReport:
    """
    Classify ``image``, attack it towards ``target_class`` and classify the result.

    Raises:
        InvalidArgumentError: Propagated from the engine for bad arguments
    """
    engine = engine or PerturbationEngine()
    device = getattr(classifier, "device", image.device)
    initial_memory = memory_in_use(device)

    original_predictions = classifier.classify(image, top_k=top_k)
    adversarial = engine.generate(classifier, image, target_class, epsilon)
    adversarial_predictions = classifier.classify(adversarial, top_k=top_k)

    norms = perturbation_norms(image, adversarial)
    target_name = classifier.class_names[target_class]
    report = AttackReport(
        original_predictions=original_predictions,
        adversarial_predictions=adversarial_predictions,
        adversarial=adversarial.cpu(),
        target_class=target_class,
        epsilon=epsilon,
        l2_norm=norms["l2_norm"],
        linf_norm=norms["linf_norm"],
        target_hit=adversarial_predictions[0].class_index == target_class,
    )
    del adversarial

    logger.info(
        "Original: %s -> adversarial: %s (target %s)",
        format_prediction(original_predictions[0]),
        format_prediction(adversarial_predictions[0]),
        target_name,
    )

    if initial_memory is not None:
        # report.adversarial was moved to the CPU, so anything left is leaked
        report.leaked_bytes = memory_in_use(device) - initial_memory
        logger.info("Memory leakage: %d bytes", report.leaked_bytes)

    return report
