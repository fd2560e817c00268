"""Perturbation metrics and batch evaluation of the targeted attack."""

from typing import Iterable

import torch
from tqdm import tqdm

from fgsm_demo.attacks.fgsm import PerturbationEngine


def perturbation_norms(original: torch.Tensor, adversarial: torch.Tensor) -> dict[str, float]:
    """L2 and L∞ norm of the change actually applied to the image."""
    perturbation = adversarial.detach().float() - original.detach().float()
    return {
        "l2_norm": round(perturbation.flatten().norm(2).item(), 6),
        "linf_norm": round(perturbation.abs().max().item(), 6) if perturbation.numel() else 0.0,
    }


def memory_in_use(device: torch.device | str) -> int | None:
    """Bytes held by live tensors on ``device``, or None if it cannot tell."""
    device = torch.device(device)
    if device.type == "cuda":
        return torch.cuda.memory_allocated(device)
    return None


def evaluate_targeted_attack(
    classifier,
    images: Iterable[tuple[str, torch.Tensor]],
    target_class: int,
    epsilon: float,
    engine: PerturbationEngine | None = None,
) -> dict[str, float]:
    """
    Run the targeted attack over a collection of named images.

    Args:
        classifier: Classifier exposing ``infer``, ``num_classes``, ``in_channels``
        images: (name, (H, W, C) tensor) pairs
        target_class: Class the attack pushes towards
        epsilon: Perturbation step size
        engine: Engine to use, a default torch-autograd one if omitted

    Returns:
        Dict with target success rate, top-1 flip rate and mean norms
    """
    engine = engine or PerturbationEngine()
    total = 0
    hits = 0
    flips = 0
    l2_sum = 0.0
    linf_sum = 0.0

    for _, image in tqdm(images, desc=f"Targeted FGSM (eps={epsilon})"):
        adversarial = engine.generate(classifier, image, target_class, epsilon)
        with torch.no_grad():
            clean_pred = classifier.infer(image).argmax().item()
            adv_pred = classifier.infer(adversarial).argmax().item()

        norms = perturbation_norms(image, adversarial)
        total += 1
        hits += int(adv_pred == target_class)
        flips += int(adv_pred != clean_pred)
        l2_sum += norms["l2_norm"]
        linf_sum += norms["linf_norm"]

    if total == 0:
        return {"target_success_rate": 0.0, "flip_rate": 0.0, "mean_l2_norm": 0.0,
                "mean_linf_norm": 0.0, "total": 0}

    return {
        "target_success_rate": hits / total,
        "flip_rate": flips / total,
        "mean_l2_norm": l2_sum / total,
        "mean_linf_norm": linf_sum / total,
        "total": total,
    }
