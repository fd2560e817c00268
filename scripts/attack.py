"""
Run the targeted FGSM attack on a single image.

Usage:
    python scripts/attack.py --image flower.jpg
    python scripts/attack.py --image flower.jpg --target-class 883 --epsilon 5.0
    python scripts/attack.py --image flower.jpg --output-image adversarial.png --output result.json
"""

import argparse
import json
import logging
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fgsm_demo.config import load_config
from fgsm_demo.demo import format_prediction, run_attack
from fgsm_demo.models.classifier import load_pretrained, resolve_device
from fgsm_demo.utils.data import load_image, tensor_to_pil

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


def main():
    parser = argparse.ArgumentParser(description="Targeted FGSM attack on one image")
    parser.add_argument("--image", type=str, required=True, help="Path to the input image")
    parser.add_argument("--target-class", type=int, default=None, help="Override target class index")
    parser.add_argument("--epsilon", type=float, default=None, help="Override perturbation step size")
    parser.add_argument("--config", type=str, default=None, help="Config file")
    parser.add_argument("--output-image", type=str, default=None, help="Save the adversarial image")
    parser.add_argument("--output", type=str, default=None, help="Save results to JSON")
    args = parser.parse_args()

    config = load_config(args.config)
    target_class = args.target_class if args.target_class is not None else config["attack"]["target_class"]
    epsilon = args.epsilon if args.epsilon is not None else config["attack"]["epsilon"]

    device = resolve_device(config["model"]["device"])
    print(f"Using device: {device}")

    classifier = load_pretrained(
        architecture=config["model"]["architecture"],
        weights=config["model"]["weights"],
        device=device,
    )
    image = load_image(args.image, max_side=config["image"]["max_side"])

    report = run_attack(
        classifier, image, target_class, epsilon, top_k=config["classify"]["top_k"]
    )

    print("\n" + "=" * 50)
    print("RESULTS")
    print("=" * 50)
    print(f"  Target:      {classifier.class_names[target_class]} ({target_class})")
    print(f"  Epsilon:     {epsilon}")
    print(f"  Original:    {format_prediction(report.original_predictions[0])}")
    print(f"  Adversarial: {format_prediction(report.adversarial_predictions[0])}")
    print(f"  Target hit:  {report.target_hit}")
    print(f"  L2 norm:     {report.l2_norm:.4f}")
    print(f"  L∞ norm:     {report.linf_norm:.4f}")
    if report.leaked_bytes is not None:
        print(f"  Memory leakage: {report.leaked_bytes} bytes")

    if args.output_image:
        tensor_to_pil(report.adversarial).save(args.output_image)
        print(f"\nAdversarial image saved to: {args.output_image}")

    if args.output:
        results = {
            "image": args.image,
            "target_class": target_class,
            "epsilon": epsilon,
            "original": [vars(p) for p in report.original_predictions],
            "adversarial": [vars(p) for p in report.adversarial_predictions],
            "target_hit": report.target_hit,
            "l2_norm": report.l2_norm,
            "linf_norm": report.linf_norm,
        }
        with open(args.output, "w") as f:
            json.dump(results, f, indent=2)
        print(f"Results saved to: {args.output}")


if __name__ == "__main__":
    main()
