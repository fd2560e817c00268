"""
Sweep epsilon values of the targeted FGSM attack over a directory of images.

Usage:
    python scripts/evaluate.py --image-dir samples/
    python scripts/evaluate.py --image-dir samples/ --epsilons 1 2 5 10 --target-class 883
    python scripts/evaluate.py --image-dir samples/ --output results.json --no-mlflow
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path

import mlflow

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fgsm_demo.config import load_config
from fgsm_demo.models.classifier import load_pretrained, resolve_device
from fgsm_demo.utils.data import load_image
from fgsm_demo.utils.metrics import evaluate_targeted_attack

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".bmp", ".webp"}


def main():
    parser = argparse.ArgumentParser(description="Evaluate the targeted FGSM attack")
    parser.add_argument("--image-dir", type=str, required=True, help="Directory with input images")
    parser.add_argument("--epsilons", type=float, nargs="+", default=None, help="Epsilons to evaluate")
    parser.add_argument("--target-class", type=int, default=None, help="Override target class index")
    parser.add_argument("--config", type=str, default=None, help="Config file")
    parser.add_argument("--output", type=str, default=None, help="Save results to JSON")
    parser.add_argument("--no-mlflow", action="store_true", help="Skip MLflow tracking")
    args = parser.parse_args()

    config = load_config(args.config)
    epsilons = args.epsilons or config["evaluation"]["epsilons"]
    target_class = args.target_class if args.target_class is not None else config["attack"]["target_class"]

    device = resolve_device(config["model"]["device"])
    print(f"Using device: {device}")

    classifier = load_pretrained(
        architecture=config["model"]["architecture"],
        weights=config["model"]["weights"],
        device=device,
    )

    paths = sorted(p for p in Path(args.image_dir).iterdir() if p.suffix.lower() in IMAGE_SUFFIXES)
    if not paths:
        parser.error(f"No images found in {args.image_dir}")
    images = [(p.name, load_image(p, max_side=config["image"]["max_side"])) for p in paths]
    print(f"Loaded {len(images)} images, target: {classifier.class_names[target_class]}")

    if not args.no_mlflow:
        mlflow.set_tracking_uri(config["mlflow"]["tracking_uri"])
        mlflow.set_experiment(config["mlflow"]["experiment_name"])

    results = {}
    for epsilon in epsilons:
        metrics = evaluate_targeted_attack(classifier, images, target_class, epsilon)
        results[str(epsilon)] = metrics

        if not args.no_mlflow:
            with mlflow.start_run(run_name=f"targeted_fgsm_eps_{epsilon}"):
                mlflow.log_params({
                    "architecture": config["model"]["architecture"],
                    "target_class": target_class,
                    "epsilon": epsilon,
                    "num_images": len(images),
                })
                mlflow.log_metrics(metrics)

    print("\n" + "=" * 50)
    print("RESULTS")
    print("=" * 50)
    for epsilon, metrics in results.items():
        print(
            f"  eps={epsilon}: target success {metrics['target_success_rate']:.1%}, "
            f"flip rate {metrics['flip_rate']:.1%}, mean L∞ {metrics['mean_linf_norm']:.2f}"
        )

    if args.output:
        with open(args.output, "w") as f:
            json.dump({"target_class": target_class, "results": results}, f, indent=2)
        print(f"\nResults saved to: {args.output}")


if __name__ == "__main__":
    main()
