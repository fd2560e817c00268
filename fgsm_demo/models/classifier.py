"""
Pretrained ImageNet classifier working on (H, W, C) pixel tensors.

``infer`` stays differentiable so the attack can take gradients through the
preprocessing (resize + normalization) all the way back to the raw pixels.
"""

import logging
from dataclasses import dataclass

import torch
import torch.nn as nn
import torch.nn.functional as F
from torchvision import models

from fgsm_demo.utils.data import to_image_tensor

logger = logging.getLogger(__name__)

IMAGENET_MEAN = (0.485, 0.456, 0.406)
IMAGENET_STD = (0.229, 0.224, 0.225)


@dataclass(frozen=True)
class Prediction:
    class_name: str
    probability: float
    class_index: int


def resolve_device(name: str = "auto") -> torch.device:
    """Map ``auto`` to the best available device."""
    if name != "auto":
        return torch.device(name)
    return torch.device(
        "cuda" if torch.cuda.is_available() else "mps" if torch.backends.mps.is_available() else "cpu"
    )


class ImageClassifier:
    """
    Wrap a logits network with pixel-space preprocessing and class names.

    Args:
        network: Module mapping a normalized (N, C, h, w) batch to (N, num_classes) logits
        class_names: Human readable name per class index
        input_size: Spatial size the network expects, images are resized to it
        mean: Per-channel normalization mean (for [0, 1] inputs)
        std: Per-channel normalization std
        device: Device the network lives on
    """

    def __init__(
        self,
        network: nn.Module,
        class_names: list[str],
        input_size: tuple[int, int] = (224, 224),
        mean: tuple[float, ...] = IMAGENET_MEAN,
        std: tuple[float, ...] = IMAGENET_STD,
        device: torch.device | str = "cpu",
    ):
        if len(mean) != len(std):
            raise ValueError("mean and std must have one entry per channel")
        self.device = torch.device(device)
        self.network = network.to(self.device).eval()
        self.class_names = list(class_names)
        self.input_size = tuple(input_size)
        self.mean = torch.tensor(mean, device=self.device).view(1, -1, 1, 1)
        self.std = torch.tensor(std, device=self.device).view(1, -1, 1, 1)

    @property
    def num_classes(self) -> int:
        return len(self.class_names)

    @property
    def in_channels(self) -> int:
        return self.mean.shape[1]

    def preprocess(self, image: torch.Tensor) -> torch.Tensor:
        """(H, W, C) in [0, 255] -> normalized (1, C, h, w) batch."""
        x = image.to(self.device, torch.float32).permute(2, 0, 1).unsqueeze(0) / 255.0
        if tuple(x.shape[-2:]) != self.input_size:
            x = F.interpolate(x, size=self.input_size, mode="bilinear", align_corners=False)
        return (x - self.mean) / self.std

    def infer(self, image: torch.Tensor) -> torch.Tensor:
        """Logits of shape (num_classes,). Keeps the autograd graph."""
        return self.network(self.preprocess(image))[0]

    def classify(self, image_like, top_k: int = 3) -> list[Prediction]:
        """Top-k predictions, most probable first."""
        image = to_image_tensor(image_like)
        with torch.no_grad():
            probs = F.softmax(self.infer(image), dim=0)
            conf, idx = probs.topk(min(top_k, self.num_classes))
        return [
            Prediction(class_name=self.class_names[i], probability=round(p, 4), class_index=i)
            for p, i in zip(conf.tolist(), idx.tolist())
        ]


def load_pretrained(
    architecture: str = "mobilenet_v2",
    weights: str = "DEFAULT",
    device: torch.device | str = "cpu",
) -> ImageClassifier:
    """Build a torchvision ImageNet model with pretrained weights."""
    weights_obj = models.get_model_weights(architecture)[weights]
    network = models.get_model(architecture, weights=weights_obj)
    transform = weights_obj.transforms()

    classifier = ImageClassifier(
        network,
        class_names=weights_obj.meta["categories"],
        input_size=(transform.crop_size[0], transform.crop_size[0]),
        mean=tuple(transform.mean),
        std=tuple(transform.std),
        device=device,
    )
    logger.info(
        "Loaded %s (%s) on %s, %d classes",
        architecture, weights_obj, classifier.device, classifier.num_classes,
    )
    return classifier
