"""Image loading and conversion utilities for (H, W, C) pixel tensors."""

import base64
import io
from pathlib import Path

import numpy as np
import torch
from PIL import Image


def pil_to_tensor(image: Image.Image) -> torch.Tensor:
    """PIL image -> float32 (H, W, 3) tensor with values in [0, 255]."""
    array = np.asarray(image.convert("RGB"), dtype=np.float32)
    return torch.from_numpy(array.copy())


def load_image(source: str | Path | bytes, max_side: int | None = None) -> torch.Tensor:
    """
    Decode an image file (or raw bytes) into an RGB pixel tensor.

    Images whose longer side exceeds ``max_side`` are downscaled first,
    keeping the aspect ratio.
    """
    if isinstance(source, bytes):
        image = Image.open(io.BytesIO(source))
    else:
        image = Image.open(source)
    image = image.convert("RGB")
    if max_side and max(image.size) > max_side:
        image.thumbnail((max_side, max_side))
    return pil_to_tensor(image)


def to_image_tensor(image_like) -> torch.Tensor:
    """Accept a tensor, numpy array, PIL image, path or bytes."""
    if isinstance(image_like, torch.Tensor):
        return image_like if image_like.is_floating_point() else image_like.float()
    if isinstance(image_like, np.ndarray):
        return torch.from_numpy(image_like.astype(np.float32))
    if isinstance(image_like, Image.Image):
        return pil_to_tensor(image_like)
    if isinstance(image_like, (str, Path, bytes)):
        return load_image(image_like)
    raise TypeError(f"Unsupported image type: {type(image_like).__name__}")


def tensor_to_pil(tensor: torch.Tensor, upscale: int = 1) -> Image.Image:
    """Convert an (H, W, C) tensor in [0, 255] to a displayable PIL image."""
    img = tensor.detach().cpu().round().clamp(0, 255).to(torch.uint8).numpy()
    pil_img = Image.fromarray(img)
    if upscale > 1:
        w, h = pil_img.size
        pil_img = pil_img.resize((w * upscale, h * upscale), Image.NEAREST)
    return pil_img


def tensor_to_b64(tensor: torch.Tensor) -> str:
    """Convert image tensor to base64 PNG string."""
    buf = io.BytesIO()
    tensor_to_pil(tensor).save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode()


def amplify_perturbation(perturbation: torch.Tensor) -> torch.Tensor:
    """Scale |perturbation| so its largest element maps to 255."""
    pert_vis = perturbation.abs()
    if pert_vis.max() > 0:
        pert_vis = pert_vis / pert_vis.max() * 255.0
    return pert_vis
