"""
FastAPI backend for the targeted FGSM demo.

Endpoints:
- POST /predict: Top-k predictions for an uploaded image
- POST /attack: Targeted FGSM attack, predictions before/after + visualization
- GET /health: Health check

Run locally: uvicorn fgsm_demo.api.main:app
"""

import logging

from fastapi import FastAPI, File, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from fgsm_demo.attacks.fgsm import InvalidArgumentError
from fgsm_demo.config import load_config
from fgsm_demo.demo import format_prediction, run_attack
from fgsm_demo.models.classifier import Prediction, load_pretrained, resolve_device
from fgsm_demo.utils.data import amplify_perturbation, load_image, tensor_to_b64

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Targeted FGSM Demo",
    description="Push a pretrained ImageNet classifier towards a chosen class with one signed-gradient step",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Global State ---
config = load_config()
classifier = None


def get_classifier():
    """Load the model on first use."""
    global classifier
    if classifier is None:
        model_config = config["model"]
        classifier = load_pretrained(
            architecture=model_config["architecture"],
            weights=model_config["weights"],
            device=resolve_device(model_config["device"]),
        )
    return classifier


# --- Schemas ---
class PredictionResult(BaseModel):
    class_name: str
    class_index: int
    probability: float
    label: str


class AttackResult(BaseModel):
    target_class: int
    target_name: str
    epsilon: float
    original: list[PredictionResult]
    adversarial: list[PredictionResult]
    target_hit: bool
    adversarial_image_b64: str  # Base64 encoded PNG
    perturbation_image_b64: str  # Amplified perturbation visualization
    l2_norm: float
    linf_norm: float


# --- Helpers ---
def to_result(prediction: Prediction) -> PredictionResult:
    return PredictionResult(
        class_name=prediction.class_name,
        class_index=prediction.class_index,
        probability=prediction.probability,
        label=format_prediction(prediction),
    )


async def read_image(file: UploadFile):
    image_bytes = await file.read()
    try:
        return load_image(image_bytes, max_side=config["image"]["max_side"])
    except OSError as e:
        raise HTTPException(status_code=400, detail="Could not decode image") from e


# --- Endpoints ---
@app.get("/health")
async def health():
    return {
        "status": "ok",
        "device": str(classifier.device) if classifier is not None else None,
        "model_loaded": classifier is not None,
    }


@app.post("/predict")
async def predict(file: UploadFile = File(...), top_k: int | None = Query(None, ge=1)):
    """Classify a clean image."""
    image = await read_image(file)
    model = get_classifier()
    if top_k is None:
        top_k = config["classify"]["top_k"]
    predictions = model.classify(image, top_k=top_k)
    return {"predictions": [to_result(p).model_dump() for p in predictions]}


@app.post("/attack", response_model=AttackResult)
async def attack(
    file: UploadFile = File(...),
    target_class: int | None = None,
    epsilon: float | None = None,
):
    """Apply the targeted FGSM attack and compare predictions."""
    image = await read_image(file)
    model = get_classifier()

    if target_class is None:
        target_class = config["attack"]["target_class"]
    if epsilon is None:
        epsilon = config["attack"]["epsilon"]

    try:
        report = run_attack(
            model, image, target_class, epsilon, top_k=config["classify"]["top_k"]
        )
    except InvalidArgumentError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    return AttackResult(
        target_class=target_class,
        target_name=model.class_names[target_class],
        epsilon=epsilon,
        original=[to_result(p) for p in report.original_predictions],
        adversarial=[to_result(p) for p in report.adversarial_predictions],
        target_hit=report.target_hit,
        adversarial_image_b64=tensor_to_b64(report.adversarial),
        perturbation_image_b64=tensor_to_b64(amplify_perturbation(report.adversarial - image)),
        l2_norm=report.l2_norm,
        linf_norm=report.linf_norm,
    )
