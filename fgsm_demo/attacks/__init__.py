"""
Adversarial attack implementations for the targeted FGSM demo.
"""

from fgsm_demo.attacks.fgsm import (
    InvalidArgumentError,
    IntermediateScope,
    PerturbationEngine,
    TargetedCrossEntropy,
    TorchAutograd,
    signed_perturbation,
    targeted_fgsm,
)
