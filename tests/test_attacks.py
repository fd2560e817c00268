"""Unit tests for the targeted FGSM attack."""

import pytest
import torch

from fgsm_demo.attacks import fgsm
from fgsm_demo.attacks.fgsm import (
    IntermediateScope,
    InvalidArgumentError,
    PerturbationEngine,
    TargetedCrossEntropy,
    TorchAutograd,
    signed_perturbation,
    targeted_fgsm,
)
from tests.conftest import ConstantClassifier, FixedGradient


class TestTargetedFGSM:
    def test_output_shape(self, classifier, image):
        adv = targeted_fgsm(classifier, image, target_class=3, epsilon=5.0)
        assert adv.shape == image.shape

    def test_output_range(self, classifier, image):
        adv = targeted_fgsm(classifier, image, target_class=3, epsilon=5.0)
        assert adv.min() >= 0.0
        assert adv.max() <= 255.0

    def test_output_range_large_epsilon(self, classifier, image):
        adv = targeted_fgsm(classifier, image, target_class=3, epsilon=1000.0)
        assert adv.min() >= 0.0
        assert adv.max() <= 255.0

    def test_perturbation_is_zero_or_epsilon(self, classifier, image):
        epsilon = 3.0
        adv = targeted_fgsm(classifier, image, target_class=0, epsilon=epsilon)
        diff = (adv - image).abs()
        assert torch.all((diff == 0) | (diff == epsilon))

    def test_perturbation_bound_after_clipping(self, classifier):
        torch.manual_seed(2)
        image = torch.rand(8, 8, 3) * 255
        epsilon = 7.5
        adv = targeted_fgsm(classifier, image, target_class=1, epsilon=epsilon)
        assert (adv - image).abs().max() <= epsilon + 1e-4

    def test_deterministic(self, classifier, image):
        adv_1 = targeted_fgsm(classifier, image, target_class=2, epsilon=5.0)
        adv_2 = targeted_fgsm(classifier, image, target_class=2, epsilon=5.0)
        assert torch.equal(adv_1, adv_2)

    def test_does_not_modify_input(self, classifier, image):
        before = image.clone()
        targeted_fgsm(classifier, image, target_class=2, epsilon=5.0)
        assert torch.equal(image, before)

    def test_zero_gradient_returns_original(self):
        image = torch.full((4, 4, 3), 128.0)
        adv = targeted_fgsm(ConstantClassifier(), image, target_class=0, epsilon=5.0)
        assert torch.equal(adv, image)

    def test_zero_epsilon_returns_clipped_original(self, classifier):
        image = torch.tensor([[[300.0, -5.0, 128.0]]]).expand(8, 8, 3).clone()
        adv = targeted_fgsm(classifier, image, target_class=0, epsilon=0.0)
        assert torch.equal(adv, image.clamp(0, 255))

    def test_clips_at_zero(self, classifier):
        engine = PerturbationEngine(FixedGradient(1.0))
        image = torch.full((8, 8, 3), 2.0)
        adv = engine.generate(classifier, image, target_class=0, epsilon=5.0)
        assert torch.all(adv == 0.0)

    def test_clips_at_255(self, classifier):
        engine = PerturbationEngine(FixedGradient(-0.25))
        image = torch.full((8, 8, 3), 254.0)
        adv = engine.generate(classifier, image, target_class=0, epsilon=5.0)
        assert torch.all(adv == 255.0)

    def test_step_lowers_targeted_loss(self, classifier, image):
        with torch.no_grad():
            target = classifier.infer(image).argmin().item()
        loss = TargetedCrossEntropy(classifier, target, classifier.num_classes)
        adv = targeted_fgsm(classifier, image, target_class=target, epsilon=0.5)
        with torch.no_grad():
            assert loss.evaluate(adv) < loss.evaluate(image)

    def test_integer_image_accepted(self, classifier, image):
        adv = targeted_fgsm(classifier, image.to(torch.uint8), target_class=0, epsilon=2.0)
        assert adv.dtype == torch.float32
        assert adv.shape == image.shape

    def test_model_parameters_get_no_grad(self, classifier, image):
        targeted_fgsm(classifier, image, target_class=0, epsilon=2.0)
        assert all(p.grad is None for p in classifier.network.parameters())


class TestInvalidArguments:
    @pytest.mark.parametrize("target_class", [-1, 5, 883])
    def test_target_class_out_of_range(self, classifier, image, target_class):
        with pytest.raises(InvalidArgumentError):
            targeted_fgsm(classifier, image, target_class=target_class, epsilon=1.0)

    @pytest.mark.parametrize("target_class", [1.0, "1", True])
    def test_target_class_not_int(self, classifier, image, target_class):
        with pytest.raises(InvalidArgumentError):
            targeted_fgsm(classifier, image, target_class=target_class, epsilon=1.0)

    @pytest.mark.parametrize("epsilon", [-0.1, float("nan"), float("inf")])
    def test_bad_epsilon(self, classifier, image, epsilon):
        with pytest.raises(InvalidArgumentError):
            targeted_fgsm(classifier, image, target_class=0, epsilon=epsilon)

    @pytest.mark.parametrize("shape", [(8, 8), (1, 8, 8, 3), (8, 8, 1), (8, 8, 4), (0, 8, 3)])
    def test_bad_image_shape(self, classifier, shape):
        with pytest.raises(InvalidArgumentError):
            targeted_fgsm(classifier, torch.zeros(shape), target_class=0, epsilon=1.0)

    def test_invalid_argument_is_value_error(self):
        assert issubclass(InvalidArgumentError, ValueError)


class TestSignedPerturbation:
    def test_sign_values(self, classifier, image):
        loss = TargetedCrossEntropy(classifier, 3, classifier.num_classes)
        gradient = TorchAutograd().gradient(loss.evaluate)(image)
        signs = gradient.sign().unique()
        assert set(signs.tolist()) <= {-1.0, 0.0, 1.0}

    def test_perturbation_values(self):
        gradient = torch.tensor([-2.5, 0.0, 1e-9, 7.0])
        perturbation = signed_perturbation(gradient, 5.0)
        assert perturbation.tolist() == [-5.0, 0.0, 5.0, 5.0]

    def test_zero_epsilon(self):
        perturbation = signed_perturbation(torch.tensor([-1.0, 3.0]), 0.0)
        assert torch.all(perturbation == 0)


class TestTorchAutograd:
    def test_matches_analytic_gradient(self):
        x = torch.tensor([1.0, -2.0, 3.0])
        grad = TorchAutograd().gradient(lambda t: (t**2).sum())(x)
        assert torch.allclose(grad, 2 * x)

    def test_constant_function_has_zero_gradient(self):
        x = torch.ones(2, 2, 3)
        grad = TorchAutograd().gradient(lambda t: torch.tensor(1.5))(x)
        assert torch.equal(grad, torch.zeros_like(x))

    def test_unused_input_has_zero_gradient(self):
        w = torch.ones(3, requires_grad=True)
        x = torch.ones(3)
        grad = TorchAutograd().gradient(lambda t: (w * 2).sum())(x)
        assert torch.equal(grad, torch.zeros_like(x))

    def test_gradient_is_detached(self):
        grad = TorchAutograd().gradient(lambda t: (t**3).sum())(torch.ones(3))
        assert not grad.requires_grad


class TestTargetedCrossEntropy:
    def test_matches_negative_log_softmax(self):
        stub = ConstantClassifier()
        loss = TargetedCrossEntropy(stub, target_class=2, num_classes=stub.num_classes)
        expected = -torch.log_softmax(stub.logits, dim=0)[2]
        assert torch.allclose(loss.evaluate(torch.zeros(4, 4, 3)), expected)

    def test_release_drops_one_hot(self):
        stub = ConstantClassifier()
        loss = TargetedCrossEntropy(stub, target_class=1, num_classes=stub.num_classes)
        loss.evaluate(torch.zeros(4, 4, 3))
        assert loss.target_one_hot.tolist() == [[0.0, 1.0, 0.0, 0.0]]
        loss.release()
        assert loss.target_one_hot is None


class TestIntermediateScope:
    def test_releases_on_exit(self):
        with IntermediateScope() as scope:
            kept = scope.keep(torch.ones(3))
            assert len(scope) == 1
        assert len(scope) == 0
        assert torch.equal(kept, torch.ones(3))

    def test_releases_on_error(self):
        scope = IntermediateScope()
        with pytest.raises(RuntimeError):
            with scope:
                scope.keep(torch.ones(3))
                raise RuntimeError("boom")
        assert len(scope) == 0

    def test_engine_scope_follows_classifier_device(self, monkeypatch):
        devices = []

        class RecordingScope(IntermediateScope):
            def __exit__(self, exc_type, exc, tb):
                devices.append(self.device)
                self._tensors.clear()

        class CudaConstantClassifier(ConstantClassifier):
            device = torch.device("cuda")

        monkeypatch.setattr(fgsm, "IntermediateScope", RecordingScope)
        targeted_fgsm(CudaConstantClassifier(), torch.zeros(4, 4, 3), target_class=0, epsilon=1.0)
        assert devices == [torch.device("cuda")]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
