from fgsm_demo.models.classifier import ImageClassifier, Prediction, load_pretrained
