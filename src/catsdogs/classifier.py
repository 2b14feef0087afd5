"""
Cat vs dog classification on top of the model loader.

Combines decoding, preprocessing, one inference pass and thresholding of
the model's sigmoid output into a labelled prediction.
"""

import logging
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, Optional, Union

from PIL import Image

from catsdogs.model_loader import ModelInferenceError, ModelLoader
from catsdogs.preprocessing import (
    DEFAULT_PREPROCESS_CONFIG,
    ImageProcessingError,
    PreprocessConfig,
    decode_image,
    preprocess,
)

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.5


@dataclass
class Prediction:
    """Result of classifying one image."""

    label: str
    confidence: float
    probability: float
    source: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if data['source'] is None:
            del data['source']
        return data

    def __str__(self) -> str:
        text = f"{self.label} {self.confidence * 100:5.2f}%"
        return f"{text} {self.source}" if self.source is not None else text


def interpret_probability(probability: float,
                          threshold: float = DEFAULT_THRESHOLD,
                          positive_label: str = 'dog',
                          negative_label: str = 'cat') -> Prediction:
    """
    Turn the positive-class probability into a labelled prediction.

    Values up to and including the threshold belong to the negative label,
    whose confidence is 1 - probability.

    Example:
        >>> interpret_probability(0.2)
        Prediction(label='cat', confidence=0.8, probability=0.2, source=None)
    """
    if probability <= threshold:
        return Prediction(label=negative_label, confidence=1.0 - probability, probability=probability)
    return Prediction(label=positive_label, confidence=probability, probability=probability)


class CatDogClassifier:
    """
    Classifies images with a loaded model.

    Example:
        >>> loader = ModelLoader('model')
        >>> loader.load()
        >>> classifier = CatDogClassifier(loader)
        >>> print(classifier.classify_file('cat.jpg'))
        cat 98.12% cat.jpg
    """

    def __init__(self,
                 loader: ModelLoader,
                 preprocess_config: PreprocessConfig = DEFAULT_PREPROCESS_CONFIG,
                 threshold: float = DEFAULT_THRESHOLD,
                 positive_label: str = 'dog',
                 negative_label: str = 'cat'):
        if not (0.0 < threshold < 1.0):
            raise ValueError(f"threshold must be between 0 and 1, got {threshold}")
        self.loader = loader
        self.preprocess_config = preprocess_config
        self.threshold = threshold
        self.positive_label = positive_label
        self.negative_label = negative_label

    @classmethod
    def from_config(cls, loader: ModelLoader, cfg) -> 'CatDogClassifier':
        return cls(
            loader,
            preprocess_config=PreprocessConfig.from_config(cfg),
            threshold=cfg.THRESHOLD,
            positive_label=cfg.POSITIVE_LABEL,
            negative_label=cfg.NEGATIVE_LABEL,
        )

    def classify_image(self, image: Image.Image, threshold: Optional[float] = None) -> Prediction:
        """
        Classify a decoded image.

        Args:
            image: PIL Image
            threshold: Override for the instance threshold

        Raises:
            ImageProcessingError: If preprocessing fails
            ModelInferenceError: If inference fails
        """
        tensor = preprocess(image, self.preprocess_config)
        probability = self.loader.predict_probability(tensor)
        prediction = interpret_probability(
            probability,
            self.threshold if threshold is None else threshold,
            self.positive_label,
            self.negative_label,
        )
        logger.debug(f"probability={probability:.4f} label={prediction.label}")
        return prediction

    def classify_bytes(self, data: bytes, threshold: Optional[float] = None) -> Prediction:
        """Decode and classify encoded image bytes."""
        return self.classify_image(decode_image(data, self.preprocess_config.max_dimension), threshold)

    def classify_file(self, path: Union[str, Path]) -> Prediction:
        """
        Classify the image stored at path.

        Raises:
            OSError: If the file cannot be opened
            ImageProcessingError: If decoding or preprocessing fails, message prefixed with the path
            ModelInferenceError: If inference fails, message prefixed with the path
        """
        with open(path, 'rb') as f:
            try:
                image = decode_image(f, self.preprocess_config.max_dimension)
                prediction = self.classify_image(image)
            except (ImageProcessingError, ModelInferenceError) as e:
                raise type(e)(f"{path}: {e}") from e
        prediction.source = str(path)
        return prediction
