"""
Model Loader Module

Loads the pretrained cat vs dog model and runs single forward passes:
- TensorFlow SavedModel directories (called through a serving signature)
- TorchScript files (.pt, .pth, .ts, .torchscript)

The runtimes are imported when a model of that format is loaded, so a
deployment only needs the framework its model was exported with.
"""

import logging
import time
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np

logger = logging.getLogger(__name__)


class ModelLoadError(Exception):
    """Raised when the model cannot be loaded."""
    pass


class OperationNotFoundError(ModelLoadError):
    """Raised when a signature, input or output name does not exist in the model."""
    pass


class ModelInferenceError(Exception):
    """Custom exception for model inference errors."""
    pass


class ModelFormat(Enum):
    """Supported model formats."""
    AUTO = "auto"
    SAVEDMODEL = "savedmodel"
    TORCHSCRIPT = "torchscript"


SAVEDMODEL_FILES = ('saved_model.pb', 'saved_model.pbtxt')
TORCHSCRIPT_SUFFIXES = ('.pt', '.pth', '.ts', '.torchscript')


def detect_model_format(path: Union[str, Path]) -> ModelFormat:
    """
    Work out the model format from what is on disk.

    Args:
        path: SavedModel directory or TorchScript file

    Returns:
        Detected ModelFormat

    Raises:
        ModelLoadError: If the path does not exist or is not a known format
    """
    path = Path(path)
    if path.is_dir():
        if any((path / name).is_file() for name in SAVEDMODEL_FILES):
            return ModelFormat.SAVEDMODEL
        raise ModelLoadError(f"could not load model: no saved_model.pb in {path}")
    if path.is_file():
        if path.suffix.lower() in TORCHSCRIPT_SUFFIXES:
            return ModelFormat.TORCHSCRIPT
        raise ModelLoadError(f"could not load model: unknown model file type {path.name}")
    raise ModelLoadError(f"could not load model: {path} does not exist")


def _pick_name(requested: Optional[str], available: Sequence[str], kind: str) -> str:
    """Resolve an input/output name, defaulting to the only one available."""
    if requested:
        if requested not in available:
            raise OperationNotFoundError(
                f"wrong operation name: {kind} {requested} "
                f"(available: {', '.join(sorted(available)) or 'none'})"
            )
        return requested
    if len(available) == 1:
        return next(iter(available))
    raise OperationNotFoundError(
        f"wrong operation name: model has {len(available)} {kind}s "
        f"({', '.join(sorted(available))}), set the {kind} name explicitly"
    )


class InferenceSession:
    """Runs a loaded model on a batch tensor."""

    framework = "unknown"

    def run(self, tensor: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def describe(self) -> Dict[str, Any]:
        return {'framework': self.framework}


class SavedModelSession(InferenceSession):
    """
    TensorFlow SavedModel executed through one of its signatures.

    Example:
        >>> session = SavedModelSession('model', signature='serve')
        >>> session.input_name
        'keras_tensor'
    """

    framework = "tensorflow"

    def __init__(self,
                 model_dir: Union[str, Path],
                 tags: Sequence[str] = ('serve',),
                 signature: str = 'serving_default',
                 input_name: Optional[str] = None,
                 output_name: Optional[str] = None):
        try:
            import tensorflow as tf
        except ImportError as e:
            raise ModelLoadError(f"could not load model: SavedModels need tensorflow ({e})") from e

        self._tf = tf
        self.model_dir = str(model_dir)
        self.tags = list(tags)
        self.signature_name = signature

        try:
            self._model = tf.saved_model.load(self.model_dir, tags=self.tags)
        except Exception as e:
            raise ModelLoadError(f"could not load model: {e}") from e

        signatures = dict(self._model.signatures)
        if signature not in signatures:
            raise OperationNotFoundError(
                f"wrong operation name: signature {signature} "
                f"(available: {', '.join(sorted(signatures)) or 'none'})"
            )
        self._function = signatures[signature]

        _, input_specs = self._function.structured_input_signature
        self.input_name = _pick_name(input_name, list(input_specs), 'input')
        self.input_spec = input_specs[self.input_name]
        self.output_name = _pick_name(output_name, list(self._function.structured_outputs), 'output')

    def run(self, tensor: np.ndarray) -> np.ndarray:
        tf = self._tf
        inputs = {self.input_name: tf.cast(tf.constant(tensor), self.input_spec.dtype)}
        outputs = self._function(**inputs)
        return outputs[self.output_name].numpy()

    def close(self) -> None:
        self._function = None
        self._model = None

    def describe(self) -> Dict[str, Any]:
        shape = self.input_spec.shape
        return {
            'framework': self.framework,
            'version': self._tf.__version__,
            'tags': self.tags,
            'signature': self.signature_name,
            'input_name': self.input_name,
            'input_shape': shape.as_list() if shape.rank is not None else None,
            'output_name': self.output_name,
        }


class TorchScriptSession(InferenceSession):
    """TorchScript module executed in eval mode without gradients."""

    framework = "pytorch"

    def __init__(self, model_path: Union[str, Path], device: str = 'cpu'):
        try:
            import torch
        except ImportError as e:
            raise ModelLoadError(f"could not load model: TorchScript models need torch ({e})") from e

        self._torch = torch
        self.model_path = str(model_path)

        if device == 'cuda' and not torch.cuda.is_available():
            logger.warning("CUDA requested but not available. Falling back to CPU.")
            device = 'cpu'
        self.device = device

        try:
            self._model = torch.jit.load(self.model_path, map_location=self.device)
        except Exception as e:
            raise ModelLoadError(f"could not load model: {e}") from e
        self._model.eval()

    def run(self, tensor: np.ndarray) -> np.ndarray:
        torch = self._torch
        inputs = torch.from_numpy(tensor).to(self.device)
        with torch.no_grad():
            outputs = self._model(inputs)
        # Models exported with several heads return a tuple; the first is the score
        if isinstance(outputs, (tuple, list)):
            outputs = outputs[0]
        return outputs.detach().cpu().numpy()

    def close(self) -> None:
        self._model = None
        if self.device == 'cuda' and self._torch.cuda.is_available():
            self._torch.cuda.empty_cache()

    def describe(self) -> Dict[str, Any]:
        return {
            'framework': self.framework,
            'version': self._torch.__version__,
            'device': self.device,
        }


class ModelLoader:
    """
    Manages the model lifecycle and inference.

    Example:
        >>> loader = ModelLoader(model_dir='model')
        >>> loader.load()
        >>> probability = loader.predict_probability(tensor)
        >>> loader.unload()
    """

    def __init__(self,
                 model_dir: Union[str, Path] = 'model',
                 model_format: Union[str, ModelFormat] = ModelFormat.AUTO,
                 tags: Sequence[str] = ('serve',),
                 signature: str = 'serving_default',
                 input_name: Optional[str] = None,
                 output_name: Optional[str] = None,
                 device: str = 'cpu'):
        self.model_dir = Path(model_dir)
        self.model_format = ModelFormat(model_format)
        self.tags: List[str] = list(tags)
        self.signature = signature
        self.input_name = input_name or None
        self.output_name = output_name or None
        self.device = device
        self.session: Optional[InferenceSession] = None
        self.load_time_seconds: float = 0.0

        logger.info(f"ModelLoader initialized with model_dir={self.model_dir}, format={self.model_format.value}")

    @classmethod
    def from_config(cls, cfg, **overrides) -> 'ModelLoader':
        """Build a loader from a Config object; keyword arguments take precedence."""
        kwargs = {
            'model_dir': cfg.MODEL_DIR,
            'model_format': cfg.MODEL_FORMAT,
            'tags': cfg.MODEL_TAGS,
            'signature': cfg.MODEL_SIGNATURE,
            'input_name': cfg.INPUT_NAME,
            'output_name': cfg.OUTPUT_NAME,
            'device': cfg.DEVICE,
        }
        kwargs.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**kwargs)

    @property
    def is_loaded(self) -> bool:
        return self.session is not None

    def load(self) -> None:
        """
        Load the model and prepare the inference session.

        Raises:
            ModelLoadError: If the model cannot be found or loaded
            OperationNotFoundError: If the signature, input or output name is wrong
        """
        if self.is_loaded:
            logger.warning("Model is already loaded")
            return

        start_time = time.time()
        model_format = self.model_format
        if model_format is ModelFormat.AUTO:
            model_format = detect_model_format(self.model_dir)

        logger.info(f"Loading {model_format.value} model from {self.model_dir}")

        if model_format is ModelFormat.SAVEDMODEL:
            self.session = SavedModelSession(
                self.model_dir,
                tags=self.tags,
                signature=self.signature,
                input_name=self.input_name,
                output_name=self.output_name,
            )
        else:
            self.session = TorchScriptSession(self.model_dir, device=self.device)

        self.model_format = model_format
        self.load_time_seconds = time.time() - start_time
        logger.info(f"Model loaded successfully in {self.load_time_seconds:.2f}s")

    def predict_probability(self, tensor: np.ndarray) -> float:
        """
        Run one forward pass and return the model's scalar output.

        Args:
            tensor: Preprocessed batch tensor

        Returns:
            Output value at position [0][0] (probability of the positive class)

        Raises:
            RuntimeError: If model not loaded
            ModelInferenceError: If the session fails or returns no usable value
        """
        if self.session is None:
            raise RuntimeError("Model not loaded. Call load() first.")

        try:
            output = self.session.run(tensor)
        except Exception as e:
            logger.error(f"Inference failed: {e}")
            raise ModelInferenceError(f"could not run the session: {e}") from e

        values = np.asarray(output).reshape(-1)
        if values.size == 0:
            raise ModelInferenceError("could not run the session: model returned an empty output")

        probability = float(values[0])
        if not np.isfinite(probability):
            raise ModelInferenceError(f"could not run the session: model returned {probability}")
        return probability

    def get_model_info(self) -> Dict[str, Any]:
        """
        Get model metadata and information.

        Returns:
            Dictionary containing model metadata
        """
        info = {
            'path': str(self.model_dir),
            'format': self.model_format.value,
            'loaded': self.is_loaded,
            'load_time_seconds': round(self.load_time_seconds, 3),
        }
        if self.session is not None:
            info.update(self.session.describe())
        return info

    def unload(self) -> None:
        """Close the inference session and release the model."""
        if self.session is None:
            return
        logger.info("Unloading model...")
        self.session.close()
        self.session = None

    def __repr__(self) -> str:
        return f"ModelLoader(model_dir='{self.model_dir}', format='{self.model_format.value}', loaded={self.is_loaded})"
