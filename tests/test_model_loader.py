"""
Model Loader Tests

This module contains unit tests for model loading and inference sessions.

Run tests with: pytest tests/test_model_loader.py
"""

import numpy as np
import pytest

from catsdogs.model_loader import (
    ModelFormat,
    ModelInferenceError,
    ModelLoadError,
    ModelLoader,
    OperationNotFoundError,
    detect_model_format,
)

from conftest import FakeSession


# =========================================================================
# Format Detection Tests
# =========================================================================

def test_detect_savedmodel_directory(tmp_path):
    (tmp_path / 'saved_model.pb').write_bytes(b'')
    assert detect_model_format(tmp_path) is ModelFormat.SAVEDMODEL


def test_detect_torchscript_file(tmp_path):
    path = tmp_path / 'catsdogs.pt'
    path.write_bytes(b'')
    assert detect_model_format(path) is ModelFormat.TORCHSCRIPT


def test_detect_directory_without_model(tmp_path):
    with pytest.raises(ModelLoadError, match='no saved_model.pb'):
        detect_model_format(tmp_path)


def test_detect_unknown_file(tmp_path):
    path = tmp_path / 'weights.h5'
    path.write_bytes(b'')
    with pytest.raises(ModelLoadError, match='unknown model file type'):
        detect_model_format(path)


def test_detect_missing_path(tmp_path):
    with pytest.raises(ModelLoadError, match='does not exist'):
        detect_model_format(tmp_path / 'missing')


# =========================================================================
# ModelLoader Tests
# =========================================================================

def test_model_loader_initialization(tmp_path):
    loader = ModelLoader(model_dir=tmp_path)
    assert loader.model_format is ModelFormat.AUTO
    assert loader.tags == ['serve']
    assert loader.signature == 'serving_default'
    assert loader.input_name is None
    assert loader.session is None
    assert not loader.is_loaded


def test_model_loader_rejects_unknown_format(tmp_path):
    with pytest.raises(ValueError):
        ModelLoader(model_dir=tmp_path, model_format='onnx')


def test_load_missing_model_raises(tmp_path):
    loader = ModelLoader(model_dir=tmp_path / 'missing')
    with pytest.raises(ModelLoadError):
        loader.load()
    assert not loader.is_loaded


def test_from_config_overrides(tmp_path):
    class Cfg:
        MODEL_DIR = 'model'
        MODEL_FORMAT = 'auto'
        MODEL_TAGS = ['serve']
        MODEL_SIGNATURE = 'serving_default'
        INPUT_NAME = ''
        OUTPUT_NAME = ''
        DEVICE = 'cpu'

    loader = ModelLoader.from_config(Cfg, model_dir=tmp_path, input_name='keras_tensor', signature=None)
    assert loader.model_dir == tmp_path
    assert loader.input_name == 'keras_tensor'
    assert loader.signature == 'serving_default'
    assert loader.output_name is None


def test_predict_before_load_raises(tmp_path):
    loader = ModelLoader(model_dir=tmp_path)
    with pytest.raises(RuntimeError, match='Model not loaded'):
        loader.predict_probability(np.zeros((1, 2, 2, 3), dtype=np.float32))


def test_predict_probability_returns_first_value(make_loader):
    loader = make_loader(probability=0.75)
    tensor = np.zeros((1, 4, 4, 3), dtype=np.float32)

    probability = loader.predict_probability(tensor)

    assert isinstance(probability, float)
    assert probability == pytest.approx(0.75)
    assert loader.session.calls[0] is tensor


def test_predict_wraps_session_errors(make_loader):
    loader = make_loader(error=RuntimeError('boom'))
    with pytest.raises(ModelInferenceError, match='could not run the session: boom'):
        loader.predict_probability(np.zeros((1, 2, 2, 3), dtype=np.float32))


def test_predict_rejects_empty_output(make_loader):
    loader = make_loader()
    loader.session.run = lambda tensor: np.array([], dtype=np.float32)
    with pytest.raises(ModelInferenceError, match='empty output'):
        loader.predict_probability(np.zeros((1, 2, 2, 3), dtype=np.float32))


def test_predict_rejects_nan_output(make_loader):
    loader = make_loader(probability=float('nan'))
    with pytest.raises(ModelInferenceError):
        loader.predict_probability(np.zeros((1, 2, 2, 3), dtype=np.float32))


def test_load_is_idempotent(make_loader):
    loader = make_loader()
    session = loader.session
    loader.load()
    assert loader.session is session


def test_unload_closes_session(make_loader):
    loader = make_loader()
    session = loader.session
    loader.unload()
    assert session.closed
    assert not loader.is_loaded
    # Second unload is a no-op
    loader.unload()


def test_get_model_info(make_loader):
    loader = make_loader()
    info = loader.get_model_info()
    assert info['format'] == 'savedmodel'
    assert info['loaded'] is True
    assert info['framework'] == 'fake'


def test_repr(tmp_path):
    loader = ModelLoader(model_dir=tmp_path)
    assert repr(loader).startswith("ModelLoader(")
    assert 'loaded=False' in repr(loader)


def test_fake_session_is_inference_session():
    assert FakeSession().describe() == {'framework': 'fake'}


# =========================================================================
# TorchScript Tests
# =========================================================================

@pytest.fixture
def torchscript_model(tmp_path):
    """TorchScript model returning sigmoid(mean(pixels)) per image."""
    torch = pytest.importorskip('torch')

    class MeanSigmoid(torch.nn.Module):
        def forward(self, x):
            return torch.sigmoid(x.mean(dim=[1, 2, 3])).unsqueeze(1)

    path = tmp_path / 'catsdogs.pt'
    torch.jit.script(MeanSigmoid()).save(str(path))
    return path


def test_torchscript_model_loads_and_predicts(torchscript_model):
    loader = ModelLoader(model_dir=torchscript_model)
    loader.load()

    assert loader.model_format is ModelFormat.TORCHSCRIPT
    assert loader.get_model_info()['framework'] == 'pytorch'

    zeros = np.zeros((1, 3, 4, 4), dtype=np.float32)
    assert loader.predict_probability(zeros) == pytest.approx(0.5)

    ones = np.ones((1, 3, 4, 4), dtype=np.float32)
    assert loader.predict_probability(ones) == pytest.approx(1 / (1 + np.exp(-1)), rel=1e-5)

    loader.unload()
    assert not loader.is_loaded


def test_torchscript_bad_file(tmp_path):
    pytest.importorskip('torch')
    path = tmp_path / 'broken.pt'
    path.write_bytes(b'not a model')
    with pytest.raises(ModelLoadError, match='could not load model'):
        ModelLoader(model_dir=path).load()


# =========================================================================
# SavedModel Tests
# =========================================================================

@pytest.fixture
def saved_model(tmp_path):
    """SavedModel whose serving signature returns mean(pixels) / 255."""
    tf = pytest.importorskip('tensorflow')

    class MeanBrightness(tf.Module):
        @tf.function(input_signature=[tf.TensorSpec([None, 8, 8, 3], tf.float32, name='keras_tensor')])
        def serve(self, keras_tensor):
            mean = tf.reduce_mean(keras_tensor, axis=[1, 2, 3]) / 255.0
            return {'output_0': tf.expand_dims(mean, 1)}

    module = MeanBrightness()
    path = tmp_path / 'model'
    tf.saved_model.save(module, str(path), signatures={'serving_default': module.serve})
    return path


def test_savedmodel_loads_and_predicts(saved_model):
    loader = ModelLoader(model_dir=saved_model)
    loader.load()

    assert loader.model_format is ModelFormat.SAVEDMODEL
    info = loader.get_model_info()
    assert info['framework'] == 'tensorflow'
    assert info['input_name'] == 'keras_tensor'
    assert info['output_name'] == 'output_0'
    assert info['input_shape'] == [None, 8, 8, 3]

    tensor = np.full((1, 8, 8, 3), 102.0, dtype=np.float32)
    assert loader.predict_probability(tensor) == pytest.approx(0.4, rel=1e-5)
    loader.unload()


def test_savedmodel_explicit_names(saved_model):
    loader = ModelLoader(model_dir=saved_model, input_name='keras_tensor', output_name='output_0')
    loader.load()
    assert loader.session.input_name == 'keras_tensor'


def test_savedmodel_wrong_input_name(saved_model):
    loader = ModelLoader(model_dir=saved_model, input_name='serve_keras_tensor')
    with pytest.raises(OperationNotFoundError, match='input serve_keras_tensor'):
        loader.load()


def test_savedmodel_wrong_signature(saved_model):
    loader = ModelLoader(model_dir=saved_model, signature='predict')
    with pytest.raises(OperationNotFoundError, match='signature predict'):
        loader.load()


def test_savedmodel_wrong_tensor_shape(saved_model):
    loader = ModelLoader(model_dir=saved_model)
    loader.load()
    with pytest.raises(ModelInferenceError):
        loader.predict_probability(np.zeros((1, 4, 4, 3), dtype=np.float32))
