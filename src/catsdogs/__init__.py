"""
catsdogs - cat vs dog image classification with a pretrained model.

This package loads a pretrained binary classifier (TensorFlow SavedModel or
TorchScript), preprocesses images into the tensor the model expects and
reports the predicted label from the command line or a Flask HTTP API.
"""

__version__ = "1.0.0"
__author__ = "AI Infrastructure Curriculum"
