"""
Classifier API Application

This module implements the REST API for cat vs dog inference using Flask.

Author: AI Infrastructure Curriculum
License: MIT
"""

import sys
import time
import uuid
import logging
from datetime import datetime, timezone
from typing import Optional, Tuple

from flask import Flask, request, jsonify
from werkzeug.exceptions import HTTPException

from catsdogs.classifier import CatDogClassifier
from catsdogs.config import config
from catsdogs.logging_config import setup_logging
from catsdogs.model_loader import ModelInferenceError, ModelLoader
from catsdogs.preprocessing import (
    BadImageDimensionsError,
    ImageProcessingError,
    InvalidImageFormatError,
    decode_image,
    validate_image,
)

logger = logging.getLogger(__name__)


# =========================================================================
# FLASK IMPLEMENTATION
# =========================================================================

app = Flask(__name__)

# Flask rejects larger bodies before the view runs
app.config['MAX_CONTENT_LENGTH'] = config.MAX_FILE_SIZE

# Set by init_model()
model_loader: Optional[ModelLoader] = None
classifier: Optional[CatDogClassifier] = None

RAW_BODY_MIMETYPES = ('application/octet-stream',)


def init_model(loader: Optional[ModelLoader] = None) -> None:
    """
    Initialize and load the ML model.

    Args:
        loader: Preconfigured loader; built from the configuration if None
    """
    global model_loader, classifier
    try:
        logger.info("Initializing model...")
        loader = loader or ModelLoader.from_config(config)
        loader.load()
        model_loader = loader
        classifier = CatDogClassifier.from_config(loader, config)
        logger.info("Model initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize model: {e}")
        raise


def shutdown_model() -> None:
    """Release the model loaded by init_model()."""
    global model_loader, classifier
    if model_loader is not None:
        model_loader.unload()
    model_loader = None
    classifier = None


@app.route('/health', methods=['GET'])
def health():
    """
    Health check endpoint.

    Returns:
        JSON response with health status
    """
    is_healthy = model_loader is not None and model_loader.is_loaded

    if is_healthy:
        return jsonify({
            'status': 'healthy',
            'model_loaded': True,
            'model_format': model_loader.model_format.value,
            'timestamp': utc_timestamp()
        }), 200
    else:
        return jsonify({
            'status': 'unhealthy',
            'model_loaded': False,
            'reason': 'Model not loaded',
            'timestamp': utc_timestamp()
        }), 503


@app.route('/info', methods=['GET'])
def info():
    """
    Model information endpoint.

    Returns:
        JSON response with model and API info
    """
    if model_loader is None or classifier is None:
        return jsonify({'error': 'Model not loaded'}), 503

    return jsonify({
        'model': model_loader.get_model_info(),
        'preprocessing': classifier.preprocess_config.to_dict(),
        'classification': {
            'threshold': classifier.threshold,
            'positive_label': classifier.positive_label,
            'negative_label': classifier.negative_label
        },
        'api': {
            'version': config.API_VERSION,
            'endpoints': ['/predict', '/health', '/info']
        },
        'limits': {
            'max_file_size_mb': config.MAX_FILE_SIZE / (1024 * 1024),
            'max_image_dimension': classifier.preprocess_config.max_dimension
        },
        'timestamp': utc_timestamp()
    }), 200


@app.route('/predict', methods=['POST'])
def predict():
    """
    Prediction endpoint.

    Accepts the image as multipart field 'file' or as the raw request body
    (image/* or application/octet-stream). Optional 'threshold' parameter.

    Returns:
        JSON response with the prediction or an error
    """
    correlation_id = generate_correlation_id()
    start_time = time.time()

    try:
        if classifier is None:
            return format_error_response(
                'MODEL_NOT_LOADED',
                'Model not loaded',
                correlation_id
            ), 503

        # 1. Get image bytes
        file_bytes, error = read_image_bytes(correlation_id)
        if error is not None:
            return error

        # 2. Check file size
        file_size = len(file_bytes)
        if file_size > config.MAX_FILE_SIZE:
            return format_error_response(
                'FILE_TOO_LARGE',
                f'File size {file_size} exceeds limit {config.MAX_FILE_SIZE}',
                correlation_id
            ), 413

        # 3. Get threshold parameter
        threshold = request.values.get('threshold')
        if threshold is not None:
            try:
                threshold = float(threshold)
            except ValueError:
                return format_error_response(
                    'INVALID_PARAMETER',
                    'threshold must be a number',
                    correlation_id
                ), 400
            if not (0.0 < threshold < 1.0):
                return format_error_response(
                    'INVALID_PARAMETER',
                    'threshold must be between 0 and 1',
                    correlation_id
                ), 400

        # 4. Decode image, rejecting oversized dimensions from the header
        max_dimension = classifier.preprocess_config.max_dimension
        try:
            image = decode_image(file_bytes, max_dimension)
        except InvalidImageFormatError as e:
            return format_error_response(
                'INVALID_IMAGE_FORMAT',
                f'Could not load image: {e}',
                correlation_id
            ), 400
        except BadImageDimensionsError as e:
            return format_error_response(
                'INVALID_IMAGE',
                str(e),
                correlation_id
            ), 400

        # 5. Validate image
        is_valid, error_msg = validate_image(image, max_dimension)
        if not is_valid:
            return format_error_response(
                'INVALID_IMAGE',
                error_msg,
                correlation_id
            ), 400

        # 6. Classify
        try:
            prediction = classifier.classify_image(image, threshold)
        except ImageProcessingError as e:
            return format_error_response(
                'INVALID_IMAGE',
                str(e),
                correlation_id
            ), 400
        except ModelInferenceError as e:
            logger.error(f"Inference error: correlation_id={correlation_id}, error={e}")
            return format_error_response(
                'INFERENCE_ERROR',
                str(e),
                correlation_id
            ), 500

        latency_ms = (time.time() - start_time) * 1000

        logger.info(
            f"Prediction successful: correlation_id={correlation_id}, "
            f"latency={latency_ms:.2f}ms, label={prediction.label}, "
            f"probability={prediction.probability:.4f}"
        )

        return format_success_response(prediction.to_dict(), latency_ms, correlation_id), 200

    except HTTPException:
        # Oversized bodies surface here while reading the upload
        raise
    except Exception as e:
        logger.error(f"Prediction error: {e}", exc_info=True)
        return format_error_response(
            'INTERNAL_ERROR',
            'Internal server error',
            correlation_id
        ), 500


# =========================================================================
# Error Handlers
# =========================================================================

@app.errorhandler(413)
def request_entity_too_large(error):
    """Handle 413 Payload Too Large errors."""
    return jsonify({
        'success': False,
        'error': {
            'code': 'FILE_TOO_LARGE',
            'message': f'File size exceeds maximum allowed size of {config.MAX_FILE_SIZE / (1024 * 1024):.1f} MB',
            'timestamp': utc_timestamp()
        }
    }), 413


@app.errorhandler(404)
def not_found(error):
    """Handle 404 errors."""
    return jsonify({
        'success': False,
        'error': {
            'code': 'NOT_FOUND',
            'message': 'Endpoint not found',
            'timestamp': utc_timestamp()
        }
    }), 404


@app.errorhandler(405)
def method_not_allowed(error):
    """Handle 405 errors."""
    return jsonify({
        'success': False,
        'error': {
            'code': 'METHOD_NOT_ALLOWED',
            'message': 'HTTP method not allowed for this endpoint',
            'timestamp': utc_timestamp()
        }
    }), 405


@app.errorhandler(500)
def internal_error(error):
    """Handle 500 errors."""
    return jsonify({
        'success': False,
        'error': {
            'code': 'INTERNAL_ERROR',
            'message': 'Internal server error',
            'timestamp': utc_timestamp()
        }
    }), 500


# =========================================================================
# Helper Functions
# =========================================================================

def utc_timestamp() -> str:
    """Current UTC time in ISO 8601 with a 'Z' suffix."""
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + 'Z'


def generate_correlation_id() -> str:
    """
    Generate unique correlation ID for request tracking.

    Returns:
        Correlation ID string
    """
    return f"req-{uuid.uuid4().hex[:8]}"


def read_image_bytes(correlation_id: str) -> Tuple[bytes, Optional[tuple]]:
    """
    Extract the uploaded image from the current request.

    Returns:
        (image bytes, None) on success, (b'', error response tuple) otherwise
    """
    if 'file' in request.files:
        file = request.files['file']
        if file.filename == '':
            return b'', (format_error_response(
                'MISSING_FILE',
                'Empty filename',
                correlation_id
            ), 400)
        file_bytes = file.read()
    elif request.mimetype.startswith('image/') or request.mimetype in RAW_BODY_MIMETYPES:
        file_bytes = request.get_data()
    else:
        return b'', (format_error_response(
            'MISSING_FILE',
            'No file provided in request',
            correlation_id
        ), 400)

    if not file_bytes:
        return b'', (format_error_response(
            'EMPTY_FILE',
            'Uploaded file is empty',
            correlation_id
        ), 400)

    return file_bytes, None


def format_success_response(prediction: dict,
                            latency_ms: float,
                            correlation_id: str) -> dict:
    """
    Format successful prediction response.

    Args:
        prediction: Prediction dictionary
        latency_ms: Request latency in milliseconds
        correlation_id: Request correlation ID

    Returns:
        Formatted response dictionary
    """
    return {
        'success': True,
        'prediction': prediction,
        'latency_ms': round(latency_ms, 2),
        'correlation_id': correlation_id,
        'timestamp': utc_timestamp()
    }


def format_error_response(error_code: str,
                          message: str,
                          correlation_id: str,
                          details: Optional[dict] = None) -> dict:
    """
    Format error response.

    Args:
        error_code: Error code (e.g., 'INVALID_IMAGE')
        message: Human-readable error message
        correlation_id: Request correlation ID
        details: Optional additional details

    Returns:
        Formatted error response dictionary
    """
    error_response = {
        'success': False,
        'error': {
            'code': error_code,
            'message': message,
            'correlation_id': correlation_id,
            'timestamp': utc_timestamp()
        }
    }
    if details:
        error_response['error']['details'] = details
    return error_response


# =========================================================================
# Application Startup
# =========================================================================

def main() -> int:
    """Load the model and run the Flask server."""
    setup_logging(config.LOG_LEVEL, config.LOG_FORMAT)
    try:
        init_model()

        logger.info(f"Starting server on {config.HOST}:{config.PORT}")
        app.run(
            host=config.HOST,
            port=config.PORT,
            debug=config.DEBUG
        )
    except Exception as e:
        logger.error(f"Failed to start server: {e}")
        return 1
    finally:
        shutdown_model()
    return 0


if __name__ == '__main__':
    sys.exit(main())
