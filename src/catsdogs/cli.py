"""
Command-line classifier.

Usage:
    catsdogs [flags] file.jpg ...

Prints one line per image, e.g. ``dog 97.31% photos/rex.jpg``. Images that
fail are reported on stderr after the others have been classified, and the
exit status is then 1.
"""

import argparse
import logging
import sys
from typing import List, Optional, Sequence

from catsdogs.classifier import CatDogClassifier
from catsdogs.config import Config, config
from catsdogs.logging_config import setup_logging
from catsdogs.model_loader import ModelFormat, ModelInferenceError, ModelLoadError, ModelLoader
from catsdogs.preprocessing import ImageProcessingError, PreprocessConfig

logger = logging.getLogger(__name__)


def _probability(value: str) -> float:
    try:
        threshold = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid threshold: {value!r}") from None
    if not (0.0 < threshold < 1.0):
        raise argparse.ArgumentTypeError("threshold must be between 0 and 1")
    return threshold


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid size: {value!r}") from None
    if number <= 0:
        raise argparse.ArgumentTypeError("size must be positive")
    return number


def build_parser(cfg: Config = config) -> argparse.ArgumentParser:
    """Create the argument parser; defaults come from the configuration."""
    parser = argparse.ArgumentParser(
        prog='catsdogs',
        usage='%(prog)s [flags] file.jpg ...',
        description='Classify images as cat or dog with a pretrained model.',
    )
    parser.add_argument('paths', nargs='*', metavar='file.jpg', help='images to classify')
    parser.add_argument('--model', default=cfg.MODEL_DIR,
                        help='directory with model, or TorchScript file (default: %(default)s)')
    parser.add_argument('--format', dest='model_format', default=cfg.MODEL_FORMAT,
                        choices=[f.value for f in ModelFormat],
                        help='model format (default: %(default)s)')
    parser.add_argument('--signature', default=cfg.MODEL_SIGNATURE,
                        help='SavedModel signature (default: %(default)s)')
    parser.add_argument('--inputname', default=cfg.INPUT_NAME,
                        help='input operation name (default: the only input)')
    parser.add_argument('--outputname', default=cfg.OUTPUT_NAME,
                        help='output operation name (default: the only output)')
    parser.add_argument('--device', default=cfg.DEVICE,
                        help='device for TorchScript models (default: %(default)s)')
    parser.add_argument('--size', type=_positive_int, default=cfg.IMAGE_SIZE,
                        help='model input width and height (default: %(default)s)')
    parser.add_argument('--normalization', default=cfg.NORMALIZATION,
                        choices=list(Config.VALID_NORMALIZATIONS),
                        help='pixel normalization (default: %(default)s)')
    parser.add_argument('--layout', default=cfg.TENSOR_LAYOUT,
                        choices=list(Config.VALID_LAYOUTS),
                        help='tensor layout (default: %(default)s)')
    parser.add_argument('--resample', default=cfg.RESAMPLE,
                        choices=list(Config.VALID_RESAMPLE),
                        help='resize filter (default: %(default)s)')
    parser.add_argument('--threshold', type=_probability, default=cfg.THRESHOLD,
                        help='highest probability still reported as %s (default: %%(default)s)'
                        % cfg.NEGATIVE_LABEL)
    parser.add_argument('--log-level', default=cfg.LOG_LEVEL,
                        choices=list(Config.VALID_LOG_LEVELS),
                        help='log level for stderr (default: %(default)s)')
    return parser


def run(args: argparse.Namespace, cfg: Config = config) -> int:
    """
    Load the model once and classify every path.

    Returns:
        Process exit status
    """
    loader = ModelLoader.from_config(
        cfg,
        model_dir=args.model,
        model_format=args.model_format,
        signature=args.signature,
        input_name=args.inputname,
        output_name=args.outputname,
        device=args.device,
    )
    try:
        loader.load()
    except ModelLoadError as e:
        print(e, file=sys.stderr)
        return 1

    classifier = CatDogClassifier(
        loader,
        preprocess_config=PreprocessConfig(
            image_size=args.size,
            resample=args.resample,
            normalization=args.normalization,
            layout=args.layout,
            max_dimension=cfg.MAX_IMAGE_DIMENSION,
        ),
        threshold=args.threshold,
        positive_label=cfg.POSITIVE_LABEL,
        negative_label=cfg.NEGATIVE_LABEL,
    )

    errors: List[str] = []
    try:
        for path in args.paths:
            try:
                prediction = classifier.classify_file(path)
            except (OSError, ImageProcessingError, ModelInferenceError) as e:
                logger.debug(f"Failed to classify {path}", exc_info=True)
                errors.append(str(e))
                continue
            print(prediction, flush=True)
    finally:
        loader.unload()

    for error in errors:
        print(error, file=sys.stderr)
    return 1 if errors else 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.paths:
        parser.print_help(sys.stderr)
        return 0

    setup_logging(args.log_level, config.LOG_FORMAT)
    return run(args)


if __name__ == '__main__':
    sys.exit(main())
