#!/usr/bin/env python3
"""
Identity Document Field Extraction System - Main Entry Point.

This is the main entry point for the identity extraction system.
It provides both a command-line interface and programmatic access
to the scan pipeline.

Usage:
    Command Line:
        python main.py --input license.jpg
        python main.py --input license.jpg --output result.json --engine easyocr

    Python:
        from main import run_scan
        result = run_scan("license.jpg")

Exit codes:
    0  Scan finished Complete or Partial
    1  Usage or input error
    2  Scan finished Failed

Author: ML Engineering Team
Version: 1.0.0
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

# Import project modules
from config import ConfigurationManager, get_config
from src.utils.logger import set_log_level, setup_logger_from_config, get_logger
from src.utils.helpers import ensure_directory, get_file_extension
from src.utils.exceptions import IDExtractionError
from src.field_extraction import ScanResult, ScanStatus
from src.session import ScanPipeline, ScanSessionManager

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_FAILED = 2


def parse_arguments(argv: Optional[list] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed argument namespace.
    """
    parser = argparse.ArgumentParser(
        description="Identity Document Field Extraction System",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    Scan a driver license photo:
        python main.py --input license.jpg

    Write the result to a file:
        python main.py --input passport.png --output outputs/passport.json

    Use another recognition engine:
        python main.py --input license.jpg --engine easyocr
        """
    )

    # Input/Output arguments
    parser.add_argument(
        "--input", "-i",
        type=str,
        required=True,
        help="Image of the identity document"
    )

    parser.add_argument(
        "--output", "-o",
        type=str,
        default=None,
        help="Write the ScanResult JSON to this file (default: print to stdout)"
    )

    # Processing options
    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to custom configuration file"
    )

    parser.add_argument(
        "--engine", "-e",
        type=str,
        default=None,
        choices=["tesseract", "easyocr"],
        help="Recognition engine (default: from configuration)"
    )

    # Logging options
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging"
    )

    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Only log warnings and errors"
    )

    return parser.parse_args(argv)


def initialize_system(args: argparse.Namespace) -> ConfigurationManager:
    """
    Initialize the system with configuration and logging.

    Args:
        args: Parsed command-line arguments.

    Returns:
        Initialized configuration manager.
    """
    # Load configuration
    config = ConfigurationManager(args.config)

    if args.engine:
        config.override({"ocr": {"engine": args.engine}})

    # Setup logging
    logger = setup_logger_from_config()

    if args.debug:
        set_log_level("DEBUG")
    elif args.quiet:
        set_log_level("WARNING")

    logger.info("=" * 60)
    logger.info("IDENTITY DOCUMENT FIELD EXTRACTION SYSTEM")
    logger.info("=" * 60)
    logger.info(f"Version: {config.get('project.version', '1.0.0')}")
    logger.info(f"Input: {args.input}")
    logger.info(f"Engine: {config.get('ocr.engine', 'tesseract')}")

    return config


def validate_input(input_path: str) -> Path:
    """
    Validate the input image path.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        ValueError: If the file type is not supported.
    """
    path = Path(input_path)
    if not path.is_file():
        raise FileNotFoundError(f"Input file not found: {path}")

    supported = get_config("input.supported_formats", ["jpeg", "jpg", "png"])
    if get_file_extension(path) not in supported:
        raise ValueError(f"Unsupported file type: {path.suffix}")

    return path


async def _scan(image_bytes: bytes, image_format: str, engine: Optional[str]) -> ScanResult:
    manager = ScanSessionManager(ScanPipeline.from_config(engine=engine))
    handle = manager.submit_capture(image_bytes, image_format)
    return await manager.wait(handle)


def run_scan(
    input_path: str,
    config_path: Optional[str] = None,
    engine: Optional[str] = None
) -> ScanResult:
    """
    Scan one identity document image.

    This is the main programmatic entry point. The capture goes through
    a ScanSessionManager exactly as an interactive capture would.

    Args:
        input_path: Path to the image.
        config_path: Optional custom configuration file path.
        engine: Recognition engine name. Defaults to configuration.

    Returns:
        ScanResult (never raises for scan failures; check ``status``).

    Example:
        >>> result = run_scan("license.jpg")
        >>> result.fields["dateOfBirth"].display_value
        '1985-03-15'
    """
    ConfigurationManager(config_path)
    path = validate_input(input_path)
    return asyncio.run(_scan(path.read_bytes(), get_file_extension(path), engine))


def write_result(result: ScanResult, output_path: Optional[str]) -> None:
    """Print the result JSON or write it to a file."""
    payload = result.to_json()
    if output_path is None:
        print(payload)
        return

    output = Path(output_path)
    ensure_directory(output.parent)
    output.write_text(payload, encoding='utf-8')
    get_logger(__name__).info(f"Result written to: {output}")


def main(argv: Optional[list] = None) -> int:
    """
    Main function - entry point for command-line execution.

    Returns:
        Exit code (see module docstring).
    """
    try:
        args = parse_arguments(argv)
    except SystemExit as e:
        return EXIT_OK if e.code in (0, None) else EXIT_USAGE

    try:
        # Initialize system
        initialize_system(args)
        logger = get_logger(__name__)

        # Scan
        result = run_scan(args.input, args.config, args.engine)
        write_result(result, args.output)

        logger.info("=" * 60)
        logger.info(
            f"Scan {result.status.value}: {len(result.found_fields)}/{len(result.fields)} fields "
            f"({result.template_id})"
        )
        logger.info("=" * 60)

        return EXIT_FAILED if result.status is ScanStatus.FAILED else EXIT_OK

    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE

    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE

    except IDExtractionError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE

    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
