#!/usr/bin/env python3
"""
Register two images with elastix from the command line.

Usage:
    # Register and keep the registered image
    elastix-bridge ParametersTranslation2D.txt fixed.png moving.png \
        --output moving_reg.png

    # Only compute the transform, save it with the optimizer log
    elastix-bridge params.txt fixed.nii.gz moving.nii.gz \
        --output-json transform.json

    # Options from a YAML file (top level or a 'registration:' section)
    elastix-bridge params.txt fixed.nii.gz moving.nii.gz --config elastix.yaml
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from elastix_bridge.config import load_options
from elastix_bridge.exceptions import ElastixBridgeError
from elastix_bridge.session import RegistrationResult, register

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='elastix-bridge',
        description='Register a moving image onto a fixed image with elastix',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    parser.add_argument('param_file', type=Path,
                        help='elastix registration parameter file')
    parser.add_argument('fixed', type=Path, help='Fixed (reference) image')
    parser.add_argument('moving', type=Path, help='Moving image')
    parser.add_argument('-o', '--output', type=Path,
                        help='Save the registered image here (default: discard)')
    parser.add_argument('--config', type=Path,
                        help='YAML file with registration options')
    parser.add_argument('--verbose', action='store_true', default=None,
                        help='Show elastix output')
    parser.add_argument('--timeout', type=float,
                        help='Kill elastix after this many seconds')
    parser.add_argument('--threads', type=int,
                        help='Maximum number of elastix threads')
    parser.add_argument('--executable',
                        help='elastix executable (default: $ELASTIX_EXECUTABLE or elastix)')
    parser.add_argument('--output-json', type=Path,
                        help='Save transform parameters and iterations to JSON file')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level (default: INFO)')
    return parser


def print_summary(result: RegistrationResult) -> None:
    transform, image, iterations = result

    print("=" * 70)
    print("Registration complete")
    print("=" * 70)
    print(f"Transform: {transform.transform}")
    if transform.transform_parameters is not None:
        params = ' '.join(f"{p:g}" for p in transform.transform_parameters)
        print(f"Parameters ({transform.number_of_parameters}): {params}")
    print(f"Iterations: {len(iterations)}")
    if len(iterations):
        print(f"Final metric: {iterations[-1].metric:g}")
    if image is not None:
        print(f"Registered image: {image.path}")


def save_json(result: RegistrationResult, output_json: Path) -> None:
    data = {
        'transform': result.transform.to_dict(),
        'iterations': [row._asdict() for row in result.iterations],
        'image': str(result.image.path) if result.image is not None else None,
    }
    output_json.parent.mkdir(parents=True, exist_ok=True)
    with open(output_json, 'w') as f:
        json.dump(data, f, indent=2)
    logger.info(f"Results saved to {output_json}")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    try:
        options = load_options(
            args.config,
            verbose=args.verbose,
            output_path=args.output,
            timeout=args.timeout,
            threads=args.threads,
            executable=args.executable
        )
        result = register(args.param_file, args.fixed, args.moving, options=options)
    except ElastixBridgeError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    print_summary(result)
    if args.output_json:
        save_json(result, args.output_json)
    return 0


if __name__ == '__main__':
    sys.exit(main())
