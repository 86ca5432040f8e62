#!/usr/bin/env python3
"""
find-malloc

Command-line interface for exporting the allocator of a WebAssembly module.

Usage:
    find-malloc <input-file> <output-file>
    find-malloc -h | --help
    find-malloc --version

Arguments:
    input-file     Path to the WebAssembly module to read
    output-file    Path the (possibly updated) module is written to

Options:
    -h --help      Show this help message
    --version      Show version
    --config PATH  Path to a JSON config file
    -v             Increase log verbosity (repeatable)
    -q             Only log errors
"""

import sys
import argparse
from pathlib import Path

from . import __version__
from .config import Config
from .executor.malloc_exporter import MallocExporter
from .formats.wasm import WasmModule
from .io.binary_stream import DecodeError, EncodeError
from .search.malloc_finder import Detection
from .util import set_verbosity


def process(input_path: str, output_path: str, config: Config) -> Detection:
    """
    Read a module, export its allocator and write the result.

    The output file is only created once the module has been fully
    encoded, so a failure never leaves a partial file behind.

    Args:
        input_path: Module to read
        output_path: Where to write the result
        config: Configuration

    Returns:
        The search outcome

    Raises:
        DecodeError: If the input module is malformed
        EncodeError: If the module cannot be re-encoded
        OSError: If a file cannot be read or written
    """
    data = Path(input_path).read_bytes()
    module = WasmModule.decode(data)

    detection = MallocExporter(module, config).run()

    output = module.encode()
    Path(output_path).write_bytes(output)
    return detection


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="find-malloc - Export the allocator of a WebAssembly module",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument('input', help='WebAssembly module to read')
    parser.add_argument('output', help='Path to write the module to')
    parser.add_argument('--version', action='version', version=f'find-malloc {__version__}')
    parser.add_argument('--config', type=str, help='Path to config.json')
    parser.add_argument('-v', '--verbose', action='count', default=0,
                        help='Increase log verbosity')
    parser.add_argument('-q', '--quiet', action='store_true', help='Only log errors')

    args = parser.parse_args(argv)

    set_verbosity(-1 if args.quiet else args.verbose)

    # Load config
    config_path = Path(args.config) if args.config else None
    config = Config.load(config_path)

    try:
        detection = process(args.input, args.output, config)
    except DecodeError as e:
        print(f"ERROR: Parsing error at offset 0x{e.offset:08X}: {e.reason}", file=sys.stderr)
        sys.exit(1)
    except (EncodeError, OSError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"{args.output}: {detection.outcome.value}")
    return 0


if __name__ == "__main__":
    main()
