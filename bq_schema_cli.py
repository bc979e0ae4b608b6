#!/usr/bin/env python3
"""
bq-schema

Generates BigQuery schema files directly from .proto sources, without protoc.
Produces the same files as the protoc plugin (protoc_gen_bq_schema.py).

Usage:
    python bq_schema_cli.py --input <file.proto> [<file.proto> ...] --output <output_dir> [--proto-path <dir>] [--verbose]

Arguments:
    --input, -i       : .proto files to generate schemas for
    --output, -o      : Directory where the .schema files will be written
    --proto-path, -I  : Directory to search for imports (repeatable).
                        Defaults to the directories of the input files.
    --verbose, -v     : Print debug information on stderr
    --help, -h        : Show this help message

Environment:
    BQ_SCHEMA_OUTPUT_DIR : overrides --output
    BQ_SCHEMA_VERBOSE    : overrides --verbose

Example:
    python bq_schema_cli.py -I protos --input protos/shop/purchase.proto --output ./generated
"""

import argparse
import os
import sys
from typing import List, Optional, Sequence

from plugin_config import parse_bool
from proto_loader import ProtoLoader, ProtoLoadError
from schema_generator import BigQuerySchemaGenerator, FileConversionError, GeneratedFile


class SchemaFileConverter:
    """
    Loads .proto files and writes the BigQuery schemas generated from them.
    """

    def __init__(self, input_files: Sequence[str], output_dir: str, proto_paths: Sequence[str] = (), verbose: bool = False):
        """
        Initialize the converter with input files and output directory.

        Args:
            input_files: .proto files to generate schemas for
            output_dir: Directory where output files will be generated
            proto_paths: Directories searched for imports
            verbose: Whether to print debug information (default: False)
        """
        self.input_files = list(input_files)
        self.output_dir = output_dir
        self.proto_paths = list(proto_paths)
        self.verbose = verbose
        self.request = None
        self.written: List[str] = []

    def parse_input_files(self) -> bool:
        """
        Load the input files and their imports.

        Returns:
            bool: True if loading was successful, False otherwise
        """
        loader = ProtoLoader(self.proto_paths, self.verbose)
        try:
            self.request = loader.load(self.input_files)
        except ProtoLoadError as e:
            print(f"Error: {e}", file=sys.stderr)
            return False
        return True

    def generate_schemas(self) -> bool:
        """
        Generate the schema files for the loaded input files.

        Returns:
            bool: True if generation was successful, False otherwise
        """
        if self.request is None:
            print("Error: No proto files loaded. Parse input files first.", file=sys.stderr)
            return False

        generator = BigQuerySchemaGenerator(verbose=self.verbose)
        try:
            generated = generator.generate(self.request.proto_file, self.request.file_to_generate)
        except FileConversionError as e:
            print(f"Error: {e}", file=sys.stderr)
            return False

        for generated_file in generated:
            self.write_file(generated_file)
        return True

    def write_file(self, generated_file: GeneratedFile) -> str:
        out_path = os.path.join(self.output_dir, *generated_file.name.split("/"))
        os.makedirs(os.path.dirname(out_path), exist_ok=True)
        with open(out_path, "w", encoding="utf-8", newline="") as f:
            f.write(generated_file.content)
        self.written.append(out_path)
        if self.verbose:
            print(f"Wrote {out_path}", file=sys.stderr)
        return out_path


def parse_arguments(argv: Optional[Sequence[str]] = None):
    """
    Parse command line arguments.

    Returns:
        argparse.Namespace: Parsed command line arguments
    """
    parser = argparse.ArgumentParser(
        description="Generate BigQuery schema files from .proto message definitions",
        formatter_class=argparse.RawTextHelpFormatter
    )

    parser.add_argument('--input', '-i', nargs='+', required=True, help='.proto files to generate schemas for')
    parser.add_argument('--output', '-o', required=True, help='Directory where schema files will be generated')
    parser.add_argument('--proto-path', '-I', action='append', default=[],
                        help='Directory to search for imports (repeatable, default: directories of the inputs)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose output for debugging')

    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None):
    """
    Main entry point of the script.
    """
    args = parse_arguments(argv)

    # Override with environment variables if set
    output_dir = os.environ.get('BQ_SCHEMA_OUTPUT_DIR', args.output)
    verbose = args.verbose
    if 'BQ_SCHEMA_VERBOSE' in os.environ:
        try:
            verbose = parse_bool('BQ_SCHEMA_VERBOSE', os.environ['BQ_SCHEMA_VERBOSE'])
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)

    converter = SchemaFileConverter(args.input, output_dir, args.proto_path, verbose)

    if not converter.parse_input_files():
        sys.exit(1)

    if not converter.generate_schemas():
        print("Schema generation completed with errors.")
        sys.exit(1)

    print(f"Schema generation completed successfully ({len(converter.written)} file(s) written).")


if __name__ == '__main__':
    main()
