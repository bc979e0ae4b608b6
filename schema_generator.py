"""
schema_generator.py
Generates one BigQuery schema document per annotated top-level message of the requested files.

Generation runs in two passes: every message type of every input file is registered first,
then the requested files are converted. Types may therefore refer to types declared later in
the input or in files that were not requested.
"""
import json
import sys
from collections import namedtuple
from typing import Iterable, List

from google.protobuf.descriptor_pb2 import FileDescriptorProto
from google.protobuf.message import DecodeError

from bq_options import get_bigquery_message_options
from proto_package import TypeRegistry
from schema_converter import ConversionError, Field, SchemaConverter
from type_resolver import TypeResolver

GeneratedFile = namedtuple("GeneratedFile", ["name", "content"])

# JSON Schema (draft 7) of a generated .schema document
SCHEMA_DOCUMENT_JSON_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "BigQuery table schema",
    "type": "array",
    "items": {"$ref": "#/definitions/field"},
    "definitions": {
        "field": {
            "type": "object",
            "properties": {
                "name": {"type": "string", "minLength": 1},
                "type": {"type": "string", "minLength": 1},
                "mode": {"enum": ["NULLABLE", "REQUIRED", "REPEATED"]},
                "description": {"type": "string", "minLength": 1},
                "fields": {
                    "type": "array",
                    "minItems": 1,
                    "items": {"$ref": "#/definitions/field"},
                },
            },
            "required": ["name", "type", "mode"],
            "additionalProperties": False,
        },
    },
}


class FileConversionError(Exception):
    def __init__(self, file_name: str, cause: Exception):
        self.file_name = file_name
        self.cause = cause
        super().__init__(f"Failed to convert {file_name}: {cause}")


def schema_output_path(package: str, table_name: str) -> str:
    """'foo.bar' + 'purchase_v2' -> 'foo/bar/purchase_v2.schema'"""
    file_name = f"{table_name}.schema"
    if not package:
        return file_name
    return package.replace(".", "/") + "/" + file_name


def render_schema(schema: List[Field]) -> str:
    # '<', '>' and '&' are written as is; Go-based generators escape them as \u003c, \u003e, \u0026
    return json.dumps([f.to_dict() for f in schema], indent=1, ensure_ascii=False)


class BigQuerySchemaGenerator:
    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.registry = None
        self.converter = None

    def debug_print(self, message: str) -> None:
        if self.verbose:
            print(message, file=sys.stderr)

    def generate(self, proto_files: Iterable[FileDescriptorProto], files_to_generate: Iterable[str]) -> List[GeneratedFile]:
        """
        Generate schema files for all requested files.

        Args:
            proto_files: every file of the batch, including dependencies
            files_to_generate: names of the files to produce schemas for

        Returns:
            List[GeneratedFile]: generated schema files, in input order

        Raises:
            FileConversionError: a requested file could not be converted; nothing is generated
        """
        proto_files = list(proto_files)
        targets = set(files_to_generate)

        self.registry = TypeRegistry(self.verbose)
        self.converter = SchemaConverter(TypeResolver(self.registry, self.verbose), self.verbose)
        for file_desc in proto_files:
            self.registry.register_file(file_desc)

        generated = []
        for file_desc in proto_files:
            if file_desc.name not in targets:
                continue
            self.debug_print(f"[DEBUG] Converting {file_desc.name}")
            try:
                generated.extend(self.convert_file(file_desc))
            except (ConversionError, DecodeError) as e:
                print(f"Error: Failed to convert {file_desc.name}: {e}", file=sys.stderr)
                raise FileConversionError(file_desc.name, e) from e
        return generated

    def convert_file(self, file_desc: FileDescriptorProto) -> List[GeneratedFile]:
        pkg = self.registry.lookup_package(file_desc.package)
        if pkg is None:
            raise ConversionError(f"no such package found: {file_desc.package}")

        response = []
        for msg in file_desc.message_type:
            opts = get_bigquery_message_options(msg)
            if opts is None:
                continue

            self.debug_print(f"[DEBUG] Generating schema for a message type {msg.name}")
            schema = self.converter.convert_message_type(pkg, msg, opts)
            response.append(GeneratedFile(
                name=schema_output_path(file_desc.package, opts.table_name),
                content=render_schema(schema),
            ))
        return response
