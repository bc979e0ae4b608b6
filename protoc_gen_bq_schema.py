#!/usr/bin/env python3
"""
protoc-gen-bq-schema

protoc plugin which converts .proto to schema for BigQuery.
It is spawned by protoc and generates schema for BigQuery, encoded in JSON.

Usage:
    protoc --plugin=protoc-gen-bq-schema --bq-schema_out=path/to/outdir foo.proto
    protoc --plugin=protoc-gen-bq-schema --bq-schema_out=verbose:path/to/outdir foo.proto

Only messages annotated with both (faceit.tracking.v1.event_name) and
(faceit.tracking.v1.event_version) produce a schema, written to
<package/as/dirs>/<event_name>_v<event_version>.schema.
"""
import sys
from typing import BinaryIO, Optional

from google.protobuf.compiler import plugin_pb2
from google.protobuf.message import DecodeError

from plugin_config import PluginConfig
from schema_generator import BigQuerySchemaGenerator, FileConversionError


def convert_request(request: plugin_pb2.CodeGeneratorRequest,
                    config: Optional[PluginConfig] = None) -> plugin_pb2.CodeGeneratorResponse:
    """
    Convert a code generation request. Failures are reported through response.error and
    leave the response without files.
    """
    response = plugin_pb2.CodeGeneratorResponse()
    response.supported_features = plugin_pb2.CodeGeneratorResponse.FEATURE_PROTO3_OPTIONAL

    if config is None:
        try:
            config = PluginConfig.from_parameter(request.parameter)
        except ValueError as e:
            response.error = str(e)
            return response

    generator = BigQuerySchemaGenerator(verbose=config.verbose)
    try:
        generated = generator.generate(request.proto_file, request.file_to_generate)
    except FileConversionError as e:
        response.error = str(e)
        return response

    for generated_file in generated:
        response.file.add(name=generated_file.name, content=generated_file.content)
    return response


def convert_from(rd: BinaryIO) -> plugin_pb2.CodeGeneratorResponse:
    """
    Read a serialized CodeGeneratorRequest and convert it.

    Raises:
        DecodeError: the input is not a CodeGeneratorRequest
    """
    data = rd.read()
    request = plugin_pb2.CodeGeneratorRequest.FromString(data)
    return convert_request(request)


def main():
    """
    Main entry point of the plugin.
    """
    try:
        response = convert_from(sys.stdin.buffer)
    except DecodeError as e:
        print(f"Error: Can't unmarshal input: {e}", file=sys.stderr)
        sys.exit(1)

    sys.stdout.buffer.write(response.SerializeToString())
    sys.stdout.buffer.flush()


if __name__ == '__main__':
    main()
