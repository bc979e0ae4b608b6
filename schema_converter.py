"""
schema_converter.py
Converts protobuf message descriptors into BigQuery table schemas (lists of Field columns).
"""
import sys
from typing import Any, Dict, List, Optional

from google.protobuf.descriptor_pb2 import DescriptorProto, FieldDescriptorProto

from bq_options import BigQueryMessageOptions, get_bigquery_field_options, get_bigquery_message_options
from proto_package import ProtoPackage
from type_resolver import TypeResolver

_FDP = FieldDescriptorProto

TYPE_FROM_WKT = {
    ".google.protobuf.Int32Value": "INTEGER",
    ".google.protobuf.Int64Value": "INTEGER",
    ".google.protobuf.UInt32Value": "INTEGER",
    ".google.protobuf.UInt64Value": "INTEGER",
    ".google.protobuf.DoubleValue": "FLOAT",
    ".google.protobuf.FloatValue": "FLOAT",
    ".google.protobuf.BoolValue": "BOOLEAN",
    ".google.protobuf.StringValue": "STRING",
    ".google.protobuf.BytesValue": "BYTES",
    ".google.protobuf.Duration": "STRING",
    ".google.protobuf.Timestamp": "TIMESTAMP",
}

TYPE_FROM_FIELD_TYPE = {
    _FDP.TYPE_DOUBLE: "FLOAT",
    _FDP.TYPE_FLOAT: "FLOAT",

    _FDP.TYPE_INT64: "INTEGER",
    _FDP.TYPE_UINT64: "INTEGER",
    _FDP.TYPE_INT32: "INTEGER",
    _FDP.TYPE_UINT32: "INTEGER",
    _FDP.TYPE_FIXED64: "INTEGER",
    _FDP.TYPE_FIXED32: "INTEGER",
    _FDP.TYPE_SFIXED32: "INTEGER",
    _FDP.TYPE_SFIXED64: "INTEGER",
    _FDP.TYPE_SINT32: "INTEGER",
    _FDP.TYPE_SINT64: "INTEGER",

    _FDP.TYPE_STRING: "STRING",
    _FDP.TYPE_BYTES: "BYTES",
    _FDP.TYPE_ENUM: "STRING",

    _FDP.TYPE_BOOL: "BOOLEAN",

    _FDP.TYPE_GROUP: "RECORD",
    _FDP.TYPE_MESSAGE: "RECORD",
}

MODE_FROM_FIELD_LABEL = {
    _FDP.LABEL_OPTIONAL: "NULLABLE",
    _FDP.LABEL_REQUIRED: "REQUIRED",
    _FDP.LABEL_REPEATED: "REPEATED",
}


class ConversionError(Exception):
    pass


class CyclicTypeError(ConversionError):
    def __init__(self, chain: List[str]):
        self.chain = list(chain)
        super().__init__("cyclic message type: " + " -> ".join(self.chain))


def _enum_name(enum_type, value: int) -> str:
    try:
        return enum_type.Name(value)
    except ValueError:
        return str(value)


class Field:
    """
    One column of a BigQuery schema. RECORD columns carry their sub-columns in fields.
    """

    def __init__(self, name: str, type: str, mode: str, description: str = "", fields: Optional[List['Field']] = None):
        self.name = name
        self.type = type
        self.mode = mode
        self.description = description
        self.fields = fields or []

    def to_dict(self) -> Dict[str, Any]:
        d = {"name": self.name, "type": self.type, "mode": self.mode}
        if self.description:
            d["description"] = self.description
        if self.fields:
            d["fields"] = [f.to_dict() for f in self.fields]
        return d

    def __eq__(self, other):
        return isinstance(other, Field) and self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"Field(name={self.name!r}, type={self.type!r}, mode={self.mode!r}, fields={self.fields!r})"


class SchemaConverter:
    """
    Converts message types to BigQuery columns, following message-typed fields into
    nested RECORD columns.
    """

    def __init__(self, resolver: TypeResolver, verbose: bool = False):
        self.resolver = resolver
        self.verbose = verbose
        # absolute names of the message types currently being expanded
        self._expanding: List[str] = []

    def debug_print(self, message: str) -> None:
        if self.verbose:
            print(message, file=sys.stderr)

    def convert_message_type(self, cur_pkg: ProtoPackage, msg: DescriptorProto,
                             opts: Optional[BigQueryMessageOptions]) -> List[Field]:
        return self._convert_message_type(cur_pkg, msg, opts, cur_pkg.qualify(msg.name))

    def _convert_message_type(self, cur_pkg: ProtoPackage, msg: DescriptorProto,
                              opts: Optional[BigQueryMessageOptions], full_name: str) -> List[Field]:
        if full_name in self._expanding:
            raise CyclicTypeError(self._expanding[self._expanding.index(full_name):] + [full_name])

        self.debug_print(f"[DEBUG] Converting message: {full_name}")
        self._expanding.append(full_name)
        try:
            schema = []
            for field_desc in msg.field:
                try:
                    field = self.convert_field(cur_pkg, field_desc, opts)
                except ConversionError as e:
                    print(f"Error: Failed to convert field {field_desc.name} in {msg.name}: {e}", file=sys.stderr)
                    raise
                # a None field was dropped on purpose
                if field is not None:
                    schema.append(field)
            return schema
        finally:
            self._expanding.pop()

    def convert_field(self, cur_pkg: ProtoPackage, desc: FieldDescriptorProto,
                      msg_opts: Optional[BigQueryMessageOptions]) -> Optional[Field]:
        """
        Convert a single field.

        Returns:
            Field, or None when the field is ignored or is a RECORD without any columns

        Raises:
            ConversionError: malformed field or unresolvable message type
        """
        name = desc.name
        if msg_opts is not None and msg_opts.use_json_names and desc.json_name:
            name = desc.json_name

        mode = MODE_FROM_FIELD_LABEL.get(desc.label)
        if mode is None:
            raise ConversionError(f"unrecognized field label: {_enum_name(_FDP.Label, desc.label)}")

        field_type = TYPE_FROM_FIELD_TYPE.get(desc.type)
        if field_type is None:
            raise ConversionError(f"unrecognized field type: {_enum_name(_FDP.Type, desc.type)}")

        description = ""
        opt = get_bigquery_field_options(desc)
        if opt is not None:
            if opt.ignore:
                self.debug_print(f"[DEBUG] Ignoring field {desc.name}")
                return None
            if opt.require:
                mode = "REQUIRED"
            if opt.type_override:
                field_type = opt.type_override
            if opt.name:
                name = opt.name
            if opt.description:
                description = opt.description

        if field_type != "RECORD":
            return Field(name, field_type, mode, description)

        wkt_type = TYPE_FROM_WKT.get(desc.type_name)
        if wkt_type is not None:
            return Field(name, wkt_type, mode, description)

        record_type = self.resolver.resolve(cur_pkg, desc.type_name)
        if record_type is None:
            raise ConversionError(f"no such message type named {desc.type_name}")

        field_msg_opts = get_bigquery_message_options(record_type.message)
        fields = self._convert_message_type(record_type.package, record_type.message, field_msg_opts,
                                            record_type.full_name)
        if not fields:
            # discard RECORDs that would have zero fields
            self.debug_print(f"[DEBUG] Dropping field {desc.name}: {desc.type_name} has no columns")
            return None

        return Field(name, field_type, mode, description, fields)
