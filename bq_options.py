"""
bq_options.py
BigQuery schema options carried as protobuf custom options, and the policy deciding which
messages become tables.

Extensions understood (mirroring bq_field.proto, bq_table.proto and the tracking event options):

    extend google.protobuf.FieldOptions   { BigQueryFieldOptions   bigquery      = 1001; }
    extend google.protobuf.MessageOptions { BigQueryMessageOptions bigquery_opts = 1021; }
    extend google.protobuf.MessageOptions { string faceit.tracking.v1.event_name    = 50001; }
    extend google.protobuf.MessageOptions { int32  faceit.tracking.v1.event_version = 50002; }

Tag 1021 used to be a plain string (gen_bq_schema.table_name). That form is still decoded so
that the event annotations of old definitions remain readable, but only the event pair decides
whether a message gets a table and what the table is called.
"""
from typing import Any, Dict, Optional, Sequence

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import DecodeError

_FDP = descriptor_pb2.FieldDescriptorProto

DESCRIPTOR_PROTO = "google/protobuf/descriptor.proto"

FIELD_OPTIONS_EXTENSION = "gen_bq_schema.bigquery"
MESSAGE_OPTIONS_EXTENSION = "gen_bq_schema.bigquery_opts"
LEGACY_TABLE_NAME_EXTENSION = "gen_bq_schema.table_name"
EVENT_NAME_EXTENSION = "faceit.tracking.v1.event_name"
EVENT_VERSION_EXTENSION = "faceit.tracking.v1.event_version"

# files declaring the extensions above; they need not be present on disk
OPTION_FILES = ("bq_field.proto", "bq_table.proto", "faceit/tracking/v1/options.proto")


class BigQueryFieldOptions:
    def __init__(self, require: bool = False, type_override: str = "", ignore: bool = False,
                 description: str = "", name: str = ""):
        self.require = require
        self.type_override = type_override
        self.ignore = ignore
        self.description = description
        self.name = name

    def __repr__(self):
        return (f"BigQueryFieldOptions(require={self.require!r}, type_override={self.type_override!r}, "
                f"ignore={self.ignore!r}, description={self.description!r}, name={self.name!r})")


class BigQueryMessageOptions:
    def __init__(self, table_name: str = "", use_json_names: bool = False):
        self.table_name = table_name
        self.use_json_names = use_json_names

    def __repr__(self):
        return f"BigQueryMessageOptions(table_name={self.table_name!r}, use_json_names={self.use_json_names!r})"


# --- Option schema ---

def _field(name: str, number: int, field_type: int, type_name: str = None, extendee: str = None) -> _FDP:
    field = _FDP(name=name, number=number, type=field_type, label=_FDP.LABEL_OPTIONAL)
    if type_name:
        field.type_name = type_name
    if extendee:
        field.extendee = extendee
    return field


def _file(name: str, package: str) -> descriptor_pb2.FileDescriptorProto:
    return descriptor_pb2.FileDescriptorProto(name=name, package=package, dependency=[DESCRIPTOR_PROTO], syntax="proto2")


def _bq_field_file() -> descriptor_pb2.FileDescriptorProto:
    f = _file("bq_field.proto", "gen_bq_schema")
    msg = f.message_type.add(name="BigQueryFieldOptions")
    msg.field.extend([
        _field("require", 1, _FDP.TYPE_BOOL),
        _field("type_override", 2, _FDP.TYPE_STRING),
        _field("ignore", 3, _FDP.TYPE_BOOL),
        _field("description", 4, _FDP.TYPE_STRING),
        _field("name", 5, _FDP.TYPE_STRING),
    ])
    f.extension.append(_field("bigquery", 1001, _FDP.TYPE_MESSAGE, type_name=".gen_bq_schema.BigQueryFieldOptions",
                              extendee=".google.protobuf.FieldOptions"))
    return f


def _bq_table_file() -> descriptor_pb2.FileDescriptorProto:
    f = _file("bq_table.proto", "gen_bq_schema")
    msg = f.message_type.add(name="BigQueryMessageOptions")
    msg.field.extend([
        _field("table_name", 1, _FDP.TYPE_STRING),
        _field("use_json_names", 2, _FDP.TYPE_BOOL),
    ])
    f.extension.append(_field("bigquery_opts", 1021, _FDP.TYPE_MESSAGE, type_name=".gen_bq_schema.BigQueryMessageOptions",
                              extendee=".google.protobuf.MessageOptions"))
    return f


def _legacy_bq_table_file() -> descriptor_pb2.FileDescriptorProto:
    f = _file("bq_table.proto", "gen_bq_schema")
    f.extension.append(_field("table_name", 1021, _FDP.TYPE_STRING, extendee=".google.protobuf.MessageOptions"))
    return f


def _tracking_file() -> descriptor_pb2.FileDescriptorProto:
    f = _file("faceit/tracking/v1/options.proto", "faceit.tracking.v1")
    f.extension.extend([
        _field("event_name", 50001, _FDP.TYPE_STRING, extendee=".google.protobuf.MessageOptions"),
        _field("event_version", 50002, _FDP.TYPE_INT32, extendee=".google.protobuf.MessageOptions"),
    ])
    return f


class _OptionsSchema:
    """A descriptor pool knowing descriptor.proto plus one variant of the extension files."""

    def __init__(self, table_file: descriptor_pb2.FileDescriptorProto):
        self.pool = descriptor_pool.DescriptorPool()
        descriptor_file = descriptor_pb2.FileDescriptorProto()
        descriptor_pb2.DESCRIPTOR.CopyToProto(descriptor_file)
        files = [descriptor_file, _bq_field_file(), table_file, _tracking_file()]
        for file_proto in files:
            self.pool.AddSerializedFile(file_proto.SerializeToString())
        classes = message_factory.GetMessageClassesForFiles([f.name for f in files], self.pool)
        self.options_classes = {
            "google.protobuf.FieldOptions": classes["google.protobuf.FieldOptions"],
            "google.protobuf.MessageOptions": classes["google.protobuf.MessageOptions"],
        }

    def extension(self, full_name: str):
        return self.pool.FindExtensionByName(full_name)

    def parse(self, options):
        """Re-read descriptor_pb2 options so that the custom extensions are decoded."""
        options_class = self.options_classes[options.DESCRIPTOR.full_name]
        return options_class.FromString(options.SerializeToString())


_CURRENT = _OptionsSchema(_bq_table_file())
_LEGACY = _OptionsSchema(_legacy_bq_table_file())


# --- Encoding ---

def _merge_values(msg, values: Dict[str, Any]) -> None:
    msg.SetInParent()
    for key, value in values.items():
        if isinstance(value, dict):
            _merge_values(getattr(msg, key), value)
        else:
            setattr(msg, key, value)


def knows_extension(options, extension_name: str) -> bool:
    """True if extension_name is one of the understood extensions and it extends this kind of options."""
    for schema in (_CURRENT, _LEGACY):
        try:
            ext = schema.extension(extension_name)
        except KeyError:
            continue
        return ext.containing_type.full_name == options.DESCRIPTOR.full_name
    return False


def set_extension_option(options, extension_name: str, value: Any, path: Sequence[str] = ()) -> None:
    """
    Set a custom option on descriptor_pb2 FieldOptions/MessageOptions in place.

    Args:
        options: descriptor_pb2.FieldOptions or descriptor_pb2.MessageOptions
        extension_name: full extension name, e.g. 'gen_bq_schema.bigquery'
        value: scalar value, or a dict of sub-field values for message extensions
        path: sub-field path inside a message extension, e.g. ('ignore',)

    Raises:
        KeyError: the extension is unknown
    """
    schema = _CURRENT
    try:
        ext = schema.extension(extension_name)
    except KeyError:
        schema = _LEGACY
        ext = schema.extension(extension_name)

    dynamic = schema.parse(options)
    if path:
        target = dynamic.Extensions[ext]
        for component in path[:-1]:
            target = getattr(target, component)
        if isinstance(value, dict):
            _merge_values(getattr(target, path[-1]), value)
        else:
            setattr(target, path[-1], value)
    elif isinstance(value, dict):
        _merge_values(dynamic.Extensions[ext], value)
    else:
        dynamic.Extensions[ext] = value
    options.CopyFrom(type(options).FromString(dynamic.SerializeToString()))


def bigquery_field_options(**values) -> descriptor_pb2.FieldOptions:
    """FieldOptions carrying a (gen_bq_schema.bigquery) extension with the given values."""
    options = descriptor_pb2.FieldOptions()
    set_extension_option(options, FIELD_OPTIONS_EXTENSION, values)
    return options


def event_message_options(event_name: Optional[str] = None, event_version: Optional[int] = None,
                          use_json_names: Optional[bool] = None) -> descriptor_pb2.MessageOptions:
    options = descriptor_pb2.MessageOptions()
    if event_name is not None:
        set_extension_option(options, EVENT_NAME_EXTENSION, event_name)
    if event_version is not None:
        set_extension_option(options, EVENT_VERSION_EXTENSION, event_version)
    if use_json_names is not None:
        set_extension_option(options, MESSAGE_OPTIONS_EXTENSION, use_json_names, path=("use_json_names",))
    return options


# --- Decoding and policy ---

def get_bigquery_field_options(field: descriptor_pb2.FieldDescriptorProto) -> Optional[BigQueryFieldOptions]:
    """Returns the (gen_bq_schema.bigquery) options of a field, or None when it has none."""
    if not field.HasField("options"):
        return None
    parsed = _CURRENT.parse(field.options)
    ext = _CURRENT.extension(FIELD_OPTIONS_EXTENSION)
    if not parsed.HasExtension(ext):
        return None
    opt = parsed.Extensions[ext]
    return BigQueryFieldOptions(
        require=opt.require,
        type_override=opt.type_override,
        ignore=opt.ignore,
        description=opt.description,
        name=opt.name,
    )


def get_bigquery_message_options(msg: descriptor_pb2.DescriptorProto) -> Optional[BigQueryMessageOptions]:
    """
    Returns the bigquery options for the given message, or None if the message does not carry
    both the event_name and the event_version annotation. The table name is always
    '<event_name>_v<event_version>'.
    """
    if not msg.HasField("options"):
        return None

    schema = _CURRENT
    try:
        parsed = schema.parse(msg.options)
    except DecodeError:
        schema = _LEGACY
        parsed = schema.parse(msg.options)

    name_ext = schema.extension(EVENT_NAME_EXTENSION)
    version_ext = schema.extension(EVENT_VERSION_EXTENSION)
    if not parsed.HasExtension(name_ext) or not parsed.HasExtension(version_ext):
        return None

    event_name = parsed.Extensions[name_ext]
    if event_name == "":
        return None
    event_version = parsed.Extensions[version_ext]

    use_json_names = False
    if schema is _CURRENT:
        opts_ext = schema.extension(MESSAGE_OPTIONS_EXTENSION)
        if parsed.HasExtension(opts_ext):
            use_json_names = parsed.Extensions[opts_ext].use_json_names

    return BigQueryMessageOptions(table_name=f"{event_name}_v{event_version}", use_json_names=use_json_names)
