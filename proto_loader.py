"""
proto_loader.py
Loads .proto source files (and, recursively, their imports) into FileDescriptorProtos, the same
shape protoc hands to its plugins, so schemas can be generated without running protoc.
"""
import ast
import os
import sys
from typing import Dict, List, Optional, Sequence, Tuple

from google.protobuf import descriptor_pb2, descriptor_pool
# registers the well-known type files in the default pool
from google.protobuf import (any_pb2, api_pb2, duration_pb2, empty_pb2, field_mask_pb2,  # noqa: F401
                             source_context_pb2, struct_pb2, timestamp_pb2, type_pb2, wrappers_pb2)
from google.protobuf.compiler import plugin_pb2
from lark import Token, Transformer
from lark.exceptions import UnexpectedInput, VisitError

from bq_options import OPTION_FILES, knows_extension, set_extension_option
from proto_parser import parse_proto

_FDP = descriptor_pb2.FieldDescriptorProto

SCALAR_TYPES = {
    "double": _FDP.TYPE_DOUBLE,
    "float": _FDP.TYPE_FLOAT,
    "int64": _FDP.TYPE_INT64,
    "uint64": _FDP.TYPE_UINT64,
    "int32": _FDP.TYPE_INT32,
    "fixed64": _FDP.TYPE_FIXED64,
    "fixed32": _FDP.TYPE_FIXED32,
    "bool": _FDP.TYPE_BOOL,
    "string": _FDP.TYPE_STRING,
    "bytes": _FDP.TYPE_BYTES,
    "uint32": _FDP.TYPE_UINT32,
    "sfixed32": _FDP.TYPE_SFIXED32,
    "sfixed64": _FDP.TYPE_SFIXED64,
    "sint32": _FDP.TYPE_SINT32,
    "sint64": _FDP.TYPE_SINT64,
}

LABELS = {
    "optional": _FDP.LABEL_OPTIONAL,
    "required": _FDP.LABEL_REQUIRED,
    "repeated": _FDP.LABEL_REPEATED,
}


class ProtoLoadError(Exception):
    pass


class ProtoSyntaxError(ProtoLoadError):
    def __init__(self, file_name: str, line: Optional[int], message: str):
        self.file_name = file_name
        self.line = line
        location = f"{file_name}:{line}" if line else file_name
        super().__init__(f"{location}: {message}")


def to_json_name(name: str) -> str:
    """Default JSON name of a field, as protoc computes it: 'foo_bar' -> 'fooBar'."""
    result = []
    capitalize_next = False
    for ch in name:
        if ch == "_":
            capitalize_next = True
        elif capitalize_next:
            result.append(ch.upper())
            capitalize_next = False
        else:
            result.append(ch)
    return "".join(result)


def map_entry_name(field_name: str) -> str:
    """'my_map' -> 'MyMapEntry'"""
    result = []
    capitalize_next = True
    for ch in field_name:
        if ch == "_":
            capitalize_next = True
        elif capitalize_next:
            result.append(ch.upper())
            capitalize_next = False
        else:
            result.append(ch)
    return "".join(result) + "Entry"


def _to_int(text: str) -> int:
    sign = -1 if text.startswith("-") else 1
    digits = text.lstrip("+-")
    if digits[:2] in ("0x", "0X"):
        return sign * int(digits, 16)
    if len(digits) > 1 and digits.startswith("0"):
        return sign * int(digits, 8)
    return sign * int(digits)


class OptionName:
    def __init__(self, name: str, custom: bool, path: Tuple[str, ...] = ()):
        self.name = name
        self.custom = custom
        self.path = path

    def __str__(self):
        head = f"({self.name})" if self.custom else self.name
        return ".".join((head,) + self.path)


class _CustomName(str):
    pass


class _OptionSetting:
    def __init__(self, name: OptionName, value):
        self.name = name
        self.value = value


class _FileStatement:
    def __init__(self, kind: str, value: str, modifier: str = ""):
        self.kind = kind
        self.value = value
        self.modifier = modifier


class _MapField:
    def __init__(self, field: _FDP, entry: descriptor_pb2.DescriptorProto):
        self.field = field
        self.entry = entry


class _Oneof:
    def __init__(self, name: str, fields: List[_FDP]):
        self.name = name
        self.fields = fields


class DescriptorBuilder(Transformer):
    """
    Turns the lark tree of one .proto file into a FileDescriptorProto.
    Field types that are not scalars are left in type_name, unresolved, with no type set.
    """

    def __init__(self, file_name: str, verbose: bool = False):
        super().__init__()
        self.file_name = file_name
        self.verbose = verbose

    def debug_print(self, message: str) -> None:
        if self.verbose:
            print(message, file=sys.stderr)

    # --- Options ---

    def _apply_option(self, options, setting: _OptionSetting) -> None:
        option = setting.name
        if option.custom:
            if not knows_extension(options, option.name):
                self.debug_print(f"[DEBUG] {self.file_name}: skipping unknown option {option}")
                return
            try:
                set_extension_option(options, option.name, setting.value, option.path)
            except (AttributeError, TypeError, ValueError) as e:
                raise ProtoLoadError(f"{self.file_name}: invalid value for option {option}: {e}")
            return

        if option.path or option.name not in options.DESCRIPTOR.fields_by_name:
            self.debug_print(f"[DEBUG] {self.file_name}: skipping option {option}")
            return
        try:
            setattr(options, option.name, setting.value)
        except (AttributeError, TypeError, ValueError) as e:
            self.debug_print(f"[DEBUG] {self.file_name}: skipping option {option}: {e}")

    def _apply_field_options(self, field: _FDP, settings: List[_OptionSetting]) -> None:
        for setting in settings:
            if not setting.name.custom and setting.name.name == "json_name":
                field.json_name = setting.value
            else:
                self._apply_option(field.options, setting)

    def _make_field(self, label: int, type_name: str, name: str, number: str) -> _FDP:
        field = _FDP(name=name, number=_to_int(number), label=label, json_name=to_json_name(name))
        if type_name in SCALAR_TYPES:
            field.type = SCALAR_TYPES[type_name]
        else:
            # resolved once every file is loaded
            field.type_name = type_name
        return field

    # --- Values ---

    def full_ident(self, items):
        return ".".join(str(item) for item in items)

    def relative_type(self, items):
        return items[0]

    def absolute_type(self, items):
        return "." + items[0]

    def string_lit(self, items):
        return "".join(ast.literal_eval(str(item)) for item in items)

    def number(self, items):
        text = str(items[0])
        try:
            return _to_int(text)
        except ValueError:
            return float(text)

    def ident_value(self, items):
        if items[0] == "true":
            return True
        if items[0] == "false":
            return False
        return items[0]

    def aggregate(self, items):
        return dict(items)

    def aggregate_field(self, items):
        return str(items[0]), items[1]

    def custom_option_name(self, items):
        return _CustomName(items[0])

    def option_name(self, items):
        head, path = items[0], tuple(str(item) for item in items[1:])
        if isinstance(head, _CustomName):
            return OptionName(str(head), custom=True, path=path)
        return OptionName(str(head), custom=False, path=path)

    def option_stmt(self, items):
        return _OptionSetting(items[0], items[1])

    def field_option(self, items):
        return _OptionSetting(items[0], items[1])

    def field_options(self, items):
        return list(items)

    # --- Declarations ---

    def field(self, items):
        label = _FDP.LABEL_OPTIONAL
        if isinstance(items[0], Token) and items[0].type == "LABEL":
            label = LABELS[str(items[0])]
            items = items[1:]
        type_name, name, number = items[0], str(items[1]), str(items[2])
        field = self._make_field(label, type_name, name, number)
        if len(items) > 3:
            self._apply_field_options(field, items[3])
        return field

    def map_field(self, items):
        key_type, value_type, name, number = str(items[0]), items[1], str(items[2]), str(items[3])
        if key_type not in SCALAR_TYPES:
            raise ProtoLoadError(f"{self.file_name}: map key of {name} must be a scalar type, not {key_type}")

        entry = descriptor_pb2.DescriptorProto(name=map_entry_name(name))
        entry.options.map_entry = True
        entry.field.append(self._make_field(_FDP.LABEL_OPTIONAL, key_type, "key", "1"))
        entry.field.append(self._make_field(_FDP.LABEL_OPTIONAL, value_type, "value", "2"))

        field = self._make_field(_FDP.LABEL_REPEATED, entry.name, name, number)
        if len(items) > 4:
            self._apply_field_options(field, items[4])
        return _MapField(field, entry)

    def oneof(self, items):
        fields = [item for item in items[1:] if isinstance(item, _FDP)]
        return _Oneof(str(items[0]), fields)

    def enum_value(self, items):
        value = descriptor_pb2.EnumValueDescriptorProto(name=str(items[0]), number=_to_int(str(items[1])))
        if len(items) > 2:
            for setting in items[2]:
                self._apply_option(value.options, setting)
        return value

    def enum(self, items):
        enum = descriptor_pb2.EnumDescriptorProto(name=str(items[0]))
        for item in items[1:]:
            if isinstance(item, descriptor_pb2.EnumValueDescriptorProto):
                enum.value.append(item)
            elif isinstance(item, _OptionSetting):
                self._apply_option(enum.options, item)
        return enum

    def message(self, items):
        msg = descriptor_pb2.DescriptorProto(name=str(items[0]))
        for item in items[1:]:
            if isinstance(item, _FDP):
                msg.field.append(item)
            elif isinstance(item, _MapField):
                msg.nested_type.append(item.entry)
                msg.field.append(item.field)
            elif isinstance(item, _Oneof):
                index = len(msg.oneof_decl)
                msg.oneof_decl.add(name=item.name)
                for field in item.fields:
                    field.oneof_index = index
                    msg.field.append(field)
            elif isinstance(item, descriptor_pb2.DescriptorProto):
                msg.nested_type.append(item)
            elif isinstance(item, descriptor_pb2.EnumDescriptorProto):
                msg.enum_type.append(item)
            elif isinstance(item, _OptionSetting):
                self._apply_option(msg.options, item)
        return msg

    def reserved(self, items):
        return None

    def extensions(self, items):
        return None

    def extend(self, items):
        self.debug_print(f"[DEBUG] {self.file_name}: ignoring extend block for {items[0]}")
        return None

    def service(self, items):
        self.debug_print(f"[DEBUG] {self.file_name}: ignoring service {items[0]}")
        return None

    def rpc(self, items):
        return None

    def rpc_body(self, items):
        return None

    # --- File ---

    def syntax(self, items):
        return _FileStatement("syntax", items[0])

    def edition(self, items):
        return _FileStatement("edition", items[0])

    def package(self, items):
        return _FileStatement("package", items[0])

    def import_stmt(self, items):
        modifier = ""
        if isinstance(items[0], Token) and items[0].type == "IMPORT_MODIFIER":
            modifier = str(items[0])
            items = items[1:]
        return _FileStatement("import", items[0], modifier)

    def start(self, items):
        file_desc = descriptor_pb2.FileDescriptorProto(name=self.file_name)
        for item in items:
            if isinstance(item, _FileStatement):
                if item.kind == "syntax":
                    file_desc.syntax = item.value
                elif item.kind == "edition":
                    file_desc.syntax = "editions"
                elif item.kind == "package":
                    file_desc.package = item.value
                elif item.kind == "import":
                    index = len(file_desc.dependency)
                    file_desc.dependency.append(item.value)
                    if item.modifier == "public":
                        file_desc.public_dependency.append(index)
                    elif item.modifier == "weak":
                        file_desc.weak_dependency.append(index)
            elif isinstance(item, descriptor_pb2.DescriptorProto):
                file_desc.message_type.append(item)
            elif isinstance(item, descriptor_pb2.EnumDescriptorProto):
                file_desc.enum_type.append(item)
            elif isinstance(item, _OptionSetting):
                self._apply_option(file_desc.options, item)
        return file_desc


def _join(scope: str, name: str) -> str:
    return f"{scope}.{name}" if scope else name


class ProtoLoader:
    """
    Loads .proto files the way protoc does: imports are looked up in the proto paths, files
    are named relative to the proto path they were found in, and every type reference is
    resolved to an absolute name.
    """

    def __init__(self, proto_paths: Sequence[str] = (), verbose: bool = False):
        """
        Args:
            proto_paths: include directories; defaults to the directories of the input files
            verbose: Whether to print debug information (default: False)
        """
        self.proto_paths = list(proto_paths)
        self.verbose = verbose
        self._search_paths: List[str] = []
        self._loaded: Dict[str, descriptor_pb2.FileDescriptorProto] = {}
        self._loading = set()

    def debug_print(self, message: str) -> None:
        if self.verbose:
            print(message, file=sys.stderr)

    def load(self, paths: Sequence[str]) -> plugin_pb2.CodeGeneratorRequest:
        """
        Load the given .proto files and everything they import.

        Returns:
            CodeGeneratorRequest: all files (dependencies first) with the inputs as file_to_generate

        Raises:
            ProtoLoadError: a file is missing, does not parse, or refers to an unknown type
        """
        self._search_paths = list(self.proto_paths)
        if not self._search_paths:
            for path in paths:
                directory = os.path.dirname(os.path.abspath(path))
                if directory not in self._search_paths:
                    self._search_paths.append(directory)
        self._loaded = {}
        self._loading = set()

        targets = []
        for path in paths:
            name = self._proto_name(path)
            targets.append(name)
            self._load_file(name, path)

        self._resolve_types()
        return plugin_pb2.CodeGeneratorRequest(file_to_generate=targets, proto_file=list(self._loaded.values()))

    def _proto_name(self, path: str) -> str:
        abs_path = os.path.abspath(path)
        for directory in self._search_paths:
            rel = os.path.relpath(abs_path, os.path.abspath(directory))
            if not rel.startswith(".."):
                return rel.replace(os.sep, "/")
        raise ProtoLoadError(f"{path} is not in any of the proto paths {self._search_paths}")

    def _find_import(self, name: str) -> Optional[str]:
        for directory in self._search_paths:
            candidate = os.path.join(directory, *name.split("/"))
            if os.path.isfile(candidate):
                return candidate
        return None

    def _load_file(self, name: str, path: str) -> None:
        if name in self._loaded or name in self._loading:
            return
        self._loading.add(name)
        self.debug_print(f"[DEBUG] Loading {name} from {path}")

        file_desc = self._parse_file(name, path)
        for dep in file_desc.dependency:
            dep_path = self._find_import(dep)
            if dep_path is not None:
                self._load_file(dep, dep_path)
            elif self._load_builtin_file(dep):
                self.debug_print(f"[DEBUG] {name}: import {dep} taken from the protobuf runtime")
            elif dep in OPTION_FILES:
                self.debug_print(f"[DEBUG] {name}: import {dep} is built in, skipping")
            else:
                raise ProtoLoadError(f'{name}: import "{dep}" was not found in {self._search_paths}')

        self._loading.discard(name)
        self._loaded[name] = file_desc

    def _load_builtin_file(self, name: str) -> bool:
        """Add a well-known type file (google/protobuf/*.proto) known to the protobuf runtime."""
        if not name.startswith("google/protobuf/"):
            return False
        if name in self._loaded:
            return True
        try:
            file = descriptor_pool.Default().FindFileByName(name)
        except KeyError:
            return False
        for dep in file.dependencies:
            self._load_builtin_file(dep.name)
        file_desc = descriptor_pb2.FileDescriptorProto()
        file.CopyToProto(file_desc)
        self._loaded[name] = file_desc
        return True

    def _parse_file(self, name: str, path: str) -> descriptor_pb2.FileDescriptorProto:
        try:
            with open(path, "r", encoding="utf-8") as f:
                text = f.read()
        except OSError as e:
            raise ProtoLoadError(f"{name}: {e}")

        try:
            tree = parse_proto(text)
        except UnexpectedInput as e:
            # lark reports line -1 when the input ends early
            line = getattr(e, "line", None)
            raise ProtoSyntaxError(name, line if line and line > 0 else None, str(e).strip().splitlines()[0])

        try:
            return DescriptorBuilder(name, self.verbose).transform(tree)
        except VisitError as e:
            if isinstance(e.orig_exc, ProtoLoadError):
                raise e.orig_exc
            meta = getattr(e.obj, "meta", None)
            raise ProtoSyntaxError(name, getattr(meta, "line", None), str(e.orig_exc))

    # --- Type resolution ---

    def _collect_symbols(self) -> Dict[str, str]:
        symbols = {}

        def collect_message(scope, msg):
            full_name = _join(scope, msg.name)
            symbols[full_name] = "message"
            for nested in msg.nested_type:
                collect_message(full_name, nested)
            for enum in msg.enum_type:
                symbols[_join(full_name, enum.name)] = "enum"

        for file_desc in self._loaded.values():
            package = ""
            for component in file_desc.package.split(".") if file_desc.package else []:
                package = _join(package, component)
                symbols.setdefault(package, "package")
        for file_desc in self._loaded.values():
            for msg in file_desc.message_type:
                collect_message(file_desc.package, msg)
            for enum in file_desc.enum_type:
                symbols[_join(file_desc.package, enum.name)] = "enum"
        return symbols

    @staticmethod
    def _lookup_symbol(scope: str, ref: str, symbols: Dict[str, str]) -> Optional[Tuple[str, str]]:
        """
        Resolve ref as protoc does. For 'A.B.C' the innermost scope defining a package or message
        'A' decides; if that scope has no 'A.B.C' the reference does not resolve.
        """
        if ref.startswith("."):
            kind = symbols.get(ref[1:])
            return (ref[1:], kind) if kind and kind != "package" else None

        first, _, rest = ref.partition(".")
        parts = scope.split(".") if scope else []
        while True:
            prefix = _join(".".join(parts), first)
            kind = symbols.get(prefix)
            if kind is not None and not rest and kind != "package":
                return prefix, kind
            if kind in ("package", "message") and rest:
                candidate = _join(prefix, rest)
                kind = symbols.get(candidate)
                return (candidate, kind) if kind and kind != "package" else None
            if not parts:
                return None
            parts.pop()

    def _resolve_message(self, file_name: str, scope: str, msg, symbols: Dict[str, str]) -> None:
        for field in msg.field:
            if field.HasField("type"):
                continue
            found = self._lookup_symbol(scope, field.type_name, symbols)
            if found is None:
                raise ProtoLoadError(f'{file_name}: "{field.type_name}" is not defined (field {scope}.{field.name})')
            full_name, kind = found
            field.type = _FDP.TYPE_MESSAGE if kind == "message" else _FDP.TYPE_ENUM
            field.type_name = "." + full_name
        for nested in msg.nested_type:
            self._resolve_message(file_name, _join(scope, nested.name), nested, symbols)

    def _resolve_types(self) -> None:
        symbols = self._collect_symbols()
        for file_desc in self._loaded.values():
            for msg in file_desc.message_type:
                self._resolve_message(file_desc.name, _join(file_desc.package, msg.name), msg, symbols)
