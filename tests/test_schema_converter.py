import types

import pytest

from bq_options import BigQueryMessageOptions
from proto_package import TypeRegistry
from schema_converter import (
    MODE_FROM_FIELD_LABEL,
    TYPE_FROM_FIELD_TYPE,
    ConversionError,
    CyclicTypeError,
    Field,
    SchemaConverter,
)
from type_resolver import TypeResolver
from tests.test_utils import FDP, make_field, make_message, message_field


def make_converter(*registrations):
    """registrations: (package, message) pairs"""
    registry = TypeRegistry()
    for package, msg in registrations:
        registry.register_type(package, msg)
    return registry, SchemaConverter(TypeResolver(registry))


def convert(msg, package="pkg", others=(), opts=None):
    registry, converter = make_converter((package, msg), *others)
    pkg = registry.lookup_package(package)
    return [f.to_dict() for f in converter.convert_message_type(pkg, msg, opts)]


@pytest.mark.parametrize("field_type,expected", [
    (FDP.TYPE_DOUBLE, "FLOAT"),
    (FDP.TYPE_FLOAT, "FLOAT"),
    (FDP.TYPE_INT64, "INTEGER"),
    (FDP.TYPE_UINT64, "INTEGER"),
    (FDP.TYPE_INT32, "INTEGER"),
    (FDP.TYPE_UINT32, "INTEGER"),
    (FDP.TYPE_FIXED64, "INTEGER"),
    (FDP.TYPE_FIXED32, "INTEGER"),
    (FDP.TYPE_SFIXED32, "INTEGER"),
    (FDP.TYPE_SFIXED64, "INTEGER"),
    (FDP.TYPE_SINT32, "INTEGER"),
    (FDP.TYPE_SINT64, "INTEGER"),
    (FDP.TYPE_STRING, "STRING"),
    (FDP.TYPE_BYTES, "BYTES"),
    (FDP.TYPE_ENUM, "STRING"),
    (FDP.TYPE_BOOL, "BOOLEAN"),
])
def test_scalar_types(field_type, expected):
    msg = make_message("M", [make_field("f", field_type)])
    assert convert(msg) == [{"name": "f", "type": expected, "mode": "NULLABLE"}]


def test_type_tables_cover_every_kind():
    assert len(TYPE_FROM_FIELD_TYPE) == 18
    assert set(MODE_FROM_FIELD_LABEL.values()) == {"NULLABLE", "REQUIRED", "REPEATED"}


@pytest.mark.parametrize("label,expected", [
    (FDP.LABEL_OPTIONAL, "NULLABLE"),
    (FDP.LABEL_REQUIRED, "REQUIRED"),
    (FDP.LABEL_REPEATED, "REPEATED"),
])
def test_labels(label, expected):
    msg = make_message("M", [make_field("f", label=label)])
    assert convert(msg)[0]["mode"] == expected


def test_unrecognized_label():
    registry, converter = make_converter()
    bad = types.SimpleNamespace(name="f", json_name="f", label=99, type=FDP.TYPE_STRING)
    with pytest.raises(ConversionError, match="unrecognized field label"):
        converter.convert_field(registry.root, bad, None)


def test_unrecognized_type():
    registry, converter = make_converter()
    bad = types.SimpleNamespace(name="f", json_name="f", label=FDP.LABEL_OPTIONAL, type=99)
    with pytest.raises(ConversionError, match="unrecognized field type"):
        converter.convert_field(registry.root, bad, None)


def test_field_order_is_kept():
    msg = make_message("M", [make_field("z"), make_field("a"), make_field("m")])
    assert [f["name"] for f in convert(msg)] == ["z", "a", "m"]


def test_ignore():
    msg = make_message("M", [make_field("kept"), make_field("dropped", bq={"ignore": True, "require": True})])
    assert convert(msg) == [{"name": "kept", "type": "STRING", "mode": "NULLABLE"}]


def test_require_overrides_repeated():
    msg = make_message("M", [make_field("f", label=FDP.LABEL_REPEATED, bq={"require": True})])
    assert convert(msg)[0]["mode"] == "REQUIRED"


def test_type_override_name_and_description():
    field = make_field("amount", FDP.TYPE_INT64, bq={"type_override": "NUMERIC", "name": "total", "description": "Sum"})
    assert convert(make_message("M", [field])) == [
        {"name": "total", "type": "NUMERIC", "mode": "NULLABLE", "description": "Sum"},
    ]


def test_json_names():
    msg = make_message("M", [make_field("user_id", json_name="userId")])
    opts = BigQueryMessageOptions("t_v1", use_json_names=True)
    assert convert(msg, opts=opts)[0]["name"] == "userId"
    assert convert(msg)[0]["name"] == "user_id"


def test_name_option_beats_json_name():
    msg = make_message("M", [make_field("user_id", json_name="userId", bq={"name": "uid"})])
    opts = BigQueryMessageOptions("t_v1", use_json_names=True)
    assert convert(msg, opts=opts)[0]["name"] == "uid"


def test_empty_json_name_falls_back_to_name():
    msg = make_message("M", [make_field("user_id")])
    opts = BigQueryMessageOptions("t_v1", use_json_names=True)
    assert convert(msg, opts=opts)[0]["name"] == "user_id"


@pytest.mark.parametrize("type_name,expected", [
    (".google.protobuf.Timestamp", "TIMESTAMP"),
    (".google.protobuf.Duration", "STRING"),
    (".google.protobuf.Int64Value", "INTEGER"),
    (".google.protobuf.UInt32Value", "INTEGER"),
    (".google.protobuf.DoubleValue", "FLOAT"),
    (".google.protobuf.BoolValue", "BOOLEAN"),
    (".google.protobuf.StringValue", "STRING"),
    (".google.protobuf.BytesValue", "BYTES"),
])
def test_well_known_types(type_name, expected):
    msg = make_message("M", [message_field("f", type_name, label=FDP.LABEL_REPEATED)])
    # no registration of google.protobuf is needed
    assert convert(msg) == [{"name": "f", "type": expected, "mode": "REPEATED"}]


def test_well_known_type_respects_type_override():
    msg = make_message("M", [message_field("f", ".google.protobuf.Timestamp", bq={"type_override": "DATETIME"})])
    # the well-known mapping applies to RECORD-typed fields only
    assert convert(msg)[0]["type"] == "DATETIME"


def test_record():
    inner = make_message("Inner", [make_field("x", FDP.TYPE_INT32), make_field("y", FDP.TYPE_INT32)])
    outer = make_message("Outer", [message_field("pos", ".pkg.Inner", bq={"description": "Position"})])
    assert convert(outer, others=[("pkg", inner)]) == [{
        "name": "pos",
        "type": "RECORD",
        "mode": "NULLABLE",
        "description": "Position",
        "fields": [
            {"name": "x", "type": "INTEGER", "mode": "NULLABLE"},
            {"name": "y", "type": "INTEGER", "mode": "NULLABLE"},
        ],
    }]


def test_group_is_a_record():
    inner = make_message("Grp", [make_field("x")])
    field = make_field("g", FDP.TYPE_GROUP, type_name="Grp")
    assert convert(make_message("M", [field]), others=[("pkg", inner)])[0]["fields"] == [
        {"name": "x", "type": "STRING", "mode": "NULLABLE"},
    ]


def test_empty_record_is_dropped():
    empty = make_message("Empty")
    msg = make_message("M", [make_field("id"), message_field("nothing", "Empty")])
    assert convert(msg, others=[("pkg", empty)]) == [{"name": "id", "type": "STRING", "mode": "NULLABLE"}]


def test_record_with_only_ignored_fields_is_dropped():
    hidden = make_message("Hidden", [make_field("secret", bq={"ignore": True})])
    msg = make_message("M", [make_field("id"), message_field("h", "Hidden")])
    assert [f["name"] for f in convert(msg, others=[("pkg", hidden)])] == ["id"]


def test_dropping_cascades():
    leaf = make_message("Leaf")
    middle = make_message("Middle", [message_field("leaf", "Leaf")])
    msg = make_message("M", [message_field("middle", "Middle")])
    assert convert(msg, others=[("pkg", leaf), ("pkg", middle)]) == []


def test_unresolved_reference():
    msg = make_message("M", [message_field("f", ".nowhere.Missing")])
    with pytest.raises(ConversionError, match="no such message type named .nowhere.Missing"):
        convert(msg)


def test_unresolved_reference_in_nested_record():
    inner = make_message("Inner", [message_field("g", "Missing")])
    msg = make_message("M", [message_field("f", "Inner")])
    with pytest.raises(ConversionError, match="no such message type named Missing"):
        convert(msg, others=[("pkg", inner)])


def test_nested_record_uses_its_own_message_options():
    inner = make_message("Inner", [make_field("user_id", json_name="userId")],
                         event_name="inner", event_version=1, use_json_names=True)
    msg = make_message("M", [make_field("outer_id", json_name="outerId"), message_field("inner", "Inner")])
    result = convert(msg, others=[("pkg", inner)], opts=BigQueryMessageOptions("m_v1"))
    assert result[0]["name"] == "outer_id"
    assert result[1]["fields"][0]["name"] == "userId"


def test_nested_record_without_options_uses_defaults():
    inner = make_message("Inner", [make_field("user_id", json_name="userId")])
    msg = make_message("M", [message_field("inner", "Inner")])
    result = convert(msg, others=[("pkg", inner)], opts=BigQueryMessageOptions("m_v1", use_json_names=True))
    assert result[0]["fields"][0]["name"] == "user_id"


def test_nested_message_declared_inside_message():
    outer = make_message("Outer", [message_field("item", "Outer.Item")], nested=[
        make_message("Item", [make_field("sku")]),
    ])
    assert convert(outer)[0]["fields"] == [{"name": "sku", "type": "STRING", "mode": "NULLABLE"}]


def test_record_is_resolved_in_its_declaring_package():
    # common.Money refers to 'Currency' relative to package common, not to the caller's package
    currency = make_message("Currency", [make_field("code")])
    money = make_message("Money", [message_field("currency", "Currency")])
    msg = make_message("Order", [message_field("total", ".common.Money")])
    result = convert(msg, package="shop", others=[("common", currency), ("common", money)])
    assert result[0]["fields"][0]["fields"] == [{"name": "code", "type": "STRING", "mode": "NULLABLE"}]


def test_self_reference_is_a_cycle():
    node = make_message("Node", [make_field("value"), message_field("next", "Node")])
    with pytest.raises(CyclicTypeError) as excinfo:
        convert(node)
    assert excinfo.value.chain == [".pkg.Node", ".pkg.Node"]


def test_mutual_reference_is_a_cycle():
    a = make_message("A", [message_field("b", "B")])
    b = make_message("B", [message_field("a", "A")])
    with pytest.raises(CyclicTypeError, match=r"\.pkg\.A -> \.pkg\.B -> \.pkg\.A"):
        convert(a, others=[("pkg", b)])


def test_repeated_use_of_a_type_is_not_a_cycle():
    money = make_message("Money", [make_field("units", FDP.TYPE_INT64)])
    msg = make_message("M", [message_field("price", "Money"), message_field("tax", "Money")])
    result = convert(msg, others=[("pkg", money)])
    assert [f["name"] for f in result] == ["price", "tax"]


def test_cycle_guard_is_reset_after_error():
    node = make_message("Node", [message_field("next", "Node")])
    leaf = make_message("Leaf", [make_field("x")])
    registry, converter = make_converter(("pkg", node), ("pkg", leaf))
    pkg = registry.lookup_package("pkg")
    with pytest.raises(CyclicTypeError):
        converter.convert_message_type(pkg, node, None)
    assert converter.convert_message_type(pkg, leaf, None) == [Field("x", "STRING", "NULLABLE")]


def test_conversion_is_idempotent():
    inner = make_message("Inner", [make_field("x")])
    msg = make_message("M", [message_field("inner", "Inner"), make_field("id", bq={"require": True})])
    registry, converter = make_converter(("pkg", msg), ("pkg", inner))
    pkg = registry.lookup_package("pkg")
    assert converter.convert_message_type(pkg, msg, None) == converter.convert_message_type(pkg, msg, None)


def test_field_to_dict_key_order():
    field = Field("r", "RECORD", "REPEATED", "desc", [Field("x", "STRING", "NULLABLE")])
    assert list(field.to_dict()) == ["name", "type", "mode", "description", "fields"]
    assert list(Field("x", "STRING", "NULLABLE").to_dict()) == ["name", "type", "mode"]


def test_message_builder_numbers_fields_in_declaration_order():
    msg = make_message("M", [make_field("a"), make_field("b", number=7), message_field("c", "M")])
    assert [f.number for f in msg.field] == [1, 7, 3]
