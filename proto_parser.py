"""
proto_parser.py
lark grammar for Protocol Buffers source files (proto2 / proto3).

Only the parts needed to build descriptors for schema generation are kept in the tree;
services, reserved ranges, extension ranges and extend blocks are parsed and dropped later.
"""
from lark import Lark


grammar = r"""
    start: _statement*

    _statement: syntax
        | edition
        | package
        | import_stmt
        | option_stmt
        | message
        | enum
        | service
        | extend
        | ";"

    syntax: "syntax" "=" string_lit ";"
    edition: "edition" "=" string_lit ";"
    package: "package" full_ident ";"
    import_stmt: "import" IMPORT_MODIFIER? string_lit ";"
    IMPORT_MODIFIER: "public" | "weak"

    option_stmt.2: "option" option_name "=" constant ";"
    option_name: (custom_option_name | IDENT) ("." IDENT)*
    custom_option_name: "(" "."? full_ident ")"

    ?constant: string_lit
        | number
        | full_ident -> ident_value
        | aggregate
    string_lit: STRING+
    number: NUMBER
    aggregate: "{" aggregate_field* "}"
    aggregate_field: IDENT ":" constant _aggregate_sep?
        | IDENT aggregate _aggregate_sep?
    _aggregate_sep: "," | ";"

    message: "message" IDENT "{" _message_element* "}"
    _message_element: field
        | map_field
        | oneof
        | message
        | enum
        | option_stmt
        | reserved
        | extensions
        | extend
        | ";"

    field: LABEL? type_ref IDENT "=" NUMBER field_options? ";"
    LABEL: "optional" | "required" | "repeated"
    map_field: "map" "<" IDENT "," type_ref ">" IDENT "=" NUMBER field_options? ";"
    field_options: "[" field_option ("," field_option)* "]"
    field_option: option_name "=" constant

    type_ref: full_ident -> relative_type
        | "." full_ident -> absolute_type

    oneof: "oneof" IDENT "{" _oneof_element* "}"
    _oneof_element: field | option_stmt | ";"

    enum: "enum" IDENT "{" _enum_element* "}"
    _enum_element: enum_value | option_stmt | reserved | ";"
    enum_value: IDENT "=" NUMBER field_options? ";"

    reserved: "reserved" _range_item ("," _range_item)* ";"
    extensions: "extensions" _range_item ("," _range_item)* field_options? ";"
    _range_item: NUMBER ("to" (NUMBER | "max"))?
        | string_lit
        | IDENT
    extend: "extend" type_ref "{" (field | ";")* "}"

    service: "service" IDENT "{" (option_stmt | rpc | ";")* "}"
    rpc: "rpc" IDENT "(" STREAM? type_ref ")" "returns" "(" STREAM? type_ref ")" (rpc_body | ";")
    rpc_body: "{" (option_stmt | ";")* "}"
    STREAM: "stream"

    full_ident: IDENT ("." IDENT)*

    IDENT: /[A-Za-z_][A-Za-z0-9_]*/
    NUMBER: /[-+]?(0[xX][0-9A-Fa-f]+|[0-9]+(\.[0-9]*)?([eE][-+]?[0-9]+)?|\.[0-9]+([eE][-+]?[0-9]+)?)/
    STRING: /"(\\.|[^"\\\n])*"/ | /'(\\.|[^'\\\n])*'/

    LINE_COMMENT: /\/\/[^\n]*/
    BLOCK_COMMENT: /\/\*(.|\n)*?\*\//
    %import common.WS
    %ignore WS
    %ignore LINE_COMMENT
    %ignore BLOCK_COMMENT
"""

parser = Lark(
    grammar,
    start='start',
    propagate_positions=True
)


def parse_proto(text: str):
    """Parse .proto source text into a lark tree."""
    return parser.parse(text)
