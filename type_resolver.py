"""
type_resolver.py
Resolution of message type references against the package tree.

- '.a.b.Msg' is absolute and is looked up from the root package only.
- 'Msg' or 'b.Msg' is relative: it is tried in the current package, then in each enclosing
  package up to the root.
- Within one package, 'A.B' is first tried as package A containing B, then as message A with
  a nested message B.
"""
import sys
from collections import namedtuple
from typing import Optional, Tuple

from google.protobuf.descriptor_pb2 import DescriptorProto

from proto_package import ProtoPackage, TypeRegistry

# message: the resolved descriptor
# package: the package the (outermost) message is declared in
# full_name: absolute reference, e.g. '.foo.Outer.Inner'
ResolvedType = namedtuple("ResolvedType", ["message", "package", "full_name"])


class TypeResolver:
    def __init__(self, registry: TypeRegistry, verbose: bool = False):
        self.registry = registry
        self.verbose = verbose

    def debug_print(self, message: str) -> None:
        if self.verbose:
            print(message, file=sys.stderr)

    def lookup_type(self, pkg: ProtoPackage, name: str) -> Tuple[Optional[DescriptorProto], bool]:
        resolved = self.resolve(pkg, name)
        if resolved is None:
            return None, False
        return resolved.message, True

    def resolve(self, pkg: ProtoPackage, name: str) -> Optional[ResolvedType]:
        """
        Resolve a type reference as seen from pkg.

        Returns:
            ResolvedType or None if no enclosing package knows the type
        """
        if name.startswith("."):
            return self.relatively_lookup_type(self.registry.root, name[1:])

        while pkg is not None:
            found = self.relatively_lookup_type(pkg, name)
            if found is not None:
                return found
            pkg = pkg.parent
        return None

    def relatively_lookup_type(self, pkg: ProtoPackage, name: str) -> Optional[ResolvedType]:
        if not name:
            self.debug_print("[DEBUG] empty message name")
            return None

        head, sep, rest = name.partition(".")
        if not sep:
            msg = pkg.types.get(head)
            if msg is None:
                return None
            return ResolvedType(msg, pkg, pkg.qualify(head))

        self.debug_print(f"[DEBUG] looking for {rest} in {head} at {pkg.name!r}")
        child = pkg.children.get(head)
        if child is not None:
            found = self.relatively_lookup_type(child, rest)
            if found is not None:
                return found

        msg = pkg.types.get(head)
        if msg is not None:
            nested = self.relatively_lookup_nested_type(msg, rest)
            if nested is not None:
                return ResolvedType(nested, pkg, pkg.qualify(name))

        self.debug_print(f"[DEBUG] no such package nor message {head} in {pkg.name!r}")
        return None

    def relatively_lookup_nested_type(self, desc: DescriptorProto, name: str) -> Optional[DescriptorProto]:
        """Walk nested_type lists along a dotted name, one segment at a time."""
        for component in name.split("."):
            for nested in desc.nested_type:
                if nested.name == component:
                    desc = nested
                    break
            else:
                self.debug_print(f"[DEBUG] no such nested message {component} in {desc.name}")
                return None
        return desc
