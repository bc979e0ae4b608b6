"""
proto_package.py
Package tree for protobuf message types. Every package of the batch is a node keyed by its
dotted path; each node holds the message types declared directly in that package.
"""
import sys
from typing import Dict, Optional

from google.protobuf.descriptor_pb2 import DescriptorProto, FileDescriptorProto


class ProtoPackage:
    """
    A package of Protobuf, which is a container of message types.
    The root (global) package has an empty name; other packages are named
    with a leading dot, e.g. '.foo.bar'.
    """

    def __init__(self, name: str = "", parent: Optional['ProtoPackage'] = None):
        self.name = name
        self.parent = parent
        self.children: Dict[str, 'ProtoPackage'] = {}
        self.types: Dict[str, DescriptorProto] = {}

    def qualify(self, type_name: str) -> str:
        """Absolute reference of a type declared in this package, e.g. '.foo.bar.Baz'."""
        return f"{self.name}.{type_name}"

    def __repr__(self):
        return f"ProtoPackage(name={self.name!r}, children={sorted(self.children)}, types={sorted(self.types)})"


class TypeRegistry:
    """
    Registers the message types of all input files into a package tree.
    A registry lives for one generation run; build a new one per batch.
    """

    def __init__(self, verbose: bool = False):
        self.root = ProtoPackage()
        self.verbose = verbose

    def debug_print(self, message: str) -> None:
        if self.verbose:
            print(message, file=sys.stderr)

    def _package_node(self, package_name: str) -> ProtoPackage:
        pkg = self.root
        if not package_name:
            return pkg
        for node in package_name.split("."):
            if pkg is self.root and node == "":
                # Skips leading "."
                continue
            child = pkg.children.get(node)
            if child is None:
                child = ProtoPackage(name=pkg.name + "." + node, parent=pkg)
                pkg.children[node] = child
            pkg = child
        return pkg

    def register_type(self, package_name: str, msg: DescriptorProto) -> ProtoPackage:
        """
        Register a top-level message type under package_name.
        A type registered twice with the same name replaces the earlier one.

        Returns:
            ProtoPackage: the node the type was registered in
        """
        pkg = self._package_node(package_name)
        pkg.types[msg.name] = msg
        return pkg

    def register_file(self, file_desc: FileDescriptorProto) -> None:
        pkg = self._package_node(file_desc.package)
        for msg in file_desc.message_type:
            self.debug_print(f"[DEBUG] Loading a message type {msg.name} from package {file_desc.package}")
            self.register_type(file_desc.package, msg)
        if not file_desc.message_type:
            self.debug_print(f"[DEBUG] {file_desc.name} declares no message types (package node {pkg.name!r})")

    def lookup_package(self, package_name: str) -> Optional[ProtoPackage]:
        """Find the node for a dotted package name; the empty name is the root."""
        pkg = self.root
        if not package_name:
            return pkg
        for component in package_name.lstrip(".").split("."):
            pkg = pkg.children.get(component)
            if pkg is None:
                return None
        return pkg
