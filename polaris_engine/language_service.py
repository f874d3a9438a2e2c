"""Scope-aware analysis session over a :class:`VirtualCompilerHost`.

Each script is parsed with tree-sitter and bound once per session: lexical
scopes, declarations, name uses, class/interface members, and the module's
import/export table. Cross-file questions (references, definitions,
unresolved imports) follow import and re-export chains through the host's
module resolution. Offsets in the public API are character offsets into the
file's text.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional, Set, Tuple

from tree_sitter import Node

from .parser import extension_of, is_javascript, parse_source

if TYPE_CHECKING:
    from .compiler_host import VirtualCompilerHost

logger = logging.getLogger(__name__)

NodeKey = Tuple[int, int, str]

FUNCTION_NODES = {
    "function_declaration", "generator_function_declaration", "function_expression",
    "function", "generator_function", "arrow_function", "method_definition",
}
CLASS_NODES = {"class_declaration", "abstract_class_declaration", "class"}
SCOPE_NODES = FUNCTION_NODES | CLASS_NODES | {
    "statement_block", "for_statement", "for_in_statement", "catch_clause",
    "interface_declaration", "type_alias_declaration",
}
TYPE_ONLY_KINDS = {"interface", "type", "type parameter"}
BLOCK_SCOPED_KINDS = {"const", "let"}
VALUE_KINDS = {"const", "let", "var", "function", "class", "enum", "alias", "parameter", "module"}
UNUSED_CHECK_KINDS = VALUE_KINDS | {"interface", "type"}
TERMINATORS = {"return_statement", "throw_statement", "break_statement", "continue_statement"}
HOISTED_STATEMENTS = {
    "function_declaration", "generator_function_declaration", "interface_declaration",
    "type_alias_declaration", "empty_statement", "comment",
}
CODE_EXTENSIONS = {".ts", ".tsx", ".mts", ".cts", ".js", ".jsx", ".mjs", ".cjs", ".json"}
TS_EXTENSIONS = (".ts", ".tsx", ".mts", ".cts")
JSX_EXTENSIONS = (".tsx", ".jsx")

_MERGE_FAMILIES = {
    "function": {"function"},
    "interface": {"interface", "class"},
    "class": {"interface", "class"},
    "enum": {"enum"},
    "module": {"module", "function", "class", "enum"},
}


# ===================================================================
# Results
# ===================================================================

@dataclass
class NavigationItem:
    text: str
    kind: str
    start: int
    children: List["NavigationItem"] = field(default_factory=list)


@dataclass
class ReferenceSite:
    path: str
    start: int
    is_write: bool


@dataclass
class DefinitionSite:
    path: str
    start: int
    kind: str
    name: str


@dataclass
class RawDiagnostic:
    start: int
    code: int
    message: str
    category: str


# ===================================================================
# Binding model
# ===================================================================

@dataclass(eq=False)
class Scope:
    node_type: str
    parent: Optional["Scope"] = None
    is_function: bool = False
    declarations: Dict[str, List["Declaration"]] = field(default_factory=dict)

    def function_scope(self) -> "Scope":
        scope = self
        while scope.parent is not None and not scope.is_function:
            scope = scope.parent
        return scope

    def lookup(self, name: str) -> List["Declaration"]:
        scope: Optional[Scope] = self
        while scope is not None:
            found = scope.declarations.get(name)
            if found:
                return found
            scope = scope.parent
        return []


@dataclass(eq=False)
class Declaration:
    name: str
    kind: str
    path: str
    start: int
    node_start: int
    scope: Optional[Scope] = None
    module_specifier: Optional[str] = None
    imported_name: Optional[str] = None
    container: Optional["Declaration"] = None
    exported: bool = False
    skip_unused: bool = False

    @property
    def space(self) -> str:
        if self.kind in TYPE_ONLY_KINDS:
            return "type"
        if self.kind in ("class", "enum", "alias", "module"):
            return "both"
        return "value"


@dataclass
class NameUse:
    name: str
    start: int
    scope: Scope
    is_write: bool = False
    is_read: bool = True
    is_type: bool = False


@dataclass
class MemberUse:
    name: str
    start: int
    on_this: bool
    owner: Optional[Declaration]
    is_write: bool = False


@dataclass
class ExportEntry:
    local: Optional[str] = None
    decl: Optional[Declaration] = None


@dataclass
class ImportRecord:
    specifier: str
    start: int
    names: List[Tuple[str, int]] = field(default_factory=list)
    is_star_export: bool = False


def _key(node: Node) -> NodeKey:
    return (node.start_byte, node.end_byte, node.type)


def _text(node: Node) -> str:
    return node.text.decode("utf-8", errors="replace")


def _string_value(node: Node) -> str:
    text = _text(node)
    if len(text) >= 2 and text[0] in "'\"`" and text[-1] == text[0]:
        return text[1:-1]
    return text


def _is_field(parent: Optional[Node], name: str, node: Node) -> bool:
    if parent is None:
        return False
    child = parent.child_by_field_name(name)
    return child is not None and _key(child) == _key(node)


def _has_token(node: Node, token: str) -> bool:
    return any(c.type == token for c in node.children)


def _pattern_names(node: Optional[Node]) -> List[Node]:
    """Return binding identifiers of a (possibly destructuring) pattern in source order."""
    names: List[Node] = []
    stack = [node] if node is not None else []
    while stack:
        n = stack.pop()
        t = n.type
        if t in ("identifier", "shorthand_property_identifier_pattern"):
            names.append(n)
        elif t == "pair_pattern":
            value = n.child_by_field_name("value")
            if value is not None:
                stack.append(value)
        elif t in ("assignment_pattern", "object_assignment_pattern"):
            left = n.child_by_field_name("left")
            if left is not None:
                stack.append(left)
        elif t in ("required_parameter", "optional_parameter"):
            pattern = n.child_by_field_name("pattern")
            if pattern is not None:
                stack.append(pattern)
        elif t in ("object_pattern", "array_pattern", "rest_pattern"):
            stack.extend(reversed(n.named_children))
    return names


def _write_kind(node: Node) -> Tuple[bool, bool]:
    """Return (is_write, is_read) for an expression in assignment position."""
    parent = node.parent
    if parent is None:
        return False, True
    if parent.type == "assignment_expression" and _is_field(parent, "left", node):
        return True, False
    if parent.type == "augmented_assignment_expression" and _is_field(parent, "left", node):
        return True, True
    if parent.type == "update_expression":
        return True, True
    if parent.type == "for_in_statement" and _is_field(parent, "left", node) and parent.child_by_field_name("kind") is None:
        return True, False
    return False, True


class SourceText:
    """Byte <-> character offset translation for one file."""

    def __init__(self, text: str) -> None:
        self.text = text
        self.data = text.encode("utf-8")
        self._ascii = len(self.data) == len(text)

    def to_char(self, byte_offset: int) -> int:
        if self._ascii:
            return byte_offset
        return len(self.data[:byte_offset].decode("utf-8", errors="ignore"))

    def to_byte(self, char_offset: int) -> int:
        if self._ascii:
            return char_offset
        return len(self.text[:char_offset].encode("utf-8"))


# ===================================================================
# Per-file binder
# ===================================================================

class FileBinding:
    """Scopes, declarations and uses of one parsed script."""

    def __init__(self, path: str, text: str) -> None:
        self.path = path
        self.source = SourceText(text)
        self.is_js = is_javascript(path)
        self.tree = parse_source(path, text)
        self.root: Node = self.tree.root_node
        self.module_scope = Scope("program")
        self.scopes: List[Scope] = [self.module_scope]
        self.declarations: List[Declaration] = []
        self.members: List[Declaration] = []
        self.uses: List[NameUse] = []
        self.member_uses: List[MemberUse] = []
        self.exports: Dict[str, ExportEntry] = {}
        self.star_exports: List[str] = []
        self.imports: List[ImportRecord] = []
        self.is_module = False

        self.decl_by_key: Dict[NodeKey, Declaration] = {}
        self.member_by_key: Dict[NodeKey, Declaration] = {}
        self.use_by_key: Dict[NodeKey, NameUse] = {}
        self.member_use_by_key: Dict[NodeKey, MemberUse] = {}
        self.import_name_sites: Dict[NodeKey, Declaration] = {}
        self._skip: Set[NodeKey] = set()
        self._export_targets: Dict[NodeKey, bool] = {}
        self._bind()

    # ------------------------------------------------------------------
    # Declaration helpers
    # ------------------------------------------------------------------

    def _add(self, scope: Optional[Scope], name_node: Node, kind: str, node: Node, **extra) -> Declaration:
        decl = Declaration(
            name=_text(name_node),
            kind=kind,
            path=self.path,
            start=name_node.start_byte,
            node_start=node.start_byte,
            scope=scope,
            **extra,
        )
        self.declarations.append(decl)
        if scope is not None:
            scope.declarations.setdefault(decl.name, []).append(decl)
        self.decl_by_key[_key(name_node)] = decl
        self._skip.add(_key(name_node))
        return decl

    def _add_member(self, name_node: Optional[Node], kind: str, node: Node, container: Optional[Declaration]) -> None:
        if name_node is None or name_node.type == "computed_property_name":
            return
        name = _string_value(name_node) if name_node.type == "string" else _text(name_node)
        decl = Declaration(
            name=name, kind=kind, path=self.path,
            start=name_node.start_byte, node_start=node.start_byte, container=container,
        )
        self.members.append(decl)
        self.member_by_key[_key(name_node)] = decl
        self._skip.add(_key(name_node))

    def _export(self, node: Node, decls: List[Declaration]) -> None:
        is_default = self._export_targets.get(_key(node))
        if is_default is None:
            return
        for decl in decls:
            decl.exported = True
            self.exports["default" if is_default else decl.name] = ExportEntry(decl=decl)

    def _declare_params(self, node: Node, scope: Scope) -> None:
        params = node.child_by_field_name("parameters")
        single = node.child_by_field_name("parameter")
        patterns = [single] if single is not None else (params.named_children if params is not None else [])
        for param in patterns:
            property_param = param.type == "required_parameter" and any(
                c.type == "accessibility_modifier" or c.type == "readonly" for c in param.children
            )
            for name_node in _pattern_names(param):
                self._add(scope, name_node, "parameter", param, skip_unused=property_param)

    # ------------------------------------------------------------------
    # Walk
    # ------------------------------------------------------------------

    def _bind(self) -> None:
        stack: List[Tuple[Node, Scope, Optional[Declaration]]] = [(self.root, self.module_scope, None)]
        while stack:
            node, scope, owner = stack.pop()
            t = node.type
            inner = scope
            if t in SCOPE_NODES:
                inner = Scope(t, parent=scope, is_function=t in FUNCTION_NODES)
                self.scopes.append(inner)
            owner = self._declare(node, scope, inner, owner)
            self._record_use(node, scope, owner)
            for child in reversed(node.children):
                stack.append((child, inner, owner))

    def _declare(self, node: Node, scope: Scope, inner: Scope, owner: Optional[Declaration]) -> Optional[Declaration]:
        t = node.type
        name_node = node.child_by_field_name("name")

        if t == "import_statement":
            self._bind_import(node)
        elif t == "export_statement":
            self._bind_export(node)
        elif t in ("function_declaration", "generator_function_declaration", "function_signature"):
            if name_node is not None:
                self._export(node, [self._add(scope, name_node, "function", node)])
            if t != "function_signature":
                self._declare_params(node, inner)
        elif t in ("function_expression", "function", "generator_function", "arrow_function"):
            if name_node is not None:
                self._add(inner, name_node, "function", node, skip_unused=True)
            self._declare_params(node, inner)
        elif t == "method_definition":
            self._declare_params(node, inner)
        elif t in CLASS_NODES:
            decl: Optional[Declaration] = None
            if name_node is not None:
                target = scope if t != "class" else inner
                decl = self._add(target, name_node, "class", node, skip_unused=t == "class")
                self._export(node, [decl])
            else:
                decl = Declaration(name="default", kind="class", path=self.path,
                                   start=node.start_byte, node_start=node.start_byte)
                self._export(node, [decl])
            self._bind_class_members(node, decl)
            return decl
        elif t == "interface_declaration" and name_node is not None:
            decl = self._add(scope, name_node, "interface", node)
            self._export(node, [decl])
            body = node.child_by_field_name("body")
            for member in (body.named_children if body is not None else []):
                if member.type == "property_signature":
                    self._add_member(member.child_by_field_name("name"), "property", member, decl)
                elif member.type == "method_signature":
                    self._add_member(member.child_by_field_name("name"), "method", member, decl)
        elif t == "type_alias_declaration" and name_node is not None:
            self._export(node, [self._add(scope, name_node, "type", node)])
        elif t == "enum_declaration" and name_node is not None:
            decl = self._add(scope, name_node, "enum", node)
            self._export(node, [decl])
            body = node.child_by_field_name("body")
            for member in (body.named_children if body is not None else []):
                if member.type == "enum_assignment":
                    self._add_member(member.child_by_field_name("name"), "enum member", member, decl)
                elif member.type in ("property_identifier", "string"):
                    self._add_member(member, "enum member", member, decl)
        elif t in ("internal_module", "module") and name_node is not None and name_node.type == "identifier":
            self._export(node, [self._add(scope, name_node, "module", node)])
        elif t in ("lexical_declaration", "variable_declaration"):
            kind = "var"
            if t == "lexical_declaration":
                kind_node = node.child_by_field_name("kind")
                kind = _text(kind_node) if kind_node is not None else _text(node.children[0])
            target = scope.function_scope() if kind == "var" else scope
            decls = []
            for declarator in node.named_children:
                if declarator.type != "variable_declarator":
                    continue
                for ident in _pattern_names(declarator.child_by_field_name("name")):
                    decls.append(self._add(target, ident, kind, declarator))
            self._export(node, decls)
        elif t == "for_in_statement":
            kind_node = node.child_by_field_name("kind")
            if kind_node is not None:
                kind = _text(kind_node)
                target = inner.function_scope() if kind == "var" else inner
                for ident in _pattern_names(node.child_by_field_name("left")):
                    self._add(target, ident, kind, node)
        elif t == "catch_clause":
            for ident in _pattern_names(node.child_by_field_name("parameter")):
                self._add(inner, ident, "let", node, skip_unused=True)
        elif t == "type_parameter" and name_node is not None:
            self._add(scope, name_node, "type parameter", node, skip_unused=True)
        return owner

    def _bind_class_members(self, node: Node, decl: Optional[Declaration]) -> None:
        body = node.child_by_field_name("body")
        for member in (body.named_children if body is not None else []):
            mt = member.type
            if mt == "method_definition":
                name_node = member.child_by_field_name("name")
                kind = "method"
                if name_node is not None and _text(name_node) == "constructor":
                    kind = "constructor"
                elif _has_token(member, "get"):
                    kind = "getter"
                elif _has_token(member, "set"):
                    kind = "setter"
                self._add_member(name_node, kind, member, decl)
            elif mt in ("public_field_definition", "field_definition"):
                name_node = member.child_by_field_name("name") or member.child_by_field_name("property")
                self._add_member(name_node, "property", member, decl)
            elif mt in ("method_signature", "abstract_method_signature"):
                self._add_member(member.child_by_field_name("name"), "method", member, decl)

    def _bind_import(self, node: Node) -> None:
        self.is_module = True
        source = node.child_by_field_name("source")
        if source is None:
            return
        specifier = _string_value(source)
        record = ImportRecord(specifier=specifier, start=source.start_byte)
        self.imports.append(record)
        clause = next((c for c in node.named_children if c.type == "import_clause"), None)
        if clause is None:
            return
        for part in clause.named_children:
            if part.type == "identifier":
                self._add(self.module_scope, part, "alias", part,
                          module_specifier=specifier, imported_name="default")
                record.names.append(("default", part.start_byte))
            elif part.type == "namespace_import":
                ident = next((c for c in part.named_children if c.type == "identifier"), None)
                if ident is not None:
                    self._add(self.module_scope, ident, "alias", part,
                              module_specifier=specifier, imported_name="*")
            elif part.type == "named_imports":
                for spec in part.named_children:
                    if spec.type != "import_specifier":
                        continue
                    name = spec.child_by_field_name("name")
                    alias = spec.child_by_field_name("alias")
                    if name is None:
                        continue
                    imported = _string_value(name)
                    local = alias if alias is not None else name
                    decl = self._add(self.module_scope, local, "alias", spec,
                                     module_specifier=specifier, imported_name=imported)
                    record.names.append((imported, name.start_byte))
                    if alias is not None:
                        self.import_name_sites[_key(name)] = decl
                        self._skip.add(_key(name))

    def _bind_export(self, node: Node) -> None:
        self.is_module = True
        is_default = _has_token(node, "default")
        declaration = node.child_by_field_name("declaration")
        source = node.child_by_field_name("source")
        specifier = _string_value(source) if source is not None else None
        if specifier is not None:
            self.imports.append(ImportRecord(specifier=specifier, start=source.start_byte,
                                             is_star_export=_has_token(node, "*")))

        if declaration is not None:
            self._export_targets[_key(declaration)] = is_default
            return

        value = node.child_by_field_name("value")
        if is_default and value is not None:
            if value.type == "identifier":
                self.exports["default"] = ExportEntry(local=_text(value))
            elif value.type in FUNCTION_NODES or value.type in CLASS_NODES:
                self._export_targets[_key(value)] = True
                if value.child_by_field_name("name") is None and value.type not in CLASS_NODES:
                    decl = Declaration(name="default", kind="function", path=self.path,
                                       start=value.start_byte, node_start=value.start_byte, exported=True)
                    self.exports["default"] = ExportEntry(decl=decl)
            return

        clause = next((c for c in node.named_children if c.type == "export_clause"), None)
        if clause is None:
            namespace = next((c for c in node.named_children if c.type == "namespace_export"), None)
            if namespace is not None and specifier is not None:
                ident = next((c for c in namespace.named_children if c.type in ("identifier", "string")), None)
                if ident is not None:
                    decl = Declaration(name=_string_value(ident), kind="alias", path=self.path,
                                       start=ident.start_byte, node_start=node.start_byte,
                                       module_specifier=specifier, imported_name="*", exported=True)
                    self.decl_by_key[_key(ident)] = decl
                    self._skip.add(_key(ident))
                    self.exports[decl.name] = ExportEntry(decl=decl)
            elif specifier is not None and _has_token(node, "*"):
                self.star_exports.append(specifier)
            return

        for spec in clause.named_children:
            if spec.type != "export_specifier":
                continue
            name = spec.child_by_field_name("name")
            alias = spec.child_by_field_name("alias")
            if name is None:
                continue
            exported_node = alias if alias is not None else name
            exported_name = _string_value(exported_node)
            if alias is not None:
                self._skip.add(_key(alias))
            if specifier is None:
                self.exports[exported_name] = ExportEntry(local=_text(name))
                continue
            decl = Declaration(name=exported_name, kind="alias", path=self.path,
                               start=exported_node.start_byte, node_start=spec.start_byte,
                               module_specifier=specifier, imported_name=_string_value(name), exported=True)
            self.exports[exported_name] = ExportEntry(decl=decl)
            self.import_name_sites[_key(name)] = decl
            self._skip.add(_key(name))
            if alias is not None:
                self.decl_by_key[_key(alias)] = decl
            self.imports[-1].names.append((decl.imported_name, name.start_byte))

    # ------------------------------------------------------------------
    # Uses
    # ------------------------------------------------------------------

    def _record_use(self, node: Node, scope: Scope, owner: Optional[Declaration]) -> None:
        t = node.type
        key = _key(node)
        if key in self._skip:
            return
        parent = node.parent
        if t in ("identifier", "type_identifier", "shorthand_property_identifier"):
            if parent is not None and parent.type in ("required_parameter", "optional_parameter") \
                    and _is_field(parent, "pattern", node):
                return
            is_write, is_read = _write_kind(node) if t == "identifier" else (False, True)
            use = NameUse(name=_text(node), start=node.start_byte, scope=scope,
                          is_write=is_write, is_read=is_read, is_type=t == "type_identifier")
            self.uses.append(use)
            self.use_by_key[key] = use
        elif t in ("property_identifier", "private_property_identifier"):
            if parent is None or parent.type != "member_expression" or not _is_field(parent, "property", node):
                return
            obj = parent.child_by_field_name("object")
            is_write, _ = _write_kind(parent)
            use = MemberUse(name=_text(node), start=node.start_byte,
                            on_this=obj is not None and obj.type == "this", owner=owner, is_write=is_write)
            self.member_uses.append(use)
            self.member_use_by_key[key] = use

    # ------------------------------------------------------------------
    # Outline
    # ------------------------------------------------------------------

    def outline(self) -> List[NavigationItem]:
        """Build the navigation tree of the file (byte offsets)."""
        items: List[NavigationItem] = []
        stack: List[Tuple[Node, List[NavigationItem], bool]] = [(self.root, items, False)]
        while stack:
            container, sink, locals_only = stack.pop()
            for child in container.named_children:
                start = child.start_byte
                target = child
                if child.type == "export_statement":
                    target = child.child_by_field_name("declaration") or child.child_by_field_name("value")
                    if target is None:
                        continue
                self._outline_entry(target, start, sink, stack, locals_only)
        return items

    def _outline_entry(self, node: Node, start: int, sink: List[NavigationItem],
                       stack: list, locals_only: bool) -> None:
        t = node.type
        name_node = node.child_by_field_name("name")
        name = _text(name_node) if name_node is not None else "default"

        if t in ("function_declaration", "generator_function_declaration", "function_signature",
                 "function_expression", "function", "arrow_function"):
            if any(i.text == name and i.kind == "function" for i in sink):
                return
            item = NavigationItem(name, "function", start)
            sink.append(item)
            body = node.child_by_field_name("body")
            if body is not None and body.type == "statement_block":
                stack.append((body, item.children, True))
        elif t in CLASS_NODES:
            item = NavigationItem(name, "class", start)
            sink.append(item)
            for member in self.members:
                if member.container is not None and member.container.node_start == node.start_byte:
                    item.children.append(NavigationItem(member.name, member.kind, member.node_start))
            body = node.child_by_field_name("body")
            for member in (body.named_children if body is not None else []):
                method_body = member.child_by_field_name("body") if member.type == "method_definition" else None
                if method_body is None:
                    continue
                member_name = member.child_by_field_name("name")
                parent_item = next((i for i in item.children
                                    if member_name is not None and i.text == _text(member_name)), None)
                if parent_item is not None:
                    stack.append((method_body, parent_item.children, True))
        elif locals_only:
            if t in ("lexical_declaration", "variable_declaration"):
                self._outline_variables(node, sink, stack, functions_only=True)
            return
        elif t == "interface_declaration" and name_node is not None:
            item = NavigationItem(name, "interface", start)
            sink.append(item)
            for member in self.members:
                if member.container is not None and member.container.node_start == node.start_byte:
                    item.children.append(NavigationItem(member.name, member.kind, member.node_start))
        elif t == "type_alias_declaration" and name_node is not None:
            sink.append(NavigationItem(name, "type", start))
        elif t == "enum_declaration" and name_node is not None:
            item = NavigationItem(name, "enum", start)
            sink.append(item)
            for member in self.members:
                if member.container is not None and member.container.node_start == node.start_byte:
                    item.children.append(NavigationItem(member.name, member.kind, member.node_start))
        elif t in ("internal_module", "module") and name_node is not None:
            item = NavigationItem(_string_value(name_node), "module", start)
            sink.append(item)
            body = node.child_by_field_name("body")
            if body is not None:
                stack.append((body, item.children, False))
        elif t in ("lexical_declaration", "variable_declaration"):
            self._outline_variables(node, sink, stack, functions_only=False)
        elif t == "import_statement":
            for decl in self.declarations:
                if decl.kind == "alias" and node.start_byte <= decl.start < node.end_byte:
                    sink.append(NavigationItem(decl.name, "alias", decl.node_start))
        elif t in ("expression_statement", "ambient_declaration"):
            inner = node.named_children[0] if node.named_children else None
            if inner is not None and inner.type in ("internal_module", "module", "function_signature",
                                                     "lexical_declaration", "variable_declaration",
                                                     "class_declaration"):
                self._outline_entry(inner, start, sink, stack, locals_only)

    def _outline_variables(self, node: Node, sink: List[NavigationItem], stack: list, functions_only: bool) -> None:
        kind = "var"
        if node.type == "lexical_declaration":
            kind_node = node.child_by_field_name("kind")
            kind = _text(kind_node) if kind_node is not None else _text(node.children[0])
        for declarator in node.named_children:
            if declarator.type != "variable_declarator":
                continue
            value = declarator.child_by_field_name("value")
            is_function = value is not None and value.type in (
                "arrow_function", "function_expression", "function", "generator_function")
            if functions_only and not is_function:
                continue
            for ident in _pattern_names(declarator.child_by_field_name("name")):
                item = NavigationItem(_text(ident), "function" if is_function else kind, declarator.start_byte)
                sink.append(item)
                if is_function:
                    body = value.child_by_field_name("body")
                    if body is not None and body.type == "statement_block":
                        stack.append((body, item.children, True))

    # ------------------------------------------------------------------
    # Node lookup
    # ------------------------------------------------------------------

    def identifier_at(self, byte_offset: int) -> Optional[Node]:
        """Return the identifier-like node touching *byte_offset*, if any."""
        for offset in (byte_offset, byte_offset - 1):
            if offset < 0:
                continue
            node = self.root.descendant_for_byte_range(offset, offset)
            if node is not None and node.type in (
                "identifier", "type_identifier", "property_identifier", "private_property_identifier",
                "shorthand_property_identifier", "shorthand_property_identifier_pattern",
            ):
                return node
        return None


# ===================================================================
# Language service
# ===================================================================

class LanguageService:
    """Analysis session over every script a host exposes."""

    def __init__(self, host: "VirtualCompilerHost") -> None:
        self.host = host
        self._bindings: Dict[str, Optional[FileBinding]] = {}

    def binding(self, path: str) -> Optional[FileBinding]:
        if path not in self._bindings:
            text = self.host.read_file(path)
            if text is None or not self.host.is_script(path):
                self._bindings[path] = None
            else:
                self._bindings[path] = FileBinding(path, text)
        return self._bindings[path]

    def _all_bindings(self) -> List[FileBinding]:
        return [b for b in (self.binding(p) for p in self.host.script_file_names()) if b is not None]

    # ------------------------------------------------------------------
    # Symbol resolution
    # ------------------------------------------------------------------

    def _resolve_use(self, use: NameUse) -> Optional[Declaration]:
        candidates = use.scope.lookup(use.name)
        if not candidates:
            return None
        wanted = ("type", "both") if use.is_type else ("value", "both")
        for decl in candidates:
            if decl.space in wanted:
                return decl
        return candidates[0]

    def _lookup_export(self, path: str, name: str, visited: Set[Tuple[str, str]]) -> Optional[Declaration]:
        if (path, name) in visited:
            return None
        visited.add((path, name))
        binding = self.binding(path)
        if binding is None:
            return None
        entry = binding.exports.get(name)
        if entry is not None:
            if entry.decl is not None:
                return entry.decl
            if entry.local is not None:
                decls = binding.module_scope.declarations.get(entry.local)
                return decls[0] if decls else None
        if name != "default":
            for specifier in binding.star_exports:
                target = self.host.resolve_module(specifier, path)
                if target is not None:
                    found = self._lookup_export(target, name, visited)
                    if found is not None:
                        return found
        return None

    def _export_state(self, path: str, name: str, visited: Set[str]) -> Optional[bool]:
        """True/False when *path* does or does not export *name*; None when unknowable."""
        if path in visited:
            return False
        visited.add(path)
        binding = self.binding(path)
        if binding is None:
            return None
        if name in binding.exports:
            return True
        if name == "default":
            return False
        unknown = False
        for specifier in binding.star_exports:
            target = self.host.resolve_module(specifier, path)
            state = self._export_state(target, name, visited) if target is not None else None
            if state:
                return True
            unknown = unknown or state is None
        return None if unknown else False

    def canonical(self, decl: Declaration) -> Declaration:
        """Follow import aliases and re-exports to the declaring site."""
        seen: Set[int] = set()
        while decl.kind == "alias" and decl.module_specifier is not None and decl.imported_name != "*":
            if id(decl) in seen:
                break
            seen.add(id(decl))
            target = self.host.resolve_module(decl.module_specifier, decl.path)
            if target is None:
                break
            found = self._lookup_export(target, decl.imported_name or "default", set())
            if found is None:
                break
            decl = found
        return decl

    def merge_group(self, decl: Declaration) -> List[Declaration]:
        """Declarations merged with *decl* (overloads, interface merging)."""
        family = _MERGE_FAMILIES.get(decl.kind)
        if decl.scope is None or family is None:
            return [decl]
        group = [d for d in decl.scope.declarations.get(decl.name, []) if d is decl or d.kind in family]
        return group or [decl]

    def _symbol_id(self, decl: Declaration) -> int:
        return id(self.merge_group(self.canonical(decl))[0])

    def _target_at(self, binding: FileBinding, byte_offset: int):
        """Return ("decl", Declaration) or ("member", name, MemberUse|None) for the cursor."""
        node = binding.identifier_at(byte_offset)
        if node is None:
            return None
        key = _key(node)
        if key in binding.decl_by_key:
            return ("decl", binding.decl_by_key[key])
        if key in binding.import_name_sites:
            return ("decl", binding.import_name_sites[key])
        if key in binding.member_by_key:
            return ("member", binding.member_by_key[key].name, None)
        if key in binding.member_use_by_key:
            use = binding.member_use_by_key[key]
            return ("member", use.name, use)
        if key in binding.use_by_key:
            decl = self._resolve_use(binding.use_by_key[key])
            return ("decl", decl) if decl is not None else None
        return None

    # ------------------------------------------------------------------
    # Public queries
    # ------------------------------------------------------------------

    def navigation_items(self, path: str) -> List[NavigationItem]:
        """Outline of *path* with character offsets."""
        binding = self.binding(path)
        if binding is None:
            return []
        items = binding.outline()
        stack = list(items)
        while stack:
            item = stack.pop()
            item.start = binding.source.to_char(item.start)
            stack.extend(item.children)
        return items

    def references_at(self, path: str, offset: int) -> Optional[List[ReferenceSite]]:
        """All reference sites of the symbol at *offset*, or None if nothing is there."""
        binding = self.binding(path)
        if binding is None:
            return None
        target = self._target_at(binding, binding.source.to_byte(offset))
        if target is None:
            return None
        sites: List[Tuple[FileBinding, int, bool]] = []
        if target[0] == "member":
            name = target[1]
            for b in self._all_bindings():
                sites.extend((b, m.start, True) for m in b.members if m.name == name)
                sites.extend((b, u.start, u.is_write) for u in b.member_uses if u.name == name)
        else:
            symbol = self._symbol_id(target[1])
            for b in self._all_bindings():
                for decl in b.declarations:
                    if self._symbol_id(decl) == symbol:
                        sites.append((b, decl.start, decl.kind != "alias"))
                for decl in b.exports.values():
                    if decl.decl is not None and decl.decl.kind == "alias" and decl.decl not in b.declarations \
                            and self._symbol_id(decl.decl) == symbol:
                        sites.append((b, decl.decl.start, False))
                for key, alias in b.import_name_sites.items():
                    if self._symbol_id(alias) == symbol:
                        sites.append((b, key[0], False))
                for use in b.uses:
                    decl = self._resolve_use(use)
                    if decl is not None and self._symbol_id(decl) == symbol:
                        sites.append((b, use.start, use.is_write))
        unique = {(b.path, start): (b, start, is_write) for b, start, is_write in sites}
        order = {p: i for i, p in enumerate(self.host.script_file_names())}
        ordered = sorted(unique.values(), key=lambda s: (order.get(s[0].path, 0), s[1]))
        return [ReferenceSite(b.path, b.source.to_char(start), is_write) for b, start, is_write in ordered]

    def definitions_at(self, path: str, offset: int) -> Optional[List[DefinitionSite]]:
        """Definition sites of the symbol at *offset*, or None if nothing is there."""
        binding = self.binding(path)
        if binding is None:
            return None
        target = self._target_at(binding, binding.source.to_byte(offset))
        if target is None:
            return None
        if target[0] == "member":
            name, use = target[1], target[2]
            candidates: List[Declaration] = []
            for b in self._all_bindings():
                candidates.extend(m for m in b.members if m.name == name)
            if use is not None and use.on_this and use.owner is not None:
                own = [m for m in candidates if m.container is use.owner]
                candidates = own or candidates
            decls = candidates
        else:
            decls = self.merge_group(self.canonical(target[1]))
        results = []
        for decl in decls:
            owner = self.binding(decl.path)
            start = owner.source.to_char(decl.start) if owner is not None else decl.start
            results.append(DefinitionSite(decl.path, start, decl.kind, decl.name))
        return results

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def syntactic_diagnostics(self, path: str) -> List[RawDiagnostic]:
        binding = self.binding(path)
        if binding is None:
            return []
        found: List[RawDiagnostic] = []
        stack = [binding.root]
        while stack:
            node = stack.pop()
            if node.type == "ERROR":
                parent = node.parent
                if parent is None or parent.type == "program":
                    found.append(RawDiagnostic(node.start_byte, 1128, "Declaration or statement expected.", "error"))
                else:
                    found.append(RawDiagnostic(node.start_byte, 1109, "Expression expected.", "error"))
                continue
            if node.is_missing:
                if node.is_named:
                    found.append(RawDiagnostic(node.start_byte, 1003, "Identifier expected.", "error"))
                else:
                    found.append(RawDiagnostic(node.start_byte, 1005, f"'{node.type}' expected.", "error"))
                continue
            if node.has_error:
                stack.extend(reversed(node.children))
        return self._to_chars(binding, found)

    def semantic_diagnostics(self, path: str) -> List[RawDiagnostic]:
        binding = self.binding(path)
        if binding is None or (binding.is_js and not self.host.options.check_js):
            return []
        found: List[RawDiagnostic] = []
        found.extend(self._import_diagnostics(binding))
        found.extend(self._redeclaration_diagnostics(binding))
        for use in binding.uses:
            if not use.is_write:
                continue
            decl = self._resolve_use(use)
            if decl is None:
                continue
            if decl.kind == "const":
                found.append(RawDiagnostic(use.start, 2588,
                                           f"Cannot assign to '{use.name}' because it is a constant.", "error"))
            elif decl.kind == "alias":
                found.append(RawDiagnostic(use.start, 2632,
                                           f"Cannot assign to '{use.name}' because it is an import.", "error"))
        found.sort(key=lambda d: d.start)
        return self._to_chars(binding, found)

    def suggestion_diagnostics(self, path: str) -> List[RawDiagnostic]:
        binding = self.binding(path)
        if binding is None:
            return []
        found: List[RawDiagnostic] = []
        found.extend(self._unreachable_diagnostics(binding))
        found.extend(self._unused_diagnostics(binding))
        if binding.is_js and not binding.is_module:
            site = self._commonjs_site(binding)
            if site is not None:
                found.append(RawDiagnostic(site, 80001,
                                           "File is a CommonJS module; it may be converted to an ES module.",
                                           "suggestion"))
        found.sort(key=lambda d: d.start)
        return self._to_chars(binding, found)

    @staticmethod
    def _to_chars(binding: FileBinding, found: List[RawDiagnostic]) -> List[RawDiagnostic]:
        for diag in found:
            diag.start = binding.source.to_char(diag.start)
        return found

    def _import_diagnostics(self, binding: FileBinding) -> List[RawDiagnostic]:
        found = []
        for record in binding.imports:
            spec = record.specifier
            if not (record.names or record.is_star_export) or not spec.startswith((".", "/", "@/")):
                continue
            ext = extension_of(spec)
            if ext and ext not in CODE_EXTENSIONS:
                continue
            if (ext in TS_EXTENSIONS and not spec.endswith(".d.ts")
                    and not self.host.options.allow_importing_ts_extensions):
                found.append(RawDiagnostic(
                    record.start, 5097,
                    f"An import path can only end with a '{ext}' extension when 'allowImportingTsExtensions' is enabled.",
                    "error"))
            target = self.host.resolve_module(spec, binding.path)
            if target is None:
                found.append(RawDiagnostic(
                    record.start, 2307,
                    f"Cannot find module '{spec}' or its corresponding type declarations.", "error"))
                continue
            if target.endswith(JSX_EXTENSIONS) and not self.host.options.jsx:
                found.append(RawDiagnostic(
                    record.start, 6142,
                    f"Module '{spec}' was resolved to '{target}', but '--jsx' is not set.", "error"))
                continue
            target_binding = self.binding(target)
            if target_binding is None or (target_binding.is_js and not target_binding.is_module):
                continue
            for imported, start in record.names:
                state = self._export_state(target, imported, set())
                if state is not False:
                    continue
                if imported == "default":
                    found.append(RawDiagnostic(start, 1192, f"Module '\"{spec}\"' has no default export.", "error"))
                else:
                    found.append(RawDiagnostic(
                        start, 2305, f"Module '\"{spec}\"' has no exported member '{imported}'.", "error"))
        return found

    def _redeclaration_diagnostics(self, binding: FileBinding) -> List[RawDiagnostic]:
        found = []
        for scope in binding.scopes:
            for name, decls in scope.declarations.items():
                values = [d for d in decls if d.kind in VALUE_KINDS]
                if len(values) < 2 or not any(d.kind in BLOCK_SCOPED_KINDS for d in values):
                    continue
                for decl in values:
                    if decl.kind in BLOCK_SCOPED_KINDS:
                        found.append(RawDiagnostic(
                            decl.start, 2451, f"Cannot redeclare block-scoped variable '{name}'.", "error"))
        return found

    def _unreachable_diagnostics(self, binding: FileBinding) -> List[RawDiagnostic]:
        found = []
        stack = [binding.root]
        while stack:
            node = stack.pop()
            if node.type in ("statement_block", "program", "switch_case", "switch_default"):
                terminated = False
                for child in node.named_children:
                    if terminated and child.type not in HOISTED_STATEMENTS:
                        found.append(RawDiagnostic(
                            child.start_byte, 7027, "Unreachable code detected.", "suggestion"))
                        break
                    if child.type in TERMINATORS:
                        terminated = True
            stack.extend(node.named_children)
        return found

    def _unused_diagnostics(self, binding: FileBinding) -> List[RawDiagnostic]:
        reads: Dict[int, int] = {}
        for use in binding.uses:
            if not use.is_read:
                continue
            decl = self._resolve_use(use)
            if decl is not None:
                head = id(self.merge_group(decl)[0])
                reads[head] = reads.get(head, 0) + 1
        exported_locals = {e.local for e in binding.exports.values() if e.local}
        found = []
        for decl in binding.declarations:
            if decl.kind not in UNUSED_CHECK_KINDS or decl.skip_unused or decl.exported:
                continue
            if decl.name.startswith("_") or decl.name in exported_locals and decl.scope is binding.module_scope:
                continue
            if decl.scope is binding.module_scope and not binding.is_module:
                continue
            group = self.merge_group(decl)
            if group[0] is not decl or any(d.exported for d in group):
                continue
            if reads.get(id(decl), 0):
                continue
            if decl.kind in ("class", "interface", "type", "enum"):
                found.append(RawDiagnostic(decl.start, 6196, f"'{decl.name}' is declared but never used.", "suggestion"))
            else:
                found.append(RawDiagnostic(
                    decl.start, 6133, f"'{decl.name}' is declared but its value is never read.", "suggestion"))
        return found

    @staticmethod
    def _commonjs_site(binding: FileBinding) -> Optional[int]:
        for statement in binding.root.named_children:
            if statement.type in ("lexical_declaration", "variable_declaration"):
                for declarator in statement.named_children:
                    value = declarator.child_by_field_name("value") if declarator.type == "variable_declarator" else None
                    fn = value.child_by_field_name("function") if value is not None and value.type == "call_expression" else None
                    if fn is not None and _text(fn) == "require":
                        return statement.start_byte
            elif statement.type == "expression_statement" and statement.named_children:
                expr = statement.named_children[0]
                left = expr.child_by_field_name("left") if expr.type == "assignment_expression" else None
                if left is not None and left.type == "member_expression":
                    target = _text(left)
                    if target.startswith(("module.exports", "exports.")):
                        return statement.start_byte
        return None
