"""Tree-sitter based analyzer for TypeScript (and type-checked JavaScript)."""

import logging
import os
import re
from dataclasses import replace
from typing import Dict, List, Optional, Set, Tuple

from tree_sitter import Node

from .base import LanguageAnalyzer, read_source
from .import_graph_builder import ImportGraphBuilder, resolve_module_specifier
from ..parsers.tree_sitter_parser import (
    TreeSitterParser, field_text, has_child_type, node_column, node_line, node_text, string_value
)
from ..snapshot import (
    ApiShape, ApiSnapshot, ClassMember, ClassShape, EnumMember, EnumShape, ExportRecord,
    ExportType, FunctionShape, FunctionSignature, NamespaceShape, Parameter, Symbol, SymbolKind,
    SymbolSnapshot, TypeProperty, TypeShape, VariableShape, make_identity
)

logger = logging.getLogger(__name__)

FUNCTION_DECLARATIONS = ('function_declaration', 'generator_function_declaration', 'function_signature')
CLASS_DECLARATIONS = ('class_declaration', 'abstract_class_declaration')
FUNCTION_EXPRESSIONS = ('arrow_function', 'function_expression', 'function', 'generator_function')
PARAMETER_NODES = ('required_parameter', 'optional_parameter', 'identifier',
                   'assignment_pattern', 'rest_pattern', 'object_pattern', 'array_pattern')

CJS_EXPORTS = 'cjs:exports'
CJS_MODULE_EXPORTS = 'cjs:module.exports'


def normalize_type(text: str) -> str:
    text = text.strip()
    if text.startswith(':'):
        text = text[1:]
    return ' '.join(text.split())


def expression_kind(node: Optional[Node]) -> str:
    """Classify the value of `export default` / `module.exports =`."""
    if node is None:
        return 'unknown'
    if node.type in FUNCTION_EXPRESSIONS:
        return 'function'
    if node.type == 'object':
        return 'object'
    if node.type == 'class':
        return 'class'
    if node.type in ('identifier', 'call_expression'):
        return 'variable'
    return 'unknown'


def literal_type(node: Optional[Node]) -> str:
    if node is None:
        return ''
    if node.type == 'number':
        return 'number'
    if node.type in ('string', 'template_string'):
        return 'string'
    if node.type in ('true', 'false'):
        return 'boolean'
    if node.type == 'array':
        return 'array'
    if node.type == 'object':
        return 'object'
    return ''


def strip_comments(code: str) -> str:
    code = re.sub(r'/\*[\s\S]*?\*/', '', code)
    return re.sub(r'//.*$', '', code, flags=re.MULTILINE)


def detect_module_system(content: str) -> str:
    """Classify a module as cjs, esm, mixed or unknown from its text."""
    code = strip_comments(content)
    has_cjs = bool(re.search(r'\bmodule\.exports\b', code) or re.search(r'\bexports\.', code)
                   or re.search(r'\brequire\s*\(', code))
    has_esm = bool(re.search(r'\bexport\s+default\b', code)
                   or re.search(r'\bexport\s+(?:const|let|var|function|class|\{|\*)', code)
                   or re.search(r'\bimport\s+', code))
    if has_cjs and has_esm:
        return 'mixed'
    if has_cjs:
        return 'cjs'
    if has_esm:
        return 'esm'
    return 'unknown'


class TypeScriptAnalyzer(LanguageAnalyzer):
    """Extracts declared symbols with their type shapes and resolves exports across files."""

    language = "typescript"
    extensions = ('.ts', '.tsx', '.mts', '.cts', '.js', '.jsx')
    skip_dirs = ('node_modules', '.git', 'dist', 'build', 'out', '.vscode')

    def __init__(self, project_root: Optional[str] = None, parser: Optional[TreeSitterParser] = None):
        super().__init__(project_root)
        self.parser = parser or TreeSitterParser()
        self._file_snapshots: Dict[str, Optional[SymbolSnapshot]] = {}

    def _grammar(self, file_path: str) -> str:
        ext = os.path.splitext(file_path)[1].lower()
        if ext in ('.ts', '.mts', '.cts'):
            return 'typescript'
        return 'tsx'

    # ------------------------------------------------------------------
    # Extraction

    def analyze(self, file_path: str, content: str) -> SymbolSnapshot:
        tree = self.parser.parse_file(content, self._grammar(file_path))
        snapshot = SymbolSnapshot(file_path=file_path, language=self.language)
        if tree.root_node.has_error:
            logger.debug("Syntax errors in %s; extracting what parsed", file_path)

        overloads: Dict[str, Symbol] = {}
        for statement in tree.root_node.named_children:
            self._visit_statement(statement, snapshot, overloads)

        records = self.parser.get_imports(tree)
        snapshot.imports = [r for r in records if not r.is_reexport]
        snapshot.modules = sorted({r.module for r in records})
        snapshot.module_system = detect_module_system(content)

        local_names = {s.name for s in snapshot.all_symbols()}
        for record in snapshot.exports:
            if record.source_module is None or record.source_module.startswith('cjs:'):
                local = record.source_name or record.name
                if local in local_names:
                    symbol = snapshot.find_symbol(local)
                    symbol.is_exported = True
                    if record.kind == 'unknown':
                        record.kind = symbol.kind.value
        return snapshot.deduplicate()

    def _visit_statement(self, node: Node, snapshot: SymbolSnapshot, overloads: Dict[str, Symbol]):
        if node.type == 'export_statement':
            self._visit_export(node, snapshot, overloads)
        elif node.type == 'ambient_declaration':
            for child in node.named_children:
                self._declare(child, snapshot, overloads, exported=False)
        elif node.type == 'expression_statement':
            self._visit_commonjs(node, snapshot)
        else:
            self._declare(node, snapshot, overloads, exported=False)

    def _visit_export(self, node: Node, snapshot: SymbolSnapshot, overloads: Dict[str, Symbol]):
        line = node_line(node)
        is_default = has_child_type(node, 'default')
        type_only = has_child_type(node, 'type')
        declaration = node.child_by_field_name('declaration')
        source = node.child_by_field_name('source')

        if declaration is not None:
            if declaration.type == 'ambient_declaration':
                declaration = declaration.named_children[0] if declaration.named_children else declaration
            symbols = self._declare(declaration, snapshot, overloads, exported=True,
                                    default_name='default' if is_default else None)
            for symbol in symbols:
                if is_default:
                    snapshot.exports.append(ExportRecord(
                        name='default', export_type=ExportType.DEFAULT, kind=symbol.kind.value,
                        line=line, source_name=symbol.name if symbol.name != 'default' else None
                    ))
                else:
                    snapshot.exports.append(ExportRecord(
                        name=symbol.name, export_type=ExportType.NAMED, kind=symbol.kind.value,
                        line=symbol.line, is_type_only=symbol.kind in (SymbolKind.INTERFACE, SymbolKind.TYPE)
                    ))
            return

        value = node.child_by_field_name('value')
        if is_default or has_child_type(node, '='):
            if value is None:
                value = next((c for c in node.named_children if c.type not in ('comment', 'decorator')), None)
            self._export_default_value(value, line, snapshot)
            return

        clause = next((c for c in node.named_children if c.type == 'export_clause'), None)
        namespace = next((c for c in node.named_children if c.type == 'namespace_export'), None)
        module = string_value(source) if source is not None else None

        if clause is not None:
            for spec in clause.named_children:
                if spec.type != 'export_specifier':
                    continue
                name = string_value(spec.child_by_field_name('name'))
                alias = string_value(spec.child_by_field_name('alias')) if spec.child_by_field_name('alias') else None
                exported = alias or name
                snapshot.exports.append(ExportRecord(
                    name=exported,
                    export_type=(ExportType.DEFAULT if exported == 'default' and module is None
                                 else ExportType.RE_EXPORT if module else ExportType.NAMED),
                    line=node_line(spec),
                    source_module=module,
                    source_name=name if (alias or module) else None,
                    is_type_only=type_only or has_child_type(spec, 'type')
                ))
        elif namespace is not None and module:
            names = [c for c in namespace.named_children if c.type in ('identifier', 'string')]
            snapshot.exports.append(ExportRecord(
                name=string_value(names[0]) if names else '*',
                export_type=ExportType.NAMESPACE, kind='namespace', line=line, source_module=module
            ))
        elif module:
            snapshot.exports.append(ExportRecord(
                name='*', export_type=ExportType.RE_EXPORT, kind='star', line=line, source_module=module
            ))

    def _export_default_value(self, value: Optional[Node], line: int, snapshot: SymbolSnapshot):
        kind = expression_kind(value)
        source_name = node_text(value) if value is not None and value.type == 'identifier' else None
        if source_name is None and value is not None:
            self._store(snapshot, self._symbol_from_expression('default', value, snapshot.file_path, line))
        snapshot.exports.append(ExportRecord(
            name='default', export_type=ExportType.DEFAULT, kind=kind, line=line, source_name=source_name
        ))

    def _visit_commonjs(self, node: Node, snapshot: SymbolSnapshot):
        expression = node.named_children[0] if node.named_children else None
        if expression is None or expression.type != 'assignment_expression':
            return
        left = expression.child_by_field_name('left')
        right = expression.child_by_field_name('right')
        if left is None or left.type != 'member_expression':
            return

        target = node_text(left.child_by_field_name('object'))
        prop = field_text(left, 'property')
        line = node_line(node)
        source_name = node_text(right) if right is not None and right.type == 'identifier' else None

        if node_text(left) == 'module.exports':
            name, export_type, module = 'default', ExportType.DEFAULT, CJS_MODULE_EXPORTS
        elif target in ('exports', 'module.exports'):
            name, export_type, module = prop, ExportType.NAMED, CJS_EXPORTS
        else:
            return

        if source_name is None and right is not None and snapshot.find_symbol(name) is None:
            self._store(snapshot, self._symbol_from_expression(name, right, snapshot.file_path, line))
        snapshot.exports.append(ExportRecord(
            name=name, export_type=export_type, kind=expression_kind(right), line=line,
            source_module=module, source_name=source_name
        ))

    def _store(self, snapshot: SymbolSnapshot, symbol: Symbol):
        bucket = {
            SymbolKind.FUNCTION: snapshot.functions,
            SymbolKind.CLASS: snapshot.classes,
            SymbolKind.INTERFACE: snapshot.interfaces,
            SymbolKind.TYPE: snapshot.type_aliases,
            SymbolKind.ENUM: snapshot.enums,
        }.get(symbol.kind, snapshot.variables)
        bucket.append(symbol)

    def _declare(self, node: Node, snapshot: SymbolSnapshot, overloads: Dict[str, Symbol],
                 exported: bool, default_name: Optional[str] = None) -> List[Symbol]:
        """Record the symbols a declaration introduces and return them."""
        file_path = snapshot.file_path
        name = field_text(node, 'name') or default_name

        if node.type in FUNCTION_DECLARATIONS and name:
            signature = self._signature(node)
            existing = overloads.get(name)
            if existing is not None:
                # Overload list is fixed once signatures exist; the implementation is hidden
                if node.type == 'function_signature':
                    existing.shape.overloads.append(signature)
                existing.is_exported = existing.is_exported or exported
                return [existing]
            symbol = Symbol(
                name=name,
                kind=SymbolKind.FUNCTION,
                file_path=file_path,
                line=node_line(node),
                column=node_column(node),
                is_exported=exported,
                signature=f"{name}{signature.render()}",
                return_type=signature.return_type,
                shape=FunctionShape(name=name, overloads=[signature],
                                    type_parameters=list(signature.type_parameters))
            )
            if node.type == 'function_signature':
                overloads[name] = symbol
            snapshot.functions.append(symbol)
            return [symbol]

        if node.type in CLASS_DECLARATIONS + ('class',) and name:
            shape = self._class_shape(name, node)
            symbol = Symbol(name=name, kind=SymbolKind.CLASS, file_path=file_path, line=node_line(node),
                            column=node_column(node), is_exported=exported,
                            signature=f"class {name}", shape=shape)
            snapshot.classes.append(symbol)
            return [symbol]

        if node.type == 'interface_declaration' and name:
            shape = TypeShape(name=name, kind='interface',
                              extends=self._heritage_types(node, 'extends_type_clause'))
            self._read_type_members(node.child_by_field_name('body'), shape)
            symbol = Symbol(name=name, kind=SymbolKind.INTERFACE, file_path=file_path, line=node_line(node),
                            column=node_column(node), is_exported=exported,
                            signature=f"interface {name}", shape=shape)
            snapshot.interfaces.append(symbol)
            return [symbol]

        if node.type == 'type_alias_declaration' and name:
            value = node.child_by_field_name('value')
            shape = TypeShape(name=name, kind='type')
            if value is not None and value.type == 'object_type':
                self._read_type_members(value, shape)
            else:
                type_params = field_text(node, 'type_parameters')
                shape.type_text = normalize_type(type_params + node_text(value))
            symbol = Symbol(name=name, kind=SymbolKind.TYPE, file_path=file_path, line=node_line(node),
                            column=node_column(node), is_exported=exported,
                            signature=f"type {name}", shape=shape)
            snapshot.type_aliases.append(symbol)
            return [symbol]

        if node.type == 'enum_declaration' and name:
            shape = EnumShape(name=name, members=self._enum_members(node.child_by_field_name('body')),
                              const=has_child_type(node, 'const'))
            symbol = Symbol(name=name, kind=SymbolKind.ENUM, file_path=file_path, line=node_line(node),
                            column=node_column(node), is_exported=exported,
                            signature=f"enum {name}", shape=shape)
            snapshot.enums.append(symbol)
            return [symbol]

        if node.type in ('lexical_declaration', 'variable_declaration'):
            declaration_kind = field_text(node, 'kind') or 'var'
            is_const = declaration_kind == 'const'
            symbols = []
            for declarator in node.named_children:
                if declarator.type != 'variable_declarator':
                    continue
                name_node = declarator.child_by_field_name('name')
                if name_node is None or name_node.type != 'identifier':
                    continue
                var_name = node_text(name_node)
                value = declarator.child_by_field_name('value')
                annotation = declarator.child_by_field_name('type')
                if value is not None and value.type in FUNCTION_EXPRESSIONS and annotation is None:
                    symbol = self._symbol_from_expression(var_name, value, file_path, node_line(declarator))
                    symbol.is_exported = exported
                    snapshot.functions.append(symbol)
                else:
                    var_type = normalize_type(node_text(annotation)) if annotation is not None else literal_type(value)
                    symbol = Symbol(
                        name=var_name, kind=SymbolKind.VARIABLE, file_path=file_path,
                        line=node_line(declarator), column=node_column(declarator), is_exported=exported,
                        signature=f"{declaration_kind} {var_name}",
                        shape=VariableShape(name=var_name, kind='const' if is_const else 'variable',
                                            type=var_type or None, readonly=is_const)
                    )
                    snapshot.variables.append(symbol)
                symbols.append(symbol)
            return symbols

        return []

    def _symbol_from_expression(self, name: str, value: Node, file_path: str, line: int) -> Symbol:
        if value.type in FUNCTION_EXPRESSIONS:
            signature = self._signature(value)
            return Symbol(name=name, kind=SymbolKind.FUNCTION, file_path=file_path, line=line,
                          is_exported=True, signature=f"{name}{signature.render()}",
                          return_type=signature.return_type,
                          shape=FunctionShape(name=name, overloads=[signature],
                                              type_parameters=list(signature.type_parameters)))
        if value.type == 'class':
            return Symbol(name=name, kind=SymbolKind.CLASS, file_path=file_path, line=line,
                          is_exported=True, signature=f"class {name}", shape=self._class_shape(name, value))
        return Symbol(name=name, kind=SymbolKind.VARIABLE, file_path=file_path, line=line, is_exported=True,
                      signature=name, shape=VariableShape(name=name, type=literal_type(value) or None))

    # ------------------------------------------------------------------
    # Shapes

    def _signature(self, node: Node) -> FunctionSignature:
        parameters = []
        params_node = node.child_by_field_name('parameters')
        single = node.child_by_field_name('parameter')
        if params_node is not None:
            for param in params_node.named_children:
                parsed = self._parameter(param)
                if parsed is not None:
                    parameters.append(parsed)
        elif single is not None:
            parameters.append(Parameter(name=node_text(single)))

        return_node = node.child_by_field_name('return_type')
        type_params_node = node.child_by_field_name('type_parameters')
        type_parameters = []
        if type_params_node is not None:
            type_parameters = [normalize_type(node_text(tp)) for tp in type_params_node.named_children]
        return FunctionSignature(
            parameters=parameters,
            return_type=normalize_type(node_text(return_node)) if return_node is not None else '',
            type_parameters=type_parameters
        )

    def _parameter(self, node: Node) -> Optional[Parameter]:
        if node.type not in PARAMETER_NODES:
            return None

        if node.type in ('required_parameter', 'optional_parameter'):
            pattern = node.child_by_field_name('pattern')
            annotation = node.child_by_field_name('type')
            value = node.child_by_field_name('value')
        elif node.type == 'assignment_pattern':
            pattern = node.child_by_field_name('left')
            annotation = None
            value = node.child_by_field_name('right')
        else:
            pattern, annotation, value = node, None, None

        if pattern is None or pattern.type == 'this':
            return None

        rest = pattern.type == 'rest_pattern'
        name = node_text(pattern)
        if rest:
            name = name.lstrip('.').strip()
        optional = node.type == 'optional_parameter' or value is not None or rest
        return Parameter(
            name=' '.join(name.split()),
            type=normalize_type(node_text(annotation)) if annotation is not None else 'any',
            optional=optional,
            rest=rest,
            default_value=node_text(value) if value is not None else None
        )

    def _class_shape(self, name: str, node: Node) -> ClassShape:
        shape = ClassShape(name=name)
        for child in node.named_children:
            if child.type == 'class_heritage':
                for clause in child.named_children:
                    if clause.type == 'extends_clause':
                        value = clause.child_by_field_name('value')
                        shape.extends = normalize_type(node_text(value if value is not None else clause)
                                                       ).replace('extends ', '', 1)
                    elif clause.type == 'implements_clause':
                        shape.implements = [normalize_type(node_text(t)) for t in clause.named_children]

        body = node.child_by_field_name('body')
        if body is None:
            return shape

        seen: Set[Tuple[str, bool]] = set()
        for member in body.named_children:
            parsed = self._class_member(member)
            if parsed is None:
                continue
            key = (parsed.name, parsed.static)
            # First declaration wins so overload signatures hide the implementation
            if key in seen:
                continue
            seen.add(key)
            shape.members.append(parsed)
            if parsed.kind == 'constructor' and parsed.signature is not None:
                shape.members.extend(self._parameter_properties(member))
        return shape

    def _class_member(self, node: Node) -> Optional[ClassMember]:
        name_node = node.child_by_field_name('name')
        if name_node is None or name_node.type == 'private_property_identifier':
            return None
        visibility = 'public'
        for child in node.children:
            if child.type == 'accessibility_modifier':
                visibility = node_text(child)
        if visibility == 'private':
            return None

        name = node_text(name_node)
        static = has_child_type(node, 'static')
        optional = has_child_type(node, '?')

        if node.type in ('method_definition', 'method_signature', 'abstract_method_signature'):
            kind = 'method'
            if name == 'constructor':
                kind = 'constructor'
            elif has_child_type(node, 'get'):
                kind = 'get'
            elif has_child_type(node, 'set'):
                kind = 'set'
            signature = self._signature(node)
            return ClassMember(name=name, kind=kind, optional=optional, visibility=visibility,
                               static=static, signature=signature,
                               type=signature.return_type if kind == 'get' else None)

        if node.type == 'public_field_definition':
            annotation = node.child_by_field_name('type')
            value = node.child_by_field_name('value')
            if annotation is None and value is not None and value.type in FUNCTION_EXPRESSIONS:
                return ClassMember(name=name, kind='method', optional=optional, visibility=visibility,
                                   static=static, signature=self._signature(value))
            return ClassMember(
                name=name, kind='property', optional=optional, readonly=has_child_type(node, 'readonly'),
                visibility=visibility, static=static,
                type=normalize_type(node_text(annotation)) if annotation is not None else literal_type(value) or 'any'
            )
        return None

    def _parameter_properties(self, constructor: Node) -> List[ClassMember]:
        """`constructor(public x: T)` declares a property `x`."""
        members = []
        params = constructor.child_by_field_name('parameters')
        if params is None:
            return members
        for param in params.named_children:
            modifiers = [node_text(c) for c in param.children if c.type == 'accessibility_modifier']
            readonly = has_child_type(param, 'readonly')
            if not modifiers and not readonly:
                continue
            if modifiers and modifiers[0] == 'private':
                continue
            parsed = self._parameter(param)
            if parsed is None:
                continue
            members.append(ClassMember(name=parsed.name, kind='property', optional=parsed.optional,
                                       readonly=readonly, visibility=modifiers[0] if modifiers else 'public',
                                       type=parsed.type))
        return members

    def _heritage_types(self, node: Node, clause_type: str) -> List[str]:
        for child in node.named_children:
            if child.type == clause_type:
                return [normalize_type(node_text(t)) for t in child.named_children]
        return []

    def _read_type_members(self, body: Optional[Node], shape: TypeShape):
        if body is None:
            return
        for member in body.named_children:
            if member.type == 'property_signature':
                annotation = member.child_by_field_name('type')
                shape.properties.append(TypeProperty(
                    name=field_text(member, 'name'),
                    type=normalize_type(node_text(annotation)) if annotation is not None else 'any',
                    optional=has_child_type(member, '?'),
                    readonly=has_child_type(member, 'readonly')
                ))
            elif member.type == 'method_signature':
                shape.properties.append(TypeProperty(
                    name=field_text(member, 'name'),
                    type=self._signature(member).render(),
                    optional=has_child_type(member, '?')
                ))
            elif member.type in ('index_signature', 'call_signature', 'construct_signature'):
                shape.index_signatures.append(normalize_type(node_text(member)).rstrip(';,'))

    def _enum_members(self, body: Optional[Node]) -> List[EnumMember]:
        members = []
        if body is None:
            return members
        next_value: Optional[int] = 0
        for member in body.named_children:
            if member.type == 'enum_assignment':
                name = string_value(member.child_by_field_name('name'))
                value = normalize_type(field_text(member, 'value'))
                members.append(EnumMember(name=name, value=value))
                next_value = int(value) + 1 if re.fullmatch(r'-?\d+', value) else None
            elif member.type in ('property_identifier', 'string'):
                members.append(EnumMember(name=string_value(member),
                                          value=str(next_value) if next_value is not None else None))
                next_value = next_value + 1 if next_value is not None else None
        return members

    # ------------------------------------------------------------------
    # Export resolution

    def build_snapshot(self, file_path: str, content: str) -> SymbolSnapshot:
        """Analyze a file and fill in export kinds by following re-exports."""
        self.clear_cache()
        snapshot = self.analyze(file_path, content)
        self._file_snapshots[os.path.abspath(file_path)] = snapshot
        for record in snapshot.exports:
            if record.kind != 'unknown' or record.source_module is None:
                continue
            if record.source_module.startswith('cjs:'):
                continue
            resolved = self._resolve_export(file_path, record.name, set())
            if resolved is not None:
                record.kind = resolved.shape.kind if resolved.shape is not None else resolved.kind.value
            elif record.export_type == ExportType.RE_EXPORT:
                record.kind = 're-export'
        return snapshot

    def clear_cache(self):
        self._file_snapshots.clear()

    def _load(self, file_path: str) -> Optional[SymbolSnapshot]:
        key = os.path.abspath(file_path)
        if key not in self._file_snapshots:
            content = read_source(key)
            snapshot = None
            if content is not None:
                try:
                    snapshot = self.analyze(key, content)
                except ValueError as e:
                    logger.warning("Cannot parse %s: %s", key, e)
            self._file_snapshots[key] = snapshot
        return self._file_snapshots[key]

    def _export_names(self, file_path: str, visited_files: Set[str]) -> List[Tuple[str, ExportType]]:
        """Every (name, export type) a module exposes, expanding `export *`."""
        key = os.path.abspath(file_path)
        if key in visited_files:
            logger.debug("Re-export cycle through %s", key)
            return []
        visited_files.add(key)

        snapshot = self._load(key)
        if snapshot is None:
            return []

        names: Dict[str, ExportType] = {}
        for record in snapshot.exports:
            if record.name == '*':
                continue
            if record.export_type == ExportType.NAMESPACE:
                names[record.name] = ExportType.NAMESPACE
            elif record.name == 'default':
                names['default'] = ExportType.DEFAULT
            else:
                names.setdefault(record.name, ExportType.NAMED)

        for record in snapshot.exports:
            if record.name != '*' or not record.source_module:
                continue
            target = resolve_module_specifier(record.source_module, key)
            if target is None:
                logger.warning("Cannot resolve `export * from '%s'` in %s", record.source_module, key)
                continue
            for name, export_type in self._export_names(target, visited_files):
                if name != 'default':
                    names.setdefault(name, export_type)
        return sorted(names.items())

    def _resolve_export(self, file_path: str, export_name: str,
                        visited: Set[Tuple[str, str]]) -> Optional[Symbol]:
        """Follow re-export chains to the declaring symbol, guarding against cycles."""
        key = (os.path.abspath(file_path), export_name)
        if key in visited:
            logger.debug("Already visited %s:%s", *key)
            return None
        visited.add(key)

        snapshot = self._load(key[0])
        if snapshot is None:
            return None

        for record in snapshot.exports:
            if record.name != export_name or record.name == '*':
                continue
            if record.source_module and not record.source_module.startswith('cjs:'):
                target = resolve_module_specifier(record.source_module, key[0])
                if target is None:
                    return None
                if record.export_type == ExportType.NAMESPACE:
                    return self._namespace_symbol(export_name, target, record)
                return self._resolve_export(target, record.source_name or export_name, visited)
            return self._resolve_local(snapshot, record.source_name or record.name, visited)

        for record in snapshot.exports:
            if record.name != '*' or not record.source_module or export_name == 'default':
                continue
            target = resolve_module_specifier(record.source_module, key[0])
            if target is None:
                continue
            resolved = self._resolve_export(target, export_name, visited)
            if resolved is not None:
                return resolved
        return None

    def _resolve_local(self, snapshot: SymbolSnapshot, local_name: str,
                       visited: Set[Tuple[str, str]]) -> Optional[Symbol]:
        symbol = snapshot.find_symbol(local_name)
        if symbol is not None:
            return symbol

        for record in snapshot.imports:
            target = None
            imported = None
            if local_name in record.names:
                imported = record.names[local_name]
            elif record.default_name == local_name:
                imported = 'default'
            elif record.namespace_name == local_name:
                target = resolve_module_specifier(record.module, snapshot.file_path)
                if target is None:
                    return None
                return self._namespace_symbol(local_name, target, None)
            if imported is None:
                continue
            target = resolve_module_specifier(record.module, snapshot.file_path)
            if target is None:
                return None
            return self._resolve_export(target, imported, visited)
        return None

    def _namespace_symbol(self, name: str, target: str, record: Optional[ExportRecord]) -> Symbol:
        exports = [n for n, _ in self._export_names(target, set())]
        return Symbol(name=name, kind=SymbolKind.VARIABLE, file_path=target,
                      line=record.line if record is not None else 1, is_exported=True,
                      signature=f"namespace {name}", shape=NamespaceShape(name=name, exports=exports))

    def build_api_snapshot(self, entrypoint_path: str, repo_root: str) -> ApiSnapshot:
        """Resolve every export of an entrypoint to its declaration and shape."""
        self.clear_cache()
        entry = os.path.abspath(entrypoint_path)
        snapshot = ApiSnapshot(entrypoint_path=self._relative(entry, repo_root))

        entry_snapshot = self._load(entry)
        if entry_snapshot is None:
            snapshot.record_failure(os.path.basename(entry))
            return snapshot
        snapshot.module_system = entry_snapshot.module_system

        for name, export_type in self._export_names(entry, set()):
            try:
                symbol = self._resolve_export(entry, name, set())
            except (ValueError, RecursionError) as e:
                logger.warning("Failed to resolve export %s of %s: %s", name, entry, e)
                symbol = None
            if symbol is None or symbol.shape is None:
                logger.warning("Could not resolve shape for export '%s' of %s", name, entry)
                snapshot.record_failure(name)
                continue

            identity_type = {ExportType.DEFAULT: 'default', ExportType.NAMESPACE: 'namespace'}.get(export_type, 'value')
            identity = make_identity(name, identity_type, self._relative(symbol.file_path, repo_root), symbol.line)
            snapshot.exports[identity] = self._renamed_shape(symbol.shape, name)

        return snapshot

    @staticmethod
    def _renamed_shape(shape: ApiShape, name: str) -> ApiShape:
        return replace(shape, name=name) if shape.name != name else shape

    @staticmethod
    def _relative(file_path: str, repo_root: str) -> str:
        relative = os.path.relpath(os.path.abspath(file_path), os.path.abspath(repo_root))
        return relative.replace(os.sep, '/')

    # ------------------------------------------------------------------
    # References

    def reference_patterns(self, symbol_name: str) -> List["re.Pattern"]:
        name = re.escape(symbol_name)
        return [
            re.compile(rf'\b{name}\s*[(.\[<]'),
            re.compile(rf'\bnew\s+{name}\b'),
            re.compile(rf'\bextends\s+{name}\b'),
            re.compile(rf':\s*{name}\b'),
        ]

    def file_uses_symbol(self, file_path: str, symbol_name: str, project_root: str) -> bool:
        content = read_source(file_path)
        if content is None:
            return False
        try:
            tree = self.parser.parse_file(content, self._grammar(file_path))
        except ValueError:
            return False
        for record in self.parser.get_imports(tree):
            if symbol_name in record.names.values() or symbol_name in record.names:
                return True
        code = strip_comments(content)
        return any(pattern.search(code) for pattern in self.reference_patterns(symbol_name))

    def find_references(self, symbol_name: str, file_path: str, project_root: str) -> List[str]:
        """Files that import the declaring module and mention the symbol."""
        files = [os.path.abspath(f) for f in self.iter_source_files(project_root)]
        builder = ImportGraphBuilder(self.parser)
        graph = builder.build_graph(files, project_root)
        source = os.path.abspath(file_path)
        candidates = [f for f in files if f != source]
        importers = set(builder.get_dependents(graph, source))
        references = []
        for candidate in candidates:
            if candidate in importers and self.file_uses_symbol(candidate, symbol_name, project_root):
                references.append(candidate)
        return sorted(references)
