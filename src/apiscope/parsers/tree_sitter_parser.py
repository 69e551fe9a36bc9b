"""Tree-sitter based code parsing."""

import logging
import os
from typing import Dict, Iterator, List, Optional, Any

from tree_sitter import Node, Parser, Tree
from tree_sitter_language_pack import get_language

from ..snapshot import ImportRecord

logger = logging.getLogger(__name__)

EXTENSION_LANGUAGES = {
    '.ts': 'typescript',
    '.mts': 'typescript',
    '.cts': 'typescript',
    '.tsx': 'tsx',
    '.js': 'javascript',
    '.mjs': 'javascript',
    '.cjs': 'javascript',
    '.jsx': 'javascript',
    '.py': 'python',
    '.java': 'java',
}

SUPPORTED_LANGUAGES = ['typescript', 'tsx', 'javascript', 'python', 'java']


def node_text(node: Optional[Node]) -> str:
    """Decoded source text of a node, or an empty string."""
    if node is None:
        return ''
    return node.text.decode('utf8')


def node_line(node: Node) -> int:
    return node.start_point[0] + 1


def node_column(node: Node) -> int:
    return node.start_point[1] + 1


def field_text(node: Node, field_name: str) -> str:
    return node_text(node.child_by_field_name(field_name))


def string_value(node: Optional[Node]) -> str:
    """Strip the quotes off a string literal node."""
    text = node_text(node)
    if len(text) >= 2 and text[0] in '\'"`' and text[-1] == text[0]:
        return text[1:-1]
    return text


def has_child_type(node: Node, *types: str) -> bool:
    return any(child.type in types for child in node.children)


def walk(node: Node) -> Iterator[Node]:
    """Pre-order traversal of a syntax tree."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


class TreeSitterParser:
    """Parser using Tree-sitter for syntax-aware code analysis."""

    def __init__(self):
        """Initialize parser with supported languages."""
        self.parsers: Dict[str, Parser] = {}
        self.languages: Dict[str, Any] = {}

        for lang in SUPPORTED_LANGUAGES:
            try:
                self.languages[lang] = get_language(lang)
                self.parsers[lang] = Parser(self.languages[lang])
            except (LookupError, ValueError, TypeError, RuntimeError) as e:
                logger.warning("Failed to initialize %s support: %s", lang, e)
                self.languages.pop(lang, None)
                self.parsers.pop(lang, None)

    @staticmethod
    def language_for_path(file_path: str) -> Optional[str]:
        _, ext = os.path.splitext(file_path)
        return EXTENSION_LANGUAGES.get(ext.lower())

    def supports(self, language: str) -> bool:
        return language in self.parsers

    def parse_file(self, content: str, language: str) -> Tree:
        """Parse file content using appropriate language grammar."""
        if language not in self.parsers:
            raise ValueError(f"Language {language} not supported")

        return self.parsers[language].parse(bytes(content, 'utf8'))

    def get_imports(self, tree: Tree) -> List[ImportRecord]:
        """Extract ES module imports and `require` calls from a JS/TS tree."""
        imports = []

        for node in walk(tree.root_node):
            if node.type == 'import_statement':
                source = node.child_by_field_name('source')
                if source is None:
                    continue
                record = ImportRecord(
                    module=string_value(source),
                    line=node_line(node),
                    is_type_only=any(child.type == 'type' for child in node.children)
                )
                for clause in node.named_children:
                    if clause.type == 'import_clause':
                        self._read_import_clause(clause, record)
                imports.append(record)

            elif node.type == 'export_statement' and node.child_by_field_name('source') is not None:
                record = ImportRecord(module=string_value(node.child_by_field_name('source')),
                                      line=node_line(node), is_reexport=True)
                clauses = [c for c in node.named_children if c.type == 'export_clause']
                if clauses:
                    for spec in clauses[0].named_children:
                        if spec.type == 'export_specifier':
                            imported = field_text(spec, 'name')
                            record.names[field_text(spec, 'alias') or imported] = imported
                else:
                    record.namespace_name = '*'
                imports.append(record)

            elif node.type == 'call_expression':
                function = node.child_by_field_name('function')
                arguments = node.child_by_field_name('arguments')
                if node_text(function) != 'require' or arguments is None:
                    continue
                literals = [arg for arg in arguments.named_children if arg.type == 'string']
                if not literals:
                    continue
                record = ImportRecord(module=string_value(literals[0]), line=node_line(node), is_require=True)
                declarator = node.parent
                if declarator is not None and declarator.type == 'variable_declarator':
                    binding = declarator.child_by_field_name('name')
                    if binding is not None and binding.type == 'identifier':
                        record.namespace_name = node_text(binding)
                    elif binding is not None and binding.type == 'object_pattern':
                        for name in self._object_pattern_names(binding):
                            record.names[name] = name
                imports.append(record)

        return imports

    def _read_import_clause(self, clause: Node, record: ImportRecord):
        for child in clause.named_children:
            if child.type == 'identifier':
                record.default_name = node_text(child)
            elif child.type == 'namespace_import':
                for ident in child.named_children:
                    if ident.type == 'identifier':
                        record.namespace_name = node_text(ident)
            elif child.type == 'named_imports':
                for spec in child.named_children:
                    if spec.type != 'import_specifier':
                        continue
                    imported = field_text(spec, 'name')
                    local = field_text(spec, 'alias') or imported
                    record.names[local] = imported

    @staticmethod
    def _object_pattern_names(pattern: Node) -> List[str]:
        names = []
        for child in pattern.named_children:
            if child.type == 'shorthand_property_identifier_pattern':
                names.append(node_text(child))
            elif child.type == 'pair_pattern':
                names.append(field_text(child, 'key'))
        return names
