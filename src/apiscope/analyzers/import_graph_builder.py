"""Import Graph Builder - Builds dependency graphs from import statements."""

import ast
import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

import networkx as nx

from .base import read_source
from ..parsers.tree_sitter_parser import TreeSitterParser
from ..snapshot import ImportRecord

logger = logging.getLogger(__name__)

SCRIPT_EXTENSIONS = ['.ts', '.tsx', '.d.ts', '.js', '.jsx', '.mjs', '.cjs']
# A `.js` specifier in TypeScript sources usually names the `.ts` file that compiles to it
SPECIFIER_SOURCE_EXTENSIONS = {
    '.js': ['.ts', '.tsx', '.js'],
    '.jsx': ['.tsx', '.jsx'],
    '.mjs': ['.mts', '.mjs'],
    '.cjs': ['.cts', '.cjs'],
}


@dataclass
class ImportEdge:
    """Represents an import relationship between files."""
    from_file: str
    to_file: str
    import_type: str  # 'import', 'from_import', 'require', 're-export'
    imported_symbols: List[str] = field(default_factory=list)
    line_number: Optional[int] = None


@dataclass
class ImportGraph:
    """Complete import dependency graph."""
    graph: nx.DiGraph
    edges: List[ImportEdge] = field(default_factory=list)
    cycles: List[List[str]] = field(default_factory=list)
    root_directory: str = ""


def resolve_module_specifier(specifier: str, from_file: str) -> Optional[str]:
    """Resolve a relative JS/TS module specifier to a file on disk."""
    if not specifier.startswith('.'):
        return None

    base = os.path.normpath(os.path.join(os.path.dirname(from_file), specifier))
    stem, ext = os.path.splitext(base)

    candidates = []
    if ext in SPECIFIER_SOURCE_EXTENSIONS:
        candidates.extend(stem + source_ext for source_ext in SPECIFIER_SOURCE_EXTENSIONS[ext])
    candidates.extend(base + candidate_ext for candidate_ext in SCRIPT_EXTENSIONS)
    candidates.extend(os.path.join(base, 'index' + candidate_ext) for candidate_ext in SCRIPT_EXTENSIONS)
    if ext:
        candidates.insert(0, base)

    for candidate in candidates:
        if os.path.isfile(candidate):
            return candidate
    return None


def resolve_python_module(module_name: str, from_file: str, root_directory: str) -> Optional[str]:
    """Resolve a dotted (possibly relative) Python module to its file."""
    if module_name.startswith('.'):
        dots_count = len(module_name) - len(module_name.lstrip('.'))
        current_dir = os.path.dirname(from_file)
        for _ in range(dots_count - 1):
            current_dir = os.path.dirname(current_dir)
        module_part = module_name[dots_count:]
        target = os.path.join(current_dir, module_part.replace('.', os.sep)) if module_part else current_dir
    else:
        target = os.path.join(root_directory, module_name.replace('.', os.sep))

    for candidate in (f"{target}.py", os.path.join(target, '__init__.py')):
        if os.path.isfile(candidate):
            return candidate
    return None


def edge_type(record: ImportRecord) -> str:
    if record.is_reexport:
        return 're-export'
    return 'require' if record.is_require else 'import'


def import_cycles(graph: nx.DiGraph) -> List[List[str]]:
    """Groups of files that import each other, one sorted list per strongly connected component."""
    cycles = []
    for component in nx.strongly_connected_components(graph):
        if len(component) > 1 or any(graph.has_edge(node, node) for node in component):
            cycles.append(sorted(component))
    return sorted(cycles)


class ImportGraphBuilder:
    """Builds import dependency graphs from JavaScript, TypeScript and Python files."""

    def __init__(self, parser: Optional[TreeSitterParser] = None):
        self.parser = parser or TreeSitterParser()

    def build_graph(self, file_paths: List[str], root_directory: str = "") -> ImportGraph:
        """Build complete import graph from a list of source files."""
        root_directory = root_directory or os.getcwd()
        graph = nx.DiGraph()
        edges = []

        for file_path in file_paths:
            graph.add_node(file_path)

        for file_path in file_paths:
            file_edges = self._parse_file_imports(file_path, root_directory)
            for edge in file_edges:
                if graph.has_edge(edge.from_file, edge.to_file):
                    graph[edge.from_file][edge.to_file]['symbols'].update(edge.imported_symbols)
                else:
                    graph.add_edge(edge.from_file, edge.to_file, symbols=set(edge.imported_symbols))
            edges.extend(file_edges)

        cycles = import_cycles(graph)
        if cycles:
            logger.info("Detected %d import cycle(s) under %s", len(cycles), root_directory)

        return ImportGraph(graph=graph, edges=edges, cycles=cycles, root_directory=root_directory)

    def _parse_file_imports(self, file_path: str, root_directory: str) -> List[ImportEdge]:
        content = read_source(file_path)
        if content is None:
            return []
        if file_path.endswith('.py'):
            return self._python_edges(file_path, content, root_directory)

        language = self.parser.language_for_path(file_path)
        if language is None or language in ('python', 'java') or not self.parser.supports(language):
            return []
        try:
            tree = self.parser.parse_file(content, language)
        except ValueError as e:
            logger.warning("Cannot parse %s: %s", file_path, e)
            return []

        edges = []
        for record in self.parser.get_imports(tree):
            target = resolve_module_specifier(record.module, file_path)
            if target is None:
                continue
            symbols = sorted(set(record.names.values()))
            if record.default_name:
                symbols.append('default')
            if record.namespace_name:
                symbols.append('*')
            edges.append(ImportEdge(
                from_file=file_path,
                to_file=target,
                import_type=edge_type(record),
                imported_symbols=symbols,
                line_number=record.line
            ))
        return edges

    def _python_edges(self, file_path: str, content: str, root_directory: str) -> List[ImportEdge]:
        try:
            tree = ast.parse(content, filename=file_path)
        except (SyntaxError, ValueError):
            return []

        edges = []
        for node in ast.walk(tree):
            if isinstance(node, ast.Import):
                for alias in node.names:
                    target = resolve_python_module(alias.name, file_path, root_directory)
                    if target:
                        edges.append(ImportEdge(file_path, target, 'import', ['*'], node.lineno))
            elif isinstance(node, ast.ImportFrom):
                module_name = '.' * node.level + (node.module or '')
                target = resolve_python_module(module_name, file_path, root_directory)
                if target:
                    symbols = [alias.name for alias in node.names]
                    edges.append(ImportEdge(file_path, target, 'from_import', symbols, node.lineno))
        return edges

    def get_dependents(self, graph: ImportGraph, file_path: str) -> List[str]:
        """Get all files that depend on the given file."""
        if file_path not in graph.graph:
            return []
        return sorted(nx.ancestors(graph.graph, file_path))

    def get_symbol_importers(self, graph: ImportGraph, file_path: str, symbol: str) -> List[str]:
        """Files that import `symbol` (or the whole module) directly from `file_path`."""
        if file_path not in graph.graph:
            return []
        importers = []
        for importer in graph.graph.predecessors(file_path):
            symbols = graph.graph[importer][file_path].get('symbols', set())
            if symbol in symbols or '*' in symbols:
                importers.append(importer)
        return sorted(importers)
