"""Usage Matcher - Decides which test files exercise a set of changed symbols."""

import fnmatch
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from tree_sitter import Node

from .base import read_source
from ..config import DEFAULT_TEST_PATTERNS
from ..parsers.tree_sitter_parser import TreeSitterParser, node_text, string_value, walk

logger = logging.getLogger(__name__)

CONFIDENCE_AST = 'ast'
CONFIDENCE_HEURISTIC = 'heuristic'

TEST_EXTENSIONS = ('.js', '.jsx', '.ts', '.tsx', '.py', '.java', '.cs', '.go', '.rs')

TEST_SKIP_DIRS = {
    'node_modules', '.git', '.vscode', 'dist', 'build',
    'coverage', '.nyc_output', 'target', 'bin', 'obj',
    '.next', '.nuxt', 'vendor', '__pycache__'
}

SOURCE_EXTENSION = re.compile(r'\.(ts|tsx|mts|cts|js|jsx|mjs|cjs)$')

# Identifiers in these positions declare a name instead of using it
DEFINITION_PARENTS = (
    'function_declaration', 'generator_function_declaration', 'class_declaration',
    'abstract_class_declaration', 'method_definition', 'variable_declarator',
    'public_field_definition', 'required_parameter', 'optional_parameter'
)


@dataclass
class UsageMatch:
    """A candidate file that exercises changed symbols."""
    file_path: str
    matched_symbols: List[str] = field(default_factory=list)
    confidence: str = CONFIDENCE_AST

    @property
    def is_heuristic(self) -> bool:
        return self.confidence == CONFIDENCE_HEURISTIC


def is_test_file(file_path: str, patterns: Optional[Sequence[str]] = None) -> bool:
    """Whether the file name matches one of the shell-style test patterns."""
    name = os.path.basename(file_path).lower()
    if os.path.splitext(name)[1] not in TEST_EXTENSIONS:
        return False
    return any(fnmatch.fnmatchcase(name, pattern.lower()) for pattern in patterns or DEFAULT_TEST_PATTERNS)


def find_test_files(root: str, patterns: Optional[Sequence[str]] = None) -> List[str]:
    """All test files under root, in a stable order."""
    test_files = []
    if not os.path.isdir(root):
        logger.warning("Test search root %s is not a directory", root)
        return test_files

    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in TEST_SKIP_DIRS and not d.startswith('.'))
        for filename in sorted(filenames):
            if is_test_file(filename, patterns):
                test_files.append(os.path.join(dirpath, filename))
    return test_files


def strip_comments(content: str, python: bool = False) -> str:
    if python:
        content = re.sub(r'"""[\s\S]*?"""|\'\'\'[\s\S]*?\'\'\'', '', content)
        return re.sub(r'#.*$', '', content, flags=re.MULTILINE)
    content = re.sub(r'/\*[\s\S]*?\*/', '', content)
    return re.sub(r'(?<!:)//.*$', '', content, flags=re.MULTILINE)


def strip_strings(content: str) -> str:
    """Drop quoted strings and template literal bodies (no nested `${}`)."""
    content = re.sub(r"'(?:[^'\\\n]|\\.)*'", '', content)
    content = re.sub(r'"(?:[^"\\\n]|\\.)*"', '', content)
    return re.sub(r'`(?:[^`\\]|\\.)*`', '', content)


def strip_comments_and_strings(content: str, python: bool = False) -> str:
    return strip_strings(strip_comments(content, python))


def _posix(path: str) -> str:
    return path.replace('\\', '/')


def package_name_for(source_path: str) -> Optional[str]:
    """First path segment that looks like a monorepo package name."""
    for segment in _posix(source_path).split('/'):
        if segment.startswith('@') or ('-' in segment and '.' not in segment):
            return segment
    return None


def python_module_names(source_path: str, project_root: Optional[str]) -> List[str]:
    """Dotted module paths a Python file may be imported as."""
    relative = _posix(os.path.relpath(source_path, project_root)) if project_root else os.path.basename(source_path)
    module = os.path.splitext(relative)[0].replace('/', '.')
    if module.endswith('.__init__'):
        module = module[:-len('.__init__')]
    names = [module]
    if module.startswith('src.'):
        names.append(module[len('src.'):])
    basename = module.rsplit('.', 1)[-1]
    if basename not in names:
        names.append(basename)
    return names


class UsageMatcher:
    """Two-stage filter: the candidate must import the source, then use a changed symbol."""

    def __init__(self, project_root: Optional[str] = None, parser: Optional[TreeSitterParser] = None):
        self.project_root = os.path.abspath(project_root) if project_root else None
        self._parser = parser

    @property
    def parser(self) -> TreeSitterParser:
        if self._parser is None:
            self._parser = TreeSitterParser()
        return self._parser

    def match_files(self, changed_symbols: Optional[Sequence[str]], candidate_files: Iterable[str],
                    source_file_path: str) -> List[UsageMatch]:
        """Return the candidate files affected by changes to ``source_file_path``.

        With a symbol list, a file must import the source and use at least one of
        the symbols. Without one, any reference to the source module is enough and
        every match is heuristic.
        """
        source_file_path = os.path.abspath(source_file_path)
        symbols = sorted(set(changed_symbols or []))
        matches = []

        for candidate in sorted(set(os.path.abspath(f) for f in candidate_files)):
            if candidate == source_file_path:
                continue
            content = read_source(candidate)
            if content is None:
                continue

            if not symbols:
                if self.imports_source(content, candidate, source_file_path, widened=True):
                    logger.debug("Heuristic match (no symbol list): %s", candidate)
                    matches.append(UsageMatch(candidate, [], CONFIDENCE_HEURISTIC))
                continue

            if not self.imports_source(content, candidate, source_file_path):
                continue

            matched, confidence = self.used_symbols(content, candidate, symbols, source_file_path)
            if matched:
                logger.debug("Symbol-aware match: %s (symbols: %s)", candidate, ', '.join(matched))
                matches.append(UsageMatch(candidate, matched, confidence))
            else:
                logger.debug("%s imports the source but does not use the changed symbols", candidate)

        return matches

    def find_impacted_tests(self, source_file_path: str, changed_symbols: Optional[Sequence[str]] = None,
                            root: Optional[str] = None,
                            patterns: Optional[Sequence[str]] = None) -> List[UsageMatch]:
        search_root = root or self.project_root or os.path.dirname(os.path.abspath(source_file_path))
        return self.match_files(changed_symbols, find_test_files(search_root, patterns), source_file_path)

    # Stage 1

    def imports_source(self, content: str, candidate_path: str, source_file_path: str,
                       widened: bool = False) -> bool:
        """Whether the candidate imports (or, widened, mentions) the source module."""
        is_python = candidate_path.endswith('.py')
        code = strip_comments(content, python=is_python)
        if is_python:
            if any(pattern.search(code) for pattern in self._python_import_patterns(source_file_path)):
                return True
        elif any(pattern.search(code) for pattern in self._import_patterns(candidate_path, source_file_path)):
            return True

        if widened:
            relative = self._relative_specifier(candidate_path, source_file_path)
            target = re.escape(SOURCE_EXTENSION.sub('', relative).lstrip('./'))
            return bool(re.search(rf'[\'"`][^\'"`\n]*{target}(?:\.\w+)?[\'"`]', code))
        return False

    def _relative_specifier(self, candidate_path: str, source_file_path: str) -> str:
        relative = _posix(os.path.relpath(source_file_path, os.path.dirname(candidate_path)))
        if not relative.startswith('../'):
            relative = './' + relative
        return relative

    def _import_patterns(self, candidate_path: str, source_file_path: str) -> List[re.Pattern]:
        relative = self._relative_specifier(candidate_path, source_file_path)
        without_ext = SOURCE_EXTENSION.sub('', relative)
        specifiers = {relative, without_ext, without_ext + '.js'}

        source_dir = os.path.dirname(source_file_path)
        if os.path.dirname(candidate_path) != source_dir:
            relative_dir = _posix(os.path.relpath(source_dir, os.path.dirname(candidate_path)))
            specifiers.add(relative_dir)
        specifiers.add(os.path.splitext(os.path.basename(source_file_path))[0])

        patterns = []
        for spec in sorted(specifiers):
            escaped = re.escape(spec)
            patterns.append(re.compile(rf'from\s+[\'"]{escaped}[\'"]', re.IGNORECASE))
            patterns.append(re.compile(rf'import\s+[\'"]{escaped}[\'"]', re.IGNORECASE))
            patterns.append(re.compile(rf'require\(\s*[\'"]{escaped}[\'"]\s*\)', re.IGNORECASE))

        package = self._package_name(source_file_path)
        if package:
            patterns.append(re.compile(rf'from\s+[\'"]{re.escape(package)}(?:/[^\'"]*)?[\'"]', re.IGNORECASE))
        return patterns

    def _python_import_patterns(self, source_file_path: str) -> List[re.Pattern]:
        patterns = []
        for module in python_module_names(source_file_path, self.project_root):
            escaped = re.escape(module)
            patterns.append(re.compile(rf'^\s*from\s+\.*{escaped}\s+import\b', re.MULTILINE))
            patterns.append(re.compile(rf'^\s*import\s+{escaped}\b', re.MULTILINE))
            if '.' in module:
                parent, name = module.rsplit('.', 1)
                patterns.append(re.compile(
                    rf'^\s*from\s+{re.escape(parent)}\s+import\s+[^\n]*\b{re.escape(name)}\b', re.MULTILINE))
        return patterns

    def _package_name(self, source_file_path: str) -> Optional[str]:
        path = source_file_path
        if self.project_root and source_file_path.startswith(self.project_root + os.sep):
            path = os.path.relpath(source_file_path, self.project_root)
        return package_name_for(path)

    def is_import_from_source(self, specifier: str, candidate_path: str, source_file_path: str) -> bool:
        if specifier.startswith('./') or specifier.startswith('../'):
            resolved = _posix(os.path.normpath(os.path.join(os.path.dirname(candidate_path), specifier)))
            source = _posix(os.path.normpath(source_file_path))
            return resolved in (source, SOURCE_EXTENSION.sub('', source)) or \
                SOURCE_EXTENSION.sub('', resolved) == SOURCE_EXTENSION.sub('', source)
        package = self._package_name(source_file_path)
        return bool(package and package in specifier)

    # Stage 2

    def used_symbols(self, content: str, candidate_path: str, symbols: Sequence[str],
                     source_file_path: str) -> Tuple[List[str], str]:
        """Symbols the candidate uses, with the confidence of the check that found them."""
        ext = os.path.splitext(candidate_path)[1].lower()
        if ext in ('.ts', '.tsx'):
            try:
                matched = self._used_symbols_ast(content, candidate_path, symbols, source_file_path)
                return matched, CONFIDENCE_AST
            except ValueError as e:
                logger.warning("Falling back to regex usage check for %s: %s", candidate_path, e)
        matched = self._used_symbols_regex(content, candidate_path, symbols, source_file_path)
        return matched, CONFIDENCE_HEURISTIC

    def _used_symbols_ast(self, content: str, candidate_path: str, symbols: Sequence[str],
                          source_file_path: str) -> List[str]:
        language = 'tsx' if candidate_path.lower().endswith('.tsx') else 'typescript'
        tree = self.parser.parse_file(content, language)
        wanted = set(symbols)
        matched: Set[str] = set()
        namespaces: Set[str] = set()

        for record in self.parser.get_imports(tree):
            if record.is_reexport or not self.is_import_from_source(record.module, candidate_path,
                                                                     source_file_path):
                continue
            for local, imported in record.names.items():
                if local in wanted:
                    matched.add(local)
                elif imported in wanted:
                    matched.add(imported)
            if record.default_name in wanted:
                matched.add(record.default_name)
            if record.namespace_name:
                namespaces.add(record.namespace_name)
                if record.namespace_name in wanted:
                    matched.add(record.namespace_name)

        for node in walk(tree.root_node):
            if node.type == 'identifier' and node_text(node) in wanted:
                if not self._in_import(node) and not self._is_definition(node):
                    matched.add(node_text(node))
            elif node.type == 'member_expression':
                obj = node.child_by_field_name('object')
                prop = node.child_by_field_name('property')
                if obj is not None and obj.type == 'identifier' and node_text(obj) in namespaces \
                        and node_text(prop) in wanted:
                    matched.add(node_text(prop))
            elif node.type == 'subscript_expression':
                obj = node.child_by_field_name('object')
                index = node.child_by_field_name('index')
                if obj is not None and obj.type == 'identifier' and node_text(obj) in namespaces \
                        and index is not None and index.type == 'string' and string_value(index) in wanted:
                    matched.add(string_value(index))

        return sorted(matched)

    @staticmethod
    def _in_import(node: Node) -> bool:
        parent = node.parent
        while parent is not None:
            if parent.type in ('import_statement', 'import_clause', 'import_specifier'):
                return True
            parent = parent.parent
        return False

    @staticmethod
    def _is_definition(node: Node) -> bool:
        parent = node.parent
        if parent is None or parent.type not in DEFINITION_PARENTS:
            return False
        name = parent.child_by_field_name('name') or parent.child_by_field_name('pattern')
        return name is not None and name.start_byte == node.start_byte and name.end_byte == node.end_byte

    def _used_symbols_regex(self, content: str, candidate_path: str, symbols: Sequence[str],
                            source_file_path: str) -> List[str]:
        is_python = candidate_path.endswith('.py')
        without_comments = strip_comments(content, python=is_python)
        cleaned = strip_strings(without_comments)

        namespaces = set()
        namespace_forms = (
            r'import\s+\*\s+as\s+(\w+)\s+from\s+[\'"]([^\'"]+)[\'"]',
            r'(?:const|let|var)\s+(\w+)\s*=\s*require\(\s*[\'"]([^\'"]+)[\'"]\s*\)',
        )
        for form in namespace_forms:
            for match in re.finditer(form, without_comments):
                if self.is_import_from_source(match.group(2), candidate_path, source_file_path):
                    namespaces.add(match.group(1))
        if is_python:
            for module in python_module_names(source_file_path, self.project_root):
                for match in re.finditer(rf'^\s*import\s+{re.escape(module)}(?:\s+as\s+(\w+))?',
                                         without_comments, re.MULTILINE):
                    namespaces.add(match.group(1) or module)

        matched = []
        for symbol in symbols:
            escaped = re.escape(symbol)
            import_forms = (
                rf'import\s+\{{[^}}]*\b{escaped}\b[^}}]*\}}\s+from',
                rf'import\s+{escaped}\s+from',
                rf'import\s+\*\s+as\s+{escaped}\s+from',
                rf'^\s*from\s+[\w.]+\s+import\s+[^\n]*\b{escaped}\b',
            )
            if any(re.search(form, without_comments, re.MULTILINE) for form in import_forms):
                matched.append(symbol)
                continue
            if re.search(rf'\b{escaped}\s*[(.\[]', cleaned):
                matched.append(symbol)
                continue
            for namespace in sorted(namespaces):
                if re.search(rf'\b{re.escape(namespace)}\.{escaped}\s*[(\[]', cleaned):
                    logger.debug("Found namespace usage %s.%s in %s", namespace, symbol, candidate_path)
                    matched.append(symbol)
                    break
        return matched
