"""Shared contract for language analyzers."""

import logging
import os
import re
from typing import Iterator, List, Optional, Sequence

from ..snapshot import ChangedElements, ClassShape, Symbol, SymbolSnapshot

logger = logging.getLogger(__name__)


class LanguageAnalyzer:
    """Minimal contract every language analyzer implements.

    Capabilities beyond this contract (such as ``build_snapshot``) are optional;
    check them with :func:`supports_snapshot` instead of assuming them.
    """

    language: str = ""
    extensions: Sequence[str] = ()
    skip_dirs: Sequence[str] = ('.git',)

    def __init__(self, project_root: Optional[str] = None):
        self.project_root = project_root

    def analyze(self, file_path: str, content: str) -> SymbolSnapshot:
        raise NotImplementedError

    def find_changed_elements(self, before_content: str, after_content: str,
                              file_path: str) -> ChangedElements:
        """Diff functions and classes of two versions of one file."""
        before = self.analyze(file_path, before_content)
        after = self.analyze(file_path, after_content)
        return compare_elements(before, after)

    def find_references(self, symbol_name: str, file_path: str, project_root: str) -> List[str]:
        references = []
        for candidate in self.iter_source_files(project_root):
            if self.file_uses_symbol(candidate, symbol_name, project_root):
                references.append(candidate)
        return sorted(set(references))

    def file_uses_symbol(self, file_path: str, symbol_name: str, project_root: str) -> bool:
        content = read_source(file_path)
        if content is None:
            return False
        return any(pattern.search(content) for pattern in self.reference_patterns(symbol_name))

    def reference_patterns(self, symbol_name: str) -> List["re.Pattern"]:
        return []

    def iter_source_files(self, root: str) -> Iterator[str]:
        return iter_files(root, self.extensions, self.skip_dirs)


def supports_snapshot(analyzer: Optional[LanguageAnalyzer]) -> bool:
    """Whether the analyzer can build an export-resolving snapshot."""
    return callable(getattr(analyzer, 'build_snapshot', None))


def read_source(file_path: str) -> Optional[str]:
    """Read a source file, logging and returning None when it cannot be read."""
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Skipping unreadable file %s: %s", file_path, e)
        return None


def iter_files(root: str, extensions: Sequence[str], skip_dirs: Sequence[str]) -> Iterator[str]:
    """Walk `root` in a stable order, yielding files with one of `extensions`."""
    if not root or not os.path.isdir(root):
        return
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in skip_dirs)
        for filename in sorted(filenames):
            if os.path.splitext(filename)[1].lower() in extensions:
                yield os.path.join(dirpath, filename)


def compare_elements(before: SymbolSnapshot, after: SymbolSnapshot) -> ChangedElements:
    """Functions change when signature or return type differ; classes when methods differ.

    A symbol present before and gone after counts as changed.
    """
    changed = ChangedElements()

    before_functions = {f.qualified_name: f for f in before.functions}
    after_functions = {f.qualified_name: f for f in after.functions}
    for name, after_func in after_functions.items():
        before_func = before_functions.get(name)
        if before_func is None:
            continue
        if (before_func.signature != after_func.signature
                or before_func.return_type != after_func.return_type):
            changed.changed_functions.append(name)
    for name in before_functions:
        if name not in after_functions:
            changed.changed_functions.append(name)

    before_classes = {c.name: c for c in before.classes}
    after_classes = {c.name: c for c in after.classes}
    for name, after_cls in after_classes.items():
        before_cls = before_classes.get(name)
        if before_cls is None:
            continue
        if _class_methods_changed(before_cls, after_cls):
            changed.changed_classes.append(name)
    for name in before_classes:
        if name not in after_classes:
            changed.changed_classes.append(name)

    return changed


def _method_signatures(symbol: Symbol) -> dict:
    shape = symbol.shape
    if not isinstance(shape, ClassShape):
        return {}
    signatures = {}
    for member in shape.members:
        if member.kind in ('method', 'constructor', 'get', 'set'):
            signatures[member.name] = member.signature.render() if member.signature else ''
    return signatures


def _class_methods_changed(before: Symbol, after: Symbol) -> bool:
    before_methods = _method_signatures(before)
    after_methods = _method_signatures(after)
    if len(before_methods) != len(after_methods):
        return True
    for name, signature in after_methods.items():
        if name in before_methods and before_methods[name] != signature:
            return True
    return False
