"""Analyzer selection by file extension, with an explicit per-project cache."""

import logging
import os
from typing import Dict, Optional, Type

from .base import LanguageAnalyzer
from .java_analyzer import JavaAnalyzer
from .javascript_analyzer import JavaScriptAnalyzer
from .python_analyzer import PythonAnalyzer
from .typescript_analyzer import TypeScriptAnalyzer
from ..config import is_typed_js_enabled
from ..parsers.tree_sitter_parser import TreeSitterParser

logger = logging.getLogger(__name__)

ANALYZERS_BY_EXTENSION: Dict[str, Type[LanguageAnalyzer]] = {
    '.ts': TypeScriptAnalyzer,
    '.tsx': TypeScriptAnalyzer,
    '.mts': TypeScriptAnalyzer,
    '.cts': TypeScriptAnalyzer,
    '.js': JavaScriptAnalyzer,
    '.jsx': JavaScriptAnalyzer,
    '.mjs': JavaScriptAnalyzer,
    '.cjs': JavaScriptAnalyzer,
    '.py': PythonAnalyzer,
    '.java': JavaAnalyzer,
}

JS_EXTENSIONS = ('.js', '.jsx', '.mjs', '.cjs')


class AnalyzerCache:
    """Analyzer instances keyed by extension, with LRU eviction.

    The cache belongs to one project root; switching roots empties it.
    """

    def __init__(self, cache_size: int = 32):
        self.cache_size = cache_size
        self.project_root: Optional[str] = None
        self._analyzers: Dict[str, LanguageAnalyzer] = {}
        self._access_order = []
        self.hits = 0
        self.misses = 0

    def bind(self, project_root: Optional[str]):
        """Tie the cache to a project root, clearing it when the root changes."""
        root = os.path.abspath(project_root) if project_root else None
        if root != self.project_root:
            if self._analyzers:
                logger.debug("Project root changed to %s; clearing analyzer cache", root)
            self.clear()
            self.project_root = root

    def get(self, key: str) -> Optional[LanguageAnalyzer]:
        if key in self._analyzers:
            self.hits += 1
            if key in self._access_order:
                self._access_order.remove(key)
            self._access_order.append(key)
            return self._analyzers[key]
        self.misses += 1
        return None

    def set(self, key: str, analyzer: LanguageAnalyzer):
        self._analyzers[key] = analyzer
        if key in self._access_order:
            self._access_order.remove(key)
        self._access_order.append(key)

        while len(self._analyzers) > self.cache_size:
            oldest_key = self._access_order.pop(0)
            self._analyzers.pop(oldest_key, None)

    def clear(self):
        """Clear all cached analyzers."""
        self._analyzers.clear()
        self._access_order.clear()
        self.hits = 0
        self.misses = 0

    def stats(self) -> Dict[str, int]:
        return {
            'analyzers': len(self._analyzers),
            'hits': self.hits,
            'misses': self.misses,
        }


class AnalyzerFactory:
    """Chooses the analyzer for a file."""

    def __init__(self, project_root: Optional[str] = None, cache: Optional[AnalyzerCache] = None,
                 parser: Optional[TreeSitterParser] = None):
        self.project_root = project_root
        self.cache = cache or AnalyzerCache()
        self.cache.bind(project_root)
        self._parser = parser

    @property
    def parser(self) -> TreeSitterParser:
        if self._parser is None:
            self._parser = TreeSitterParser()
        return self._parser

    def set_project_root(self, project_root: Optional[str]):
        self.project_root = project_root
        self.cache.bind(project_root)

    def get_analyzer(self, file_path: str) -> Optional[LanguageAnalyzer]:
        """The analyzer for a file's extension, or None when the language is unsupported."""
        ext = os.path.splitext(file_path)[1].lower()
        analyzer_class = ANALYZERS_BY_EXTENSION.get(ext)
        if analyzer_class is None:
            logger.debug("No analyzer for %s", file_path)
            return None
        return self._cached(ext, analyzer_class)

    def _cached(self, key: str, analyzer_class: Type[LanguageAnalyzer]) -> LanguageAnalyzer:
        analyzer = self.cache.get(key)
        if analyzer is None:
            if analyzer_class in (TypeScriptAnalyzer, JavaScriptAnalyzer):
                analyzer = analyzer_class(self.project_root, self.parser)
            else:
                analyzer = analyzer_class(self.project_root)
            self.cache.set(key, analyzer)
        return analyzer

    def select_analyzer(self, file_path: str, tsconfig: Optional[str] = None,
                        mode: str = 'exports-only') -> Optional[LanguageAnalyzer]:
        """Like get_analyzer, but JS files use the TypeScript analyzer in typed-JS projects.

        That switch only happens in api-snapshot mode, when the tsconfig enables both
        allowJs and checkJs and includes the file.
        """
        ext = os.path.splitext(file_path)[1].lower()
        if ext in JS_EXTENSIONS and mode == 'api-snapshot':
            if self.project_root and is_typed_js_enabled(file_path, self.project_root, tsconfig):
                logger.info("Using TypeScript analyzer for %s (allowJs + checkJs, file included)", file_path)
                return self._cached('typed-js', TypeScriptAnalyzer)
            logger.info("Using module-surface analysis for %s", file_path)
        return self.get_analyzer(file_path)

    def analysis_mode_for(self, file_path: str, tsconfig: Optional[str] = None) -> str:
        ext = os.path.splitext(file_path)[1].lower()
        if ext not in JS_EXTENSIONS:
            return 'TypeScript'
        if self.project_root and is_typed_js_enabled(file_path, self.project_root, tsconfig):
            return 'Typed JS (TS checker)'
        return 'Module-surface'
