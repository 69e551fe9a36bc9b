"""Tests for analyzer selection and caching."""

import json

import pytest

from apiscope.analyzers.analyzer_factory import AnalyzerCache, AnalyzerFactory
from apiscope.analyzers.base import supports_snapshot
from apiscope.analyzers.java_analyzer import JavaAnalyzer
from apiscope.analyzers.javascript_analyzer import JavaScriptAnalyzer
from apiscope.analyzers.python_analyzer import PythonAnalyzer
from apiscope.analyzers.typescript_analyzer import TypeScriptAnalyzer


@pytest.fixture
def factory(tmp_path, parser):
    return AnalyzerFactory(str(tmp_path), parser=parser)


def enable_typed_js(root):
    (root / "tsconfig.json").write_text(json.dumps({"compilerOptions": {"allowJs": True, "checkJs": True}}))


class TestAnalyzerFactory:
    """Test suite for AnalyzerFactory."""

    @pytest.mark.parametrize("file_path,expected", [
        ("a.ts", TypeScriptAnalyzer),
        ("a.tsx", TypeScriptAnalyzer),
        ("a.js", JavaScriptAnalyzer),
        ("a.mjs", JavaScriptAnalyzer),
        ("a.py", PythonAnalyzer),
        ("A.java", JavaAnalyzer),
    ])
    def test_extension_dispatch(self, factory, file_path, expected):
        """Test that each extension maps to its analyzer."""
        assert isinstance(factory.get_analyzer(file_path), expected)

    def test_unsupported_extension(self, factory):
        """Test that unknown languages have no analyzer."""
        assert factory.get_analyzer("main.go") is None

    def test_instances_are_cached(self, factory):
        """Test that repeated lookups reuse the analyzer."""
        assert factory.get_analyzer("a.ts") is factory.get_analyzer("b.ts")
        assert factory.cache.stats()["hits"] == 1

    def test_snapshot_capability(self, factory):
        """Test that only TypeScript and JavaScript analyzers build snapshots."""
        assert supports_snapshot(factory.get_analyzer("a.ts"))
        assert supports_snapshot(factory.get_analyzer("a.js"))
        assert not supports_snapshot(factory.get_analyzer("a.py"))
        assert not supports_snapshot(factory.get_analyzer("A.java"))
        assert not supports_snapshot(None)

    def test_typed_js_uses_typescript_in_snapshot_mode(self, factory, tmp_path):
        """Test that allowJs + checkJs switches JS files to the TypeScript analyzer."""
        enable_typed_js(tmp_path)

        assert isinstance(factory.select_analyzer("src/a.js", mode="api-snapshot"), TypeScriptAnalyzer)
        assert isinstance(factory.select_analyzer("src/a.js", mode="exports-only"), JavaScriptAnalyzer)
        assert factory.analysis_mode_for("src/a.js") == "Typed JS (TS checker)"

    def test_plain_js_is_module_surface(self, factory):
        """Test that without a typed-JS tsconfig, JS stays on module-surface analysis."""
        assert isinstance(factory.select_analyzer("src/a.js", mode="api-snapshot"), JavaScriptAnalyzer)
        assert factory.analysis_mode_for("src/a.js") == "Module-surface"
        assert factory.analysis_mode_for("src/a.ts") == "TypeScript"

    def test_changing_root_clears_cache(self, factory, tmp_path):
        """Test that analyzers are not shared across project roots."""
        first = factory.get_analyzer("a.ts")

        factory.set_project_root(str(tmp_path / "other"))

        assert factory.get_analyzer("a.ts") is not first


class TestAnalyzerCache:
    """Test suite for AnalyzerCache."""

    def test_lru_eviction(self):
        """Test that the least recently used analyzer is evicted first."""
        cache = AnalyzerCache(cache_size=2)
        cache.set("a", PythonAnalyzer())
        cache.set("b", PythonAnalyzer())
        cache.get("a")
        cache.set("c", PythonAnalyzer())

        assert cache.get("b") is None
        assert cache.get("a") is not None
        assert cache.stats()["analyzers"] == 2

    def test_bind_same_root_keeps_entries(self, tmp_path):
        """Test that rebinding to the same root keeps cached analyzers."""
        cache = AnalyzerCache()
        cache.bind(str(tmp_path))
        cache.set("a", PythonAnalyzer())

        cache.bind(str(tmp_path))

        assert cache.get("a") is not None
