"""Language analyzers, API diffing and breaking-change classification."""

from .base import LanguageAnalyzer, supports_snapshot
from .typescript_analyzer import TypeScriptAnalyzer
from .javascript_analyzer import JavaScriptAnalyzer, SnapshotDiff, SymbolChange
from .python_analyzer import PythonAnalyzer
from .java_analyzer import JavaAnalyzer
from .analyzer_factory import AnalyzerCache, AnalyzerFactory
from .import_graph_builder import ImportGraphBuilder, ImportGraph, ImportEdge
from .api_diff import (
    ApiDiff, ApiDiffEntry, DiffType, ExportsDiff, ShapeChange,
    compute_api_diff, compute_exports_diff
)
from .rules_engine import (
    BreakingChangeRule, Finding, FindingsSummary, Severity,
    api_diff_to_findings, heuristic_diff_to_findings, summarize_findings
)
from .usage_matcher import UsageMatch, UsageMatcher, find_test_files

__all__ = [
    "LanguageAnalyzer", "supports_snapshot",
    "TypeScriptAnalyzer", "JavaScriptAnalyzer", "SnapshotDiff", "SymbolChange",
    "PythonAnalyzer", "JavaAnalyzer",
    "AnalyzerCache", "AnalyzerFactory",
    "ImportGraphBuilder", "ImportGraph", "ImportEdge",
    "ApiDiff", "ApiDiffEntry", "DiffType", "ExportsDiff", "ShapeChange",
    "compute_api_diff", "compute_exports_diff",
    "BreakingChangeRule", "Finding", "FindingsSummary", "Severity",
    "api_diff_to_findings", "heuristic_diff_to_findings", "summarize_findings",
    "UsageMatch", "UsageMatcher", "find_test_files"
]
