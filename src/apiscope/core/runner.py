"""Runner - Orchestrates snapshot, diff and classification over whole source trees."""

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..analyzers.analyzer_factory import AnalyzerFactory
from ..analyzers.api_diff import ApiDiff, ExportsDiff, compute_api_diff, compute_exports_diff
from ..analyzers.base import iter_files, read_source, supports_snapshot
from ..analyzers.import_graph_builder import ImportGraphBuilder
from ..analyzers.javascript_analyzer import JavaScriptAnalyzer
from ..analyzers.rules_engine import (
    Finding, FindingsSummary, Severity, api_diff_to_findings, heuristic_diff_to_findings,
    sort_findings, summarize_findings
)
from ..analyzers.usage_matcher import UsageMatch, UsageMatcher, find_test_files
from ..config import AnalysisConfiguration, DEFAULT_IGNORE_DIRS
from ..snapshot import ApiSnapshot, ExportType, SymbolSnapshot

logger = logging.getLogger(__name__)

SOURCE_EXTENSIONS = ('.ts', '.tsx')
GRAPH_EXTENSIONS = ('.ts', '.tsx', '.mts', '.cts', '.js', '.jsx', '.mjs', '.cjs', '.py')


@dataclass
class AnalysisResult:
    """Exports of a tree as info findings, with sorted summary lists."""
    findings: List[Finding] = field(default_factory=list)
    rule_ids: List[str] = field(default_factory=list)
    symbol_names: List[str] = field(default_factory=list)
    severities: List[str] = field(default_factory=list)
    file_paths: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'findings': [f.to_dict() for f in self.findings],
            'rule_ids': self.rule_ids,
            'symbol_names': self.symbol_names,
            'severities': self.severities,
            'file_paths': self.file_paths,
        }


@dataclass
class RegressionResult:
    """Everything learned from comparing two versions of a tree."""
    before: AnalysisResult
    after: AnalysisResult
    exports_diff: ExportsDiff
    before_snapshot: Optional[ApiSnapshot] = None
    after_snapshot: Optional[ApiSnapshot] = None
    api_diff: Optional[ApiDiff] = None
    findings: List[Finding] = field(default_factory=list)
    analysis_mode: Optional[str] = None
    elapsed_time: float = 0.0

    @property
    def summary(self) -> FindingsSummary:
        return summarize_findings(self.findings)

    @property
    def has_breaking(self) -> bool:
        return any(f.severity == Severity.BREAKING for f in self.findings)

    def to_dict(self) -> Dict[str, Any]:
        summary = self.summary
        return {
            'analysis_mode': self.analysis_mode,
            'exports_diff': self.exports_diff.to_dict(),
            'api_diff': self.api_diff.to_dict() if self.api_diff is not None else None,
            'before_snapshot': self.before_snapshot.to_dict() if self.before_snapshot is not None else None,
            'after_snapshot': self.after_snapshot.to_dict() if self.after_snapshot is not None else None,
            'findings': [f.to_dict() for f in self.findings],
            'summary': {
                'total': summary.total,
                'breaking': summary.breaking,
                'warnings': summary.warnings,
                'info': summary.info,
                'rules': summary.rules_breakdown,
                'risk_assessment': summary.risk_assessment,
            },
        }


def _relative(file_path: str, repo_root: str) -> str:
    if os.path.isabs(file_path):
        file_path = os.path.relpath(file_path, repo_root)
    return file_path.replace(os.sep, '/')


def _absolute(file_path: str, repo_root: str) -> str:
    return os.path.normpath(file_path if os.path.isabs(file_path) else os.path.join(repo_root, file_path))


def find_source_files(repo_root: str, ignore_dirs: Optional[List[str]] = None) -> List[str]:
    """All TypeScript sources under the root, in a stable order."""
    if not os.path.isdir(repo_root):
        # Not a per-file failure: the whole run depends on the listing
        raise FileNotFoundError(f"Repository root not found: {repo_root}")
    return list(iter_files(repo_root, SOURCE_EXTENSIONS, ignore_dirs or DEFAULT_IGNORE_DIRS))


def _export_message(export_type: ExportType, kind: str, source_module: Optional[str]) -> str:
    if export_type == ExportType.DEFAULT:
        return 'default export'
    if export_type == ExportType.NAMESPACE:
        return 'namespace export'
    if kind == 're-export':
        return f're-export from {source_module}'
    return 'named export'


def snapshot_to_findings(snapshot: SymbolSnapshot, repo_root: str) -> List[Finding]:
    """One info finding per export, plus exported symbols the export list does not name."""
    findings = []
    seen = set()
    relative_path = _relative(snapshot.file_path, repo_root)

    for record in snapshot.exports:
        if record.name in seen:
            continue
        seen.add(record.name)
        findings.append(Finding(
            rule_id=None,
            severity=Severity.INFO,
            symbol=record.name,
            file=relative_path,
            message=_export_message(record.export_type, record.kind, record.source_module),
            kind=record.kind,
            line=record.line or None
        ))

    symbols = snapshot.functions + snapshot.classes + snapshot.interfaces + snapshot.type_aliases + snapshot.enums
    for symbol in symbols:
        if not symbol.is_exported or symbol.name in seen:
            continue
        seen.add(symbol.name)
        findings.append(Finding(
            rule_id=None,
            severity=Severity.INFO,
            symbol=symbol.name,
            file=relative_path,
            message='exported declaration',
            kind=symbol.kind.value,
            line=symbol.line
        ))

    return findings


def run_analyzer(config: AnalysisConfiguration, factory: Optional[AnalyzerFactory] = None) -> AnalysisResult:
    """Snapshot the configured files (or every TS file) and list their exports."""
    factory = factory or AnalyzerFactory(config.repo_root)
    factory.set_project_root(config.repo_root)

    if config.paths:
        files = [_absolute(p, config.repo_root) for p in config.paths]
    else:
        files = find_source_files(config.repo_root, config.ignore_dirs)

    findings = []
    for file_path in files:
        if not os.path.isfile(file_path):
            logger.warning("File not found: %s", file_path)
            continue
        analyzer = factory.select_analyzer(file_path, config.tsconfig, config.mode)
        if not supports_snapshot(analyzer):
            logger.warning("No snapshot-capable analyzer for %s", file_path)
            continue
        content = read_source(file_path)
        if content is None:
            continue
        logger.debug("Building snapshot for %s", file_path)
        try:
            snapshot = analyzer.build_snapshot(file_path, content)
        except (OSError, UnicodeDecodeError, ValueError) as e:
            logger.warning("Error analyzing %s: %s", file_path, e)
            continue
        findings.extend(snapshot_to_findings(snapshot, config.repo_root))

    findings = sort_findings(findings)
    return AnalysisResult(
        findings=findings,
        rule_ids=sorted({f.rule_id for f in findings if f.rule_id}),
        symbol_names=sorted({f.symbol for f in findings}),
        severities=sorted({f.severity.value for f in findings}),
        file_paths=sorted({f.file for f in findings})
    )


def build_api_snapshot(config: AnalysisConfiguration,
                       factory: Optional[AnalyzerFactory] = None) -> Optional[ApiSnapshot]:
    """API snapshot of the first configured path, or None when it is missing."""
    if not config.paths:
        logger.warning("No entrypoint paths specified for API snapshot")
        return None

    entrypoint = _absolute(config.paths[0], config.repo_root)
    if not os.path.isfile(entrypoint):
        logger.warning("Entrypoint file not found: %s", entrypoint)
        return None

    factory = factory or AnalyzerFactory(config.repo_root)
    factory.set_project_root(config.repo_root)
    analyzer = factory.select_analyzer(entrypoint, config.tsconfig, 'api-snapshot')

    if isinstance(analyzer, JavaScriptAnalyzer):
        logger.info("Using module-surface analysis for %s", entrypoint)
        return analyzer.build_surface_snapshot(entrypoint, config.repo_root)
    if analyzer is None or not hasattr(analyzer, 'build_api_snapshot'):
        logger.warning("No API snapshot support for %s", entrypoint)
        return None

    snapshot = analyzer.build_api_snapshot(entrypoint, config.repo_root)
    snapshot.analysis_mode = factory.analysis_mode_for(entrypoint, config.tsconfig)
    logger.info("API snapshot of %s: %d export(s), mode %s", snapshot.entrypoint_path,
                len(snapshot.exports), snapshot.analysis_mode)
    return snapshot


def _heuristic_findings(before_config: AnalysisConfiguration, after_config: AnalysisConfiguration,
                        factory: AnalyzerFactory) -> List[Finding]:
    entry = before_config.paths[0]
    snapshots = []
    for config in (before_config, after_config):
        factory.set_project_root(config.repo_root)
        analyzer = factory.select_analyzer(_absolute(entry, config.repo_root), config.tsconfig, 'api-snapshot')
        if not isinstance(analyzer, JavaScriptAnalyzer):
            return []
        path = _absolute(entry, config.repo_root)
        content = read_source(path) if os.path.isfile(path) else ''
        snapshots.append((analyzer, analyzer.build_snapshot(path, content or '')))

    (analyzer, before), (_, after) = snapshots
    diff = analyzer.diff_snapshots(before, after)
    return heuristic_diff_to_findings(diff, _relative(entry, after_config.repo_root))


def run_regression(before_root: str, after_root: str, config: AnalysisConfiguration) -> RegressionResult:
    """Compare two checkouts of the same project."""
    start_time = time.time()
    before_config = config.with_root(before_root)
    after_config = config.with_root(after_root)
    factory = AnalyzerFactory(before_config.repo_root)

    before = run_analyzer(before_config, factory)
    after = run_analyzer(after_config, factory)
    result = RegressionResult(before=before, after=after, exports_diff=compute_exports_diff(before, after))

    if config.paths and config.mode == 'api-snapshot':
        result.before_snapshot = build_api_snapshot(before_config, factory)
        result.after_snapshot = build_api_snapshot(after_config, factory)
        before_snapshot, after_snapshot = result.before_snapshot, result.after_snapshot
        if before_snapshot is not None or after_snapshot is not None:
            # An entrypoint missing on one side diffs as an empty surface
            entry = _relative(config.paths[0], config.repo_root)
            before_snapshot = before_snapshot or ApiSnapshot(entrypoint_path=entry, partial=True)
            after_snapshot = after_snapshot or ApiSnapshot(entrypoint_path=entry, partial=True)
            result.analysis_mode = (result.after_snapshot or result.before_snapshot).analysis_mode
            result.api_diff = compute_api_diff(before_snapshot, after_snapshot, config.rename_tolerance)
            if result.analysis_mode != 'Module-surface':
                result.findings = api_diff_to_findings(result.api_diff)

    if config.paths and result.analysis_mode in (None, 'Module-surface'):
        heuristic = _heuristic_findings(before_config, after_config, factory)
        if heuristic:
            result.analysis_mode = 'Module-surface'
            result.findings = heuristic

    result.findings = sort_findings(result.findings)
    result.elapsed_time = time.time() - start_time
    logger.info("Regression analysis finished with %d finding(s)", len(result.findings))
    return result


def downstream_files(source_file: str, repo_root: str, ignore_dirs: Optional[List[str]] = None,
                     builder: Optional[ImportGraphBuilder] = None) -> List[str]:
    """Files that import the source, directly or transitively."""
    files = [os.path.abspath(f) for f in iter_files(repo_root, GRAPH_EXTENSIONS, ignore_dirs or DEFAULT_IGNORE_DIRS)]
    builder = builder or ImportGraphBuilder()
    graph = builder.build_graph(files, os.path.abspath(repo_root))
    return builder.get_dependents(graph, os.path.abspath(source_file))


def impacted_tests(config: AnalysisConfiguration, source_file: str, symbols: Optional[List[str]] = None,
                   matcher: Optional[UsageMatcher] = None) -> List[UsageMatch]:
    """Test files under the root, selected by the configured patterns, that exercise the change."""
    matcher = matcher or UsageMatcher(config.repo_root)
    test_files = find_test_files(config.repo_root, config.test_patterns)
    logger.debug("Checking %d test file(s) against %s", len(test_files), source_file)
    return matcher.match_files(symbols, test_files, _absolute(source_file, config.repo_root))
