"""JavaScript Analyzer - Heuristic, structure-only analysis for .js and .jsx files.

There is no type information for plain JavaScript, so changes are detected from the
module surface: exports, exported function arity, public class methods, the module
system and the package.json fields that decide how the module is loaded.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from .base import LanguageAnalyzer, read_source
from .typescript_analyzer import CJS_MODULE_EXPORTS, TypeScriptAnalyzer
from ..parsers.tree_sitter_parser import TreeSitterParser
from ..snapshot import (
    ApiSnapshot, ClassShape, ExportRecord, ExportType, FunctionShape, PackageSnapshot,
    SurfaceShape, Symbol, SymbolSnapshot, make_identity
)

logger = logging.getLogger(__name__)

SPECIFIER_EXTENSIONS = ('.js', '.mjs', '.cjs')


@dataclass
class SymbolChange:
    """One structural change found by the heuristic diff."""
    rule_id: str
    message: str
    symbol: str
    line: int
    change_type: str  # removed, modified, signature-changed
    kind: str = "variable"
    before: Optional[str] = None
    after: Optional[str] = None
    file_path: Optional[str] = None


@dataclass
class ExportChanges:
    added: List[ExportRecord] = field(default_factory=list)
    removed: List[ExportRecord] = field(default_factory=list)
    modified: List[Tuple[ExportRecord, ExportRecord]] = field(default_factory=list)


@dataclass
class SnapshotDiff:
    """Result of diffing two module-surface snapshots."""
    changed_symbols: List[SymbolChange] = field(default_factory=list)
    added: List[Symbol] = field(default_factory=list)
    removed: List[Symbol] = field(default_factory=list)
    modified: List[Tuple[Symbol, Symbol]] = field(default_factory=list)
    export_changes: ExportChanges = field(default_factory=ExportChanges)
    package_changes: List[SymbolChange] = field(default_factory=list)


def export_signature(record: ExportRecord) -> str:
    return f"{record.export_type.value} export {record.name}"


def is_exports_map_empty(exports: Any) -> bool:
    """A string exports target is a real map; None, [] and {} are empty."""
    if exports is None:
        return True
    if isinstance(exports, (list, dict)):
        return len(exports) == 0
    return False


def _named_side(record: ExportRecord) -> bool:
    return record.export_type in (ExportType.NAMED, ExportType.RE_EXPORT) and record.name != '*'


class JavaScriptAnalyzer(LanguageAnalyzer):
    """Module-surface analyzer for untyped JavaScript."""

    language = "javascript"
    extensions = ('.js', '.jsx', '.mjs', '.cjs')
    skip_dirs = ('node_modules', '.git', 'dist', 'build', 'out', '.vscode')

    def __init__(self, project_root: Optional[str] = None, parser: Optional[TreeSitterParser] = None):
        super().__init__(project_root)
        self.typescript = TypeScriptAnalyzer(project_root, parser)

    def analyze(self, file_path: str, content: str) -> SymbolSnapshot:
        snapshot = self.typescript.analyze(file_path, content)
        snapshot.language = self.language

        for symbol in snapshot.functions:
            if isinstance(symbol.shape, FunctionShape) and symbol.shape.overloads:
                parameters = symbol.shape.overloads[0].parameters
                symbol.metadata['param_count'] = len(parameters)
                symbol.metadata['has_rest_param'] = any(p.rest for p in parameters)

        for symbol in snapshot.classes:
            if isinstance(symbol.shape, ClassShape):
                symbol.metadata['methods'] = sorted(
                    m.name for m in symbol.shape.members
                    if m.kind == 'method' and m.visibility == 'public'
                )
                symbol.metadata['has_constructor'] = symbol.shape.constructor is not None
        return snapshot

    def build_snapshot(self, file_path: str, content: str,
                       package_json_path: Optional[str] = None) -> SymbolSnapshot:
        """Module-surface snapshot of one file, including its package.json."""
        snapshot = self.analyze(file_path, content)
        if package_json_path is None:
            package_json_path = self.find_package_json(file_path)
        snapshot.package_json = self.read_package_snapshot(package_json_path)
        return snapshot

    def find_package_json(self, file_path: str) -> Optional[str]:
        """Nearest package.json at or above the file, bounded by the project root."""
        directory = os.path.dirname(os.path.abspath(file_path))
        stop = os.path.abspath(self.project_root) if self.project_root else None
        while True:
            candidate = os.path.join(directory, 'package.json')
            if os.path.isfile(candidate):
                return candidate
            parent = os.path.dirname(directory)
            if directory == stop or parent == directory:
                return None
            directory = parent

    @staticmethod
    def read_package_snapshot(package_json_path: Optional[str]) -> PackageSnapshot:
        if not package_json_path or not os.path.isfile(package_json_path):
            return PackageSnapshot()
        content = read_source(package_json_path)
        if content is None:
            return PackageSnapshot()
        try:
            data = json.loads(content)
        except ValueError as e:
            logger.warning("Invalid package.json %s: %s", package_json_path, e)
            return PackageSnapshot()
        if not isinstance(data, dict):
            return PackageSnapshot()

        package_type = data.get('type')
        if package_type not in ('module', 'commonjs'):
            package_type = 'missing'
        return PackageSnapshot(type=package_type, exports=data.get('exports'))

    def build_surface_snapshot(self, entrypoint_path: str, repo_root: str) -> ApiSnapshot:
        """API snapshot holding export names and kinds only."""
        content = read_source(entrypoint_path)
        relative = os.path.relpath(os.path.abspath(entrypoint_path), os.path.abspath(repo_root)).replace(os.sep, '/')
        api_snapshot = ApiSnapshot(entrypoint_path=relative, partial=True, analysis_mode='Module-surface')
        if content is None:
            return api_snapshot

        snapshot = self.build_snapshot(entrypoint_path, content)
        api_snapshot.module_system = snapshot.module_system
        for record in snapshot.exports:
            export_type = {ExportType.DEFAULT: 'default', ExportType.NAMESPACE: 'namespace'}.get(
                record.export_type, 'value')
            identity = make_identity(record.name, export_type, relative, record.line)
            kind = record.kind if record.kind != 'unknown' else 'variable'
            api_snapshot.exports[identity] = SurfaceShape(name=record.name, kind=kind)
        return api_snapshot

    def file_uses_symbol(self, file_path: str, symbol_name: str, project_root: str) -> bool:
        return self.typescript.file_uses_symbol(file_path, symbol_name, project_root)

    def find_references(self, symbol_name: str, file_path: str, project_root: str) -> List[str]:
        return self.typescript.find_references(symbol_name, file_path, project_root)

    # ------------------------------------------------------------------
    # Diffing

    def diff_snapshots(self, before: SymbolSnapshot, after: SymbolSnapshot) -> SnapshotDiff:
        """Compare two module-surface snapshots structurally."""
        logger.debug("Diffing snapshots of %s (heuristic analysis)", after.file_path)
        diff = SnapshotDiff()

        after_names = {e.name for e in after.exports}
        removed_exports = {e.name for e in before.exports if e.name not in after_names}

        diff.export_changes = self.compare_exports(before.exports, after.exports, diff.changed_symbols)
        self.compare_functions(before.functions, after.functions, diff, removed_exports)
        self.compare_classes(before.classes, after.classes, diff, removed_exports)
        self.compare_module_system(before.module_system, after.module_system, diff.changed_symbols)
        diff.package_changes = self.diff_package_json(before.package_json, after.package_json)

        for change in diff.changed_symbols:
            if change.file_path is None:
                change.file_path = after.file_path
        return diff

    def compare_exports(self, before: List[ExportRecord], after: List[ExportRecord],
                        changes: List[SymbolChange]) -> ExportChanges:
        result = ExportChanges()
        before_map = {e.key: e for e in before}
        after_map = {e.key: e for e in after}

        for key, record in after_map.items():
            if key not in before_map:
                result.added.append(record)

        processed_removals: Set[str] = set()
        processed_additions: Set[str] = set()

        self._pair_specifier_changes(before_map, after_map, changes, processed_removals, processed_additions)
        type_changes = self._pair_type_changes(before_map, after_map, processed_removals, processed_additions)
        for before_record, after_record in type_changes:
            if before_record.key in processed_removals or after_record.key in processed_additions:
                continue
            processed_removals.add(before_record.key)
            processed_additions.add(after_record.key)
            self._export_modified(before_record, after_record, changes)
            result.modified.append((before_record, after_record))

        result.added = [r for r in result.added if r.key not in processed_additions]

        for key, before_record in before_map.items():
            if key in processed_removals:
                continue
            after_record = after_map.get(key)
            if after_record is None:
                result.removed.append(before_record)
                rule_id, message = self._removal_rule(before_record)
                changes.append(SymbolChange(
                    rule_id=rule_id,
                    message=message,
                    symbol=before_record.name,
                    line=before_record.line,
                    change_type='removed',
                    kind=before_record.kind if before_record.kind != 'unknown' else 'variable',
                    before=export_signature(before_record)
                ))
            elif (before_record.source_name != after_record.source_name
                  or before_record.kind != after_record.kind):
                result.modified.append((before_record, after_record))
                self._export_modified(before_record, after_record, changes)
        return result

    def _pair_specifier_changes(self, before_map: Dict[str, ExportRecord], after_map: Dict[str, ExportRecord],
                                changes: List[SymbolChange], processed_removals: Set[str],
                                processed_additions: Set[str]):
        """`export ... from './x'` becoming `from './x.js'` is the same export."""
        for key, before_record in before_map.items():
            if key in after_map or not before_record.source_module or before_record.source_module.startswith('cjs:'):
                continue
            for after_key, after_record in after_map.items():
                if after_key in before_map or after_key in processed_additions:
                    continue
                if (after_record.name != before_record.name
                        or after_record.export_type != before_record.export_type
                        or not after_record.source_module):
                    continue
                stem, ext = os.path.splitext(after_record.source_module)
                if ext in SPECIFIER_EXTENSIONS and stem == before_record.source_module:
                    processed_removals.add(key)
                    processed_additions.add(after_key)
                    changes.append(SymbolChange(
                        rule_id='JSAPI-MOD-003',
                        message=(f"Import specifier for '{before_record.name}' changed "
                                 f"('{before_record.source_module}' -> '{after_record.source_module}')."),
                        symbol=before_record.name,
                        line=after_record.line,
                        change_type='modified',
                        kind=after_record.kind if after_record.kind != 'unknown' else 'variable',
                        before=before_record.source_module,
                        after=after_record.source_module
                    ))
                    break

    @staticmethod
    def _pair_type_changes(before_map: Dict[str, ExportRecord], after_map: Dict[str, ExportRecord],
                           processed_removals: Set[str], processed_additions: Set[str]
                           ) -> List[Tuple[ExportRecord, ExportRecord]]:
        """Pair a removed named export with an added default export (or the reverse).

        Candidates are scored: same line +2, same known kind +1, neither a
        re-export +1. Only pairs scoring 2 or more, where neither side has
        another candidate, are treated as a type change.
        """
        candidates = []
        for key, before_record in before_map.items():
            if key in after_map or key in processed_removals:
                continue
            for after_key, after_record in after_map.items():
                if after_key in before_map or after_key in processed_additions:
                    continue
                if _named_side(before_record) and after_record.export_type == ExportType.DEFAULT:
                    pass
                elif before_record.export_type == ExportType.DEFAULT and _named_side(after_record):
                    pass
                else:
                    continue

                confidence = 0
                if before_record.line == after_record.line:
                    confidence += 2
                if before_record.kind == after_record.kind and before_record.kind != 'unknown':
                    confidence += 1
                if not before_record.source_module and not after_record.source_module:
                    confidence += 1
                if confidence >= 2:
                    candidates.append((confidence, before_record, after_record))

        candidates.sort(key=lambda c: -c[0])
        pairs = []
        for _, before_record, after_record in candidates:
            before_matches = [c for c in candidates if c[1].key == before_record.key]
            after_matches = [c for c in candidates if c[2].key == after_record.key]
            if len(before_matches) == 1 and len(after_matches) == 1:
                pairs.append((before_record, after_record))
        return pairs

    @staticmethod
    def _removal_rule(record: ExportRecord) -> Tuple[str, str]:
        if record.kind == 'class':
            return 'JSAPI-CLS-002', f"Exported class '{record.name}' was removed."
        if record.name == '*':
            return 'JSAPI-EXP-003', "Re-export star was removed."
        if record.export_type == ExportType.DEFAULT:
            return 'JSAPI-EXP-002', "Default export was removed."
        if record.source_module and record.source_module.startswith('cjs:'):
            return 'JSAPI-CJS-001', f"CommonJS export '{record.name}' was removed."
        if record.source_module:
            if record.source_name and record.source_name != record.name:
                return 'JSAPI-EXP-004', f"Export alias '{record.name}' was removed."
            if record.source_name:
                return 'JSAPI-EXP-008', f"Barrel export '{record.name}' was removed."
            return 'JSAPI-EXP-001', f"Re-export '{record.name}' from '{record.source_module}' was removed."
        return 'JSAPI-EXP-001', f"Export '{record.name}' was removed."

    @staticmethod
    def _export_modified(before: ExportRecord, after: ExportRecord, changes: List[SymbolChange]):
        before_kind = before.kind or 'unknown'
        after_kind = after.kind or 'unknown'
        if before.export_type != after.export_type and after.export_type == ExportType.DEFAULT:
            rule_id, message = 'JSAPI-EXP-006', "Named export changed to default export."
            symbol = before.name
        elif before.export_type != after.export_type and before.export_type == ExportType.DEFAULT:
            rule_id, message = 'JSAPI-EXP-007', "Default export changed to named export."
            symbol = after.name
        elif before.source_name != after.source_name and before.source_module:
            rule_id, message = 'JSAPI-EXP-004', f"Export alias '{after.name}' was removed."
            symbol = after.name
        elif before.source_module == CJS_MODULE_EXPORTS and after.source_module == CJS_MODULE_EXPORTS:
            rule_id, message = 'JSAPI-CJS-002', f"module.exports shape changed ({before_kind} -> {after_kind})."
            symbol = after.name
        elif before.export_type == ExportType.DEFAULT:
            rule_id, message = 'JSAPI-EXP-005', f"Default export kind changed ({before_kind} -> {after_kind})."
            symbol = after.name
        elif before.kind != after.kind:
            rule_id = 'JSAPI-EXP-001'
            message = f"Export '{after.name}' changed ({before_kind} -> {after_kind})."
            symbol = after.name
        else:
            return

        changes.append(SymbolChange(
            rule_id=rule_id,
            message=message,
            symbol=symbol,
            line=after.line,
            change_type='modified',
            kind=after_kind if after_kind != 'unknown' else 'variable',
            before=export_signature(before),
            after=export_signature(after)
        ))

    @staticmethod
    def _exported_functions(functions: List[Symbol]) -> Dict[str, Symbol]:
        return {f.qualified_name: f for f in functions if f.is_exported and f.name != 'default'}

    def compare_functions(self, before: List[Symbol], after: List[Symbol], diff: SnapshotDiff,
                          removed_exports: Set[str]):
        before_map = self._exported_functions(before)
        after_map = self._exported_functions(after)

        for name, after_func in after_map.items():
            if name not in before_map:
                diff.added.append(after_func)

        for name, before_func in before_map.items():
            after_func = after_map.get(name)
            if after_func is None:
                if name in removed_exports:
                    continue
                diff.removed.append(before_func)
                diff.changed_symbols.append(SymbolChange(
                    rule_id='JSAPI-FN-001',
                    message=f"Exported function '{name}' was removed.",
                    symbol=name,
                    line=before_func.line,
                    change_type='removed',
                    kind='function',
                    before=before_func.signature
                ))
                continue

            before_count = before_func.metadata.get('param_count')
            after_count = after_func.metadata.get('param_count')
            changed = False
            if before_count is not None and after_count is not None and after_count < before_count:
                changed = True
                diff.changed_symbols.append(SymbolChange(
                    rule_id='JSAPI-FN-002',
                    message=(f"Exported function '{name}' parameter count decreased "
                             f"({before_count} -> {after_count}). Potential breaking change."),
                    symbol=name,
                    line=after_func.line,
                    change_type='signature-changed',
                    kind='function',
                    before=before_func.signature,
                    after=after_func.signature
                ))
            if before_func.metadata.get('has_rest_param') and after_func.metadata.get('has_rest_param') is False:
                changed = True
                diff.changed_symbols.append(SymbolChange(
                    rule_id='JSAPI-FN-003',
                    message=f"Rest parameter was removed from exported function '{name}'.",
                    symbol=name,
                    line=after_func.line,
                    change_type='signature-changed',
                    kind='function',
                    before=before_func.signature,
                    after=after_func.signature
                ))
            if changed:
                diff.modified.append((before_func, after_func))

    def compare_classes(self, before: List[Symbol], after: List[Symbol], diff: SnapshotDiff,
                        removed_exports: Set[str]):
        before_map = {c.qualified_name: c for c in before if c.is_exported}
        after_map = {c.qualified_name: c for c in after if c.is_exported}

        for name, after_cls in after_map.items():
            if name not in before_map:
                diff.added.append(after_cls)

        for name, before_cls in before_map.items():
            after_cls = after_map.get(name)
            if after_cls is None:
                if name in removed_exports:
                    continue
                diff.removed.append(before_cls)
                diff.changed_symbols.append(SymbolChange(
                    rule_id='JSAPI-CLS-002',
                    message=f"Exported class '{name}' was removed.",
                    symbol=name,
                    line=before_cls.line,
                    change_type='removed',
                    kind='class',
                    before=before_cls.signature
                ))
                continue

            if before_cls.metadata.get('has_constructor') and not after_cls.metadata.get('has_constructor'):
                diff.changed_symbols.append(SymbolChange(
                    rule_id='JSAPI-CLS-003',
                    message=f"Constructor was removed from exported class '{name}'.",
                    symbol=f"{name}.constructor",
                    line=after_cls.line,
                    change_type='removed',
                    kind='method',
                    before=f"{name}.constructor"
                ))

            after_methods = set(after_cls.metadata.get('methods', []))
            for method in before_cls.metadata.get('methods', []):
                if method in after_methods:
                    continue
                diff.changed_symbols.append(SymbolChange(
                    rule_id='JSAPI-CLS-001',
                    message=(f"Public method '{method}' was removed from exported class '{name}'. "
                             f"Potential breaking change."),
                    symbol=f"{name}.{method}",
                    line=after_cls.line,
                    change_type='removed',
                    kind='method',
                    before=f"{name}.{method}"
                ))

    @staticmethod
    def compare_module_system(before: str, after: str, changes: List[SymbolChange]):
        """Only a clean cjs <-> esm switch is reported; mixed and unknown are ignored."""
        directions = {('cjs', 'esm'): 'CommonJS -> ESM', ('esm', 'cjs'): 'ESM -> CommonJS'}
        direction = directions.get((before or 'unknown', after or 'unknown'))
        if direction is None:
            return
        changes.append(SymbolChange(
            rule_id='JSAPI-MOD-001',
            message=f"Module export shape changed ({direction}). This is likely breaking for consumers.",
            symbol='exports',
            line=1,
            change_type='modified',
            before=before,
            after=after
        ))

    @staticmethod
    def diff_package_json(before: Optional[PackageSnapshot], after: Optional[PackageSnapshot]) -> List[SymbolChange]:
        changes = []
        if before is None or after is None:
            return changes

        if not is_exports_map_empty(before.exports) and is_exports_map_empty(after.exports):
            changes.append(SymbolChange(
                rule_id='JSAPI-MOD-004',
                message="package.json exports map was removed or emptied.",
                symbol='exports',
                line=1,
                change_type='removed',
                file_path='package.json'
            ))
        if before.type != after.type:
            changes.append(SymbolChange(
                rule_id='JSAPI-MOD-002',
                message=f"package.json type changed ({before.type} -> {after.type}).",
                symbol='type',
                line=1,
                change_type='modified',
                before=before.type,
                after=after.type,
                file_path='package.json'
            ))
        return changes
