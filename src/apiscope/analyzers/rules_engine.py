"""Rules Engine - Classifies API changes against the breaking-change rule catalog."""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from .api_diff import ApiDiff, ApiDiffEntry, ShapeChange

logger = logging.getLogger(__name__)

HEURISTIC_SUFFIX = " (JavaScript heuristic - may miss runtime changes)"
HEDGE_WORDS = ('likely', 'potential', 'may miss')
JSX_EXTENSIONS = ('.jsx', '.tsx')


class Severity(Enum):
    """Severity levels for findings."""
    BREAKING = "breaking"
    WARNING = "warning"
    INFO = "info"


class BreakingChangeRule(Enum):
    """Catalog of breaking-change rules.

    TSAPI rules come from type-aware snapshot diffs. JSAPI rules come from
    structural analysis of untyped JavaScript and are never breaking.
    """
    FN_PARAM_REQUIRED = "TSAPI-FN-001"
    FN_PARAM_REMOVED = "TSAPI-FN-002"
    FN_PARAM_TYPE_CHANGED = "TSAPI-FN-003"
    FN_RETURN_TYPE_CHANGED = "TSAPI-FN-004"
    FN_REMOVED = "TSAPI-FN-005"
    FN_SIGNATURE_CHANGED = "TSAPI-FN-006"
    FN_OVERLOAD_CHANGED = "TSAPI-FN-007"
    CLS_METHOD_REMOVED = "TSAPI-CLS-001"
    CLS_PROPERTY_REMOVED = "TSAPI-CLS-002"
    CLS_METHOD_SIGNATURE_CHANGED = "TSAPI-CLS-003"
    CLS_REMOVED = "TSAPI-CLS-004"
    IFACE_PROPERTY_REMOVED = "TSAPI-IF-001"
    IFACE_PROPERTY_REQUIRED = "TSAPI-IF-002"
    IFACE_PROPERTY_TYPE_CHANGED = "TSAPI-IF-003"
    IFACE_REMOVED = "TSAPI-IF-004"
    TYPE_REMOVED = "TSAPI-TYPE-001"
    TYPE_DEFINITION_CHANGED = "TSAPI-TYPE-002"
    TYPE_PROPERTY_REQUIRED = "TSAPI-TYPE-003"
    TYPE_PROPERTY_TYPE_CHANGED = "TSAPI-TYPE-004"
    ENUM_MEMBER_REMOVED = "TSAPI-ENUM-001"
    ENUM_REMOVED = "TSAPI-ENUM-002"
    EXPORT_REMOVED = "TSAPI-EXP-001"
    EXPORT_TYPE_CHANGED = "TSAPI-EXP-002"

    JSAPI_EXPORT_REMOVED = "JSAPI-EXP-001"
    JSAPI_DEFAULT_EXPORT_REMOVED = "JSAPI-EXP-002"
    JSAPI_EXPORT_STAR_REMOVED = "JSAPI-EXP-003"
    JSAPI_EXPORT_ALIAS_CHANGED = "JSAPI-EXP-004"
    JSAPI_DEFAULT_EXPORT_KIND_CHANGED = "JSAPI-EXP-005"
    JSAPI_EXPORT_TYPE_CHANGED = "JSAPI-EXP-006"
    JSAPI_DEFAULT_TO_NAMED_EXPORT = "JSAPI-EXP-007"
    JSAPI_BARREL_EXPORT_REMOVED = "JSAPI-EXP-008"
    JSAPI_CJS_EXPORT_REMOVED = "JSAPI-CJS-001"
    JSAPI_CJS_DEFAULT_SHAPE_CHANGED = "JSAPI-CJS-002"
    JSAPI_FN_REMOVED = "JSAPI-FN-001"
    JSAPI_FN_PARAM_COUNT_DECREASED = "JSAPI-FN-002"
    JSAPI_FN_REST_PARAM_REMOVED = "JSAPI-FN-003"
    JSAPI_CLS_METHOD_REMOVED = "JSAPI-CLS-001"
    JSAPI_CLS_REMOVED = "JSAPI-CLS-002"
    JSAPI_CLS_CONSTRUCTOR_REMOVED = "JSAPI-CLS-003"
    JSAPI_JSX_COMPONENT_REMOVED = "JSAPI-JSX-001"
    JSAPI_MODULE_SYSTEM_CHANGED = "JSAPI-MOD-001"
    JSAPI_PACKAGE_TYPE_CHANGED = "JSAPI-MOD-002"
    JSAPI_IMPORT_SPECIFIER_CHANGED = "JSAPI-MOD-003"
    JSAPI_PACKAGE_EXPORTS_CHANGED = "JSAPI-MOD-004"

    @property
    def is_heuristic_family(self) -> bool:
        return self.value.startswith("JSAPI-")


@dataclass
class RuleMetadata:
    severity: Severity
    heuristic: bool = False


_TS_SEVERITY = {rule: Severity.BREAKING for rule in BreakingChangeRule if not rule.is_heuristic_family}
_TS_SEVERITY[BreakingChangeRule.FN_SIGNATURE_CHANGED] = Severity.WARNING

_JS_HEURISTIC = {
    BreakingChangeRule.JSAPI_FN_REMOVED,
    BreakingChangeRule.JSAPI_FN_PARAM_COUNT_DECREASED,
    BreakingChangeRule.JSAPI_FN_REST_PARAM_REMOVED,
    BreakingChangeRule.JSAPI_CLS_METHOD_REMOVED,
    BreakingChangeRule.JSAPI_CLS_REMOVED,
    BreakingChangeRule.JSAPI_CLS_CONSTRUCTOR_REMOVED,
    BreakingChangeRule.JSAPI_CJS_DEFAULT_SHAPE_CHANGED,
    BreakingChangeRule.JSAPI_MODULE_SYSTEM_CHANGED,
    BreakingChangeRule.JSAPI_PACKAGE_TYPE_CHANGED,
    BreakingChangeRule.JSAPI_IMPORT_SPECIFIER_CHANGED,
    BreakingChangeRule.JSAPI_PACKAGE_EXPORTS_CHANGED,
}

RULE_METADATA: Dict[BreakingChangeRule, RuleMetadata] = {}
for _rule in BreakingChangeRule:
    if _rule.is_heuristic_family:
        _severity = Severity.INFO if _rule == BreakingChangeRule.JSAPI_IMPORT_SPECIFIER_CHANGED else Severity.WARNING
        RULE_METADATA[_rule] = RuleMetadata(_severity, heuristic=_rule in _JS_HEURISTIC)
    else:
        RULE_METADATA[_rule] = RuleMetadata(_TS_SEVERITY[_rule])

# Heuristic rules whose findings are reliable enough to skip the disclaimer
NO_HEURISTIC_SUFFIX_RULES = {
    BreakingChangeRule.JSAPI_CLS_REMOVED,
    BreakingChangeRule.JSAPI_CLS_CONSTRUCTOR_REMOVED,
    BreakingChangeRule.JSAPI_FN_REST_PARAM_REMOVED,
}

# Lower wins when several export findings share a (file, symbol)
RULE_PRIORITY = {
    BreakingChangeRule.JSAPI_DEFAULT_EXPORT_REMOVED: 1,
    BreakingChangeRule.JSAPI_EXPORT_STAR_REMOVED: 2,
    BreakingChangeRule.JSAPI_CJS_EXPORT_REMOVED: 3,
    BreakingChangeRule.JSAPI_BARREL_EXPORT_REMOVED: 4,
    BreakingChangeRule.JSAPI_EXPORT_ALIAS_CHANGED: 5,
    BreakingChangeRule.JSAPI_DEFAULT_EXPORT_KIND_CHANGED: 6,
    BreakingChangeRule.JSAPI_EXPORT_TYPE_CHANGED: 7,
    BreakingChangeRule.JSAPI_DEFAULT_TO_NAMED_EXPORT: 8,
    BreakingChangeRule.JSAPI_EXPORT_REMOVED: 100,
    BreakingChangeRule.EXPORT_REMOVED: 101,
}
UNKNOWN_PRIORITY = 999

# Order of findings for one diff entry: most severe, arity-breaking changes first
SPECIFICITY = {
    BreakingChangeRule.EXPORT_TYPE_CHANGED: 0,
    BreakingChangeRule.FN_PARAM_REMOVED: 1,
    BreakingChangeRule.FN_PARAM_REQUIRED: 2,
    BreakingChangeRule.FN_PARAM_TYPE_CHANGED: 3,
    BreakingChangeRule.FN_RETURN_TYPE_CHANGED: 4,
    BreakingChangeRule.FN_OVERLOAD_CHANGED: 5,
    BreakingChangeRule.FN_SIGNATURE_CHANGED: 6,
    BreakingChangeRule.CLS_METHOD_REMOVED: 1,
    BreakingChangeRule.CLS_PROPERTY_REMOVED: 2,
    BreakingChangeRule.CLS_METHOD_SIGNATURE_CHANGED: 3,
    BreakingChangeRule.IFACE_PROPERTY_REMOVED: 1,
    BreakingChangeRule.IFACE_PROPERTY_REQUIRED: 2,
    BreakingChangeRule.IFACE_PROPERTY_TYPE_CHANGED: 3,
    BreakingChangeRule.TYPE_PROPERTY_REQUIRED: 2,
    BreakingChangeRule.TYPE_PROPERTY_TYPE_CHANGED: 3,
    BreakingChangeRule.TYPE_DEFINITION_CHANGED: 4,
    BreakingChangeRule.ENUM_MEMBER_REMOVED: 1,
    BreakingChangeRule.EXPORT_REMOVED: 1,
}

REMOVED_RULES = {
    'function': BreakingChangeRule.FN_REMOVED,
    'class': BreakingChangeRule.CLS_REMOVED,
    'interface': BreakingChangeRule.IFACE_REMOVED,
    'type': BreakingChangeRule.TYPE_REMOVED,
    'enum': BreakingChangeRule.ENUM_REMOVED,
}

_RULES_BY_ID = {rule.value: rule for rule in BreakingChangeRule}


def rule_for_id(rule_id: str) -> Optional[BreakingChangeRule]:
    return _RULES_BY_ID.get(rule_id)


@dataclass
class Finding:
    """A classified change (or, with no rule, an informational observation)."""
    rule_id: Optional[str]
    severity: Severity
    symbol: str
    file: str
    message: str
    kind: Optional[str] = None
    is_exported: bool = True
    line: Optional[int] = None
    before: Optional[str] = None
    after: Optional[str] = None

    def to_dict(self) -> Dict:
        data = {
            'rule_id': self.rule_id,
            'severity': self.severity.value,
            'symbol': self.symbol,
            'file': self.file,
            'message': self.message,
            'kind': self.kind,
            'is_exported': self.is_exported,
        }
        for key in ('line', 'before', 'after'):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


@dataclass
class FindingsSummary:
    """Summary of a list of findings."""
    total: int
    breaking: int
    warnings: int
    info: int
    rules_breakdown: Dict[str, int] = field(default_factory=dict)
    risk_assessment: str = "No changes to analyze"


def sort_findings(findings: List[Finding]) -> List[Finding]:
    """Stable sort by (file, symbol)."""
    return sorted(findings, key=lambda f: (f.file, f.symbol))


def apply_heuristic_suffix(rule: Optional[BreakingChangeRule], message: str) -> str:
    """Append the JavaScript disclaimer unless the message already hedges."""
    if rule is None or not RULE_METADATA[rule].heuristic or rule in NO_HEURISTIC_SUFFIX_RULES:
        return message
    lowered = message.lower()
    if any(word in lowered for word in HEDGE_WORDS):
        return message
    return f"{message}{HEURISTIC_SUFFIX}"


def _finding(rule: BreakingChangeRule, entry: ApiDiffEntry, file_path: str, message: str,
             change: Optional[ShapeChange] = None) -> Finding:
    severity = RULE_METADATA[rule].severity
    if change is not None and not change.breaking:
        severity = Severity.INFO
    return Finding(
        rule_id=rule.value,
        severity=severity,
        symbol=entry.name,
        file=file_path,
        message=message,
        kind=entry.kind,
        before=change.before if change is not None else None,
        after=change.after if change is not None else None
    )


def _function_finding(change: ShapeChange, entry: ApiDiffEntry, file_path: str) -> Optional[Finding]:
    if change.element == 'overloads':
        return _finding(BreakingChangeRule.FN_OVERLOAD_CHANGED, entry, file_path,
                        f"Function overload count changed from {change.before} to {change.after}", change)
    if change.element == 'return_type':
        return _finding(BreakingChangeRule.FN_RETURN_TYPE_CHANGED, entry, file_path,
                        f"Function return type changed: {change.before} -> {change.after}", change)
    if change.element == 'type_parameters':
        return _finding(BreakingChangeRule.FN_SIGNATURE_CHANGED, entry, file_path,
                        f"Function type parameters changed: <{change.before}> -> <{change.after}>", change)
    if change.element != 'parameter':
        return None

    if change.change == 'removed':
        return _finding(BreakingChangeRule.FN_PARAM_REMOVED, entry, file_path,
                        f"Function parameter removed: {change.name}", change)
    if change.change == 'required':
        if change.before is None:
            message = f"Function parameter added as required: {change.name}"
        else:
            message = f"Function parameter changed from optional to required: {change.name}"
        return _finding(BreakingChangeRule.FN_PARAM_REQUIRED, entry, file_path, message, change)
    if change.change == 'type_changed':
        return _finding(BreakingChangeRule.FN_PARAM_TYPE_CHANGED, entry, file_path,
                        f"Function parameter type changed: {change.name}: {change.before} -> {change.after}",
                        change)

    messages = {
        'added': f"Optional parameter added: {change.name}",
        'optional': f"Function parameter became optional: {change.name}",
        'default_changed': f"Function parameter default changed: {change.name}",
        'renamed': f"Function parameter renamed: {change.before} -> {change.after}",
    }
    return _finding(BreakingChangeRule.FN_SIGNATURE_CHANGED, entry, file_path,
                    messages.get(change.change, f"Function signature changed: {change.name}"), change)


def _class_finding(change: ShapeChange, entry: ApiDiffEntry, file_path: str) -> Optional[Finding]:
    if change.element != 'member':
        return None
    if change.change == 'removed':
        rule = (BreakingChangeRule.CLS_PROPERTY_REMOVED if change.before == 'property'
                else BreakingChangeRule.CLS_METHOD_REMOVED)
        return _finding(rule, entry, file_path, f"Class {change.before} removed: {change.name}", change)
    if change.change == 'signature_changed':
        return _finding(BreakingChangeRule.CLS_METHOD_SIGNATURE_CHANGED, entry, file_path,
                        f"Class method signature changed: {change.name}", change)
    if change.change == 'type_changed':
        return _finding(BreakingChangeRule.CLS_METHOD_SIGNATURE_CHANGED, entry, file_path,
                        f"Class property type changed: {change.name}: {change.before} -> {change.after}", change)
    return None


def _type_finding(change: ShapeChange, entry: ApiDiffEntry, file_path: str) -> Optional[Finding]:
    interface = entry.kind == 'interface'
    if change.element == 'definition':
        return _finding(BreakingChangeRule.TYPE_DEFINITION_CHANGED, entry, file_path,
                        f"{entry.kind} definition changed", change)
    if change.element != 'property':
        return None

    if change.change == 'removed':
        # Type aliases have no dedicated property-removed rule
        rule = BreakingChangeRule.IFACE_PROPERTY_REMOVED if interface else BreakingChangeRule.TYPE_PROPERTY_TYPE_CHANGED
        return _finding(rule, entry, file_path, f"{entry.kind} property removed: {change.name}", change)
    if change.change == 'required':
        rule = BreakingChangeRule.IFACE_PROPERTY_REQUIRED if interface else BreakingChangeRule.TYPE_PROPERTY_REQUIRED
        if change.after is not None and change.before is None:
            message = f"{entry.kind} required property added: {change.name}"
        else:
            message = f"{entry.kind} property changed from optional to required: {change.name}"
        return _finding(rule, entry, file_path, message, change)
    if change.change == 'type_changed':
        rule = (BreakingChangeRule.IFACE_PROPERTY_TYPE_CHANGED if interface
                else BreakingChangeRule.TYPE_PROPERTY_TYPE_CHANGED)
        return _finding(rule, entry, file_path,
                        f"{entry.kind} property type changed: {change.name}: {change.before} -> {change.after}",
                        change)
    return None


def _modified_findings(entry: ApiDiffEntry, file_path: str) -> List[Finding]:
    findings = []
    for change in entry.changes:
        finding = None
        if change.element == 'kind':
            finding = _finding(BreakingChangeRule.EXPORT_TYPE_CHANGED, entry, file_path,
                               f"Export kind changed from {change.before} to {change.after}", change)
        elif change.element == 'type':
            finding = _finding(BreakingChangeRule.EXPORT_TYPE_CHANGED, entry, file_path,
                               f"Export type changed: {change.before} -> {change.after}", change)
        elif change.element == 'export':
            finding = _finding(BreakingChangeRule.EXPORT_REMOVED, entry, file_path,
                               f"Export removed: {entry.name}.{change.name}", change)
        elif change.element == 'enum_member' and change.change == 'removed':
            finding = _finding(BreakingChangeRule.ENUM_MEMBER_REMOVED, entry, file_path,
                               f"Enum member removed: {change.name}", change)
        elif entry.kind == 'function':
            finding = _function_finding(change, entry, file_path)
        elif entry.kind == 'class':
            finding = _class_finding(change, entry, file_path)
        elif entry.kind in ('interface', 'type'):
            finding = _type_finding(change, entry, file_path)
        if finding is not None:
            findings.append(finding)

    return sorted(findings, key=lambda f: (SPECIFICITY.get(rule_for_id(f.rule_id), 50), f.rule_id))


def api_diff_to_findings(diff: ApiDiff, file_path: Optional[str] = None) -> List[Finding]:
    """Classify every entry of an API diff.

    Findings are reported against ``file_path`` when given, otherwise against
    each export's declaring file.
    """
    findings = []

    for entry in diff.removed:
        rule = REMOVED_RULES.get(entry.kind, BreakingChangeRule.EXPORT_REMOVED)
        findings.append(_finding(rule, entry, file_path or entry.file_path, f"Export removed: {entry.name}"))

    for entry in diff.modified:
        findings.extend(_modified_findings(entry, file_path or entry.file_path))

    for entry in diff.renamed:
        before_name = entry.before_shape.name if entry.before_shape is not None else entry.name
        findings.append(Finding(
            rule_id=None,
            severity=Severity.INFO,
            symbol=entry.name,
            file=file_path or entry.file_path,
            message=f"Export renamed/moved: {before_name} -> {entry.name} (identity changed)",
            kind='rename'
        ))

    for entry in diff.added:
        findings.append(Finding(
            rule_id=None,
            severity=Severity.INFO,
            symbol=entry.name,
            file=file_path or entry.file_path,
            message=f"Export added: {entry.name}",
            kind=entry.kind
        ))

    return findings


def heuristic_diff_to_findings(snapshot_diff, file_path: str) -> List[Finding]:
    """Turn a JavaScript snapshot diff into JSAPI findings.

    Export removals of functions in JSX files are reported as component
    removals. Messages get the heuristic disclaimer where it applies, and
    overlapping export findings are de-duplicated.
    """
    findings = []
    is_jsx = os.path.splitext(file_path)[1].lower() in JSX_EXTENSIONS

    for change in snapshot_diff.changed_symbols + snapshot_diff.package_changes:
        rule = rule_for_id(change.rule_id)
        if rule is None:
            logger.warning("Unknown rule id %s for %s", change.rule_id, change.symbol)
            continue
        message = change.message
        if rule == BreakingChangeRule.JSAPI_EXPORT_REMOVED and is_jsx and change.kind == 'function':
            rule = BreakingChangeRule.JSAPI_JSX_COMPONENT_REMOVED
            message = f"Exported JSX component '{change.symbol}' was removed."

        findings.append(Finding(
            rule_id=rule.value,
            severity=RULE_METADATA[rule].severity,
            symbol=change.symbol,
            file=change.file_path if change.file_path == 'package.json' else file_path,
            message=apply_heuristic_suffix(rule, message),
            kind=change.kind,
            line=change.line,
            before=change.before,
            after=change.after
        ))

    return deduplicate_findings(findings)


def deduplicate_findings(findings: List[Finding]) -> List[Finding]:
    """Keep only the most specific export finding per (file, symbol).

    Findings whose rules are outside the export priority table are always kept.
    """
    groups: Dict[tuple, List[Finding]] = {}
    order = []
    for finding in findings:
        rule = rule_for_id(finding.rule_id) if finding.rule_id else None
        if rule not in RULE_PRIORITY:
            order.append(finding)
            continue
        key = (finding.file, finding.symbol)
        if key not in groups:
            groups[key] = []
            order.append(key)
        groups[key].append(finding)

    deduplicated = []
    for item in order:
        if isinstance(item, Finding):
            deduplicated.append(item)
            continue
        candidates = groups[item]
        candidates.sort(key=lambda f: RULE_PRIORITY.get(rule_for_id(f.rule_id), UNKNOWN_PRIORITY))
        deduplicated.append(candidates[0])
    return deduplicated


def impacted_symbols(findings: List[Finding]) -> List[str]:
    """Symbols named by rule findings; method removals also name their class."""
    symbols = set()
    for finding in findings:
        if finding.rule_id is None or not finding.symbol:
            continue
        symbols.add(finding.symbol)
        if finding.rule_id == BreakingChangeRule.JSAPI_CLS_METHOD_REMOVED.value and '.' in finding.symbol:
            symbols.add(finding.symbol.rsplit('.', 1)[0])
    return sorted(symbols)


def summarize_findings(findings: List[Finding]) -> FindingsSummary:
    """Generate a summary of findings."""
    if not findings:
        return FindingsSummary(total=0, breaking=0, warnings=0, info=0)

    breaking = sum(1 for f in findings if f.severity == Severity.BREAKING)
    warnings = sum(1 for f in findings if f.severity == Severity.WARNING)
    info = sum(1 for f in findings if f.severity == Severity.INFO)

    rules_breakdown = {}
    for finding in findings:
        if finding.rule_id:
            rules_breakdown[finding.rule_id] = rules_breakdown.get(finding.rule_id, 0) + 1

    if breaking:
        risk = f"High - {breaking} breaking change(s)"
    elif warnings:
        risk = f"Medium - {warnings} potential breaking change(s)"
    else:
        risk = "Low - no breaking changes"

    return FindingsSummary(
        total=len(findings),
        breaking=breaking,
        warnings=warnings,
        info=info,
        rules_breakdown=dict(sorted(rules_breakdown.items())),
        risk_assessment=risk
    )
