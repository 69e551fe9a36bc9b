"""Tests for breaking-change classification."""

from apiscope.analyzers.api_diff import ApiDiff, ApiDiffEntry, DiffType, ShapeChange, compute_api_diff
from apiscope.analyzers.javascript_analyzer import SnapshotDiff, SymbolChange
from apiscope.analyzers.rules_engine import (
    HEURISTIC_SUFFIX, BreakingChangeRule, Finding, RULE_METADATA, Severity, api_diff_to_findings,
    apply_heuristic_suffix, deduplicate_findings, heuristic_diff_to_findings, impacted_symbols,
    sort_findings, summarize_findings
)
from apiscope.snapshot import (
    ApiSnapshot, ClassMember, ClassShape, FunctionShape, FunctionSignature, Parameter, TypeProperty,
    TypeShape, VariableShape, make_identity
)


def add_shape(*names, defaults=None):
    defaults = defaults or {}
    params = [Parameter(n, "number", optional=n in defaults, default_value=defaults.get(n)) for n in names]
    return FunctionShape(name="add", overloads=[FunctionSignature(params, "number")])


def single(shape, line=1):
    snapshot = ApiSnapshot(entrypoint_path="src/index.ts")
    snapshot.exports[make_identity(shape.name, "value", "src/index.ts", line)] = shape
    return snapshot


def js_change(rule_id, symbol, message, kind="variable", file_path="src/index.js"):
    return SymbolChange(rule_id=rule_id, message=message, symbol=symbol, line=1, change_type="removed",
                        kind=kind, file_path=file_path)


class TestApiDiffToFindings:
    """Test suite for TSAPI classification."""

    def test_required_parameter_added(self):
        """Test that add(a, b) -> add(a, b, c) is TSAPI-FN-001 and breaking."""
        diff = compute_api_diff(single(add_shape("a", "b")), single(add_shape("a", "b", "c")))

        [finding] = api_diff_to_findings(diff)

        assert finding.rule_id == "TSAPI-FN-001"
        assert finding.severity == Severity.BREAKING
        assert finding.symbol == "add"
        assert finding.file == "src/index.ts"
        assert finding.message == "Function parameter added as required: c"

    def test_default_added_is_informational(self):
        """Test that a parameter gaining a default is an FN-006 info finding."""
        diff = compute_api_diff(single(add_shape("a", "b")), single(add_shape("a", "b", defaults={"b": "0"})))

        [finding] = api_diff_to_findings(diff)

        assert finding.rule_id == "TSAPI-FN-006"
        assert finding.severity == Severity.INFO

    def test_removed_function(self):
        """Test that a removed function export is TSAPI-FN-005 and breaking."""
        diff = compute_api_diff(single(add_shape("a")), ApiSnapshot(entrypoint_path="src/index.ts"))

        [finding] = api_diff_to_findings(diff)

        assert finding.rule_id == "TSAPI-FN-005"
        assert finding.severity == Severity.BREAKING
        assert finding.message == "Export removed: add"

    def test_removed_kinds_map_to_rules(self):
        """Test that each removed export kind maps to its removal rule."""
        before = ApiSnapshot(entrypoint_path="src/index.ts")
        before.exports[make_identity("Store", "value", "src/index.ts", 1)] = ClassShape(name="Store")
        before.exports[make_identity("Opts", "value", "src/index.ts", 2)] = TypeShape(name="Opts", kind="interface")

        findings = api_diff_to_findings(compute_api_diff(before, ApiSnapshot(entrypoint_path="src/index.ts")))

        assert {f.symbol: f.rule_id for f in findings} == {"Store": "TSAPI-CLS-004", "Opts": "TSAPI-IF-004"}

    def test_removal_severity_comes_from_rule_catalog(self):
        """Test that every removal finding carries the severity its rule declares."""
        before = ApiSnapshot(entrypoint_path="src/index.ts")
        before.exports[make_identity("add", "value", "src/index.ts", 1)] = add_shape("a")
        before.exports[make_identity("Store", "value", "src/index.ts", 2)] = ClassShape(name="Store")
        before.exports[make_identity("VERSION", "value", "src/index.ts", 3)] = VariableShape(name="VERSION", kind="const")

        findings = api_diff_to_findings(compute_api_diff(before, ApiSnapshot(entrypoint_path="src/index.ts")))

        assert {f.symbol: f.rule_id for f in findings}["VERSION"] == "TSAPI-EXP-001"
        for finding in findings:
            rule = BreakingChangeRule(finding.rule_id)
            assert finding.severity == RULE_METADATA[rule].severity == Severity.BREAKING

    def test_added_and_renamed_have_no_rule(self):
        """Test that additions and renames are informational findings without a rule."""
        diff = ApiDiff(
            added=[ApiDiffEntry(DiffType.ADDED, "extra", "function",
                                after_identity=make_identity("extra", "value", "src/a.ts", 4))],
            renamed=[ApiDiffEntry(DiffType.RENAMED, "sum", "function",
                                  before_identity=make_identity("add", "value", "src/a.ts", 1),
                                  after_identity=make_identity("sum", "value", "src/a.ts", 1),
                                  before_shape=add_shape("a"))]
        )

        findings = api_diff_to_findings(diff)

        assert all(f.rule_id is None and f.severity == Severity.INFO for f in findings)
        messages = {f.message for f in findings}
        assert "Export added: extra" in messages
        assert "Export renamed/moved: add -> sum (identity changed)" in messages

    def test_class_method_removed(self):
        """Test that a removed public method is TSAPI-CLS-001."""
        method = ClassMember(name="run", kind="method", signature=FunctionSignature([], "void"))
        before = single(ClassShape(name="Service", members=[method]))
        after = single(ClassShape(name="Service"))

        [finding] = api_diff_to_findings(compute_api_diff(before, after))

        assert finding.rule_id == "TSAPI-CLS-001"
        assert finding.message == "Class method removed: run"

    def test_interface_property_findings_are_ordered(self):
        """Test that property removals sort ahead of newly required properties."""
        before = single(TypeShape(name="User", kind="interface", properties=[
            TypeProperty("id", "number"), TypeProperty("email", "string")]))
        after = single(TypeShape(name="User", kind="interface", properties=[
            TypeProperty("id", "number"), TypeProperty("age", "number")]))

        findings = api_diff_to_findings(compute_api_diff(before, after))

        assert [f.rule_id for f in findings] == ["TSAPI-IF-001", "TSAPI-IF-002"]
        assert findings[1].message == "interface required property added: age"

    def test_file_override(self):
        """Test that an explicit file path replaces the declaring file."""
        diff = compute_api_diff(single(add_shape("a")), ApiSnapshot(entrypoint_path="src/index.ts"))

        [finding] = api_diff_to_findings(diff, file_path="lib/index.d.ts")

        assert finding.file == "lib/index.d.ts"


class TestHeuristicSuffix:
    """Test suite for the JavaScript disclaimer."""

    def test_suffix_appended(self):
        """Test that heuristic rule messages gain the disclaimer."""
        message = apply_heuristic_suffix(BreakingChangeRule.JSAPI_FN_REMOVED, "Exported function 'foo' was removed.")

        assert message == "Exported function 'foo' was removed." + HEURISTIC_SUFFIX

    def test_hedged_message_unchanged(self):
        """Test that a message that already hedges is left alone."""
        message = "Module export shape changed (CommonJS -> ESM). This is likely breaking for consumers."

        assert apply_heuristic_suffix(BreakingChangeRule.JSAPI_MODULE_SYSTEM_CHANGED, message) == message

    def test_denylisted_and_typed_rules_unchanged(self):
        """Test that reliable heuristic rules and TSAPI rules never get the suffix."""
        message = "Exported class 'Foo' was removed."

        assert apply_heuristic_suffix(BreakingChangeRule.JSAPI_CLS_REMOVED, message) == message
        assert apply_heuristic_suffix(BreakingChangeRule.FN_REMOVED, message) == message
        assert apply_heuristic_suffix(None, message) == message

    def test_jsapi_rules_are_never_breaking(self):
        """Test that no heuristic-family rule has breaking severity."""
        for rule, metadata in RULE_METADATA.items():
            if rule.is_heuristic_family:
                assert metadata.severity != Severity.BREAKING


class TestHeuristicDiffToFindings:
    """Test suite for JSAPI classification."""

    def test_jsx_function_removal_becomes_component_removal(self):
        """Test that a removed function export in a .jsx file is JSAPI-JSX-001."""
        diff = SnapshotDiff(changed_symbols=[
            js_change("JSAPI-EXP-001", "Button", "Export 'Button' was removed.", kind="function",
                      file_path="src/Button.jsx")
        ])

        [finding] = heuristic_diff_to_findings(diff, "src/Button.jsx")

        assert finding.rule_id == "JSAPI-JSX-001"
        assert finding.message == "Exported JSX component 'Button' was removed."
        assert finding.severity == Severity.WARNING

    def test_plain_js_removal_keeps_rule(self):
        """Test that the JSX remap only applies to JSX files."""
        diff = SnapshotDiff(changed_symbols=[
            js_change("JSAPI-EXP-001", "helper", "Export 'helper' was removed.", kind="function")
        ])

        [finding] = heuristic_diff_to_findings(diff, "src/index.js")

        assert finding.rule_id == "JSAPI-EXP-001"

    def test_package_changes_keep_their_file(self):
        """Test that package.json findings are reported against package.json."""
        diff = SnapshotDiff(package_changes=[
            js_change("JSAPI-MOD-002", "type", "package.json type changed (commonjs -> module).",
                      file_path="package.json")
        ])

        [finding] = heuristic_diff_to_findings(diff, "src/index.js")

        assert finding.file == "package.json"
        assert finding.message.endswith(HEURISTIC_SUFFIX)

    def test_unknown_rule_is_skipped(self):
        """Test that changes with an unknown rule id are dropped."""
        diff = SnapshotDiff(changed_symbols=[js_change("JSAPI-XYZ-999", "x", "Something.")])

        assert heuristic_diff_to_findings(diff, "src/index.js") == []


class TestDeduplicateFindings:
    """Test suite for export finding de-duplication."""

    @staticmethod
    def finding(rule_id, symbol="default", file="src/index.js"):
        return Finding(rule_id=rule_id, severity=Severity.WARNING, symbol=symbol, file=file, message=rule_id)

    def test_most_specific_rule_wins(self):
        """Test that the default-export rule beats a generic export removal."""
        findings = [self.finding("JSAPI-EXP-001"), self.finding("JSAPI-EXP-002")]

        assert [f.rule_id for f in deduplicate_findings(findings)] == ["JSAPI-EXP-002"]

    def test_barrel_beats_generic_removal(self):
        """Test that a barrel removal outranks the generic removal of the same symbol."""
        findings = [self.finding("JSAPI-EXP-001", "util"), self.finding("JSAPI-EXP-008", "util")]

        assert [f.rule_id for f in deduplicate_findings(findings)] == ["JSAPI-EXP-008"]

    def test_different_symbols_are_kept(self):
        """Test that findings on different symbols are not merged."""
        findings = [self.finding("JSAPI-EXP-001", "a"), self.finding("JSAPI-EXP-001", "b")]

        assert len(deduplicate_findings(findings)) == 2

    def test_rules_outside_priority_table_are_kept(self):
        """Test that non-export rules are never de-duplicated."""
        findings = [self.finding("JSAPI-FN-002", "run"), self.finding("JSAPI-FN-003", "run"),
                    self.finding("JSAPI-EXP-001", "run")]

        assert [f.rule_id for f in deduplicate_findings(findings)] == ["JSAPI-FN-002", "JSAPI-FN-003",
                                                                     "JSAPI-EXP-001"]


class TestSummaries:
    """Test suite for summaries and symbol extraction."""

    @staticmethod
    def finding(rule_id, severity, symbol="a", file="a.ts"):
        return Finding(rule_id=rule_id, severity=severity, symbol=symbol, file=file, message="m")

    def test_empty_summary(self):
        """Test that no findings gives an empty summary."""
        summary = summarize_findings([])

        assert summary.total == 0
        assert summary.risk_assessment == "No changes to analyze"

    def test_breaking_summary(self):
        """Test severity counts, rule breakdown and risk text."""
        findings = [
            self.finding("TSAPI-FN-005", Severity.BREAKING),
            self.finding("TSAPI-FN-005", Severity.BREAKING, symbol="b"),
            self.finding("TSAPI-FN-006", Severity.WARNING),
            self.finding(None, Severity.INFO),
        ]

        summary = summarize_findings(findings)

        assert (summary.total, summary.breaking, summary.warnings, summary.info) == (4, 2, 1, 1)
        assert summary.rules_breakdown == {"TSAPI-FN-005": 2, "TSAPI-FN-006": 1}
        assert summary.risk_assessment == "High - 2 breaking change(s)"

    def test_low_risk(self):
        """Test that info-only findings are low risk."""
        summary = summarize_findings([self.finding(None, Severity.INFO)])

        assert summary.risk_assessment == "Low - no breaking changes"

    def test_impacted_symbols_include_method_class(self):
        """Test that a removed method also names its class."""
        findings = [
            self.finding("JSAPI-CLS-001", Severity.WARNING, symbol="Store.get"),
            self.finding(None, Severity.INFO, symbol="added"),
        ]

        assert impacted_symbols(findings) == ["Store", "Store.get"]

    def test_sort_is_stable(self):
        """Test that sorting by (file, symbol) keeps the original order of ties."""
        first = self.finding("TSAPI-FN-001", Severity.BREAKING, symbol="add", file="b.ts")
        second = self.finding("TSAPI-FN-003", Severity.BREAKING, symbol="add", file="b.ts")
        other = self.finding("TSAPI-FN-005", Severity.BREAKING, symbol="zed", file="a.ts")

        assert sort_findings([first, second, other]) == [other, first, second]

    def test_shape_change_helper(self):
        """Test that a non-breaking shape change downgrades severity to info."""
        entry = ApiDiffEntry(DiffType.MODIFIED, "add", "function",
                             before_identity=make_identity("add", "value", "a.ts", 1),
                             after_identity=make_identity("add", "value", "a.ts", 1),
                             changes=[ShapeChange("parameter", "optional", "b", breaking=False)])

        [finding] = api_diff_to_findings(ApiDiff(modified=[entry]))

        assert finding.severity == Severity.INFO
        assert finding.message == "Function parameter became optional: b"
