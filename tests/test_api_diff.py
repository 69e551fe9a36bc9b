"""Tests for structural API snapshot diffs."""

import pytest

from apiscope.analyzers.api_diff import (
    DiffType, compute_api_diff, compute_exports_diff, shapes_equivalent, signature_delta
)
from apiscope.analyzers.typescript_analyzer import TypeScriptAnalyzer
from apiscope.core.runner import AnalysisResult
from apiscope.analyzers.rules_engine import Finding, Severity
from apiscope.snapshot import (
    ApiSnapshot, EnumMember, EnumShape, FunctionShape, FunctionSignature, Parameter, TypeProperty,
    TypeShape, make_identity
)


def function_shape(name, *params, return_type="number"):
    return FunctionShape(name=name, overloads=[FunctionSignature(parameters=list(params), return_type=return_type)])


def api(*entries):
    """Build a snapshot from (name, line, shape) triples declared in src/index.ts."""
    snapshot = ApiSnapshot(entrypoint_path="src/index.ts")
    for name, line, shape in entries:
        snapshot.exports[make_identity(name, "value", "src/index.ts", line)] = shape
    return snapshot


def exports_result(*symbols):
    findings = [Finding(rule_id=None, severity=Severity.INFO, symbol=s, file="index.ts", message="named export",
                        kind="function") for s in symbols]
    return AnalysisResult(findings=findings)


class TestComputeApiDiff:
    """Test suite for compute_api_diff."""

    def test_identical_snapshots_have_empty_diff(self):
        """Test that a snapshot diffed against itself is empty."""
        snapshot = api(("add", 1, function_shape("add", Parameter("a", "number"))))

        diff = compute_api_diff(snapshot, snapshot)

        assert diff.is_empty()
        assert diff.entries() == []

    def test_removed_and_added(self):
        """Test that unrelated exports are reported as removed and added."""
        before = api(("add", 1, function_shape("add", Parameter("a", "number"))))
        after = api(("Color", 3, EnumShape(name="Color", members=[EnumMember("Red", "0")])))

        diff = compute_api_diff(before, after)

        assert [e.name for e in diff.removed] == ["add"]
        assert [e.name for e in diff.added] == ["Color"]
        assert diff.removed[0].diff_type == DiffType.REMOVED

    def test_required_parameter_added(self):
        """Test that a new required parameter is a breaking parameter change."""
        before = api(("add", 1, function_shape("add", Parameter("a", "number"), Parameter("b", "number"))))
        after = api(("add", 1, function_shape("add", Parameter("a", "number"), Parameter("b", "number"),
                                              Parameter("c", "number"))))

        diff = compute_api_diff(before, after)

        [entry] = diff.modified
        [change] = entry.changes
        assert (change.element, change.change, change.name) == ("parameter", "required", "c")
        assert change.breaking

    def test_moved_declaration_is_modified(self):
        """Test that a declaration that only moved lines is matched before rename pairing."""
        before = api(("add", 1, function_shape("add", Parameter("a", "number"))))
        after = api(("add", 5, function_shape("add", Parameter("a", "string"))))

        diff = compute_api_diff(before, after)

        assert not diff.removed and not diff.added
        [entry] = diff.modified
        assert entry.changes[0].change == "type_changed"

    def test_moved_unchanged_declaration_is_silent(self):
        """Test that moving a declaration without changing it produces no entry."""
        shape = function_shape("add", Parameter("a", "number"))

        diff = compute_api_diff(api(("add", 1, shape)), api(("add", 9, shape)))

        assert diff.is_empty()

    def test_rename_with_equivalent_shape(self):
        """Test that a same-shaped export under a new name is a rename."""
        before = api(("add", 1, function_shape("add", Parameter("a", "number"))))
        after = api(("sum", 1, function_shape("sum", Parameter("x", "number"))))

        diff = compute_api_diff(before, after)

        [entry] = diff.renamed
        assert entry.name == "sum"
        assert entry.changes[0].before == "add"
        assert not diff.removed and not diff.added

    def test_exact_tolerance_rejects_parameter_rename(self):
        """Test that exact tolerance needs identical shapes apart from the name."""
        before = api(("add", 1, function_shape("add", Parameter("a", "number"))))
        after = api(("sum", 1, function_shape("sum", Parameter("x", "number"))))

        diff = compute_api_diff(before, after, tolerance="exact")

        assert not diff.renamed
        assert [e.name for e in diff.removed] == ["add"]

    def test_arity_tolerance_ignores_types(self):
        """Test that arity tolerance pairs functions with the same parameter count."""
        old = function_shape("add", Parameter("a", "number"))
        new = function_shape("sum", Parameter("a", "string"), return_type="string")

        assert shapes_equivalent(old, new, "arity")
        assert not shapes_equivalent(old, new, "signature")

    def test_unknown_tolerance_raises(self):
        """Test that an unknown rename tolerance is rejected."""
        with pytest.raises(ValueError):
            compute_api_diff(api(), api(), tolerance="fuzzy")

    def test_kind_change(self):
        """Test that a changed export kind is a single kind change."""
        before = api(("Opts", 1, TypeShape(name="Opts", kind="interface")))
        after = api(("Opts", 1, EnumShape(name="Opts")))

        [entry] = compute_api_diff(before, after).modified

        assert [(c.element, c.before, c.after) for c in entry.changes] == [("kind", "interface", "enum")]

    def test_type_property_changes(self):
        """Test that removed, newly required and retyped properties are all reported."""
        before = api(("User", 1, TypeShape(name="User", kind="interface", properties=[
            TypeProperty("id", "number"), TypeProperty("name", "string", optional=True),
            TypeProperty("email", "string"),
        ])))
        after = api(("User", 1, TypeShape(name="User", kind="interface", properties=[
            TypeProperty("id", "string"), TypeProperty("name", "string"), TypeProperty("age", "number"),
        ])))

        [entry] = compute_api_diff(before, after).modified
        changes = {(c.change, c.name) for c in entry.changes}

        assert changes == {("type_changed", "id"), ("required", "name"), ("removed", "email"),
                           ("required", "age")}


class TestSignatureDelta:
    """Test suite for per-signature parameter comparison."""

    def test_default_added_is_not_breaking(self):
        """Test that a parameter gaining a default becomes optional without breaking callers."""
        before = FunctionSignature([Parameter("a", "number")], "number")
        after = FunctionSignature([Parameter("a", "number", optional=True, default_value="1")], "number")

        [change] = signature_delta(before, after)

        assert change.change == "optional"
        assert not change.breaking

    def test_parameter_rename_is_not_breaking(self):
        """Test that renaming a parameter is reported but not breaking."""
        before = FunctionSignature([Parameter("a", "number")], "number")
        after = FunctionSignature([Parameter("b", "number")], "number")

        [change] = signature_delta(before, after)

        assert (change.change, change.before, change.after, change.breaking) == ("renamed", "a", "b", False)

    def test_implicit_return_type_is_unknown(self):
        """Test that an empty return type on either side is never a change."""
        before = FunctionSignature([], "")
        after = FunctionSignature([], "string")

        assert signature_delta(before, after) == []

    def test_parameter_removed(self):
        """Test that dropping a trailing parameter is breaking."""
        before = FunctionSignature([Parameter("a", "number"), Parameter("b", "number")], "void")
        after = FunctionSignature([Parameter("a", "number")], "void")

        [change] = signature_delta(before, after)

        assert (change.change, change.name, change.breaking) == ("removed", "b", True)


class TestExportsDiff:
    """Test suite for the name-level exports diff."""

    def test_removed_from_export_list(self):
        """Test that dropping a name from `export { ... }` reports only that name."""
        diff = compute_exports_diff(exports_result("foo", "bar"), exports_result("bar"))

        assert diff.removed == ["foo"]
        assert diff.added == []
        assert diff.changed == []

    def test_export_list_from_source(self, tmp_path, parser):
        """Test the exports diff over analyzer output for a shrinking export clause."""
        analyzer = TypeScriptAnalyzer(str(tmp_path), parser)
        code = "function foo() {}\nfunction bar() {}\n"
        before = analyzer.analyze("index.ts", code + "export { foo, bar };\n")
        after = analyzer.analyze("index.ts", code + "export { bar };\n")

        diff = compute_exports_diff(
            exports_result(*[r.name for r in before.exports]),
            exports_result(*[r.name for r in after.exports])
        )

        assert diff.removed == ["foo"]
        assert diff.added == []
