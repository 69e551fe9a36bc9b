"""Tests for symbol-aware test impact matching."""

import pytest

from apiscope.analyzers.usage_matcher import (
    CONFIDENCE_AST, CONFIDENCE_HEURISTIC, UsageMatcher, find_test_files, is_test_file,
    python_module_names, strip_comments_and_strings
)

MATH_SOURCE = """
export function add(a: number, b: number): number { return a + b; }
export function subtract(a: number, b: number): number { return a - b; }
"""


@pytest.fixture
def matcher(tmp_path, parser):
    return UsageMatcher(str(tmp_path), parser)


@pytest.fixture
def source(write_file):
    return write_file("src/math.ts", MATH_SOURCE)


class TestTestDiscovery:
    """Test suite for locating test files."""

    def test_is_test_file(self):
        """Test the common test file naming conventions."""
        assert is_test_file("math.test.ts")
        assert is_test_file("math.spec.js")
        assert is_test_file("test_math.py")
        assert is_test_file("math_test.go")
        assert not is_test_file("math.ts")
        assert not is_test_file("testing.ts")

    def test_find_test_files_skips_vendor_dirs(self, tmp_path, write_file):
        """Test that test files under node_modules and dot directories are ignored."""
        write_file("tests/b.test.ts", "")
        write_file("tests/a.test.ts", "")
        write_file("node_modules/pkg/x.test.js", "")
        write_file(".cache/y.test.js", "")
        write_file("src/math.ts", "")

        found = find_test_files(str(tmp_path))

        assert found == [str(tmp_path / "tests/a.test.ts"), str(tmp_path / "tests/b.test.ts")]

    def test_custom_patterns_replace_defaults(self, tmp_path, write_file):
        """Test that configured name patterns decide which files are tests."""
        write_file("tests/math.test.ts", "")
        write_file("checks/math.check.ts", "")
        write_file("checks/notes.check.md", "")

        found = find_test_files(str(tmp_path), ["*.check.*"])

        assert found == [str(tmp_path / "checks/math.check.ts")]
        assert is_test_file("Math.Check.TS", ["*.check.*"])
        assert not is_test_file("math.test.ts", ["*.check.*"])


class TestCleaning:
    """Test suite for comment and string stripping."""

    def test_strips_comments_and_strings(self):
        """Test that comments, string literals and template literals are removed."""
        code = 'const u = base; // add(1)\n/* subtract(2) */ call(`add(${1})`, "add");'

        cleaned = strip_comments_and_strings(code)

        assert "add" not in cleaned
        assert "subtract" not in cleaned
        assert "call(" in cleaned

    def test_python_comments(self):
        """Test that Python comments and docstrings are removed."""
        code = '"""add(1)"""\nx = 1  # subtract(2)\n'

        cleaned = strip_comments_and_strings(code, python=True)

        assert "add" not in cleaned and "subtract" not in cleaned


class TestMatchFiles:
    """Test suite for the two-stage matcher."""

    def test_named_import_and_call(self, matcher, source, write_file):
        """Test that importing and calling a changed symbol is an AST match."""
        test = write_file("tests/math.test.ts", """
            import { add } from '../src/math';
            test('adds', () => expect(add(1, 2)).toBe(3));
        """)

        [match] = matcher.match_files(["add"], [str(test)], str(source))

        assert match.matched_symbols == ["add"]
        assert match.confidence == CONFIDENCE_AST
        assert not match.is_heuristic

    def test_import_without_use_is_excluded_with_symbols(self, matcher, source, write_file):
        """Test that importing the source without using a changed symbol does not match."""
        test = write_file("tests/math.test.ts", """
            import { add } from '../src/math';
            test('adds', () => expect(add(1, 2)).toBe(3));
        """)

        assert matcher.match_files(["subtract"], [str(test)], str(source)) == []

    def test_import_without_use_is_heuristic_without_symbols(self, matcher, source, write_file):
        """Test that with no symbol list any import of the source is a heuristic match."""
        test = write_file("tests/math.test.ts", """
            import { add } from '../src/math';
            test('adds', () => expect(add(1, 2)).toBe(3));
        """)

        [match] = matcher.match_files(None, [str(test)], str(source))

        assert match.confidence == CONFIDENCE_HEURISTIC
        assert match.matched_symbols == []

    def test_strings_and_comments_do_not_match(self, matcher, source, write_file):
        """Test that mentions inside strings and comments are not usages."""
        test = write_file("tests/math.test.ts", """
            import { add } from '../src/math';
            // subtract(5, 3) is covered elsewhere
            const label = "subtract(5, 3)";
            test(label, () => expect(add(1, 2)).toBe(3));
        """)

        assert matcher.match_files(["subtract"], [str(test)], str(source)) == []

    def test_strings_and_comments_do_not_match_in_javascript(self, matcher, source, write_file):
        """Test the same rule on the regex path used for JavaScript tests."""
        test = write_file("tests/math.test.js", """
            const { add } = require('../src/math');
            // subtract(5, 3)
            const label = 'subtract(5, 3)';
            test(label, () => expect(add(1, 2)).toBe(3));
        """)

        assert matcher.match_files(["subtract"], [str(test)], str(source)) == []

    def test_namespace_member_usage(self, matcher, source, write_file):
        """Test that `ns.symbol` through a namespace import is a usage."""
        test = write_file("tests/math.test.ts", """
            import * as math from '../src/math';
            test('subtracts', () => expect(math.subtract(3, 1)).toBe(2));
        """)

        [match] = matcher.match_files(["subtract", "add"], [str(test)], str(source))

        assert match.matched_symbols == ["subtract"]

    def test_require_namespace_in_javascript(self, matcher, source, write_file):
        """Test that `const m = require(...)` followed by `m.symbol(...)` is a heuristic usage."""
        test = write_file("tests/math.test.js", """
            const math = require('../src/math');
            test('adds', () => expect(math.add(1, 2)).toBe(3));
        """)

        [match] = matcher.match_files(["add"], [str(test)], str(source))

        assert match.matched_symbols == ["add"]
        assert match.confidence == CONFIDENCE_HEURISTIC

    def test_js_extension_specifier(self, matcher, source, write_file):
        """Test that an ESM `.js` specifier naming the TypeScript source counts as an import."""
        test = write_file("tests/math.test.ts", """
            import { add } from '../src/math.js';
            add(1, 2);
        """)

        [match] = matcher.match_files(["add"], [str(test)], str(source))

        assert match.matched_symbols == ["add"]

    def test_unrelated_import_is_excluded(self, matcher, source, write_file):
        """Test that a file importing another module with the same symbol name does not match."""
        write_file("src/other.ts", "export function add() {}\n")
        test = write_file("tests/other.test.ts", """
            import { add } from '../src/other';
            add();
        """)

        assert matcher.match_files(["add"], [str(test)], str(source)) == []

    def test_source_file_is_never_a_candidate(self, matcher, source):
        """Test that the changed file itself is skipped."""
        assert matcher.match_files(["add"], [str(source)], str(source)) == []

    def test_results_are_sorted(self, matcher, source, write_file):
        """Test that matches come back in path order regardless of input order."""
        body = "import { add } from '../src/math';\nadd(1, 2);\n"
        b = write_file("tests/b.test.ts", body)
        a = write_file("tests/a.test.ts", body)

        matches = matcher.match_files(["add"], [str(b), str(a)], str(source))

        assert [m.file_path for m in matches] == [str(a), str(b)]

    def test_find_impacted_tests(self, matcher, source, write_file):
        """Test discovery and matching together from the project root."""
        write_file("tests/math.test.ts", "import { add } from '../src/math';\nadd(1, 2);\n")
        write_file("tests/unrelated.test.ts", "test('x', () => {});\n")

        matches = matcher.find_impacted_tests(str(source), ["add"])

        assert [m.matched_symbols for m in matches] == [["add"]]


class TestPythonMatching:
    """Test suite for Python candidates."""

    def test_module_names(self, tmp_path):
        """Test the dotted names a Python module may be imported as."""
        names = python_module_names(str(tmp_path / "src/pkg/calc.py"), str(tmp_path))

        assert names == ["src.pkg.calc", "pkg.calc", "calc"]

    def test_from_import_usage(self, matcher, write_file):
        """Test that `from pkg.calc import add` followed by a call matches."""
        source = write_file("pkg/calc.py", "def add(a, b):\n    return a + b\n")
        test = write_file("tests/test_calc.py", """
            from pkg.calc import add

            def test_add():
                assert add(1, 2) == 3
        """)

        [match] = matcher.match_files(["add"], [str(test)], str(source))

        assert match.matched_symbols == ["add"]
        assert match.confidence == CONFIDENCE_HEURISTIC

    def test_module_alias_usage(self, matcher, write_file):
        """Test that `import pkg.calc as c` followed by `c.add(...)` matches."""
        source = write_file("pkg/calc.py", "def add(a, b):\n    return a + b\n")
        test = write_file("tests/test_calc.py", """
            import pkg.calc as c

            def test_add():
                assert c.add(1, 2) == 3
        """)

        [match] = matcher.match_files(["add"], [str(test)], str(source))

        assert match.matched_symbols == ["add"]
