"""Tests for analysis configuration and tsconfig loading."""

import json

import pytest

from apiscope.config import AnalysisConfiguration, is_typed_js_enabled, load_tsconfig


def write_tsconfig(path, data, text=None):
    path.write_text(text if text is not None else json.dumps(data))
    return path


class TestAnalysisConfiguration:
    """Test suite for AnalysisConfiguration."""

    def test_defaults(self, tmp_path):
        """Test the default mode, tolerance and ignore list."""
        config = AnalysisConfiguration(repo_root=str(tmp_path))

        assert config.mode == "exports-only"
        assert config.rename_tolerance == "signature"
        assert "node_modules" in config.ignore_dirs
        assert config.paths == []

    def test_invalid_mode(self):
        """Test that an unknown mode is rejected."""
        with pytest.raises(ValueError, match="Unknown analysis mode"):
            AnalysisConfiguration(mode="everything")

    def test_invalid_tolerance(self):
        """Test that an unknown rename tolerance is rejected."""
        with pytest.raises(ValueError, match="Unknown rename tolerance"):
            AnalysisConfiguration(rename_tolerance="loose")

    def test_with_root_copies_settings(self, tmp_path):
        """Test that with_root keeps every setting but the root."""
        config = AnalysisConfiguration(repo_root=str(tmp_path), paths=["src/index.ts"], mode="api-snapshot",
                                       rename_tolerance="arity")
        other = config.with_root(str(tmp_path / "after"))

        assert other.repo_root == str(tmp_path / "after")
        assert (other.paths, other.mode, other.rename_tolerance) == (["src/index.ts"], "api-snapshot", "arity")
        assert other.paths is not config.paths


class TestTsConfig:
    """Test suite for tsconfig handling."""

    def test_missing_file(self, tmp_path):
        """Test that a missing tsconfig yields None."""
        assert load_tsconfig(str(tmp_path / "tsconfig.json")) is None

    def test_comments_and_trailing_commas(self, tmp_path):
        """Test that JSONC comments and trailing commas are accepted."""
        path = write_tsconfig(tmp_path / "tsconfig.json", None, text="""
        {
          // typed JavaScript
          "compilerOptions": { "allowJs": true, "checkJs": true, /* strict */ },
          "include": ["src/**/*"],
        }
        """)

        config = load_tsconfig(str(path))

        assert config.allow_js and config.check_js
        assert config.include == ["src/**/*"]

    def test_malformed_file(self, tmp_path):
        """Test that an unparseable tsconfig yields None."""
        path = write_tsconfig(tmp_path / "tsconfig.json", None, text="{ nope")

        assert load_tsconfig(str(path)) is None

    def test_extends_base(self, tmp_path):
        """Test that compiler options are inherited from a relative base config."""
        write_tsconfig(tmp_path / "tsconfig.base.json", {"compilerOptions": {"allowJs": True, "checkJs": True}})
        path = write_tsconfig(tmp_path / "tsconfig.json", {"extends": "./tsconfig.base",
                                                           "compilerOptions": {"checkJs": False}})

        config = load_tsconfig(str(path))

        assert config.allow_js
        assert not config.check_js

    def test_typed_js_requires_both_flags(self, tmp_path):
        """Test that allowJs alone does not enable typed JavaScript."""
        write_tsconfig(tmp_path / "tsconfig.json", {"compilerOptions": {"allowJs": True}})

        assert not is_typed_js_enabled("src/index.js", str(tmp_path))

    def test_typed_js_respects_include_and_exclude(self, tmp_path):
        """Test that the file must be included and not excluded."""
        write_tsconfig(tmp_path / "tsconfig.json", {
            "compilerOptions": {"allowJs": True, "checkJs": True},
            "include": ["src"],
            "exclude": ["src/legacy"],
        })

        assert is_typed_js_enabled("src/index.js", str(tmp_path))
        assert not is_typed_js_enabled("lib/index.js", str(tmp_path))
        assert not is_typed_js_enabled("src/legacy/old.js", str(tmp_path))

    def test_explicit_tsconfig_path(self, tmp_path):
        """Test that a tsconfig outside the default location can be named."""
        (tmp_path / "config").mkdir()
        write_tsconfig(tmp_path / "config" / "tsconfig.app.json",
                       {"compilerOptions": {"allowJs": True, "checkJs": True}})

        assert is_typed_js_enabled("src/index.js", str(tmp_path), "config/tsconfig.app.json")
        assert not is_typed_js_enabled("src/index.js", str(tmp_path))

    def test_recursive_exclude_glob(self, tmp_path):
        """Test that a `**/*.test.js` exclude removes only the test files."""
        write_tsconfig(tmp_path / "tsconfig.json", {
            "compilerOptions": {"allowJs": True, "checkJs": True},
            "include": ["src/**/*"],
            "exclude": ["**/*.test.js"],
        })

        assert is_typed_js_enabled("src/index.js", str(tmp_path))
        assert is_typed_js_enabled("src/deep/nested/util.js", str(tmp_path))
        assert not is_typed_js_enabled("src/index.test.js", str(tmp_path))
        assert not is_typed_js_enabled("src/deep/util.test.js", str(tmp_path))
        assert not is_typed_js_enabled("lib/index.js", str(tmp_path))

    def test_include_glob_restricts_extension(self, tmp_path):
        """Test that an include limited to `.ts` files does not cover JavaScript."""
        write_tsconfig(tmp_path / "tsconfig.json", {
            "compilerOptions": {"allowJs": True, "checkJs": True},
            "include": ["src/**/*.ts"],
        })

        assert not is_typed_js_enabled("src/index.js", str(tmp_path))

    def test_single_segment_wildcards(self, tmp_path):
        """Test that `*` and `?` do not cross directory boundaries."""
        write_tsconfig(tmp_path / "tsconfig.json", {
            "compilerOptions": {"allowJs": True, "checkJs": True},
            "include": ["src/*.js", "lib/v?/*"],
        })

        assert is_typed_js_enabled("src/index.js", str(tmp_path))
        assert not is_typed_js_enabled("src/nested/index.js", str(tmp_path))
        assert is_typed_js_enabled("lib/v2/api.js", str(tmp_path))
        assert not is_typed_js_enabled("lib/v10/api.js", str(tmp_path))

    def test_patterns_are_relative_to_tsconfig(self, tmp_path):
        """Test that patterns resolve against the tsconfig directory, not the repository root."""
        (tmp_path / "config").mkdir()
        write_tsconfig(tmp_path / "config" / "tsconfig.json", {
            "compilerOptions": {"allowJs": True, "checkJs": True},
            "include": ["../src/**/*"],
            "exclude": ["../src/**/*.spec.js"],
        })

        assert is_typed_js_enabled("src/app/main.js", str(tmp_path), "config/tsconfig.json")
        assert not is_typed_js_enabled("src/app/main.spec.js", str(tmp_path), "config/tsconfig.json")
        assert not is_typed_js_enabled("scripts/build.js", str(tmp_path), "config/tsconfig.json")
