"""Shared fixtures for the apiscope test suite."""

import textwrap

import pytest

from apiscope.parsers.tree_sitter_parser import TreeSitterParser


@pytest.fixture(scope="session")
def parser():
    """One parser for the whole session; grammar loading is slow."""
    return TreeSitterParser()


@pytest.fixture
def write_file(tmp_path):
    """Write dedented source text under tmp_path and return the path."""

    def _write(relative_path, content):
        path = tmp_path / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(content).lstrip("\n"))
        return path

    return _write
