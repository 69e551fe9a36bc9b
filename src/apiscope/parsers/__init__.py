"""Language-specific parsers and syntax trees."""

from .tree_sitter_parser import TreeSitterParser

__all__ = ["TreeSitterParser"]
