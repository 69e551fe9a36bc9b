"""API breaking-change and impact analysis for source trees."""

__version__ = "0.1.0"
