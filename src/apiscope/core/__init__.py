"""Orchestration of analysis runs over source trees and git revisions."""

from .runner import (
    AnalysisResult, RegressionResult, build_api_snapshot, downstream_files,
    impacted_tests, run_analyzer, run_regression
)
from .revisions import AnalysisError, changed_files, materialize_revision

__all__ = [
    "AnalysisResult", "RegressionResult", "build_api_snapshot", "downstream_files",
    "impacted_tests", "run_analyzer", "run_regression",
    "AnalysisError", "changed_files", "materialize_revision"
]
