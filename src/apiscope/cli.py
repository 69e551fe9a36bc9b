"""Command-line interface for the apiscope tool."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.traceback import install

from .analyzers.analyzer_factory import AnalyzerFactory
from .analyzers.base import read_source
from .config import ANALYSIS_MODES, RENAME_TOLERANCES, AnalysisConfiguration
from .core.revisions import AnalysisError, materialize_revision
from .core.runner import (
    RegressionResult, build_api_snapshot, downstream_files, impacted_tests, run_analyzer, run_regression
)

# Set up rich error handling
install()
console = Console()
logger = logging.getLogger(__name__)

SEVERITY_STYLES = {
    'breaking': 'bold red',
    'warning': 'yellow',
    'info': 'dim',
}


def _configure_logging(level: str):
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True
    )


def _write_json(data, output: Optional[str]):
    output_data = json.dumps(data, indent=2, sort_keys=True)
    if output:
        Path(output).write_text(output_data + "\n")
        console.print(f"📄 Results saved to {output}")
    else:
        click.echo(output_data)


def _config(repo: str, paths, tsconfig, mode, rename_tolerance='signature') -> AnalysisConfiguration:
    try:
        return AnalysisConfiguration(repo_root=repo, paths=list(paths), tsconfig=tsconfig,
                                     mode=mode, rename_tolerance=rename_tolerance)
    except ValueError as e:
        raise click.BadParameter(str(e))


@click.group()
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
              default='WARNING', help='Logging level')
@click.option('--verbose', '-v', is_flag=True, help='Shorthand for --log-level DEBUG')
def cli(log_level, verbose):
    """Apiscope - API breaking-change and impact analysis

    Snapshots the public API of a source tree, diffs two versions of it and
    classifies each change against a catalog of breaking-change rules.

    USAGE:
        apiscope analyze ./repo --path src/index.ts
        apiscope diff ./before ./after --path src/index.ts --mode api-snapshot
        apiscope diff-rev ./repo v1.0.0 HEAD --path src/index.ts
        apiscope tests ./repo src/math.ts --symbol add
        apiscope changed old/math.py new/math.py
    """
    _configure_logging('DEBUG' if verbose else log_level.upper())


@cli.command()
@click.argument('repo', type=click.Path(exists=True, file_okay=False))
@click.option('--path', 'paths', multiple=True, help='File to analyze (repeatable); defaults to every TS file')
@click.option('--tsconfig', type=click.Path(), help='tsconfig.json to consult for typed JS')
@click.option('--mode', type=click.Choice(ANALYSIS_MODES), default='exports-only', help='Analysis mode')
@click.option('--format', '-f', 'output_format', type=click.Choice(['text', 'json']), default='text',
              help='Output format')
@click.option('--output', '-o', type=click.Path(), help='Output file for analysis results')
def analyze(repo, paths, tsconfig, mode, output_format, output):
    """List the exports of a source tree."""
    config = _config(repo, paths, tsconfig, mode)
    result = run_analyzer(config)
    snapshot = build_api_snapshot(config) if mode == 'api-snapshot' else None

    if output_format == 'json':
        data = result.to_dict()
        if mode == 'api-snapshot':
            data['api_snapshot'] = snapshot.to_dict() if snapshot is not None else None
        _write_json(data, output)
        return

    table = Table(title="Exports")
    table.add_column("File", style="cyan")
    table.add_column("Symbol", style="bold")
    table.add_column("Kind", style="magenta")
    table.add_column("Export", style="yellow")
    for finding in result.findings:
        table.add_row(finding.file, finding.symbol, finding.kind or '', finding.message)
    console.print(table)

    if snapshot is not None:
        console.print(f"\n🔬 [bold]API snapshot[/bold] ({snapshot.analysis_mode}): "
                      f"{len(snapshot.exports)} export(s), module system {snapshot.module_system}")
        if snapshot.partial:
            console.print(f"[yellow]⚠️  Partial snapshot: {snapshot.failed_shapes} unresolved "
                          f"({', '.join(sorted(snapshot.failed_shape_names)) or 'no type shapes'})[/yellow]")


def _display_regression(result: RegressionResult):
    diff = result.exports_diff
    console.print(f"\n📦 [bold]Exports[/bold]")
    console.print(f"• Added: {', '.join(diff.added) or '-'}")
    console.print(f"• Removed: {', '.join(diff.removed) or '-'}")
    for change in diff.changed:
        console.print(f"• Changed: {change.symbol} ({change.before_kind} -> {change.after_kind})")

    if result.analysis_mode:
        console.print(f"\n🔬 [bold]API analysis[/bold] ({result.analysis_mode})")
    if not result.findings:
        console.print("\n✅ No API changes detected")
        return

    table = Table(title="Findings")
    table.add_column("Severity")
    table.add_column("Rule", style="cyan")
    table.add_column("File")
    table.add_column("Symbol", style="bold")
    table.add_column("Message")
    for finding in result.findings:
        style = SEVERITY_STYLES[finding.severity.value]
        table.add_row(f"[{style}]{finding.severity.value}[/{style}]", finding.rule_id or '-',
                      finding.file, finding.symbol, finding.message)
    console.print(table)

    summary = result.summary
    console.print(f"\n📊 {summary.total} finding(s): {summary.breaking} breaking, "
                  f"{summary.warnings} warning(s), {summary.info} info")
    console.print(f"Risk: {summary.risk_assessment}")


def _report_regression(result: RegressionResult, output_format: str, output: Optional[str],
                       fail_on_breaking: bool):
    if output_format == 'json':
        _write_json(result.to_dict(), output)
    else:
        _display_regression(result)
    if fail_on_breaking and result.has_breaking:
        click.get_current_context().exit(1)


def _regression_options(func):
    options = [
        click.option('--path', 'paths', multiple=True, required=True, help='Entrypoint file (relative to the root)'),
        click.option('--tsconfig', type=click.Path(), help='tsconfig.json to consult for typed JS'),
        click.option('--mode', type=click.Choice(ANALYSIS_MODES), default='api-snapshot', help='Analysis mode'),
        click.option('--rename-tolerance', type=click.Choice(RENAME_TOLERANCES), default='signature',
                     help='How closely a renamed export must match its old shape'),
        click.option('--format', '-f', 'output_format', type=click.Choice(['text', 'json']), default='text',
                     help='Output format'),
        click.option('--output', '-o', type=click.Path(), help='Output file for results'),
        click.option('--fail-on-breaking', is_flag=True, help='Exit with status 1 when a breaking change is found'),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@cli.command()
@click.argument('before_root', type=click.Path(exists=True, file_okay=False))
@click.argument('after_root', type=click.Path(exists=True, file_okay=False))
@_regression_options
def diff(before_root, after_root, paths, tsconfig, mode, rename_tolerance, output_format, output,
         fail_on_breaking):
    """Compare the public API of two checkouts."""
    config = _config(after_root, paths, tsconfig, mode, rename_tolerance)
    result = run_regression(before_root, after_root, config)
    _report_regression(result, output_format, output, fail_on_breaking)


@cli.command('diff-rev')
@click.argument('repo', type=click.Path(exists=True, file_okay=False))
@click.argument('before_rev')
@click.argument('after_rev')
@_regression_options
def diff_rev(repo, before_rev, after_rev, paths, tsconfig, mode, rename_tolerance, output_format, output,
             fail_on_breaking):
    """Compare the public API of two git revisions."""
    config = _config(repo, paths, tsconfig, mode, rename_tolerance)
    with tempfile.TemporaryDirectory(prefix='apiscope-') as workdir:
        try:
            before_root = materialize_revision(repo, before_rev, os.path.join(workdir, 'before'))
            after_root = materialize_revision(repo, after_rev, os.path.join(workdir, 'after'))
        except AnalysisError as e:
            raise click.ClickException(str(e))
        result = run_regression(before_root, after_root, config)
    _report_regression(result, output_format, output, fail_on_breaking)


@cli.command()
@click.argument('repo', type=click.Path(exists=True, file_okay=False))
@click.argument('source_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--symbol', 'symbols', multiple=True, help='Changed symbol (repeatable); omit for heuristic matching')
@click.option('--downstream', is_flag=True, help='Also list files that import the source transitively')
@click.option('--test-pattern', 'test_patterns', multiple=True,
              help='Shell-style test file name pattern (repeatable); defaults to *.test.*, *.spec.*, test_*, *_test.*')
@click.option('--format', '-f', 'output_format', type=click.Choice(['text', 'json']), default='text',
              help='Output format')
def tests(repo, source_file, symbols, downstream, test_patterns, output_format):
    """List test files impacted by a change to SOURCE_FILE."""
    config = AnalysisConfiguration(repo_root=repo)
    if test_patterns:
        config.test_patterns = list(test_patterns)
    repo_root = config.repo_root
    matches = impacted_tests(config, os.path.abspath(source_file), list(symbols))
    importers: List[str] = downstream_files(source_file, repo_root) if downstream else []

    def relative(path):
        return os.path.relpath(path, repo_root).replace(os.sep, '/')

    if output_format == 'json':
        data = {
            'tests': [
                {'file': relative(m.file_path), 'symbols': m.matched_symbols, 'confidence': m.confidence}
                for m in matches
            ],
        }
        if downstream:
            data['downstream'] = [relative(p) for p in importers]
        _write_json(data, None)
        return

    if not matches:
        console.print("[yellow]No impacted test files found[/yellow]")
    for match in matches:
        tag = "[yellow]heuristic[/yellow]" if match.is_heuristic else "[green]ast[/green]"
        used = f" ({', '.join(match.matched_symbols)})" if match.matched_symbols else ""
        console.print(f"🧪 {relative(match.file_path)}{used} {tag}")
    if downstream:
        console.print(f"\n🔗 [bold]Downstream importers[/bold]: {len(importers)}")
        for path in importers:
            console.print(f"  • {relative(path)}")


@cli.command()
@click.argument('file_before', type=click.Path(exists=True, dir_okay=False))
@click.argument('file_after', type=click.Path(exists=True, dir_okay=False))
def changed(file_before, file_after):
    """Show functions and classes that differ between two versions of a file."""
    analyzer = AnalyzerFactory().get_analyzer(file_after)
    if analyzer is None:
        raise click.ClickException(f"Unsupported file type: {file_after}")
    before = read_source(file_before)
    after = read_source(file_after)
    if before is None or after is None:
        raise click.ClickException("Could not read both files")

    elements = analyzer.find_changed_elements(before, after, file_after)
    console.print(f"🔧 Changed functions: {', '.join(elements.changed_functions) or '-'}")
    console.print(f"🏛  Changed classes: {', '.join(elements.changed_classes) or '-'}")


if __name__ == '__main__':
    cli()
