"""Analysis configuration and tsconfig loading."""

import json
import logging
import os
import posixpath
import re
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger(__name__)

ANALYSIS_MODES = ('exports-only', 'api-snapshot')
RENAME_TOLERANCES = ('exact', 'signature', 'arity')

DEFAULT_IGNORE_DIRS = ['node_modules', '.git', 'dist', 'build', 'out', '.vscode']
# Shell-style patterns matched against test file names
DEFAULT_TEST_PATTERNS = ['*.test.*', '*.spec.*', 'test_*', '*_test.*']


@dataclass
class AnalysisConfiguration:
    """Configuration for a single analysis run."""
    repo_root: str = "."
    paths: List[str] = field(default_factory=list)
    tsconfig: Optional[str] = None
    mode: str = "exports-only"
    rename_tolerance: str = "signature"
    ignore_dirs: List[str] = field(default_factory=lambda: list(DEFAULT_IGNORE_DIRS))
    test_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_TEST_PATTERNS))

    def __post_init__(self):
        if self.mode not in ANALYSIS_MODES:
            raise ValueError(f"Unknown analysis mode: {self.mode}")
        if self.rename_tolerance not in RENAME_TOLERANCES:
            raise ValueError(f"Unknown rename tolerance: {self.rename_tolerance}")
        self.repo_root = os.path.abspath(self.repo_root)

    def with_root(self, repo_root: str) -> "AnalysisConfiguration":
        return AnalysisConfiguration(
            repo_root=repo_root,
            paths=list(self.paths),
            tsconfig=self.tsconfig,
            mode=self.mode,
            rename_tolerance=self.rename_tolerance,
            ignore_dirs=list(self.ignore_dirs),
            test_patterns=list(self.test_patterns)
        )


@dataclass
class TsConfig:
    """The compiler options that decide whether JS files are type-checked."""
    path: str
    allow_js: bool = False
    check_js: bool = False
    include: List[str] = field(default_factory=list)
    exclude: List[str] = field(default_factory=list)

    @property
    def base_dir(self) -> str:
        return os.path.dirname(self.path)


def _strip_jsonc(text: str) -> str:
    """Remove comments and trailing commas, leaving string contents intact."""
    pattern = re.compile(r'("(?:\\.|[^"\\])*")|//[^\n]*|/\*.*?\*/', re.DOTALL)
    text = pattern.sub(lambda m: m.group(1) or '', text)
    return re.sub(r',(\s*[}\]])', r'\1', text)


def _read_tsconfig_json(path: str) -> Optional[dict]:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.loads(_strip_jsonc(f.read()))
    except (OSError, UnicodeDecodeError, ValueError) as e:
        logger.warning("Cannot read tsconfig %s: %s", path, e)
        return None


def load_tsconfig(path: str) -> Optional[TsConfig]:
    """Load a tsconfig.json; missing or malformed files yield None."""
    if not os.path.isfile(path):
        return None

    raw = _read_tsconfig_json(path)
    if not isinstance(raw, dict):
        return None

    options = {}
    include = None
    exclude = None

    # A single level of `extends` covers the usual shared-base setup
    base_ref = raw.get('extends')
    if isinstance(base_ref, str) and base_ref.startswith('.'):
        base_path = os.path.normpath(os.path.join(os.path.dirname(path), base_ref))
        if not base_path.endswith('.json'):
            base_path += '.json'
        base = _read_tsconfig_json(base_path) if os.path.isfile(base_path) else None
        if isinstance(base, dict):
            options.update(base.get('compilerOptions') or {})
            include = base.get('include')
            exclude = base.get('exclude')

    options.update(raw.get('compilerOptions') or {})
    include = raw.get('include', include)
    exclude = raw.get('exclude', exclude)

    return TsConfig(
        path=os.path.abspath(path),
        allow_js=bool(options.get('allowJs', False)),
        check_js=bool(options.get('checkJs', False)),
        include=[p for p in include or [] if isinstance(p, str)],
        exclude=[p for p in exclude or [] if isinstance(p, str)]
    )


def _glob_regex(pattern: str) -> "re.Pattern":
    """Translate a tsconfig include/exclude glob into a regex over relative POSIX paths.

    `*` and `?` stay within one path segment and `**/` spans any number of
    directories. A last segment without wildcards or an extension names a
    directory and covers everything below it.
    """
    parts = [p for p in posixpath.normpath(pattern.replace('\\', '/')).split('/') if p not in ('', '.')]
    directory = not parts or parts[-1] == '**' or not re.search(r'[*?.]', parts[-1])
    if parts and parts[-1] == '**':
        parts.pop()

    regex = ''
    for i, part in enumerate(parts):
        if part == '**':
            regex += '(?:[^/]+/)*'
            continue
        regex += ''.join('[^/]*' if c == '*' else '[^/]' if c == '?' else re.escape(c) for c in part)
        if i < len(parts) - 1:
            regex += '/'
    if directory:
        regex = regex + '(?:/.*)?' if regex else '.*'
    return re.compile(regex + r'\Z')


def _matches_pattern(file_path: str, pattern: str, base_dir: str) -> bool:
    relative = posixpath.normpath(os.path.relpath(file_path, base_dir).replace(os.sep, '/'))
    return bool(_glob_regex(pattern).match(relative))


def resolve_tsconfig_path(repo_root: str, tsconfig: Optional[str] = None) -> str:
    if tsconfig:
        return tsconfig if os.path.isabs(tsconfig) else os.path.join(repo_root, tsconfig)
    return os.path.join(repo_root, 'tsconfig.json')


def is_typed_js_enabled(file_path: str, repo_root: str, tsconfig: Optional[str] = None) -> bool:
    """True when tsconfig enables allowJs and checkJs and covers `file_path`."""
    config = load_tsconfig(resolve_tsconfig_path(repo_root, tsconfig))
    if config is None or not (config.allow_js and config.check_js):
        return False

    absolute = file_path if os.path.isabs(file_path) else os.path.join(repo_root, file_path)
    absolute = os.path.normpath(absolute)

    if config.include and not any(_matches_pattern(absolute, p, config.base_dir) for p in config.include):
        return False
    if any(_matches_pattern(absolute, p, config.base_dir) for p in config.exclude):
        return False
    return True
