"""Git revision access for comparing two versions of a repository."""

import logging
import os
from typing import List

from git import Repo
from git.exc import BadName, GitCommandError, InvalidGitRepositoryError, NoSuchPathError

logger = logging.getLogger(__name__)


class AnalysisError(Exception):
    """A repository or revision could not be read."""


def open_repository(repo_path: str) -> Repo:
    try:
        return Repo(repo_path, search_parent_directories=True)
    except (InvalidGitRepositoryError, NoSuchPathError) as e:
        raise AnalysisError(f"Not a git repository: {repo_path}") from e


def materialize_revision(repo_path: str, rev: str, dest: str) -> str:
    """Write the tree of `rev` into `dest` and return the directory.

    Only blobs are written; submodules and symlinks are skipped.
    """
    repo = open_repository(repo_path)
    try:
        commit = repo.commit(rev)
    except (BadName, ValueError, GitCommandError) as e:
        raise AnalysisError(f"Unknown revision {rev!r} in {repo_path}") from e

    os.makedirs(dest, exist_ok=True)
    written = 0
    for item in commit.tree.traverse():
        if item.type != 'blob' or item.mode & 0o170000 == 0o120000:
            continue
        target = os.path.join(dest, *item.path.split('/'))
        os.makedirs(os.path.dirname(target), exist_ok=True)
        with open(target, 'wb') as f:
            f.write(item.data_stream.read())
        written += 1

    logger.info("Materialized %d file(s) of %s at %s", written, commit.hexsha[:12], dest)
    return dest


def changed_files(repo_path: str, before_rev: str, after_rev: str) -> List[str]:
    """Paths touched between two revisions, old and new names included."""
    repo = open_repository(repo_path)
    try:
        before = repo.commit(before_rev)
        after = repo.commit(after_rev)
    except (BadName, ValueError, GitCommandError) as e:
        raise AnalysisError(f"Cannot resolve revisions {before_rev!r}..{after_rev!r}") from e

    paths = set()
    for diff_item in before.diff(after):
        if diff_item.a_path:
            paths.add(diff_item.a_path)
        if diff_item.b_path:
            paths.add(diff_item.b_path)
    return sorted(paths)
