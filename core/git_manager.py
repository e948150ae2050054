# core/git_manager.py
import shutil
import uuid
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse, urlsplit

import git
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError
from loguru import logger

from core.errors import SourceFetchFailed

ROOT_DESCRIPTORS = ("Dockerfile", "dockerfile", "Dockerfile.dockerfile")


def repository_slug(repo_url: str) -> str:
    """``https://github.com/org/app.git`` -> ``org-app``."""
    path = urlparse(repo_url).path or repo_url
    path = path.strip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    slug = path.replace("/", "-").replace(":", "-")
    return slug or "repository"


def normalize_repository_url(url: str) -> str:
    """Reduce a clone URL to ``host/owner/repo`` for comparison.

    ``https://GitHub.com/Org/App.git/``, ``http://github.com/org/app`` and
    ``git@github.com:org/app.git`` all normalise to ``github.com/org/app``.
    """
    url = (url or "").strip()
    if "://" not in url and "@" in url and ":" in url:
        # scp-like syntax: git@host:owner/repo.git
        user_host, _, path = url.partition(":")
        host = user_host.rsplit("@", 1)[-1]
    else:
        parts = urlsplit(url)
        host = parts.hostname or ""
        if parts.port:
            host = f"{host}:{parts.port}"
        path = parts.path
    path = path.strip("/")
    if path.lower().endswith(".git"):
        path = path[: -len(".git")]
    path = path.rstrip("/")
    return f"{host}/{path}".lower() if host else path.lower()


class GitManager:
    """Source-fetcher collaborator: shallow clones into throwaway checkouts."""

    def __init__(self, base_path: str = "/tmp/repos"):
        self.base_path = str(base_path).rstrip("/")
        Path(self.base_path).mkdir(parents=True, exist_ok=True)

    def checkout_path(self, repo_url: str) -> str:
        return f"{self.base_path}/{repository_slug(repo_url)}/{uuid.uuid4().hex}"

    def fetch_source(
        self, repo_url: str, branch: str = "main", dest: Optional[str] = None
    ) -> str:
        dest = dest or self.checkout_path(repo_url)
        logger.info(f"Cloning {repo_url}@{branch} into {dest}")
        try:
            git.Repo.clone_from(repo_url, dest, branch=branch, depth=1)
        except GitCommandError as e:
            self.cleanup(dest)
            raise SourceFetchFailed(
                f"git clone failed: {e.stderr.strip() if e.stderr else e}",
                {"repository": repo_url, "branch": branch},
            )
        return dest

    def locate_build_descriptor(self, path: str) -> Optional[str]:
        """Find the Dockerfile: exact root names first, then a sorted recursive search."""
        root = Path(path)
        for name in ROOT_DESCRIPTORS:
            candidate = root / name
            if candidate.is_file():
                return str(candidate)

        nested: List[Path] = sorted(
            p
            for p in root.rglob("Dockerfile*")
            if p.is_file() and ".git" not in p.relative_to(root).parts
        )
        if nested:
            return str(nested[0])
        return None

    def latest_revision(self, path: str) -> str:
        try:
            repo = git.Repo(path)
            return repo.head.commit.hexsha
        except (InvalidGitRepositoryError, NoSuchPathError, ValueError) as e:
            raise SourceFetchFailed(
                f"Could not resolve latest revision: {e}", {"path": path}
            )

    def cleanup(self, path: str) -> None:
        p = Path(path)
        if p.exists():
            shutil.rmtree(path, ignore_errors=True)
            logger.debug(f"Cleaned up checkout {path}")
