"""
Workspace — rooted file I/O capability injected into every stage.

All paths are workspace-relative with forward slashes; anything that
resolves outside the root is rejected with :class:`PathEscapeError`.
"""

from __future__ import annotations

import logging
import os
import shutil
from typing import Protocol

from .errors import FileNotFoundInWorkspace, PathEscapeError, WorkspaceError

logger = logging.getLogger(__name__)

SKIP_DIRS = {
    ".git", "node_modules", "__pycache__", "venv", ".venv", "env",
    "dist", "build", ".tox", ".mypy_cache", ".pytest_cache",
    "target", "bin", "obj", ".idea", ".vscode", ".eggs",
    "site-packages", ".next", ".nuxt", "coverage", "htmlcov",
    ".patchwise",
}

SKIP_EXTENSIONS = {
    ".pyc", ".pyo", ".exe", ".dll", ".so", ".dylib", ".o", ".obj",
    ".class", ".jar", ".war", ".zip", ".tar", ".gz", ".bz2",
    ".png", ".jpg", ".jpeg", ".gif", ".ico", ".bmp",
    ".mp3", ".mp4", ".wav", ".avi", ".mov",
    ".pdf", ".woff", ".woff2", ".ttf", ".eot",
    ".db", ".sqlite", ".sqlite3", ".gguf",
}

README_CANDIDATES = ["README.md", "readme.md", "README", "Readme.md", "readme"]

_MAX_LIST_FILES = 5000
_MAX_SEARCH_RESULTS = 50


class Workspace(Protocol):
    """Capabilities the pipeline needs from the user's project."""

    root: str

    def read_file(self, rel_path: str) -> str: ...

    def read_project_file(self, hint: str) -> tuple[str, str]: ...

    def exists(self, rel_path: str) -> bool: ...

    def write_file(self, rel_path: str, content: str) -> None: ...

    def delete_file(self, rel_path: str) -> None: ...

    def list_files(self) -> list[str]: ...

    def search_by_name(self, name_fragment: str) -> list[str]: ...


def normalize_rel_path(path: str) -> str:
    """Strip leading slashes and convert backslashes to forward slashes."""
    return path.replace("\\", "/").strip().lstrip("/")


def is_safe_rel_path(path: str) -> bool:
    n = normalize_rel_path(path)
    if not n or n.startswith("/") or len(n) > 300:
        return False
    return ".." not in n.split("/")


class LocalWorkspace:
    """Workspace backed by a directory on the local disk."""

    def __init__(self, root: str):
        self.root = os.path.abspath(root)

    def _resolve(self, rel_path: str) -> str:
        if not is_safe_rel_path(rel_path):
            raise PathEscapeError(f"Path escapes workspace: {rel_path}")
        abs_path = os.path.abspath(os.path.join(self.root, normalize_rel_path(rel_path)))
        if os.path.commonpath([self.root, abs_path]) != self.root:
            raise PathEscapeError(f"Path escapes workspace: {rel_path}")
        return abs_path

    def exists(self, rel_path: str) -> bool:
        try:
            return os.path.isfile(self._resolve(rel_path))
        except PathEscapeError:
            return False

    def read_file(self, rel_path: str) -> str:
        abs_path = self._resolve(rel_path)
        if not os.path.isfile(abs_path):
            raise FileNotFoundInWorkspace(f"not found: {rel_path}")
        try:
            with open(abs_path, "r", encoding="utf-8", errors="replace", newline="") as f:
                return f.read()
        except OSError as exc:
            raise WorkspaceError(f"read failed for {rel_path}: {exc}") from exc

    def write_file(self, rel_path: str, content: str) -> None:
        """Write *content* atomically via temp file + rename."""
        abs_path = self._resolve(rel_path)
        os.makedirs(os.path.dirname(abs_path), exist_ok=True)
        tmp_path = abs_path + ".patchwise_tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8", newline="") as f:
                f.write(content)
            if os.path.exists(abs_path):
                shutil.move(tmp_path, abs_path)
            else:
                os.rename(tmp_path, abs_path)
        except OSError as exc:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise WorkspaceError(f"write failed for {rel_path}: {exc}") from exc
        logger.debug("[Workspace] wrote %s (%d chars)", rel_path, len(content))

    def delete_file(self, rel_path: str) -> None:
        abs_path = self._resolve(rel_path)
        if not os.path.isfile(abs_path):
            raise FileNotFoundInWorkspace(f"not found: {rel_path}")
        os.unlink(abs_path)
        logger.debug("[Workspace] deleted %s", rel_path)

    def list_files(self) -> list[str]:
        out: list[str] = []
        for root, dirs, files in os.walk(self.root):
            dirs[:] = sorted(d for d in dirs if d not in SKIP_DIRS)
            for name in sorted(files):
                if os.path.splitext(name)[1].lower() in SKIP_EXTENSIONS:
                    continue
                rel = os.path.relpath(os.path.join(root, name), self.root)
                out.append(rel.replace(os.sep, "/"))
                if len(out) >= _MAX_LIST_FILES:
                    return out
        return out

    def search_by_name(self, name_fragment: str) -> list[str]:
        """Relative paths whose filename contains *name_fragment* (case-insensitive)."""
        frag = name_fragment.lower()
        if not frag:
            return []
        hits: list[str] = []
        for rel in self.list_files():
            if frag in rel.rsplit("/", 1)[-1].lower():
                hits.append(rel)
                if len(hits) >= _MAX_SEARCH_RESULTS:
                    break
        return hits

    def read_project_file(self, hint: str) -> tuple[str, str]:
        """Resolve a loose hint ("readme", "src/main.ts") and read it.

        Returns ``(rel_path, content)``; raises :class:`FileNotFoundInWorkspace`.
        """
        normalized = normalize_rel_path(hint)
        if not is_safe_rel_path(normalized):
            raise FileNotFoundInWorkspace(f"not found: {hint}")

        if normalized.lower() in ("readme", "readme.md"):
            candidates = [normalized] + [c for c in README_CANDIDATES if c != normalized]
        elif "/" in normalized or "." in normalized:
            candidates = [normalized]
        else:
            candidates = [normalized, f"{normalized}.md", f"{normalized}.txt"]

        for rel in candidates:
            if self.exists(rel):
                return rel, self.read_file(rel)
        raise FileNotFoundInWorkspace(f"not found: {hint}")
