"""
Documentation cache sync.

Secondary metadata kept next to the records: a set of reference documents
copied into ``.ibex/docs/``. Sources are project-relative paths or http(s)
URLs. This runs as its own sync phase and never touches record data.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from ibex.core.paths import docs_dir
from ibex.core.records.storage import atomic_write

logger = logging.getLogger(__name__)


class DocCacheError(Exception):
    """Raised when the doc cache configuration is unusable."""

    pass


@dataclass
class DocSyncResult:
    """Outcome of a doc cache sync."""

    added: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class DocCache:
    """
    Keeps ``.ibex/docs/`` in step with the configured sources.

    Example:
        >>> cache = DocCache(project_dir, {"guide.md": "docs/guide.md"})
        >>> result = cache.sync()
        >>> result.added
        ['guide.md']
    """

    def __init__(self, project_dir: Path, files: dict[str, str], timeout: float = 30.0):
        self.project_dir = project_dir
        self.root = docs_dir(project_dir)
        self.files = files
        self.timeout = timeout

    def _destination(self, name: str) -> Path:
        dest = (self.root / name).resolve()
        if self.root.resolve() not in dest.parents:
            raise DocCacheError(f"Doc destination escapes the cache directory: {name}")
        return dest

    def _read_source(self, source: str) -> str:
        if source.startswith(("http://", "https://")):
            response = httpx.get(source, timeout=self.timeout, follow_redirects=True)
            response.raise_for_status()
            return response.text
        return (self.project_dir / source).read_text(encoding="utf-8")

    def sync(self, dry_run: bool = False) -> DocSyncResult:
        """Fetch every configured doc and drop cached docs no longer configured."""
        result = DocSyncResult()
        wanted: set[Path] = set()

        for name, source in sorted(self.files.items()):
            try:
                dest = self._destination(name)
                content = self._read_source(source)
            except (OSError, UnicodeDecodeError, httpx.HTTPError, DocCacheError) as e:
                logger.warning("Doc cache: cannot read %s from %s: %s", name, source, e)
                result.errors.append(f"{name}: {e}")
                # keep whatever copy is cached
                wanted.add(self.root.resolve() / name)
                continue
            wanted.add(dest)
            if dest.exists():
                if dest.read_bytes() == content.encode("utf-8"):
                    result.unchanged.append(name)
                    continue
                result.updated.append(name)
            else:
                result.added.append(name)
            if not dry_run:
                atomic_write(dest, content)

        if self.root.exists():
            for path in sorted(self.root.rglob("*")):
                if path.is_file() and path.resolve() not in wanted:
                    result.removed.append(path.relative_to(self.root).as_posix())
                    if not dry_run:
                        path.unlink()
        return result
