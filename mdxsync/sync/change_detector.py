"""
Resolution of the files a sync run has to (re)process.

Two strategies:

1. Event diff: the union of added, modified and removed paths across the
   commits of a push, filtered and deduplicated. Trusts the event's flat
   file list and performs no network calls.
2. Full scan: recursive listing of the contents directory plus the
   settings directory, keeping files whose remote fingerprint differs from
   the locally stored one (or every file when no fingerprints are given).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional

from .config import PathsConfig
from .error_tracker import NotFoundError
from .logging_manager import get_logger


class ItemKind(str, Enum):
    ARTICLE = "article"
    SETTING = "setting"


@dataclass(frozen=True)
class WorkItem:
    """A candidate file, consumed once by the orchestrator."""
    path: str
    kind: ItemKind
    remote_fingerprint: Optional[str] = None


class ChangeDetector:
    def __init__(self, client, paths: PathsConfig):
        self.client = client
        self.paths = paths
        self.logger = get_logger(__name__)

    def classify(self, path: str) -> Optional[ItemKind]:
        """
        Articles may sit at any depth below the contents directory; settings
        must be direct children of the settings directory. Anything else is
        not synced.
        """
        path = path.strip('/')
        contents_prefix = self.paths.contents_dir + '/'
        settings_prefix = self.paths.settings_dir + '/'

        if path.startswith(contents_prefix) and any(path.endswith(ext) for ext in self.paths.article_extensions):
            if len(path) > len(contents_prefix):
                return ItemKind.ARTICLE
        if path.startswith(settings_prefix) and path.endswith(self.paths.settings_extension):
            name = path[len(settings_prefix):]
            if name and '/' not in name:
                return ItemKind.SETTING
        return None

    def from_paths(self, paths: Iterable[str]) -> List[WorkItem]:
        """Filter and deduplicate paths, keeping first-seen order."""
        seen = set()
        items: List[WorkItem] = []
        for path in paths:
            kind = self.classify(path)
            if kind is None or path in seen:
                continue
            seen.add(path)
            items.append(WorkItem(path=path, kind=kind))
        return items

    def from_commits(self, commits) -> List[WorkItem]:
        """
        Work items for the files touched by a list of commits.

        Removed paths are included: the orchestrator finds them missing on
        the remote and reports them as skipped.
        """
        touched: List[str] = []
        for commit in commits:
            touched.extend(commit.added)
            touched.extend(commit.modified)
            touched.extend(commit.removed)
        items = self.from_paths(touched)
        self.logger.info(f"Event diff resolved {len(items)} candidate files from {len(touched)} touched paths",
                         extra={'details': {'candidates': [i.path for i in items]}})
        return items

    async def full_scan(self, local_fingerprints: Optional[Dict[str, str]] = None,
                        ref: Optional[str] = None) -> List[WorkItem]:
        """
        List the remote target directories and return the files that need
        processing. With ``local_fingerprints`` only changed or unknown files
        are returned. ``ref`` selects the branch, defaulting to the
        configured one.
        """
        entries = []
        entries.extend(await self._list(self.paths.contents_dir, recursive=True, ref=ref))
        entries.extend(await self._list(self.paths.settings_dir, recursive=False, ref=ref))

        items: List[WorkItem] = []
        unchanged = 0
        for entry in entries:
            kind = self.classify(entry.path)
            if kind is None:
                continue
            if local_fingerprints is not None and entry.fingerprint is not None \
                    and local_fingerprints.get(entry.path) == entry.fingerprint:
                unchanged += 1
                continue
            items.append(WorkItem(path=entry.path, kind=kind, remote_fingerprint=entry.fingerprint))

        self.logger.info(f"Full scan found {len(items)} files to process ({unchanged} unchanged)",
                         extra={'details': {'listed': len(entries), 'unchanged': unchanged}})
        return items

    async def _list(self, directory: str, recursive: bool, ref: Optional[str] = None):
        try:
            return await self.client.list_tree(directory, recursive=recursive, ref=ref)
        except NotFoundError:
            self.logger.warning(f"Directory {directory} not found in repository, skipping")
            return []
