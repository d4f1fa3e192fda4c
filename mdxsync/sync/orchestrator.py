"""
Sync orchestration: from a trigger to upserted records.

One invocation walks through:
1. Filter the trigger (branch, repository, event type); filtered triggers
   return a no-op summary without touching the network.
2. Resolve candidate files with the ChangeDetector (event diff for pushes,
   full scan for merged pull requests and manual runs).
3. Fetch, parse, map and upsert every candidate with bounded parallelism.
   Each item ends as an ItemResult (applied, skipped or failed); item
   failures are recorded and never stop the batch.
4. Report a SyncSummary.

Invocations on one orchestrator are serialized through a lock, giving a
single global work queue. Across processes the last committed upsert wins.
Only a rejected or missing credential or an unreachable store aborts a run.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .change_detector import ChangeDetector, ItemKind, WorkItem
from .config import SyncConfig
from .content_parser import (
    ACCESS_LEVEL_VALUES, ParsedArticle, default_title, derive_slug, parse_article, slugify,
)
from .error_tracker import (
    AuthError, ConfigurationError, ErrorKind, ErrorSeverity, ErrorTracker, NotFoundError, ParseError,
    SourceFetchError, StoreError, StoreUnavailableError,
)
from .events import (
    ManualTrigger, PingEvent, PullRequestEvent, PushEvent, TriggerEvent, UnsupportedEvent,
)
from .github_client import GitHubClient
from .logging_manager import LoggingManager
from .settings_parser import parse_settings
from .store import ArticleRecord, ContentStore, SettingRecord

logger = LoggingManager.get_logger(__name__)


class ItemStatus(str, Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ItemResult:
    """Outcome of processing one work item."""
    path: str
    kind: ItemKind
    status: ItemStatus
    key: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    processing_time: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'path': self.path,
            'kind': self.kind.value,
            'status': self.status.value,
            'key': self.key,
            'error_kind': self.error_kind.value if self.error_kind else None,
            'error_message': self.error_message,
        }


@dataclass
class SyncSummary:
    """Summary of one sync invocation."""
    trigger: str
    strategy: str  # event_diff, full_scan, none
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    changed_articles: List[str] = field(default_factory=list)
    changed_settings: List[str] = field(default_factory=list)
    results: List[ItemResult] = field(default_factory=list)
    errors: Dict[str, Any] = field(default_factory=dict)
    processing_time: float = 0.0
    reason: Optional[str] = None

    @property
    def is_noop(self) -> bool:
        return self.reason is not None

    @property
    def changed(self) -> List[str]:
        return self.changed_articles + self.changed_settings

    def to_dict(self) -> Dict[str, Any]:
        return {
            'trigger': self.trigger,
            'strategy': self.strategy,
            'processed': self.processed,
            'succeeded': self.succeeded,
            'failed': self.failed,
            'skipped': self.skipped,
            'changed': {'articles': self.changed_articles, 'settings': self.changed_settings},
            'results': [r.to_dict() for r in self.results],
            'errors': self.errors,
            'processing_time': round(self.processing_time, 3),
            'reason': self.reason,
        }


class SyncOrchestrator:
    """
    Coordinates change detection, fetching, parsing and storing.

    The remote client and the store are constructed by the caller and
    passed in; the orchestrator is the only writer to the store.
    """

    def __init__(self, config: SyncConfig, store: ContentStore, client):
        self.config = config
        self.store = store
        self.client = client
        self.detector = ChangeDetector(client, config.paths)
        self.logging_manager = LoggingManager(log_level=config.log_level, log_file=config.log_file)
        self.logger = self.logging_manager.get_logger(__name__)
        self.error_tracker = ErrorTracker()
        self._lock = asyncio.Lock()

    def default_branch(self, trigger: TriggerEvent) -> str:
        """Branch a trigger is filtered against; listings and fetches read from it too."""
        repository = getattr(trigger, 'repository', None)
        if repository is not None and repository.default_branch:
            return repository.default_branch
        return self.config.repository.branch

    def should_sync(self, trigger: TriggerEvent) -> Optional[str]:
        """
        Return None when the trigger should run, otherwise the reason it is
        ignored.
        """
        if isinstance(trigger, ManualTrigger):
            return None
        if isinstance(trigger, PingEvent):
            return "ping events do not trigger a sync"
        if isinstance(trigger, UnsupportedEvent):
            return f"event '{trigger.event_name}' is not handled"

        repo = self.config.repository
        if not trigger.repository.matches(repo.owner, repo.name):
            return f"event is for repository {trigger.repository.full_name or trigger.repository.name}, not {repo.full_name}"

        branch = self.default_branch(trigger)
        if isinstance(trigger, PushEvent):
            if trigger.ref != f"refs/heads/{branch}":
                return f"push to {trigger.ref} is not on the default branch {branch}"
            return None
        if isinstance(trigger, PullRequestEvent):
            if trigger.action != "closed":
                return f"pull request action '{trigger.action}' is not a merge"
            if not trigger.pull_request.merged:
                return "pull request was closed without merging"
            if trigger.pull_request.base.ref != branch:
                return f"pull request targets {trigger.pull_request.base.ref}, not the default branch {branch}"
            return None
        return f"unknown trigger {type(trigger).__name__}"

    async def run(self, trigger: TriggerEvent) -> SyncSummary:
        """
        Run one sync invocation. Raises AuthError, ConfigurationError or
        StoreUnavailableError when the run had to be aborted, and
        SourceFetchError when the candidate files could not be listed.
        """
        reason = self.should_sync(trigger)
        if reason is not None:
            self.logger.info(f"Sync skipped: {reason}", extra={'details': {'trigger': trigger.kind}})
            return SyncSummary(trigger=trigger.kind, strategy='none', reason=reason)

        async with self._lock:
            return await self._run_locked(trigger)

    async def _run_locked(self, trigger: TriggerEvent) -> SyncSummary:
        start_time = time.time()
        self.error_tracker = ErrorTracker()
        branch = self.default_branch(trigger)

        self.logger.info(f"Starting sync for {trigger.kind} trigger", extra={'details': {'repository': self.config.repository.full_name, 'branch': branch}})

        try:
            if isinstance(trigger, PushEvent):
                strategy = 'event_diff'
                items = self.detector.from_commits(trigger.commits)
            else:
                strategy = 'full_scan'
                fingerprints = None
                if not (isinstance(trigger, ManualTrigger) and trigger.force):
                    fingerprints = await asyncio.to_thread(self.store.get_fingerprints)
                items = await self.detector.full_scan(fingerprints, ref=branch)
        except (SourceFetchError, AuthError, ConfigurationError, StoreError) as e:
            self.error_tracker.report_exception(e, severity=ErrorSeverity.CRITICAL)
            self.logger.error(f"Could not resolve candidate files: {e.message}", extra={'details': {'trigger': trigger.kind}})
            raise

        results = await self._process_items(items, branch)

        summary = self._generate_summary(trigger.kind, strategy, results, time.time() - start_time)
        self.logger.info(
            f"Sync finished: {summary.succeeded} applied, {summary.failed} failed, {summary.skipped} skipped",
            extra={'details': {'trigger': trigger.kind, 'processing_time': summary.processing_time}},
        )
        return summary

    async def _process_items(self, items: List[WorkItem], ref: Optional[str] = None) -> List[ItemResult]:
        if not items:
            return []

        semaphore = asyncio.Semaphore(self.config.max_concurrent_files)

        async def worker(item: WorkItem) -> ItemResult:
            async with semaphore:
                return await self._process_item(item, ref)

        tasks = [asyncio.create_task(worker(item)) for item in items]
        results: List[ItemResult] = []
        try:
            for future in asyncio.as_completed(tasks):
                results.append(await future)
        except (AuthError, ConfigurationError, StoreUnavailableError) as e:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self.error_tracker.report_exception(e, severity=ErrorSeverity.CRITICAL)
            self.logger.error(f"Sync aborted: {e.message}", extra={'details': {'error_type': type(e).__name__}})
            raise

        order = {item.path: index for index, item in enumerate(items)}
        results.sort(key=lambda r: order[r.path])
        return results

    async def _process_item(self, item: WorkItem, ref: Optional[str] = None) -> ItemResult:
        """Fetch, parse and store one file. Only escalating errors propagate."""
        start_time = time.time()
        try:
            remote = await self.client.fetch_file(item.path, ref=ref)
            fingerprint = remote.fingerprint or item.remote_fingerprint

            if item.kind == ItemKind.ARTICLE:
                parsed = parse_article(remote.content, source_id=item.path)
                record = self.map_article(item.path, parsed, fingerprint)
                stored = await asyncio.to_thread(self.store.upsert_article, record)
                key = stored.slug
            else:
                setting = parse_settings(item.path, remote.content)
                record = SettingRecord(key=setting.key, value=setting.value,
                                       source_path=item.path, fingerprint=fingerprint)
                await asyncio.to_thread(self.store.upsert_setting, record)
                key = setting.key

            self.logger.info(f"Applied {item.kind.value} {key}", extra={'details': {'path': item.path}})
            return ItemResult(path=item.path, kind=item.kind, status=ItemStatus.APPLIED, key=key,
                              processing_time=time.time() - start_time)

        except NotFoundError as e:
            return self.handle_missing_file(item, e, ref)
        except (AuthError, ConfigurationError, StoreUnavailableError):
            raise
        except (SourceFetchError, ParseError, StoreError) as e:
            self.error_tracker.report_exception(e)
            self.logger.warning(f"Failed to sync {item.path}: {e.message}", extra={'details': {'error_kind': e.kind.value}})
            return ItemResult(path=item.path, kind=item.kind, status=ItemStatus.FAILED, error_kind=e.kind,
                              error_message=e.message, processing_time=time.time() - start_time)
        except Exception as e:
            self.error_tracker.report(f"Unexpected error syncing {item.path}: {e}", source_id=item.path,
                                      details={'exception': type(e).__name__})
            self.logger.error(f"Unexpected error syncing {item.path}", exc_info=True)
            return ItemResult(path=item.path, kind=item.kind, status=ItemStatus.FAILED, error_kind=ErrorKind.INTERNAL,
                              error_message=str(e), processing_time=time.time() - start_time)

    def handle_missing_file(self, item: WorkItem, error: NotFoundError, ref: Optional[str] = None) -> ItemResult:
        """
        A candidate no longer exists on the remote branch. The stored record
        is left in place; override to add deletion semantics.
        """
        self.error_tracker.report(f"{item.path} not found on {ref or self.config.repository.branch}, record left unchanged",
                                  source_id=item.path, severity=ErrorSeverity.WARNING)
        self.logger.info(f"Skipping missing file {item.path}")
        return ItemResult(path=item.path, kind=item.kind, status=ItemStatus.SKIPPED,
                          error_kind=ErrorKind.NOT_FOUND, error_message=error.message)

    def map_article(self, path: str, parsed: ParsedArticle, fingerprint: Optional[str] = None) -> ArticleRecord:
        metadata = parsed.metadata
        slug = derive_slug(path, self.config.paths.contents_dir, self.config.paths.article_extensions)
        if self.config.honor_frontmatter_slug and metadata.get('slug'):
            slug = slugify(metadata['slug']) or slug

        access_level = metadata.get('accessLevel')
        if access_level is None and metadata.get('access_level') in ACCESS_LEVEL_VALUES:
            access_level = metadata['access_level']

        return ArticleRecord(
            slug=slug,
            title=metadata.get('title') or default_title(path),
            description=metadata.get('description', ''),
            body=parsed.body,
            metadata=metadata,
            status=metadata.get('status') or self.config.default_status.value,
            access_level=access_level or 'public',
            source_path=path,
            fingerprint=fingerprint,
        )

    def _generate_summary(self, trigger: str, strategy: str, results: List[ItemResult], processing_time: float) -> SyncSummary:
        return SyncSummary(
            trigger=trigger,
            strategy=strategy,
            processed=len(results),
            succeeded=len([r for r in results if r.status == ItemStatus.APPLIED]),
            failed=len([r for r in results if r.status == ItemStatus.FAILED]),
            skipped=len([r for r in results if r.status == ItemStatus.SKIPPED]),
            changed_articles=[r.key for r in results if r.status == ItemStatus.APPLIED and r.kind == ItemKind.ARTICLE],
            changed_settings=[r.key for r in results if r.status == ItemStatus.APPLIED and r.kind == ItemKind.SETTING],
            results=results,
            errors=self.error_tracker.generate_report(),
            processing_time=processing_time,
        )


def print_summary(summary: SyncSummary, log=None):
    """Log a sync summary in a readable block."""
    log = log or logger
    log.info("=" * 60)
    log.info("SYNC SUMMARY")
    log.info("=" * 60)
    log.info(f"Trigger: {summary.trigger} ({summary.strategy})")
    if summary.reason:
        log.info(f"No-op: {summary.reason}")
        return
    log.info(f"Processed: {summary.processed}")
    log.info(f"Applied: {summary.succeeded}")
    log.info(f"Failed: {summary.failed}")
    log.info(f"Skipped: {summary.skipped}")
    log.info(f"Processing Time: {summary.processing_time:.2f}s")

    for result in summary.results:
        log.info(f"  [{result.status.value}] {result.path}" + (f" -> {result.key}" if result.key else ""))
        if result.error_message:
            log.info(f"     Error: {result.error_message}")


async def run_manual_sync(config: SyncConfig, force: bool = False) -> SyncSummary:
    """Full-scan sync with a client and store built from config."""
    store = ContentStore(config.database_path)
    async with GitHubClient(config) as client:
        orchestrator = SyncOrchestrator(config, store, client)
        return await orchestrator.run(ManualTrigger(force=force))
