"""
GitHub to content store synchronization.

Mirrors MDX articles and JSON settings files from a GitHub repository into a
SQLite content store, triggered by webhooks or on demand.
"""

from .config import (
    SyncConfig, RepositoryConfig, PathsConfig, WebhookConfig, RetrySettings,
    ArticleStatus, AccessLevel, create_example_config
)

from .error_tracker import (
    SyncException, ConfigurationError, AuthError, SourceFetchError, NotFoundError,
    RateLimitedError, ParseError, StoreError, StoreUnavailableError, ErrorKind, ErrorTracker
)

from .content_parser import (
    ParsedArticle, Heading, parse_article, derive_slug, slugify, validate_article_content
)

from .settings_parser import ParsedSetting, parse_settings

from .store import ContentStore, ArticleRecord, SettingRecord

from .github_client import GitHubClient, RemoteEntry, RemoteFile

from .change_detector import ChangeDetector, WorkItem, ItemKind

from .events import (
    PushEvent, PullRequestEvent, PingEvent, ManualTrigger, UnsupportedEvent, TriggerEvent, parse_event
)

from .orchestrator import SyncOrchestrator, SyncSummary, ItemResult, ItemStatus, run_manual_sync

__all__ = [
    # Configuration
    'SyncConfig',
    'RepositoryConfig',
    'PathsConfig',
    'WebhookConfig',
    'RetrySettings',
    'ArticleStatus',
    'AccessLevel',
    'create_example_config',

    # Errors
    'SyncException',
    'ConfigurationError',
    'AuthError',
    'SourceFetchError',
    'NotFoundError',
    'RateLimitedError',
    'ParseError',
    'StoreError',
    'StoreUnavailableError',
    'ErrorKind',
    'ErrorTracker',

    # Parsing
    'ParsedArticle',
    'Heading',
    'parse_article',
    'derive_slug',
    'slugify',
    'validate_article_content',
    'ParsedSetting',
    'parse_settings',

    # Storage
    'ContentStore',
    'ArticleRecord',
    'SettingRecord',

    # Remote
    'GitHubClient',
    'RemoteEntry',
    'RemoteFile',
    'ChangeDetector',
    'WorkItem',
    'ItemKind',

    # Triggers and orchestration
    'PushEvent',
    'PullRequestEvent',
    'PingEvent',
    'ManualTrigger',
    'UnsupportedEvent',
    'TriggerEvent',
    'parse_event',
    'SyncOrchestrator',
    'SyncSummary',
    'ItemResult',
    'ItemStatus',
    'run_manual_sync',
]
