"""
Tests for the sync orchestrator.

These run the real parser and a real SQLite store in a temporary directory;
only the GitHub side is replaced by MockGitHubClient. The interesting
properties are:

- trigger filtering happens before any remote call
- item failures are isolated and reported, never raised
- redelivering the same event is idempotent
- a dead store or rejected credential aborts the run
"""

import asyncio
import tempfile
from pathlib import Path
from unittest.mock import Mock

import pytest

from ..config import ArticleStatus, RepositoryConfig, SyncConfig
from ..content_parser import parse_article
from ..error_tracker import (
    AuthError, ConfigurationError, ErrorKind, SourceFetchError, StoreError, StoreUnavailableError,
)
from ..events import ManualTrigger, parse_event
from ..orchestrator import ItemStatus, SyncOrchestrator, SyncSummary, print_summary
from ..store import ArticleRecord, ContentStore
from .mock_github_client import MockGitHubClient


HOME = '---\ntitle: "Home"\nstatus: "published"\naccessLevel: "public"\n---\n# Hello\n'

FILES = {
    "contents/index.mdx": HOME,
    "contents/blog/index.mdx": "---\ntitle: Blog\n---\nAll posts",
    "contents/about.mdx": "About us, without front-matter",
    "settings/site.json": '{"name":"X"}',
}

REPOSITORY = {"name": "site", "full_name": "acme/site", "owner": {"login": "acme"}, "default_branch": "main"}


def push_event(added=(), modified=(), removed=(), ref="refs/heads/main", repository=None):
    return parse_event("push", {
        "ref": ref,
        "repository": repository or REPOSITORY,
        "commits": [{"id": "c1", "added": list(added), "modified": list(modified), "removed": list(removed)}],
    })


def pull_request_event(action="closed", merged=True, base="main"):
    return parse_event("pull_request", {
        "action": action,
        "number": 7,
        "pull_request": {"number": 7, "merged": merged, "base": {"ref": base}, "head": {"ref": "feature"}},
        "repository": REPOSITORY,
    })


class TestSyncOrchestrator:
    """Test trigger handling and per-item processing."""

    @pytest.fixture
    def temp_dir(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            yield temp_dir

    @pytest.fixture
    def config(self, temp_dir):
        return SyncConfig(
            name="test",
            repository=RepositoryConfig(owner="acme", name="site", branch="main"),
            database_path=str(Path(temp_dir) / "content.sqlite"),
            max_concurrent_files=2,
        )

    @pytest.fixture
    def store(self, config):
        return ContentStore(config.database_path)

    @pytest.fixture
    def client(self):
        return MockGitHubClient(FILES)

    @pytest.fixture
    def orchestrator(self, config, store, client):
        return SyncOrchestrator(config, store, client)

    @pytest.mark.asyncio
    async def test_push_applies_changed_files(self, orchestrator, store):
        summary = await orchestrator.run(push_event(added=["contents/index.mdx"], modified=["settings/site.json"]))

        assert summary.strategy == "event_diff"
        assert (summary.processed, summary.succeeded, summary.failed, summary.skipped) == (2, 2, 0, 0)
        assert summary.changed_articles == ["index"]
        assert summary.changed_settings == ["site"]

        home = store.get_article("index")
        assert home.title == "Home"
        assert home.status == "published"
        assert home.access_level == "public"
        assert home.body == "# Hello"
        assert home.source_path == "contents/index.mdx"
        assert store.get_setting("site").value == {"name": "X"}

    @pytest.mark.asyncio
    async def test_push_to_other_branch_is_noop(self, orchestrator, client):
        summary = await orchestrator.run(push_event(added=["contents/index.mdx"], ref="refs/heads/feature"))

        assert summary.is_noop
        assert summary.processed == 0
        assert client.call_count == 0

    @pytest.mark.asyncio
    async def test_push_for_other_repository_is_noop(self, orchestrator, client):
        other = dict(REPOSITORY, full_name="someone/else", name="else")
        summary = await orchestrator.run(push_event(added=["contents/index.mdx"], repository=other))

        assert summary.is_noop
        assert client.call_count == 0

    @pytest.mark.asyncio
    async def test_payload_default_branch_wins(self, orchestrator, client):
        repository = dict(REPOSITORY, default_branch="trunk")
        summary = await orchestrator.run(push_event(added=["contents/index.mdx"], ref="refs/heads/trunk", repository=repository))

        assert summary.succeeded == 1
        assert client.refs == ["trunk"]

    @pytest.mark.asyncio
    async def test_ping_and_unsupported_events_are_noops(self, orchestrator, client):
        ping = await orchestrator.run(parse_event("ping", {"zen": "Keep it simple."}))
        issues = await orchestrator.run(parse_event("issues", {"action": "opened"}))

        assert ping.is_noop and issues.is_noop
        assert client.call_count == 0

    @pytest.mark.asyncio
    async def test_partial_failure_is_isolated(self, orchestrator, client, store):
        """One invalid settings file fails alone; the others are stored."""
        client.files["settings/broken.json"] = '{"name": '
        summary = await orchestrator.run(push_event(modified=[
            "contents/index.mdx", "settings/broken.json", "contents/about.mdx",
        ]))

        assert (summary.processed, summary.succeeded, summary.failed) == (3, 2, 1)
        failed = [r for r in summary.results if r.status == ItemStatus.FAILED]
        assert failed[0].path == "settings/broken.json"
        assert failed[0].error_kind == ErrorKind.PARSE
        assert summary.errors["error_count"] == 1
        assert store.get_article("index") is not None
        assert store.get_article("about") is not None

    @pytest.mark.asyncio
    async def test_malformed_front_matter_fails_item(self, orchestrator, client):
        client.files["contents/broken.mdx"] = "---\ntitle: Broken\nno closing fence"
        summary = await orchestrator.run(push_event(modified=["contents/broken.mdx", "contents/index.mdx"]))

        assert summary.succeeded == 1
        assert summary.failed == 1

    @pytest.mark.asyncio
    async def test_fetch_error_fails_item(self, orchestrator, client):
        client.fail("contents/about.mdx", SourceFetchError("GitHub returned 502", source_id="contents/about.mdx"))
        summary = await orchestrator.run(push_event(modified=["contents/about.mdx", "contents/index.mdx"]))

        assert summary.succeeded == 1
        assert summary.results[0].error_kind == ErrorKind.FETCH

    @pytest.mark.asyncio
    async def test_removed_file_is_skipped(self, orchestrator, store):
        store.upsert_article(ArticleRecord(slug="old", title="Old", status="published", source_path="contents/old.mdx"))

        summary = await orchestrator.run(push_event(removed=["contents/old.mdx"]))

        assert (summary.processed, summary.skipped, summary.failed) == (1, 1, 0)
        assert summary.results[0].error_kind == ErrorKind.NOT_FOUND
        assert store.get_article("old").title == "Old"

    @pytest.mark.asyncio
    async def test_redelivery_is_idempotent(self, orchestrator, store):
        event = push_event(added=["contents/index.mdx"])

        await orchestrator.run(event)
        first = store.get_article("index")
        await orchestrator.run(event)
        second = store.get_article("index")

        assert len(store.list_articles()) == 1
        assert second.created_at == first.created_at
        assert second.updated_at >= first.updated_at

    @pytest.mark.asyncio
    async def test_merged_pull_request_runs_full_scan(self, orchestrator, store, client):
        summary = await orchestrator.run(pull_request_event())

        assert summary.strategy == "full_scan"
        assert set(client.refs) == {"main"}
        assert summary.succeeded == 4
        assert sorted(summary.changed_articles) == ["about", "blog", "index"]

        again = await orchestrator.run(pull_request_event())
        assert again.processed == 0

    @pytest.mark.asyncio
    async def test_unmerged_or_foreign_pull_requests_are_noops(self, orchestrator, client):
        for event in (
            pull_request_event(action="opened"),
            pull_request_event(merged=False),
            pull_request_event(base="develop"),
        ):
            summary = await orchestrator.run(event)
            assert summary.is_noop
        assert client.call_count == 0

    @pytest.mark.asyncio
    async def test_manual_force_reprocesses_everything(self, orchestrator):
        await orchestrator.run(ManualTrigger())
        unchanged = await orchestrator.run(ManualTrigger())
        forced = await orchestrator.run(ManualTrigger(force=True))

        assert unchanged.processed == 0
        assert forced.processed == 4

    @pytest.mark.asyncio
    async def test_auth_error_aborts_run(self, orchestrator, client):
        client.fail("contents/index.mdx", AuthError("bad credentials"))

        with pytest.raises(AuthError):
            await orchestrator.run(push_event(modified=["contents/index.mdx", "contents/about.mdx"]))
        assert orchestrator.error_tracker.has_critical_errors()

    @pytest.mark.asyncio
    async def test_unavailable_store_aborts_run(self, config, client):
        store = Mock(spec=ContentStore)
        store.upsert_article.side_effect = StoreUnavailableError("database is gone")
        orchestrator = SyncOrchestrator(config, store, client)

        with pytest.raises(StoreUnavailableError):
            await orchestrator.run(push_event(modified=["contents/index.mdx", "contents/about.mdx", "contents/blog/index.mdx"]))

    @pytest.mark.asyncio
    async def test_missing_token_aborts_run(self, orchestrator, client):
        """A missing credential surfaces on the first fetch and stops the run."""
        client.fail("contents/index.mdx", ConfigurationError("Missing GITHUB_TOKEN environment variable"))

        with pytest.raises(ConfigurationError):
            await orchestrator.run(push_event(modified=["contents/index.mdx"]))
        assert orchestrator.error_tracker.has_critical_errors()

    @pytest.mark.asyncio
    async def test_busy_store_fails_items(self, config, client):
        store = Mock(spec=ContentStore)
        store.upsert_article.side_effect = StoreError("Content store busy: database is locked")
        orchestrator = SyncOrchestrator(config, store, client)

        summary = await orchestrator.run(push_event(modified=["contents/index.mdx", "contents/about.mdx"]))

        assert (summary.processed, summary.failed) == (2, 2)
        assert {r.error_kind for r in summary.results} == {ErrorKind.STORE}

    @pytest.mark.asyncio
    async def test_overlapping_runs_are_serialized(self, orchestrator, store):
        first, second = await asyncio.gather(
            orchestrator.run(push_event(added=["contents/index.mdx"])),
            orchestrator.run(push_event(added=["contents/about.mdx"])),
        )

        assert first.succeeded == second.succeeded == 1
        assert {a.slug for a in store.list_articles()} == {"index", "about"}

    def test_print_summary(self, orchestrator):
        log = Mock()
        print_summary(SyncSummary(trigger="push", strategy="none", reason="not on default branch"), log=log)
        assert any("not on default branch" in c.args[0] for c in log.info.call_args_list)


class TestMapArticle:
    """Test mapping parsed articles to records."""

    @pytest.fixture
    def config(self, tmp_path):
        return SyncConfig(
            name="test",
            repository=RepositoryConfig(owner="acme", name="site"),
            database_path=str(tmp_path / "content.sqlite"),
        )

    def make_orchestrator(self, config):
        return SyncOrchestrator(config, Mock(spec=ContentStore), MockGitHubClient())

    def test_fallbacks(self, config):
        orchestrator = self.make_orchestrator(config)
        record = orchestrator.map_article("contents/guides/getting-started.mdx", parse_article("No metadata here"), "sha")

        assert record.slug == "guides/getting-started"
        assert record.title == "getting-started"
        assert record.description == ""
        assert record.status == ArticleStatus.PUBLISHED.value
        assert record.access_level == "public"
        assert record.fingerprint == "sha"

    def test_front_matter_values(self, config):
        orchestrator = self.make_orchestrator(config)
        parsed = parse_article("---\ntitle: T\ndescription: D\nstatus: draft\naccess_level: premium\n---\nBody")
        record = orchestrator.map_article("contents/t.mdx", parsed)

        assert (record.title, record.description, record.status, record.access_level) == ("T", "D", "draft", "premium")
        assert record.metadata["access_level"] == "premium"

    def test_front_matter_slug_needs_opt_in(self, config):
        parsed = parse_article("---\ntitle: T\nslug: Custom Slug\n---\nBody")

        assert self.make_orchestrator(config).map_article("contents/t.mdx", parsed).slug == "t"

        config.honor_frontmatter_slug = True
        assert self.make_orchestrator(config).map_article("contents/t.mdx", parsed).slug == "custom-slug"

    def test_configured_default_status(self, config):
        config.default_status = ArticleStatus.DRAFT
        record = self.make_orchestrator(config).map_article("contents/t.mdx", parse_article("Body"))
        assert record.status == "draft"
