"""
Tests for candidate file resolution.
"""

import pytest

from ..change_detector import ChangeDetector, ItemKind, WorkItem
from ..config import PathsConfig
from ..events import Commit
from .mock_github_client import MockGitHubClient, fingerprint_of


FILES = {
    "contents/index.mdx": "---\ntitle: Home\n---\n# Home",
    "contents/about.mdx": "---\ntitle: About\n---\nAbout us",
    "contents/blog/first-post.mdx": "---\ntitle: First\n---\nHello",
    "contents/blog/notes.txt": "not an article",
    "settings/site.json": '{"name": "X"}',
    "settings/nested/ignored.json": "{}",
    "README.md": "readme",
}


class TestClassify:
    """Test path filtering."""

    @pytest.fixture
    def detector(self):
        return ChangeDetector(MockGitHubClient(), PathsConfig())

    @pytest.mark.parametrize("path,expected", [
        ("contents/index.mdx", ItemKind.ARTICLE),
        ("contents/blog/deep/post.mdx", ItemKind.ARTICLE),
        ("settings/site.json", ItemKind.SETTING),
        ("settings/nested/site.json", None),
        ("contents/notes.md", None),
        ("contents/site.json", None),
        ("docs/readme.mdx", None),
        ("package.json", None),
        ("settings/readme.mdx", None),
    ])
    def test_classify(self, detector, path, expected):
        assert detector.classify(path) == expected

    def test_custom_paths(self):
        detector = ChangeDetector(MockGitHubClient(), PathsConfig(contents_dir="posts/", article_extensions=["md", ".mdx"]))
        assert detector.classify("posts/a.md") == ItemKind.ARTICLE
        assert detector.classify("posts/b.mdx") == ItemKind.ARTICLE
        assert detector.classify("contents/a.mdx") is None


class TestFromCommits:
    """Test event-diff mode."""

    def test_union_is_filtered_and_deduplicated(self):
        client = MockGitHubClient()
        detector = ChangeDetector(client, PathsConfig())
        commits = [
            Commit(added=["contents/new.mdx", "README.md"], modified=["settings/site.json"]),
            Commit(modified=["contents/new.mdx", "contents/about.mdx"], removed=["contents/old.mdx"]),
        ]

        items = detector.from_commits(commits)

        assert items == [
            WorkItem(path="contents/new.mdx", kind=ItemKind.ARTICLE),
            WorkItem(path="settings/site.json", kind=ItemKind.SETTING),
            WorkItem(path="contents/about.mdx", kind=ItemKind.ARTICLE),
            WorkItem(path="contents/old.mdx", kind=ItemKind.ARTICLE),
        ]
        assert client.call_count == 0

    def test_no_matching_files(self):
        detector = ChangeDetector(MockGitHubClient(), PathsConfig())
        assert detector.from_commits([Commit(modified=["src/app.ts"])]) == []


class TestFullScan:
    """Test full-scan mode."""

    @pytest.mark.asyncio
    async def test_lists_all_target_files(self):
        detector = ChangeDetector(MockGitHubClient(FILES), PathsConfig())

        items = await detector.full_scan()

        assert sorted(i.path for i in items) == [
            "contents/about.mdx",
            "contents/blog/first-post.mdx",
            "contents/index.mdx",
            "settings/site.json",
        ]
        assert all(i.remote_fingerprint == fingerprint_of(FILES[i.path]) for i in items)

    @pytest.mark.asyncio
    async def test_unchanged_files_are_skipped(self):
        detector = ChangeDetector(MockGitHubClient(FILES), PathsConfig())
        local = {
            "contents/index.mdx": fingerprint_of(FILES["contents/index.mdx"]),
            "contents/about.mdx": "stale-sha",
            "settings/site.json": fingerprint_of(FILES["settings/site.json"]),
        }

        items = await detector.full_scan(local)

        assert sorted(i.path for i in items) == ["contents/about.mdx", "contents/blog/first-post.mdx"]

    @pytest.mark.asyncio
    async def test_missing_directory_is_empty(self):
        detector = ChangeDetector(MockGitHubClient({"contents/index.mdx": "# Home"}), PathsConfig())

        items = await detector.full_scan()

        assert [i.path for i in items] == ["contents/index.mdx"]
