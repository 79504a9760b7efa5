from datetime import datetime, timedelta

import pytest

from artycleaner.client import ArtifactoryError
from artycleaner.config import Args, Config
from artycleaner.models import (
    FileInfo,
    FileStats,
    FolderEntry,
    PackageType,
    RepositoryInfo,
)
from artycleaner.utils import true_utcnow


def days_ago(days: float) -> datetime:
    return true_utcnow() - timedelta(days=days)


class FakeArtifactory:
    """In-memory stand-in for ArtifactoryClient used by the cleaner tests."""

    def __init__(self) -> None:
        self.repos: dict[str, str] = {}
        self.folders: dict[tuple[str, str], list[FolderEntry]] = {}
        self.stats: dict[tuple[str, str], FileStats] = {}
        self.infos: dict[tuple[str, str], FileInfo] = {}
        self.files: dict[str, dict[str, datetime]] = {}
        self.failing: set[tuple[str, str]] = set()
        self.deleted: list[tuple[str, str]] = []
        self.delete_calls: list[tuple[str, str]] = []
        self.closed = False

    def add_docker_tag(
        self,
        repo: str,
        image: str,
        tag: str,
        last_downloaded: datetime | None = None,
        created: datetime | None = None,
        last_modified: datetime | None = None,
    ) -> None:
        self.repos.setdefault(repo, "docker")
        images = self.folders.setdefault((repo, ""), [])
        if not any(e.name == image for e in images):
            images.append(FolderEntry(name=image, is_folder=True))
        self.folders.setdefault((repo, image), []).append(FolderEntry(name=tag, is_folder=True))
        manifest = f"{image}/{tag}/manifest.json"
        self.stats[(repo, manifest)] = FileStats(last_downloaded=last_downloaded)
        self.infos[(repo, manifest)] = FileInfo(created=created, last_modified=last_modified)

    def add_file(self, repo: str, path: str, last_modified: datetime) -> None:
        self.repos.setdefault(repo, "generic")
        self.files.setdefault(repo, {})[path] = last_modified

    async def __aenter__(self) -> "FakeArtifactory":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.closed = True

    async def lookup_repository(self, key: str) -> RepositoryInfo:
        if key not in self.repos:
            raise ArtifactoryError(f"Repository {key} not found", status_code=404)
        raw = self.repos[key]
        return RepositoryInfo(key=key, package_type=PackageType.from_api(raw), raw_package_type=raw)

    async def list_folder(self, repo_key: str, path: str = "") -> list[FolderEntry]:
        if (repo_key, path) not in self.folders:
            raise ArtifactoryError(f"{repo_key}/{path} not found", status_code=404)
        return self.folders[(repo_key, path)]

    async def stat_file(self, repo_key: str, path: str) -> FileStats:
        if (repo_key, path) not in self.stats:
            raise ArtifactoryError(f"{repo_key}/{path} not found", status_code=404)
        return self.stats[(repo_key, path)]

    async def file_info(self, repo_key: str, path: str) -> FileInfo:
        return self.infos[(repo_key, path)]

    async def search_unused(self, repo_key: str, not_used_since: datetime | None) -> list[str]:
        if not_used_since is None:
            return []
        return [
            path
            for path, last_modified in self.files.get(repo_key, {}).items()
            if last_modified < not_used_since
        ]

    async def delete_file(self, repo_key: str, path: str) -> None:
        self.delete_calls.append((repo_key, path))
        if (repo_key, path) in self.failing:
            raise ArtifactoryError(f"DELETE {repo_key}/{path} failed. code: 500", status_code=500)
        self.deleted.append((repo_key, path))


@pytest.fixture
def fake_artifactory() -> FakeArtifactory:
    return FakeArtifactory()


@pytest.fixture
def make_config():
    def _make(repos: dict, defaults: dict | None = None, dryrun: bool = False) -> Config:
        return Config.from_dict(
            {
                "api": {"endpoint": "https://arty.example.com/artifactory"},
                "defaults": defaults or {},
                "repos": repos,
                "args": Args(dryrun=dryrun),
            }
        )

    return _make
