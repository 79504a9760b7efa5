from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel


class PackageType(StrEnum):
    DOCKER = "docker"
    GENERIC = "generic"

    @classmethod
    def from_api(cls, raw: str | None) -> "PackageType":
        # Everything that is not a docker registry is purged via the usage search
        if raw and raw.lower() == cls.DOCKER:
            return cls.DOCKER
        return cls.GENERIC


class KeepReason(StrEnum):
    EXCLUDED = "excluded"
    FRESH = "fresh"
    BACKFILLED = "backfilled"


class RepositoryInfo(BaseModel):
    key: str
    package_type: PackageType
    raw_package_type: str | None = None


class FolderEntry(BaseModel):
    name: str
    is_folder: bool


class FileStats(BaseModel):
    last_downloaded: datetime | None = None


class FileInfo(BaseModel):
    created: datetime | None = None
    last_modified: datetime | None = None


class Candidate(BaseModel):
    repository: str
    path: str
    name: str
    scope: str
    last_downloaded: datetime | None = None
    created: datetime | None = None
    last_modified: datetime | None = None

    @property
    def timestamps(self) -> list[datetime]:
        return [
            ts
            for ts in (self.last_downloaded, self.created, self.last_modified)
            if ts is not None
        ]

    @property
    def last_used(self) -> datetime | None:
        stamps = self.timestamps
        return stamps[0] if stamps else None

    def is_fresh(self, cutoff: datetime | None) -> bool:
        if cutoff is None:
            return True
        return any(ts >= cutoff for ts in self.timestamps)


class PurgeDecision(BaseModel):
    candidate: Candidate
    keep: bool
    reason: KeepReason | None = None


class ImagePlan(BaseModel):
    scope: str
    decisions: list[PurgeDecision]
    skipped: bool = False

    @property
    def to_keep(self) -> list[str]:
        return [d.candidate.path for d in self.decisions if d.keep]

    @property
    def to_delete(self) -> list[str]:
        if self.skipped:
            return []
        return [d.candidate.path for d in self.decisions if not d.keep]


class RepositoryResult(BaseModel):
    key: str
    package_type: PackageType | None = None
    deleted_count: int = 0
    kept_count: int = 0
    skipped_scopes: list[str] = []
    errors: list[str] = []


class PurgeResult(BaseModel):
    dry_run: bool
    started_at: datetime
    finished_at: datetime | None = None
    repositories: list[RepositoryResult] = []

    @property
    def errors(self) -> list[str]:
        return [err for repo in self.repositories for err in repo.errors]

    @property
    def deleted_count(self) -> int:
        return sum(repo.deleted_count for repo in self.repositories)
