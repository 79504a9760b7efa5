import logging
from abc import ABC, abstractmethod
from datetime import datetime

from artycleaner.client import ArtifactoryClient
from artycleaner.models import Candidate, PackageType

RESERVED_NAMES = frozenset({"_uploads"})
MANIFEST_FILE = "manifest.json"


class CandidateCollector(ABC):
    def __init__(
        self, client: ArtifactoryClient, repo_key: str, cutoff: datetime | None
    ) -> None:
        self.client = client
        self.repo_key = repo_key
        self.cutoff = cutoff

    @abstractmethod
    async def scopes(self) -> list[str]:
        """Units of work for the repository, processed one at a time."""

    @abstractmethod
    async def collect(self, scope: str) -> list[Candidate]:
        """Purge candidates of a single scope. Performs read requests only."""


class DockerCollector(CandidateCollector):
    async def scopes(self) -> list[str]:
        entries = await self.client.list_folder(self.repo_key)
        return [e.name for e in entries if e.is_folder and e.name not in RESERVED_NAMES]

    async def collect(self, scope: str) -> list[Candidate]:
        candidates = []
        for entry in await self.client.list_folder(self.repo_key, scope):
            if not entry.is_folder or entry.name in RESERVED_NAMES:
                continue
            logging.debug(f"Processing image tag [{scope}:{entry.name}]")
            tag_path = f"{scope}/{entry.name}"
            manifest = f"{tag_path}/{MANIFEST_FILE}"
            stats = await self.client.stat_file(self.repo_key, manifest)
            info = await self.client.file_info(self.repo_key, manifest)
            candidates.append(
                Candidate(
                    repository=self.repo_key,
                    path=tag_path,
                    name=entry.name,
                    scope=scope,
                    last_downloaded=stats.last_downloaded,
                    created=info.created,
                    last_modified=info.last_modified,
                )
            )
        return candidates


class GenericCollector(CandidateCollector):
    async def scopes(self) -> list[str]:
        return [self.repo_key]

    async def collect(self, scope: str) -> list[Candidate]:
        candidates = []
        for path in await self.client.search_unused(self.repo_key, self.cutoff):
            if RESERVED_NAMES.intersection(path.split("/")):
                continue
            candidates.append(
                Candidate(
                    repository=self.repo_key,
                    path=path,
                    name=path,
                    scope=scope,
                )
            )
        return candidates


COLLECTORS: dict[PackageType, type[CandidateCollector]] = {
    PackageType.DOCKER: DockerCollector,
    PackageType.GENERIC: GenericCollector,
}


def collector_for(
    package_type: PackageType,
    client: ArtifactoryClient,
    repo_key: str,
    cutoff: datetime | None,
) -> CandidateCollector:
    return COLLECTORS[package_type](client, repo_key, cutoff)
