import logging
from datetime import datetime
from typing import Any

import httpx

from artycleaner.config import ApiSettings
from artycleaner.models import (
    FileInfo,
    FileStats,
    FolderEntry,
    PackageType,
    RepositoryInfo,
)
from artycleaner.utils import (
    build_headers,
    from_epoch_millis,
    parse_timestamp,
    to_epoch_millis,
)


class ArtifactoryError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ArtifactoryClient:
    def __init__(
        self, settings: ApiSettings, transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        self.settings = settings
        self.session = httpx.AsyncClient(
            base_url=settings.endpoint,
            headers=build_headers(settings),
            timeout=settings.timeout,
            follow_redirects=True,
            verify=settings.ssl_verify,
            proxy=settings.proxy,
            transport=transport,
            trust_env=False,
        )

    async def __aenter__(self) -> "ArtifactoryClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.session.aclose()

    async def _request(
        self, method: str, url: str, params: dict[str, Any] | None = None
    ) -> httpx.Response:
        try:
            response = await self.session.request(method, url, params=params)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as err:
            raise ArtifactoryError(
                f"{method} {url} failed. code: {err.response.status_code}, text: {err.response.text}",
                status_code=err.response.status_code,
            )
        except httpx.HTTPError as err:
            raise ArtifactoryError(f"{method} {url} failed. Error: {err}")

    async def _get_json(self, url: str, params: dict[str, Any] | None = None) -> dict:
        response = await self._request("GET", url, params=params)
        try:
            data = response.json()
        except ValueError as err:
            raise ArtifactoryError(f"GET {url} returned invalid JSON: {err}")
        if not isinstance(data, dict):
            raise ArtifactoryError(f"GET {url} returned unexpected payload: {data}")
        return data

    async def lookup_repository(self, key: str) -> RepositoryInfo:
        data = await self._get_json(f"api/repositories/{key}")
        raw = data.get("packageType")
        return RepositoryInfo(
            key=key, package_type=PackageType.from_api(raw), raw_package_type=raw
        )

    async def list_folder(self, repo_key: str, path: str = "") -> list[FolderEntry]:
        url = f"api/storage/{repo_key}/{path}".rstrip("/")
        data = await self._get_json(url)
        return [
            FolderEntry(name=child["uri"].strip("/"), is_folder=bool(child.get("folder")))
            for child in data.get("children", [])
            if child.get("uri")
        ]

    async def stat_file(self, repo_key: str, path: str) -> FileStats:
        # Artifactory expects a bare `stats` query flag
        data = await self._get_json(f"api/storage/{repo_key}/{path}?stats")
        return FileStats(last_downloaded=from_epoch_millis(data.get("lastDownloaded") or 0))

    async def file_info(self, repo_key: str, path: str) -> FileInfo:
        data = await self._get_json(f"api/storage/{repo_key}/{path}")
        try:
            return FileInfo(
                created=parse_timestamp(data.get("created")),
                last_modified=parse_timestamp(data.get("lastModified")),
            )
        except ValueError as err:
            raise ArtifactoryError(f"Invalid timestamps for {repo_key}/{path}: {err}")

    async def search_unused(
        self, repo_key: str, not_used_since: datetime | None
    ) -> list[str]:
        if not_used_since is None:
            logging.debug(f"No purge TTL for {repo_key}, usage search skipped")
            return []

        try:
            data = await self._get_json(
                "api/search/usage",
                params={
                    "notUsedSince": to_epoch_millis(not_used_since),
                    "repos": repo_key,
                },
            )
        except ArtifactoryError as err:
            # Artifactory answers 404 when nothing matches the search
            if err.status_code == 404:
                return []
            raise

        prefix = f"/api/storage/{repo_key}/"
        paths = []
        for result in data.get("results", []):
            uri = result.get("uri", "")
            _, found, path = uri.partition(prefix)
            if found and path:
                paths.append(path)
        return paths

    async def delete_file(self, repo_key: str, path: str) -> None:
        await self._request("DELETE", f"{repo_key}/{path}")
