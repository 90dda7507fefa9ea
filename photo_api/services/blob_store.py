"""
Blob store drivers.

The store is an opaque key/bytes store where every object also carries a
queryable tag set and a non-queryable metadata map. Two drivers:

* ``AzureBlobStore``: Azure Blob Storage with blob index tags (production).
* ``MemoryBlobStore``: in-process driver for local development and tests. It
  evaluates the same filter grammar as the real service.

Tag writes always replace the whole tag set.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional
from urllib.parse import quote

from azure.core.exceptions import AzureError, ResourceModifiedError, ResourceNotFoundError
from azure.identity.aio import DefaultAzureCredential, ManagedIdentityCredential
from azure.storage.blob import ContentSettings
from azure.storage.blob.aio import BlobServiceClient

from photo_api.config import Settings
from photo_api.core.errors import BlobNotFound, ConflictError, UpstreamUnavailable
from photo_api.services import tag_query

log = logging.getLogger(__name__)


@dataclass
class BlobItem:
    """A listing or filter hit."""
    container: str
    name: str
    tags: Dict[str, str] = field(default_factory=dict)


@dataclass
class BlobInfo:
    container: str
    name: str
    tags: Dict[str, str]
    metadata: Dict[str, str]
    content_type: str = ""
    etag: str = ""
    size: int = 0


class BlobStore(ABC):
    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip("/")

    def url_for(self, container: str, name: str) -> str:
        return f"{self.base_url}/{container}/{quote(name)}"

    @abstractmethod
    async def find_by_tags(self, expression: str) -> List[BlobItem]:
        ...

    @abstractmethod
    async def list_blobs(self, container: str) -> List[BlobItem]:
        ...

    @abstractmethod
    async def get_info(self, container: str, name: str) -> BlobInfo:
        ...

    @abstractmethod
    async def download(self, container: str, name: str) -> bytes:
        ...

    @abstractmethod
    async def upload(
        self,
        container: str,
        name: str,
        data: bytes,
        *,
        tags: Mapping[str, str],
        metadata: Mapping[str, str],
        content_type: str,
        if_tags: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Write the blob; with ``if_tags`` it must already exist and still carry those tags."""

    @abstractmethod
    async def set_tags(
        self,
        container: str,
        name: str,
        tags: Mapping[str, str],
        *,
        if_tags: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Replace the tag set; with ``if_tags`` the write only lands if those tags still hold."""

    @abstractmethod
    async def set_metadata(self, container: str, name: str, metadata: Mapping[str, str]) -> None:
        ...

    async def close(self) -> None:
        return None


@dataclass
class _MemoryBlob:
    data: bytes
    tags: Dict[str, str]
    metadata: Dict[str, str]
    content_type: str
    version: int = 1


class MemoryBlobStore(BlobStore):
    """In-process store used for local development and tests."""

    def __init__(self, base_url: str = "https://devstoreaccount1.blob.core.windows.net"):
        super().__init__(base_url)
        self._containers: Dict[str, Dict[str, _MemoryBlob]] = {}
        self._lock = asyncio.Lock()
        self.writes = 0

    def _get(self, container: str, name: str) -> _MemoryBlob:
        blob = self._containers.get(container, {}).get(name)
        if blob is None:
            raise BlobNotFound(f"{container}/{name} not found")
        return blob

    async def find_by_tags(self, expression: str) -> List[BlobItem]:
        container, predicates = tag_query.parse_filter(expression)
        containers = [container] if container else list(self._containers)
        hits = []
        for c in containers:
            for name, blob in self._containers.get(c, {}).items():
                if tag_query.matches(blob.tags, predicates):
                    hits.append(BlobItem(container=c, name=name, tags=dict(blob.tags)))
        return hits

    async def list_blobs(self, container: str) -> List[BlobItem]:
        return [
            BlobItem(container=container, name=name, tags=dict(blob.tags))
            for name, blob in self._containers.get(container, {}).items()
        ]

    async def get_info(self, container: str, name: str) -> BlobInfo:
        blob = self._get(container, name)
        return BlobInfo(
            container=container,
            name=name,
            tags=dict(blob.tags),
            metadata=dict(blob.metadata),
            content_type=blob.content_type,
            etag=f'"{blob.version}"',
            size=len(blob.data),
        )

    async def download(self, container: str, name: str) -> bytes:
        return self._get(container, name).data

    async def upload(self, container, name, data, *, tags, metadata, content_type, if_tags=None) -> None:
        async with self._lock:
            if if_tags is not None and not tag_query.matches(self._get(container, name).tags, if_tags):
                raise ConflictError(f"Tags of {container}/{name} changed since they were read")
            self._containers.setdefault(container, {})[name] = _MemoryBlob(
                data=bytes(data),
                tags=dict(tags),
                metadata=dict(metadata),
                content_type=content_type,
            )
            self.writes += 1

    async def set_tags(self, container, name, tags, *, if_tags=None) -> None:
        async with self._lock:
            blob = self._get(container, name)
            if if_tags is not None and not tag_query.matches(blob.tags, if_tags):
                raise ConflictError(f"Tags of {container}/{name} changed since they were read")
            blob.tags = dict(tags)
            blob.version += 1
            self.writes += 1

    async def set_metadata(self, container, name, metadata) -> None:
        async with self._lock:
            blob = self._get(container, name)
            blob.metadata = dict(metadata)
            blob.version += 1
            self.writes += 1


class AzureBlobStore(BlobStore):
    """Azure Blob Storage with blob index tags, via the async SDK."""

    def __init__(self, account_url: str, credential):
        super().__init__(account_url)
        self._credential = credential
        self._service = BlobServiceClient(account_url, credential=credential)

    def _blob(self, container: str, name: str):
        return self._service.get_blob_client(container=container, blob=name)

    def _convert(self, exc: Exception, op: str, container: str = "", name: str = "") -> Exception:
        log.error("Blob store %s failed container=%s path=%s: %s", op, container, name, exc)
        if isinstance(exc, ResourceNotFoundError):
            return BlobNotFound(f"{container}/{name} not found")
        if isinstance(exc, ResourceModifiedError) or getattr(exc, "status_code", None) == 412:
            return ConflictError(f"Tags of {container}/{name} changed since they were read")
        return UpstreamUnavailable(f"Blob store {op} failed")

    async def find_by_tags(self, expression: str) -> List[BlobItem]:
        try:
            return [
                BlobItem(container=b.container_name, name=b.name, tags=dict(b.tags or {}))
                async for b in self._service.find_blobs_by_tags(expression)
            ]
        except AzureError as e:
            raise self._convert(e, "find_by_tags") from e

    async def list_blobs(self, container: str) -> List[BlobItem]:
        try:
            client = self._service.get_container_client(container)
            return [
                BlobItem(container=container, name=b.name, tags=dict(b.tags or {}))
                async for b in client.list_blobs(include=["tags"])
            ]
        except AzureError as e:
            raise self._convert(e, "list_blobs", container) from e

    async def get_info(self, container: str, name: str) -> BlobInfo:
        blob = self._blob(container, name)
        try:
            props, tags = await asyncio.gather(blob.get_blob_properties(), blob.get_blob_tags())
        except AzureError as e:
            raise self._convert(e, "get_info", container, name) from e
        settings = props.content_settings
        return BlobInfo(
            container=container,
            name=name,
            tags=dict(tags or {}),
            metadata=dict(props.metadata or {}),
            content_type=(settings.content_type if settings else "") or "",
            etag=props.etag or "",
            size=props.size or 0,
        )

    async def download(self, container: str, name: str) -> bytes:
        try:
            stream = await self._blob(container, name).download_blob()
            return await stream.readall()
        except AzureError as e:
            raise self._convert(e, "download", container, name) from e

    async def upload(self, container, name, data, *, tags, metadata, content_type, if_tags=None) -> None:
        kwargs = {}
        condition = tag_query.build_condition(if_tags or {})
        if condition:
            kwargs["if_tags_match_condition"] = condition
        try:
            await self._blob(container, name).upload_blob(
                data,
                overwrite=True,
                tags=dict(tags),
                metadata=dict(metadata),
                content_settings=ContentSettings(content_type=content_type),
                **kwargs,
            )
        except AzureError as e:
            raise self._convert(e, "upload", container, name) from e
        log.info("Uploaded blob container=%s path=%s bytes=%s", container, name, len(data))

    async def set_tags(self, container, name, tags, *, if_tags=None) -> None:
        kwargs = {}
        condition = tag_query.build_condition(if_tags or {})
        if condition:
            kwargs["if_tags_match_condition"] = condition
        try:
            await self._blob(container, name).set_blob_tags(dict(tags), **kwargs)
        except AzureError as e:
            raise self._convert(e, "set_tags", container, name) from e

    async def set_metadata(self, container, name, metadata) -> None:
        try:
            await self._blob(container, name).set_blob_metadata(dict(metadata))
        except AzureError as e:
            raise self._convert(e, "set_metadata", container, name) from e

    async def close(self) -> None:
        await self._service.close()
        close = getattr(self._credential, "close", None)
        if close is not None:
            await close()


def create_credential(settings: Settings):
    if settings.is_production:
        if not settings.AZURE_CLIENT_ID:
            raise RuntimeError("AZURE_CLIENT_ID is required in production")
        log.info("Production environment detected, using ManagedIdentityCredential")
        return ManagedIdentityCredential(client_id=settings.AZURE_CLIENT_ID)
    log.info("Non-production environment detected, using DefaultAzureCredential")
    return DefaultAzureCredential()


def create_blob_store(settings: Settings) -> BlobStore:
    driver = (settings.STORAGE_DRIVER or "").strip().lower()
    if driver == "memory":
        log.info("Blob store driver: memory")
        return MemoryBlobStore(settings.storage_url)
    if driver == "azure":
        log.info("Blob store driver: azure (%s)", settings.storage_url)
        return AzureBlobStore(settings.storage_url, create_credential(settings))
    raise RuntimeError(f"Unknown STORAGE_DRIVER {settings.STORAGE_DRIVER!r}")
