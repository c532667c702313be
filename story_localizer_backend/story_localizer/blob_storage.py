import os, logging
from pathlib import Path
from typing import List, Optional
from urllib.parse import unquote, urlparse
import httpx
from .errors import StorageError
from .media import write_bytes
from .settings import BLOB_READ_WRITE_TOKEN, LOCAL_STORAGE_DIR

logger = logging.getLogger(__name__)

BLOB_API_URL = "https://blob.vercel-storage.com"


class ObjectStorage:
    async def put(self, path: str, data: bytes, content_type: str) -> str:
        raise NotImplementedError

    async def read(self, url: str) -> bytes:
        raise NotImplementedError

    async def delete(self, urls: List[str]) -> None:
        raise NotImplementedError

    async def list(self, prefix: str) -> List[str]:
        raise NotImplementedError

    async def delete_prefix(self, prefix: str) -> int:
        urls = await self.list(prefix)
        if urls:
            await self.delete(urls)
        logger.info(f"Deleted {len(urls)} objects under {prefix}")
        return len(urls)

    async def close(self) -> None:
        pass


class LocalObjectStorage(ObjectStorage):
    """Stores objects on disk and returns file:// URLs."""

    def __init__(self, root: str = LOCAL_STORAGE_DIR):
        self.root = Path(root).resolve()

    def _path_for(self, url: str) -> Path:
        parsed = urlparse(url)
        if parsed.scheme != "file":
            raise StorageError(f"Not a local object URL: {url}")
        path = Path(unquote(parsed.path)).resolve()
        if self.root not in path.parents:
            raise StorageError(f"Object URL outside storage root: {url}")
        return path

    async def put(self, path, data, content_type):
        target = (self.root / path.lstrip("/")).resolve()
        if self.root not in target.parents:
            raise StorageError(f"Invalid object path: {path}")
        write_bytes(str(target), data)
        return target.as_uri()

    async def read(self, url):
        path = self._path_for(url)
        if not path.exists():
            raise StorageError(f"Object not found: {url}")
        return path.read_bytes()

    async def delete(self, urls):
        for url in urls:
            path = self._path_for(url)
            if path.exists():
                path.unlink()

    async def list(self, prefix):
        base = self.root / prefix.lstrip("/")
        folder = base if base.is_dir() else base.parent
        if not folder.exists():
            return []
        return sorted(
            p.as_uri() for p in folder.rglob("*")
            if p.is_file() and str(p).startswith(str(base))
        )


class VercelBlobStorage(ObjectStorage):
    def __init__(self, token: str = BLOB_READ_WRITE_TOKEN, transport: Optional[httpx.AsyncBaseTransport] = None):
        if not token:
            raise StorageError("BLOB_READ_WRITE_TOKEN is required for blob storage")
        self.token = token
        self._client = httpx.AsyncClient(timeout=60, transport=transport)

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}", "x-api-version": "7"}

    async def put(self, path, data, content_type):
        try:
            r = await self._client.put(
                f"{BLOB_API_URL}/{path.lstrip('/')}",
                headers={**self._headers(), "x-content-type": content_type, "x-add-random-suffix": "0"},
                content=data,
            )
            r.raise_for_status()
        except httpx.HTTPError as e:
            raise StorageError(f"Blob upload failed for {path}: {e}") from e
        url = r.json()["url"]
        logger.info(f"Uploaded {len(data)} bytes to {url}")
        return url

    async def read(self, url):
        try:
            r = await self._client.get(url)
            r.raise_for_status()
        except httpx.HTTPError as e:
            raise StorageError(f"Blob download failed for {url}: {e}") from e
        return r.content

    async def delete(self, urls):
        if not urls:
            return
        try:
            r = await self._client.post(f"{BLOB_API_URL}/delete", headers=self._headers(), json={"urls": list(urls)})
            r.raise_for_status()
        except httpx.HTTPError as e:
            raise StorageError(f"Blob delete failed: {e}") from e

    async def list(self, prefix):
        urls, cursor = [], None
        while True:
            params = {"prefix": prefix.lstrip("/"), "limit": "1000"}
            if cursor:
                params["cursor"] = cursor
            try:
                r = await self._client.get(BLOB_API_URL, headers=self._headers(), params=params)
                r.raise_for_status()
            except httpx.HTTPError as e:
                raise StorageError(f"Blob list failed for {prefix}: {e}") from e
            body = r.json()
            urls.extend(b["url"] for b in body.get("blobs", []))
            cursor = body.get("cursor")
            if not body.get("hasMore") or not cursor:
                return urls

    async def close(self):
        await self._client.aclose()


_object_storage: Optional[ObjectStorage] = None

def get_object_storage() -> ObjectStorage:
    global _object_storage
    if _object_storage is None:
        if BLOB_READ_WRITE_TOKEN:
            _object_storage = VercelBlobStorage()
            logger.info("Vercel Blob storage enabled")
        else:
            logger.warning(f"Blob storage not configured - writing media under {LOCAL_STORAGE_DIR}")
            os.makedirs(LOCAL_STORAGE_DIR, exist_ok=True)
            _object_storage = LocalObjectStorage()
    return _object_storage
