"""Artifact bundle archives and their manifest."""

import io
import json
import logging
import zipfile
import zlib
from typing import Any, Dict, Optional

from ..cache import LRUCache
from ..config import DEFAULT_CACHE_SIZE
from .client import SentryClient, SentryMapsError

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
SOURCE_MAP_TYPE = "source_map"

# Raised by ZipFile.read for a damaged, encrypted or unsupported member
MEMBER_READ_ERRORS = (zipfile.BadZipFile, zlib.error, NotImplementedError, RuntimeError)


class BundleFormatError(SentryMapsError):
    """Bundle payload is not a readable archive."""
    pass


class ManifestError(SentryMapsError):
    """manifest.json exists but cannot be parsed."""
    pass


class BundleArchive:
    """An opened artifact bundle (zip) with a manifest.json index."""

    def __init__(self, archive: zipfile.ZipFile):
        self._archive = archive

    @classmethod
    def from_bytes(cls, data: bytes) -> "BundleArchive":
        try:
            return cls(zipfile.ZipFile(io.BytesIO(data)))
        except zipfile.BadZipFile as e:
            raise BundleFormatError(f"Bundle is not a valid archive: {e}")

    def names(self):
        return self._archive.namelist()

    def manifest(self) -> Optional[Dict[str, Any]]:
        """Parsed manifest, or None if the bundle has none."""
        try:
            raw = self._archive.read(MANIFEST_NAME)
        except KeyError:
            return None
        except MEMBER_READ_ERRORS as e:
            raise BundleFormatError(f"Unreadable {MANIFEST_NAME}: {e}")

        try:
            manifest = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise ManifestError(f"Invalid {MANIFEST_NAME}: {e}")

        if not isinstance(manifest, dict):
            raise ManifestError(f"{MANIFEST_NAME} must contain an object")
        return manifest

    @staticmethod
    def find_source_map(manifest: Dict[str, Any], debug_id: str) -> Optional[str]:
        """Archive path of the source map recorded for debug_id."""
        files = manifest.get("files")
        if not isinstance(files, dict):
            return None

        for path, info in files.items():
            if not isinstance(info, dict) or info.get("type") != SOURCE_MAP_TYPE:
                continue
            headers = info.get("headers")
            if isinstance(headers, dict) and headers.get("debug-id") == debug_id:
                return path
        return None

    def read_text(self, path: str) -> Optional[str]:
        try:
            return self._archive.read(path).decode("utf-8")
        except (KeyError, UnicodeDecodeError) + MEMBER_READ_ERRORS as e:
            logger.debug(f"Could not read {path} from bundle: {e}")
            return None

    def close(self) -> None:
        self._archive.close()


class BundleStore:
    """Downloads bundles once and keeps the opened archives in an LRU cache."""

    def __init__(self, client: SentryClient, cache_size: int = DEFAULT_CACHE_SIZE):
        self.client = client
        self.archive_cache = LRUCache(cache_size, on_evict=lambda _url, archive: archive.close())

    async def open(self, bundle_url: str, token: str) -> BundleArchive:
        """Opened archive for bundle_url (cache key is the normalized URL)."""
        url = self.client.normalize_bundle_url(bundle_url)

        archive = self.archive_cache.get(url)
        if archive is not None:
            logger.debug(f"Bundle cache hit: {url}")
            return archive

        data = await self.client.download_bundle(url, token)
        archive = BundleArchive.from_bytes(data)

        # Another resolution may have cached the same bundle while we downloaded
        cached = self.archive_cache.get(url)
        if cached is not None:
            archive.close()
            return cached

        self.archive_cache.set(url, archive)
        logger.debug(f"Cached bundle {url} ({len(data)} bytes)")
        return archive

    async def resolve_source_map(self, bundle_url: str, debug_id: str,
                                 token: str) -> Optional[str]:
        """Source map text for debug_id from the bundle, or None.

        Raises SentryMapsError subclasses for download, archive and
        manifest parse failures.
        """
        archive = await self.open(bundle_url, token)

        manifest = archive.manifest()
        if manifest is None:
            logger.debug(f"No {MANIFEST_NAME} in bundle {bundle_url}")
            return None

        path = archive.find_source_map(manifest, debug_id)
        if path is None:
            logger.debug(f"No source map for debug id {debug_id} in bundle {bundle_url}")
            return None

        text = archive.read_text(path)
        if text is None:
            logger.debug(f"Source map entry {path} is unreadable")
        return text

    def reset(self) -> None:
        self.archive_cache.clear()
