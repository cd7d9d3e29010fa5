"""Persists recovered source maps next to the session data."""

import hashlib
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import urlparse

import sourcemap

from ..resolver import decode_data_uri
from ..utils.paths import get_data_directory
from .writer import DataWriter

logger = logging.getLogger(__name__)


def _content_hash(content: str) -> str:
    return hashlib.blake2s(content.encode('utf-8'), digest_size=8).hexdigest()


class SourceMapAttachmentStore:
    """Attachment target: writes each source map and its embedded sources.

    Layout under the session directory::

        <hostname>/source_maps/<hash>_<script>.map
        <hostname>/source_maps/metadata.jsonl
        <hostname>/sources/<hash>_<original path>
    """

    def __init__(self, data_dir: Optional[Path] = None):
        self.data_dir = Path(data_dir) if data_dir else get_data_directory()
        self.session_dir = self._create_session_directory()
        self.writer = DataWriter(self.session_dir)
        # resource url -> written map file
        self.attached: Dict[str, Path] = {}

    def _create_session_directory(self) -> Path:
        session_name = f"session_{datetime.now().strftime('%Y-%m-%d_%H%M%S')}"
        session_dir = self.data_dir / session_name
        session_dir.mkdir(parents=True, exist_ok=True)
        return session_dir

    async def attach(self, resource_url: str, data_uri: str) -> None:
        """Store the source map carried by data_uri for resource_url."""
        content = decode_data_uri(data_uri)
        parsed_url = urlparse(resource_url)
        hostname = (parsed_url.hostname or "unknown").lower()

        script_name = parsed_url.path.rsplit('/', 1)[-1] or "script.js"
        map_name = f"{_content_hash(content)}_{script_name}.map"
        map_path = await self.writer.write_text(f"{hostname}/source_maps/{map_name}", content)

        sources_written = await self._write_sources(hostname, content)

        await self.writer.append_jsonl(f"{hostname}/source_maps/metadata.jsonl", {
            "resourceUrl": resource_url,
            "sourceMapFile": map_name,
            "sources": sources_written,
            "timestamp": datetime.now(timezone.utc).isoformat()
        })

        self.attached[resource_url] = map_path
        logger.debug(f"Stored source map for {resource_url} at {map_path}")

    async def _write_sources(self, hostname: str, content: str) -> int:
        """Write sourcesContent entries; returns how many were written."""
        try:
            source_map = sourcemap.loads(content)
        except Exception as e:
            logger.warning(f"Stored source map could not be parsed: {e}")
            return 0

        raw = getattr(source_map, 'raw', None)
        if not isinstance(raw, dict):
            return 0

        sources = raw.get('sources') or []
        sources_content = raw.get('sourcesContent') or []

        written = 0
        for source_path, source_text in zip(sources, sources_content):
            if not source_text:
                continue
            safe_basename = str(source_path).replace('/', '_').replace('\\', '_')
            file_name = f"{_content_hash(source_text)}_{safe_basename}"
            target = self.session_dir / hostname / "sources" / file_name
            # Content-addressed, so an existing file is identical
            if target.exists():
                continue
            await self.writer.write_text(f"{hostname}/sources/{file_name}", source_text)
            written += 1
        return written
