"""Locked JSONL and text file writer."""

import asyncio
import json
import logging
import os
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger(__name__)


class DataWriter:
    """Writes session files off the event loop, one lock per file."""

    MAX_FILE_SIZE = 50 * 1024 * 1024
    MAX_ROTATED_FILES = 5

    def __init__(self, session_dir: Path):
        self.session_dir = session_dir
        self.file_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def append_jsonl(self, file_path: str, data: Dict[str, Any]) -> None:
        """Append one JSON record; failures are logged, not raised."""
        full_path = self.session_dir / file_path

        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)

            async with self.file_locks[file_path]:
                await self._rotate_if_needed(full_path)
                json_line = json.dumps(data, ensure_ascii=False) + "\n"
                await asyncio.to_thread(self._sync_append, full_path, json_line)

        except Exception as e:
            logger.warning(f"Failed to write data to {file_path}: {e}")

    async def write_text(self, file_path: str, content: str) -> Path:
        """Write (replace) a text file and return its full path."""
        full_path = self.session_dir / file_path
        async with self.file_locks[file_path]:
            await asyncio.to_thread(self._sync_write_text, full_path, content)
        return full_path

    def _sync_append(self, file_path: Path, json_line: str) -> None:
        with open(file_path, 'a', encoding='utf-8') as f:
            f.write(json_line)
            f.flush()
            os.fsync(f.fileno())

    def _sync_write_text(self, file_path: Path, content: str) -> None:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, 'w', encoding='utf-8') as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

    async def _rotate_if_needed(self, file_path: Path) -> None:
        try:
            if not file_path.exists():
                return
            stat_result = await asyncio.to_thread(file_path.stat)
            if stat_result.st_size < self.MAX_FILE_SIZE:
                return
            await asyncio.to_thread(self._sync_rotate_files, file_path)
        except Exception as e:
            logger.warning(f"File rotation failed for {file_path}: {e}")

    def _sync_rotate_files(self, current_file: Path) -> None:
        """file.jsonl -> file.1.jsonl, shifting older ones up to MAX_ROTATED_FILES."""
        base_name = current_file.stem
        parent_dir = current_file.parent

        oldest_file = parent_dir / f"{base_name}.{self.MAX_ROTATED_FILES}.jsonl"
        if oldest_file.exists():
            oldest_file.unlink()

        for i in range(self.MAX_ROTATED_FILES - 1, 0, -1):
            old_file = parent_dir / f"{base_name}.{i}.jsonl"
            if old_file.exists():
                old_file.rename(parent_dir / f"{base_name}.{i + 1}.jsonl")

        current_file.rename(parent_dir / f"{base_name}.1.jsonl")
