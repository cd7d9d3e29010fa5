"""Tests for bundle archives and the bundle store."""

import asyncio
import io
import json
import zipfile
import zlib
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from sentrymaps.sentry.bundle import BundleArchive, BundleFormatError, BundleStore, ManifestError
from sentrymaps.sentry.client import BundleDownloadError, SentryClient

SOURCE_MAP = '{"version": 3, "sources": ["src/app.ts"], "mappings": ""}'


def make_bundle(files, manifest=None):
    """Zip payload with the given files and an optional manifest."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        if manifest is not None:
            content = manifest if isinstance(manifest, str) else json.dumps(manifest)
            archive.writestr("manifest.json", content)
        for name, data in files.items():
            archive.writestr(name, data)
    return buffer.getvalue()


def manifest_for(path, debug_id, file_type="source_map"):
    return {"files": {path: {"type": file_type, "headers": {"debug-id": debug_id}}}}


def corrupt(payload, original, replacement):
    """Rewrite stored member bytes in place so their CRC no longer matches."""
    assert payload.count(original) == 1
    return payload.replace(original, replacement)


def make_store(payload=b"", cache_size=200):
    client = SentryClient(http_client=MagicMock())
    client.download_bundle = AsyncMock(return_value=payload)
    return BundleStore(client, cache_size=cache_size), client


class TestBundleArchive:

    def test_invalid_payload(self):
        with pytest.raises(BundleFormatError):
            BundleArchive.from_bytes(b"not a zip")

    def test_missing_manifest(self):
        archive = BundleArchive.from_bytes(make_bundle({"a.js": "x"}))
        assert archive.manifest() is None

    def test_invalid_manifest(self):
        archive = BundleArchive.from_bytes(make_bundle({}, manifest="{not json"))
        with pytest.raises(ManifestError):
            archive.manifest()

    def test_manifest_must_be_object(self):
        archive = BundleArchive.from_bytes(make_bundle({}, manifest="[]"))
        with pytest.raises(ManifestError):
            archive.manifest()

    def test_find_source_map(self):
        manifest = {"files": {
            "files/_/_/app.js": {"type": "minified_source", "headers": {"debug-id": "abc"}},
            "files/_/_/app.js.map": {"type": "source_map", "headers": {"debug-id": "abc"}},
            "files/_/_/other.js.map": {"type": "source_map", "headers": {"debug-id": "def"}},
        }}
        assert BundleArchive.find_source_map(manifest, "abc") == "files/_/_/app.js.map"
        assert BundleArchive.find_source_map(manifest, "def") == "files/_/_/other.js.map"
        assert BundleArchive.find_source_map(manifest, "zzz") is None

    def test_find_source_map_tolerates_bad_entries(self):
        manifest = {"files": {"a": "junk", "b": {"type": "source_map"}, "c": {"type": "source_map", "headers": None}}}
        assert BundleArchive.find_source_map(manifest, "abc") is None
        assert BundleArchive.find_source_map({}, "abc") is None

    def test_read_text(self):
        archive = BundleArchive.from_bytes(make_bundle({"maps/app.js.map": SOURCE_MAP}))
        assert archive.read_text("maps/app.js.map") == SOURCE_MAP
        assert archive.read_text("missing") is None

    def test_read_text_undecodable(self):
        archive = BundleArchive.from_bytes(make_bundle({"bin": b"\xff\xfe\xfa"}))
        assert archive.read_text("bin") is None

    def test_corrupt_manifest_raises_format_error(self):
        payload = make_bundle({}, manifest_for("maps/app.js.map", "abc123"))
        archive = BundleArchive.from_bytes(corrupt(payload, b'"debug-id"', b'"debug-ix"'))

        with pytest.raises(BundleFormatError):
            archive.manifest()

    def test_read_text_corrupt_member(self):
        payload = make_bundle({"maps/app.js.map": SOURCE_MAP})
        archive = BundleArchive.from_bytes(corrupt(payload, b'"mappings"', b'"mappingz"'))

        assert archive.read_text("maps/app.js.map") is None

    @pytest.mark.parametrize("error", [
        zlib.error("invalid stored block lengths"),
        NotImplementedError("That compression method is not supported"),
        RuntimeError("File 'a' is encrypted, password required for extraction"),
    ])
    def test_unreadable_members(self, error):
        archive = BundleArchive.from_bytes(make_bundle({"a": "x"}, manifest={"files": {}}))
        archive._archive.read = MagicMock(side_effect=error)

        assert archive.read_text("a") is None
        with pytest.raises(BundleFormatError):
            archive.manifest()


class TestBundleStore:

    @pytest.mark.asyncio
    async def test_resolve_source_map(self):
        payload = make_bundle({"maps/app.js.map": SOURCE_MAP},
                              manifest_for("maps/app.js.map", "abc123"))
        store, client = make_store(payload)

        text = await store.resolve_source_map("https://internal/bundle.zip", "abc123", "t")

        assert text == SOURCE_MAP
        client.download_bundle.assert_awaited_once_with("https://sentry.io/bundle.zip", "t")

    @pytest.mark.asyncio
    async def test_bundle_downloaded_once_per_normalized_url(self):
        payload = make_bundle({"maps/app.js.map": SOURCE_MAP},
                              manifest_for("maps/app.js.map", "abc123"))
        store, client = make_store(payload)

        await store.resolve_source_map("http://internal/bundle.zip", "abc123", "t")
        await store.resolve_source_map("https://sentry.io:443/bundle.zip", "abc123", "t")

        assert client.download_bundle.await_count == 1
        assert store.archive_cache.keys() == ["https://sentry.io/bundle.zip"]

    @pytest.mark.asyncio
    async def test_no_manifest(self):
        store, _ = make_store(make_bundle({"maps/app.js.map": SOURCE_MAP}))
        assert await store.resolve_source_map("https://x/b.zip", "abc123", "t") is None

    @pytest.mark.asyncio
    async def test_no_matching_entry(self):
        payload = make_bundle({"maps/app.js.map": SOURCE_MAP},
                              manifest_for("maps/app.js.map", "other"))
        store, _ = make_store(payload)
        assert await store.resolve_source_map("https://x/b.zip", "abc123", "t") is None

    @pytest.mark.asyncio
    async def test_entry_listed_but_missing(self):
        store, _ = make_store(make_bundle({}, manifest_for("maps/app.js.map", "abc123")))
        assert await store.resolve_source_map("https://x/b.zip", "abc123", "t") is None

    @pytest.mark.asyncio
    async def test_manifest_parse_failure_raises(self):
        store, _ = make_store(make_bundle({}, manifest="{"))
        with pytest.raises(ManifestError):
            await store.resolve_source_map("https://x/b.zip", "abc123", "t")

    @pytest.mark.asyncio
    async def test_corrupt_bundle_raises(self):
        payload = make_bundle({"maps/app.js.map": SOURCE_MAP},
                              manifest_for("maps/app.js.map", "abc123"))
        store, _ = make_store(corrupt(payload, b'"debug-id"', b'"debug-ix"'))

        with pytest.raises(BundleFormatError):
            await store.resolve_source_map("https://x/b.zip", "abc123", "t")

    @pytest.mark.asyncio
    async def test_concurrent_open_keeps_one_archive(self):
        payload = make_bundle({}, manifest_for("a", "b"))
        store, client = make_store()

        async def download(url, token):
            await asyncio.sleep(0)
            return payload

        client.download_bundle.side_effect = download

        with patch.object(BundleArchive, "close", autospec=True) as close:
            first, second = await asyncio.gather(
                store.open("https://x/b.zip", "t"),
                store.open("https://x/b.zip", "t"),
            )

        assert first is second
        assert client.download_bundle.await_count == 2
        assert len(store.archive_cache) == 1
        close.assert_called_once()
        assert close.call_args[0][0] is not first

    @pytest.mark.asyncio
    async def test_download_failure_not_cached(self):
        store, client = make_store()
        client.download_bundle.side_effect = BundleDownloadError("boom", status_code=502)

        with pytest.raises(BundleDownloadError):
            await store.open("https://x/b.zip", "t")
        assert len(store.archive_cache) == 0

    @pytest.mark.asyncio
    async def test_bad_archive_not_cached(self):
        store, _ = make_store(b"garbage")

        with pytest.raises(BundleFormatError):
            await store.open("https://x/b.zip", "t")
        assert len(store.archive_cache) == 0

    @pytest.mark.asyncio
    async def test_evicted_archive_is_closed(self):
        store, _ = make_store(make_bundle({}, manifest_for("a", "b")))

        first = await store.open("https://x/one.zip", "t")
        first.close = MagicMock()
        await store.open("https://x/two.zip", "t")
        store.archive_cache.max_size = 1
        await store.open("https://x/three.zip", "t")

        first.close.assert_called_once()
        assert "https://sentry.io/one.zip" not in store.archive_cache

    @pytest.mark.asyncio
    async def test_reset(self):
        store, client = make_store(make_bundle({}, manifest_for("a", "b")))

        await store.open("https://x/one.zip", "t")
        store.reset()
        await store.open("https://x/one.zip", "t")

        assert client.download_bundle.await_count == 2
