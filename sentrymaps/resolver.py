"""End-to-end source map resolution for scripts loaded in a page."""

import base64
import logging
from typing import Awaitable, Callable, Optional

from .config import Settings
from .debug_id import extract_debug_id
from .matching import find_matching_configs
from .resources import ResourceDescriptor
from .sentry.bundle import BundleStore
from .sentry.client import SentryClient, SentryMapsError

logger = logging.getLogger(__name__)

DATA_URI_PREFIX = "data:application/json;base64,"

OUTCOME_ATTACHED = "attached"
OUTCOME_NO_PAGE_URL = "no_page_url"
OUTCOME_NO_AUTH_TOKEN = "no_auth_token"
OUTCOME_NOT_A_SCRIPT = "not_a_script"
OUTCOME_NO_MATCHING_CONFIG = "no_matching_config"
OUTCOME_NO_DEBUG_ID = "no_debug_id"
OUTCOME_LOOKUP_FAILED = "lookup_failed"
OUTCOME_NO_BUNDLE = "no_bundle"
OUTCOME_BUNDLE_FAILED = "bundle_failed"
OUTCOME_NO_SOURCE_MAP = "no_source_map"

AttachCallback = Callable[[str, str], Awaitable[None]]


def encode_data_uri(text: str) -> str:
    """Wrap source map text in a base64 JSON data URI (UTF-8 safe)."""
    payload = base64.b64encode(text.encode("utf-8")).decode("ascii")
    return f"{DATA_URI_PREFIX}{payload}"


def decode_data_uri(uri: str) -> str:
    """Inverse of encode_data_uri; accepts any base64 data URI."""
    header, sep, payload = uri.partition(",")
    if not sep or not header.startswith("data:") or not header.endswith(";base64"):
        raise ValueError("Not a base64 data URI")
    return base64.b64decode(payload).decode("utf-8")


class SourceMapResolver:
    """Resolves, fetches and attaches Sentry source maps for page scripts.

    Each call to ``handle_resource`` runs one short-circuiting pipeline:
    page url → token → script → config → debug id → lookup → bundle →
    map text → attach. Every miss or remote failure ends the pipeline
    with an ``OUTCOME_*`` value; only ``attach`` may raise.
    """

    def __init__(self, client: SentryClient, attach: AttachCallback,
                 bundles: Optional[BundleStore] = None,
                 strict_patterns: bool = False):
        self.client = client
        self.bundles = bundles or BundleStore(client, client.lookup_cache.max_size)
        self.attach = attach
        self.strict_patterns = strict_patterns

    async def handle_resource(self, resource: ResourceDescriptor,
                              page_url: Optional[str], settings: Settings) -> str:
        if not page_url:
            logger.debug(f"Inspected page URL unknown, skipping {resource.url}")
            return OUTCOME_NO_PAGE_URL

        if not settings.has_token:
            logger.debug("No auth token configured, skipping source map lookup")
            return OUTCOME_NO_AUTH_TOKEN

        if not resource.is_script:
            return OUTCOME_NOT_A_SCRIPT

        matching = find_matching_configs(page_url, settings.project_configs, self.strict_patterns)
        if not matching:
            return OUTCOME_NO_MATCHING_CONFIG
        config = matching[0]
        logger.debug(f"Page {page_url} matches project(s): "
                     f"{[c.display_name for c in matching]}")

        debug_id = await extract_debug_id(resource)
        if not debug_id:
            logger.debug(f"No debug id found for {resource.url}")
            return OUTCOME_NO_DEBUG_ID

        token = settings.auth_token
        try:
            bundles = await self.client.lookup_bundles(
                config.organization, config.project, debug_id, token
            )
        except SentryMapsError as e:
            logger.warning(f"Artifact lookup failed for {resource.url}: {e}")
            return OUTCOME_LOOKUP_FAILED

        if not bundles:
            logger.debug(f"No artifact bundle for debug id {debug_id} in {config.display_name}")
            return OUTCOME_NO_BUNDLE

        # Only the first candidate is authoritative; later ones are not tried
        first = bundles[0]
        bundle_url = first.get("url") if isinstance(first, dict) else None
        if not isinstance(bundle_url, str) or not bundle_url:
            logger.debug(f"First artifact bundle for debug id {debug_id} has no url: {first!r}")
            return OUTCOME_NO_BUNDLE

        try:
            source_map = await self.bundles.resolve_source_map(bundle_url, debug_id, token)
        except SentryMapsError as e:
            logger.warning(f"Could not load bundle for {resource.url}: {e}")
            return OUTCOME_BUNDLE_FAILED

        if source_map is None:
            return OUTCOME_NO_SOURCE_MAP

        await self.attach(resource.url, encode_data_uri(source_map))
        logger.info(f"Attached source map for {resource.url} (debug id {debug_id})")
        return OUTCOME_ATTACHED

    def reset(self) -> None:
        """Drop all cached lookups and bundles."""
        self.client.reset()
        self.bundles.reset()

    async def aclose(self) -> None:
        self.reset()
        await self.client.aclose()
