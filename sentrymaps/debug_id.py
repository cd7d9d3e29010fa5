"""Debug identifier extraction from script metadata or content."""

import base64
import binascii
import logging
import re
from typing import Optional

from .resources import ResourceDescriptor

logger = logging.getLogger(__name__)

# Injected by the Sentry bundler plugins: _sentryDebugIdIdentifier="sentry-dbid-<uuid>"
SENTRY_DBID_PATTERN = re.compile(
    r"sentry-dbid-([0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12})"
)

DEBUG_ID_COMMENT_PATTERN = re.compile(r"^[ \t]*//#? ?debugId=(\S+)", re.MULTILINE)


def decode_content(content: Optional[str], encoding: Optional[str] = None) -> Optional[str]:
    """Undo the transport encoding of resource content.

    Chrome only base64-encodes WebAssembly bytecode, and the resolver
    rejects those resources before extraction. The branch serves
    callers of extract_debug_id that supply their own accessors.
    """
    if content is None:
        return None
    if encoding == "base64":
        try:
            return base64.b64decode(content, validate=True).decode("utf-8", errors="replace")
        except (binascii.Error, ValueError) as e:
            logger.debug(f"Could not decode base64 content: {e}")
            return None
    return content


def extract_from_content(text: str) -> Optional[str]:
    """Find a debug id in script text, marker first then magic comment."""
    match = SENTRY_DBID_PATTERN.search(text)
    if match:
        return match.group(1)

    match = DEBUG_ID_COMMENT_PATTERN.search(text)
    if match:
        return match.group(1)

    return None


async def extract_debug_id(resource: ResourceDescriptor) -> Optional[str]:
    """Debug id for a resource, or None when it has none."""
    if resource.native_build_id:
        return resource.native_build_id

    try:
        content, encoding = await resource.get_content()
    except Exception as e:
        logger.debug(f"Could not read content of {resource.url}: {e}")
        return None

    text = decode_content(content, encoding)
    if not text:
        return None

    return extract_from_content(text)
