"""URL wildcard matching for project routing."""

import logging
import re
from typing import Iterable, List

from .config import ProjectConfig

logger = logging.getLogger(__name__)


def pattern_to_regex(pattern: str, strict: bool = False) -> str:
    """Translate a ``*`` wildcard pattern into a regular expression.

    Only ``*`` is rewritten (to ``.*``); other regex metacharacters keep
    their regex meaning, so stored patterns such as ``https://a.com/app.js``
    treat ``.`` as any character. ``strict`` escapes everything else.
    """
    if strict:
        return ".*".join(re.escape(part) for part in pattern.split("*"))
    return pattern.replace("*", ".*")


def matches(url: str, pattern: str, strict: bool = False) -> bool:
    """Return True if the whole url matches the wildcard pattern."""
    try:
        return re.fullmatch(pattern_to_regex(pattern, strict), url) is not None
    except re.error as e:
        logger.error(f"Invalid URL pattern in config: {pattern} ({e})")
        return False


def find_matching_configs(url: str, configs: Iterable[ProjectConfig],
                          strict: bool = False) -> List[ProjectConfig]:
    """Configs whose url_pattern matches url, in input order."""
    return [config for config in configs if matches(url, config.url_pattern, strict)]
