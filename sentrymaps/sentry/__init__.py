"""Sentry artifact API access."""

from .client import (
    ArtifactLookupError,
    BundleDownloadError,
    SentryClient,
    SentryMapsError,
)
from .bundle import BundleArchive, BundleFormatError, BundleStore, ManifestError

__all__ = [
    'ArtifactLookupError',
    'BundleArchive',
    'BundleDownloadError',
    'BundleFormatError',
    'BundleStore',
    'ManifestError',
    'SentryClient',
    'SentryMapsError',
]
