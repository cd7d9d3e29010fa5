"""Data management components."""

from .attachments import SourceMapAttachmentStore
from .writer import DataWriter

__all__ = ['DataWriter', 'SourceMapAttachmentStore']
