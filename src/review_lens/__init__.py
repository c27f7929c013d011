"""review-lens - map a diff to the declarations it touches and their references."""

from .models import ChangedSpan, FileDiff, Reference, Session
from .diff_lines import parse_patch
from .language_support import SpanExtractor
from .lsp import LspClient
from .references import ReferenceResolver
from .session import SessionBuilder

__all__ = [
    "ChangedSpan",
    "FileDiff",
    "Reference",
    "Session",
    "parse_patch",
    "SpanExtractor",
    "LspClient",
    "ReferenceResolver",
    "SessionBuilder",
]
