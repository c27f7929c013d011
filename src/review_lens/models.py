"""Core data models for review-lens sessions."""

from dataclasses import dataclass, field
from typing import List, Optional
from dataclasses_json import config, dataclass_json, LetterCase


@dataclass_json(letter_case=LetterCase.CAMEL)
@dataclass
class Reference:
    """A location elsewhere in the codebase that refers to a changed symbol."""

    path: str  # Relative to the repository root when inside it
    line: int  # 1-based
    start_column: int
    end_column: int
    context: str = ""  # Surrounding source text, filled by the session layer
    context_start_line: int = 0

    def __hash__(self):
        return hash((self.path, self.line, self.start_column, self.end_column))


@dataclass_json(letter_case=LetterCase.CAMEL)
@dataclass
class ChangedSpan:
    """The smallest named declaration enclosing one or more changed lines.

    ``start_line``/``end_line`` are 1-based and inclusive. The anchor is the
    0-based row/column of the declaration's name token and is the position
    used when asking a language server for references.
    """

    name: str
    kind: str  # Grammar node type, e.g. "function_declaration"
    start_line: int
    end_line: int
    anchor_line: int = 0
    anchor_column: int = 0
    references: List[Reference] = field(default_factory=list)

    def has_anchor(self) -> bool:
        """Whether the span points at a usable name token."""
        return not (self.anchor_line == 0 and self.anchor_column == 0)


@dataclass_json(letter_case=LetterCase.CAMEL)
@dataclass
class FileDiff:
    """One file's patch plus everything derived from it."""

    path: str
    status: str  # added, modified, removed, renamed
    patch: str
    language: Optional[str] = None
    additions: int = 0
    deletions: int = 0
    changed_spans: List[ChangedSpan] = field(default_factory=list)
    references_checked: bool = False
    analysis_error: Optional[str] = None


@dataclass_json(letter_case=LetterCase.CAMEL)
@dataclass
class RepoInfo:
    """Git context for a session."""

    root: str
    branch: str = ""
    head: str = ""
    base: str = ""
    remote: str = ""
    repo_name: str = ""


@dataclass_json
@dataclass
class Summary:
    """Aggregate diff statistics."""

    files: int = 0
    add: int = 0
    deleted: int = field(default=0, metadata=config(field_name="del"))


@dataclass_json(letter_case=LetterCase.CAMEL)
@dataclass
class Session:
    """The payload handed to the viewer."""

    repo: RepoInfo
    files: List[FileDiff] = field(default_factory=list)
    summary: Summary = field(default_factory=Summary)
    generated_at: str = ""


@dataclass
class FileAnalysis:
    """Result of running the span/reference pipeline over one file.

    ``error`` carries the reason analysis degraded; it is logged and
    recorded but never raised past the file boundary.
    """

    path: str
    spans: List[ChangedSpan] = field(default_factory=list)
    references_checked: bool = False
    error: Optional[str] = None
