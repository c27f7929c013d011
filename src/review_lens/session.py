"""Build review sessions: diff -> changed spans -> references, per file."""

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union
from .config import ReviewConfig
from .diff_lines import parse_patch, split_diff
from .errors import SpanExtractionError
from .git_integration import GitAnalyzer
from .language_support import SpanExtractor
from .models import ChangedSpan, FileAnalysis, FileDiff, RepoInfo, Session, Summary
from .references import ReferenceResolver

logger = logging.getLogger(__name__)


class ContextReader:
    """Read and cache the lines around a reference."""

    def __init__(self, root: Union[str, Path], context_lines: int):
        self.root = Path(root)
        self.context_lines = context_lines
        self._cache: Dict[str, Optional[List[str]]] = {}

    def _lines(self, path: str) -> Optional[List[str]]:
        if path not in self._cache:
            full_path = Path(path) if Path(path).is_absolute() else self.root / path
            try:
                self._cache[path] = full_path.read_text(encoding='utf-8', errors='replace').splitlines()
            except OSError as e:
                logger.debug("No context for %s: %s", path, e)
                self._cache[path] = None
        return self._cache[path]

    def attach(self, spans: List[ChangedSpan]):
        """Fill ``context``/``context_start_line`` on every reference."""
        for span in spans:
            for reference in span.references:
                lines = self._lines(reference.path)
                if not lines or reference.line > len(lines):
                    continue
                start = max(1, reference.line - self.context_lines)
                end = min(len(lines), reference.line + self.context_lines)
                reference.context = '\n'.join(lines[start - 1:end])
                reference.context_start_line = start


class SessionBuilder:
    """Run the span and reference pipeline over every file of a diff."""

    def __init__(
        self,
        config: Optional[ReviewConfig] = None,
        resolve_references: bool = True,
        cancel_event: Optional[threading.Event] = None
    ):
        """Initialize the session builder.

        Args:
            config: Analyzer table, timeouts and filters
            resolve_references: Query language servers for references
            cancel_event: Set to abort in-flight reference lookups
        """
        self.config = config or ReviewConfig()
        self.resolve_references = resolve_references
        self.extractor = SpanExtractor(generated_patterns=self.config.generated_patterns)
        self.resolver = ReferenceResolver(
            self.config.analyzers,
            timeout=self.config.request_timeout,
            cancel_event=cancel_event,
        )

    def analyze_file(
        self,
        root: Union[str, Path],
        file_diff: FileDiff,
        resolve_references: Optional[bool] = None
    ) -> FileAnalysis:
        """Analyze one file of the diff.

        Never raises for per-file problems: an unreadable or unparsable file
        comes back with no spans and ``error`` set.
        """
        if resolve_references is None:
            resolve_references = self.resolve_references

        # Files with nothing to look up count as checked once lookups are on
        analysis = FileAnalysis(path=file_diff.path, references_checked=resolve_references)
        if file_diff.status == 'removed' or not file_diff.patch:
            return analysis

        changed_lines = parse_patch(file_diff.patch)
        if not changed_lines:
            return analysis

        try:
            content = (Path(root) / file_diff.path).read_bytes()
        except OSError as e:
            logger.warning("Could not read %s: %s", file_diff.path, e)
            analysis.error = f"could not read file: {e}"
            analysis.references_checked = False
            return analysis

        try:
            analysis.spans = self.extractor.extract_spans(file_diff.path, content, changed_lines)
        except SpanExtractionError as e:
            logger.warning("%s", e)
            analysis.error = str(e)
            analysis.references_checked = False
            return analysis

        if not resolve_references or not analysis.spans:
            return analysis

        outcome = self.resolver.resolve(root, analysis.spans, file_diff.path)
        analysis.spans = outcome.spans
        analysis.references_checked = outcome.checked
        analysis.error = outcome.error

        ContextReader(root, self.config.context_lines).attach(analysis.spans)
        logger.info(
            "Found %d spans (%d with references) in %s",
            len(analysis.spans),
            sum(1 for span in analysis.spans if span.references),
            file_diff.path,
        )
        return analysis

    def apply(self, root: Union[str, Path], file_diff: FileDiff, resolve_references: Optional[bool] = None) -> FileDiff:
        """Analyze ``file_diff`` and record the results on it."""
        analysis = self.analyze_file(root, file_diff, resolve_references)
        file_diff.changed_spans = analysis.spans
        file_diff.references_checked = analysis.references_checked
        file_diff.analysis_error = analysis.error
        return file_diff

    def build(
        self,
        repo_path: Union[str, Path] = '.',
        base: Optional[str] = None,
        patch_text: Optional[str] = None,
        include_untracked: bool = False
    ) -> Session:
        """Build a full session for a working tree.

        Args:
            repo_path: Path inside the repository
            base: Ref to compare against (default: merge base with origin/HEAD)
            patch_text: Use this diff instead of asking git
            include_untracked: Add untracked files as new files

        Returns:
            The assembled Session

        Raises:
            GitError: If repository information or the diff cannot be fetched
            PatchError: If the diff cannot be split into files
        """
        if patch_text is None:
            git_analyzer = GitAnalyzer(str(repo_path))
            repo = git_analyzer.get_repo_info(base)
            diff_text = git_analyzer.get_working_directory_diff(repo.base, include_untracked=include_untracked)
        else:
            root = Path(repo_path).resolve()
            repo = RepoInfo(root=str(root), repo_name=root.name)
            diff_text = patch_text

        files = split_diff(diff_text)
        for file_diff in files:
            self.apply(repo.root, file_diff)

        return Session(
            repo=repo,
            files=files,
            summary=summarize(files),
            generated_at=datetime.now().astimezone().isoformat(timespec='seconds'),
        )


def summarize(files: List[FileDiff]) -> Summary:
    return Summary(
        files=len(files),
        add=sum(f.additions for f in files),
        deleted=sum(f.deletions for f in files),
    )


def write_session(session: Session, output_path: Optional[str] = None) -> str:
    """Serialize a session to JSON, writing it to ``output_path`` if given."""
    payload = session.to_json(indent=2)
    if output_path:
        with open(output_path, 'w') as f:
            f.write(payload + '\n')
    return payload
