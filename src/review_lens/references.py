"""Resolve cross-file references to changed spans through a language server."""

import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Mapping, Optional, Union
from .config import DEFAULT_ANALYZERS, AnalyzerSpec
from .errors import LspCancelledError, LspError, LspResponseError
from .lsp.client import DEFAULT_REQUEST_TIMEOUT, LspClient
from .lsp.protocol import (
    did_open_params,
    initialize_params,
    path_to_uri,
    reference_params,
    relative_to_root,
    uri_to_path,
)
from .models import ChangedSpan, Reference

logger = logging.getLogger(__name__)


@dataclass
class ResolveOutcome:
    """Spans after resolution plus how far resolution got.

    ``checked`` is True once the server was initialized and every span was
    queried (individual queries may still have failed). ``error`` names the
    reason the file degraded, if any.
    """

    spans: List[ChangedSpan]
    checked: bool = False
    error: Optional[str] = None


class ReferenceResolver:
    """Look up references to each changed span with one server per file.

    Each call spawns a fresh server, initializes it, queries the spans one
    at a time and closes it again. Nothing is shared between calls.
    """

    def __init__(
        self,
        analyzers: Optional[Mapping[str, AnalyzerSpec]] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        cancel_event: Optional[threading.Event] = None
    ):
        self.analyzers = dict(DEFAULT_ANALYZERS if analyzers is None else analyzers)
        self.timeout = timeout
        self.cancel_event = cancel_event

    def select_analyzer(self, file_path: str) -> Optional[AnalyzerSpec]:
        _, ext = os.path.splitext(file_path)
        return self.analyzers.get(ext.lower())

    def find_references(
        self,
        root: Union[str, Path],
        spans: List[ChangedSpan],
        file_path: str
    ) -> List[ChangedSpan]:
        """Augment ``spans`` with references found by the file's analyzer.

        Spans are never removed or reordered. Any failure leaves the
        affected spans without references instead of raising.
        """
        return self.resolve(root, spans, file_path).spans

    def resolve(
        self,
        root: Union[str, Path],
        spans: List[ChangedSpan],
        file_path: str
    ) -> ResolveOutcome:
        """Run one analysis pass for ``file_path`` and report the outcome."""
        analyzer = self.select_analyzer(file_path)
        if analyzer is None:
            return ResolveOutcome(spans)

        root_path = Path(root).resolve()
        document = root_path / file_path
        uri = path_to_uri(document)

        try:
            client = LspClient(
                analyzer.command,
                analyzer.args,
                cwd=str(root_path),
                timeout=self.timeout,
                cancel_event=self.cancel_event,
            )
        except LspError as e:
            logger.warning("Reference lookup skipped for %s: %s", file_path, e)
            return ResolveOutcome(spans, error=str(e))

        with client:
            try:
                client.call('initialize', initialize_params(root_path))
                client.notify('initialized', {})
            except LspError as e:
                logger.warning("Failed to initialize %s for %s: %s", analyzer.command, file_path, e)
                return ResolveOutcome(spans, error=f"failed to initialize {analyzer.command}: {e}")

            self._open_document(client, document, uri, analyzer.language_id)

            for span in spans:
                if not span.has_anchor():
                    continue
                try:
                    result = client.call(
                        'textDocument/references',
                        reference_params(uri, span.anchor_line, span.anchor_column),
                    )
                    references = parse_locations(result, root_path)
                except LspCancelledError as e:
                    logger.info("Reference lookup cancelled for %s", file_path)
                    return ResolveOutcome(spans, error=str(e))
                except LspError as e:
                    logger.debug("References for %s in %s failed: %s", span.name, file_path, e)
                    continue
                span.references.extend(references)

        return ResolveOutcome(spans, checked=True)

    def _open_document(self, client: LspClient, document: Path, uri: str, language_id: str):
        # The server can still answer from its own view of the disk
        try:
            text = document.read_text(encoding='utf-8', errors='replace')
        except OSError as e:
            logger.debug("Not opening %s: %s", document, e)
            return
        try:
            client.notify('textDocument/didOpen', did_open_params(uri, language_id, text))
        except LspError as e:
            logger.debug("didOpen for %s failed: %s", document, e)


def parse_locations(result: Any, root: Union[str, Path]) -> List[Reference]:
    """Turn a ``textDocument/references`` result into References.

    Lines become 1-based; paths become relative to ``root`` when inside it.

    Raises:
        LspResponseError: If the result is not a list of Locations
    """
    if result is None:
        return []
    if not isinstance(result, list):
        raise LspResponseError(f"Expected a list of locations, got {type(result).__name__}")

    references = []
    for location in result:
        try:
            start = location['range']['start']
            end = location['range']['end']
            references.append(Reference(
                path=relative_to_root(uri_to_path(location['uri']), root),
                line=int(start['line']) + 1,
                start_column=int(start['character']),
                end_column=int(end['character']),
            ))
        except (KeyError, TypeError, ValueError) as e:
            raise LspResponseError(f"Malformed location {location!r}") from e
    return references
