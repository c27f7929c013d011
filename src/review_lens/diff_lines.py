"""Map unified diff text onto line numbers in the new version of a file."""

import re
from typing import List
from unidiff import PatchSet
from unidiff.errors import UnidiffParseError
from .errors import PatchError
from .language_support import detect_language
from .models import FileDiff


# @@ -old[,count] +new[,count] @@ [section header]
HUNK_HEADER_RE = re.compile(r'^@@ -\d+(?:,\d+)? \+(\d+)(?:,\d+)? @@')


def parse_patch(patch: str) -> List[int]:
    """Return the new-file line numbers present in a single-file patch.

    Both added lines and context lines exist in the new file, so both are
    emitted. Removed lines and the "No newline at end of file" marker are
    skipped. Lines before the first hunk header, or after a header that
    does not parse, contribute nothing.

    Args:
        patch: Unified diff text for one file (headers optional)

    Returns:
        Ordered list of 1-based line numbers
    """
    lines = []
    current_line = None

    for line in patch.splitlines():
        if line.startswith('@@'):
            match = HUNK_HEADER_RE.match(line)
            current_line = int(match.group(1)) if match else None
            continue

        if current_line is None:
            continue

        if line.startswith('+'):
            if line.startswith('+++'):
                continue
            lines.append(current_line)
            current_line += 1
        elif line.startswith(' '):
            lines.append(current_line)
            current_line += 1
        elif line.startswith('diff --git'):
            # Next file in a multi-file diff; wait for its first hunk
            current_line = None
        # '-' lines are absent from the new file and '\' is a marker

    return lines


def split_diff(diff_text: str) -> List[FileDiff]:
    """Split a multi-file unified diff into one FileDiff per file.

    Args:
        diff_text: Output of ``git diff`` or a saved patch file

    Returns:
        FileDiff objects carrying each file's hunks as ``patch``

    Raises:
        PatchError: If the diff is not a parseable unified diff
    """
    try:
        patch_set = PatchSet(diff_text)
    except UnidiffParseError as e:
        raise PatchError(f"Failed to parse diff: {e}") from e

    files = []
    for patched_file in patch_set:
        if patched_file.is_added_file:
            status = 'added'
        elif patched_file.is_removed_file:
            status = 'removed'
        elif patched_file.is_rename:
            status = 'renamed'
        else:
            status = 'modified'

        path = _new_path(patched_file)
        patch = '' if patched_file.is_binary_file else ''.join(str(hunk) for hunk in patched_file)

        files.append(FileDiff(
            path=path,
            status=status,
            patch=patch,
            language=detect_language(path),
            additions=patched_file.added,
            deletions=patched_file.removed,
        ))

    return files


def _new_path(patched_file) -> str:
    """Path of the file on the new side, or the old side for deletions."""
    if patched_file.is_removed_file:
        return _strip_prefix(patched_file.source_file, 'a/')
    return _strip_prefix(patched_file.target_file, 'b/')


def _strip_prefix(name: str, prefix: str) -> str:
    return name[len(prefix):] if name.startswith(prefix) else name
