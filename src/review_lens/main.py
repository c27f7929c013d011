"""Command-line interface for review-lens."""

import logging
import signal
import sys
import threading
from pathlib import Path
import click
from .config import load_config
from .diff_lines import parse_patch, split_diff
from .errors import ReviewLensError
from .git_integration import GitAnalyzer
from .language_support import SpanExtractor
from .models import ChangedSpan
from .session import SessionBuilder, write_session


def _configure_logging(verbose: bool, debug: bool, log_file: str = None):
    level = logging.DEBUG if debug else logging.INFO if verbose else logging.WARNING
    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
        handlers=handlers,
    )


def _load_config(config_file, timeout):
    config = load_config(config_file)
    if timeout is not None:
        config.request_timeout = timeout
    return config


def _cancel_on_sigterm() -> threading.Event:
    """Return an event that is set when the process receives SIGTERM."""
    cancel_event = threading.Event()
    signal.signal(signal.SIGTERM, lambda signum, frame: cancel_event.set())
    return cancel_event


def _fail(message: str, debug: bool):
    click.echo(f"❌ Error: {message}", err=True)
    if debug:
        import traceback
        traceback.print_exc()
    sys.exit(1)


@click.command()
@click.option('--repo', '-r', default='.', type=click.Path(exists=True, file_okay=False), help='Path inside the repository (default: current directory)')
@click.option('--base', '-b', default=None, help='Ref to compare against (default: merge base with origin/HEAD)')
@click.option('--patch', '-p', default=None, type=click.Path(exists=True, dir_okay=False), help='Analyze this patch file instead of running git diff')
@click.option('--output', '-o', default=None, help='Write the session JSON here (default: stdout)')
@click.option('--untracked', is_flag=True, help='Include untracked (new) files')
@click.option('--no-references', is_flag=True, help='Only extract changed spans; skip language servers')
@click.option('--config', '-c', 'config_file', default=None, type=click.Path(exists=True), help='Path to YAML configuration file')
@click.option('--timeout', type=float, default=None, help='Seconds to wait for each language server response')
@click.option('--verbose', '-v', is_flag=True, help='Verbose output')
@click.option('--debug', is_flag=True, help='Enable debug logging')
@click.option('--log-file', default=None, help='Write detailed logs to file')
def analyze(repo, base, patch, output, untracked, no_references, config_file, timeout, verbose, debug, log_file):
    """Build a review session for the changes in a working tree.

    Modes of operation:
    1. Working directory: compare the working tree against the merge base
       with the remote default branch (default)
    2. Base ref: --base to compare against a specific branch or commit
    3. Patch file: --patch to analyze a saved diff (bypasses git)

    Example:
        review-lens analyze --repo ~/src/project -o session.json
    """
    _configure_logging(verbose, debug, log_file)

    try:
        config = _load_config(config_file, timeout)
        builder = SessionBuilder(
            config,
            resolve_references=not no_references,
            cancel_event=_cancel_on_sigterm(),
        )

        patch_text = None
        if patch:
            with open(patch, 'r') as f:
                patch_text = f.read()
            if not patch_text.strip():
                _fail("Patch file is empty", debug)

        if verbose:
            click.echo(f"🔍 Analyzing {patch or repo}", err=True)

        session = builder.build(repo, base=base, patch_text=patch_text, include_untracked=untracked)
        payload = write_session(session, output)

        if output:
            click.echo(f"✅ Session written to {output}", err=True)
        else:
            click.echo(payload)

        if verbose:
            span_count = sum(len(f.changed_spans) for f in session.files)
            click.echo(
                f"📊 Files: {session.summary.files}  +{session.summary.add} -{session.summary.deleted}  "
                f"spans: {span_count}",
                err=True,
            )
            for file_diff in session.files:
                if file_diff.analysis_error:
                    click.echo(f"⚠️  {file_diff.path}: {file_diff.analysis_error}", err=True)

    except KeyboardInterrupt:
        click.echo("\n\n❌ Interrupted by user", err=True)
        sys.exit(1)
    except (ReviewLensError, OSError) as e:
        _fail(str(e), debug)


@click.command()
@click.argument('file_path')
@click.option('--patch', '-p', required=True, type=click.Path(exists=True, dir_okay=False), help='Patch for FILE_PATH (single-file or multi-file diff)')
@click.option('--repo', '-r', default='.', type=click.Path(exists=True, file_okay=False), help='Repository root holding FILE_PATH')
@click.option('--debug', is_flag=True, help='Enable debug logging')
def spans(file_path, patch, repo, debug):
    """Print the changed spans of FILE_PATH as JSON, without references."""
    _configure_logging(False, debug)

    try:
        with open(patch, 'r') as f:
            patch_text = f.read()

        file_patch = patch_text
        if patch_text.startswith('diff --git') or '\n+++ ' in patch_text:
            matching = [f for f in split_diff(patch_text) if f.path == file_path]
            file_patch = matching[0].patch if matching else ''

        content = (Path(repo) / file_path).read_bytes()

        found = SpanExtractor().extract_spans(file_path, content, parse_patch(file_patch))
        click.echo(ChangedSpan.schema().dumps(found, many=True, indent=2))

    except (ReviewLensError, OSError) as e:
        _fail(str(e), debug)


@click.command()
@click.argument('file_path')
@click.option('--repo', '-r', default='.', type=click.Path(exists=True, file_okay=False), help='Path inside the repository')
@click.option('--base', '-b', default=None, help='Ref to compare against (default: merge base with origin/HEAD)')
@click.option('--config', '-c', 'config_file', default=None, type=click.Path(exists=True), help='Path to YAML configuration file')
@click.option('--timeout', type=float, default=None, help='Seconds to wait for each language server response')
@click.option('--debug', is_flag=True, help='Enable debug logging')
def references(file_path, repo, base, config_file, timeout, debug):
    """Resolve references for the changed spans of one file.

    FILE_PATH is relative to the repository root. Prints the file's entry
    (patch, spans and references) as JSON.
    """
    _configure_logging(False, debug)

    try:
        config = _load_config(config_file, timeout)
        git_analyzer = GitAnalyzer(repo)
        base_sha = git_analyzer.resolve_base(base)
        diff_text = git_analyzer.get_working_directory_diff(base_sha, include_untracked=True)

        matching = [f for f in split_diff(diff_text) if f.path == file_path]
        if not matching:
            _fail(f"{file_path} has no changes against {base or 'the default branch'}", debug)

        builder = SessionBuilder(config, cancel_event=_cancel_on_sigterm())
        file_diff = builder.apply(str(git_analyzer.git_root), matching[0])
        click.echo(file_diff.to_json(indent=2))

    except KeyboardInterrupt:
        click.echo("\n\n❌ Interrupted by user", err=True)
        sys.exit(1)
    except (ReviewLensError, OSError) as e:
        _fail(str(e), debug)


@click.group()
def cli():
    """review-lens - Find the symbols a change touches and who uses them."""
    pass


cli.add_command(analyze)
cli.add_command(spans)
cli.add_command(references)


if __name__ == '__main__':
    cli()
