"""Configuration loading for review-lens."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple
import yaml
from .errors import ConfigError
from .lsp.client import DEFAULT_REQUEST_TIMEOUT


DEFAULT_CONTEXT_LINES = 2


@dataclass(frozen=True)
class AnalyzerSpec:
    """An external language server, selected by file extension."""

    command: str
    args: Tuple[str, ...] = ()
    language_id: str = "plaintext"


_TYPESCRIPT_SERVER = ("typescript-language-server", ("--stdio",))

DEFAULT_ANALYZERS: Dict[str, AnalyzerSpec] = {
    '.go': AnalyzerSpec('gopls', (), 'go'),
    '.ts': AnalyzerSpec(*_TYPESCRIPT_SERVER, 'typescript'),
    '.tsx': AnalyzerSpec(*_TYPESCRIPT_SERVER, 'typescriptreact'),
    '.js': AnalyzerSpec(*_TYPESCRIPT_SERVER, 'javascript'),
    '.jsx': AnalyzerSpec(*_TYPESCRIPT_SERVER, 'javascriptreact'),
    '.mjs': AnalyzerSpec(*_TYPESCRIPT_SERVER, 'javascript'),
    '.cjs': AnalyzerSpec(*_TYPESCRIPT_SERVER, 'javascript'),
    '.mts': AnalyzerSpec(*_TYPESCRIPT_SERVER, 'typescript'),
    '.cts': AnalyzerSpec(*_TYPESCRIPT_SERVER, 'typescript'),
    '.py': AnalyzerSpec('pylsp', (), 'python'),
}

_KNOWN_KEYS = {'analyzers', 'request_timeout', 'generated_patterns', 'context_lines'}


@dataclass
class ReviewConfig:
    """Settings shared by the span extractor, resolver and session builder."""

    analyzers: Dict[str, AnalyzerSpec] = field(default_factory=lambda: dict(DEFAULT_ANALYZERS))
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    generated_patterns: Tuple[str, ...] = ()
    context_lines: int = DEFAULT_CONTEXT_LINES


def load_config(config_path: Optional[str] = None) -> ReviewConfig:
    """Load configuration from a YAML file, or defaults when no path given.

    Raises:
        ConfigError: If the file cannot be read or is invalid
    """
    if not config_path:
        return ReviewConfig()

    try:
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not load config {config_path}: {e}") from e

    return config_from_dict(data or {})


def config_from_dict(data: Any) -> ReviewConfig:
    """Build a ReviewConfig from parsed YAML.

    ``analyzers`` entries are merged over the built-in table; an entry
    whose command is null removes that extension.
    """
    if not isinstance(data, dict):
        raise ConfigError("Config must be a mapping")

    unknown = set(data) - _KNOWN_KEYS
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")

    config = ReviewConfig()

    analyzers = data.get('analyzers') or {}
    if not isinstance(analyzers, dict):
        raise ConfigError("'analyzers' must map file extensions to servers")
    for ext, entry in analyzers.items():
        ext = str(ext)
        ext = ext if ext.startswith('.') else f'.{ext}'
        spec = _parse_analyzer(ext, entry)
        if spec is None:
            config.analyzers.pop(ext, None)
        else:
            config.analyzers[ext] = spec

    if 'request_timeout' in data:
        try:
            config.request_timeout = float(data['request_timeout'])
        except (TypeError, ValueError) as e:
            raise ConfigError("'request_timeout' must be a number") from e
        if config.request_timeout <= 0:
            raise ConfigError("'request_timeout' must be positive")

    patterns = data.get('generated_patterns') or []
    if not isinstance(patterns, list) or not all(isinstance(p, str) for p in patterns):
        raise ConfigError("'generated_patterns' must be a list of strings")
    config.generated_patterns = tuple(patterns)

    if 'context_lines' in data:
        context_lines = data['context_lines']
        if not isinstance(context_lines, int) or context_lines < 0:
            raise ConfigError("'context_lines' must be a non-negative integer")
        config.context_lines = context_lines

    return config


def _parse_analyzer(ext: str, entry: Any) -> Optional[AnalyzerSpec]:
    if entry is None:
        return None
    if not isinstance(entry, dict):
        raise ConfigError(f"Analyzer for {ext} must be a mapping")

    command = entry.get('command')
    if command is None:
        return None
    if not isinstance(command, str) or not command:
        raise ConfigError(f"Analyzer for {ext} needs a command string")

    args = entry.get('args') or []
    if not isinstance(args, list):
        raise ConfigError(f"Analyzer args for {ext} must be a list")

    default = DEFAULT_ANALYZERS.get(ext)
    language_id = entry.get('language_id') or (default.language_id if default else 'plaintext')

    return AnalyzerSpec(command, tuple(str(a) for a in args), language_id)
