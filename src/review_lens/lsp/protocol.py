"""JSON-RPC framing and LSP message helpers."""

import json
import os
from pathlib import Path
from typing import Any, BinaryIO, Dict, Optional, Union
from urllib.parse import unquote, urlparse

JSONRPC_VERSION = "2.0"
CONTENT_LENGTH = "content-length"


def encode_message(payload: Dict[str, Any]) -> bytes:
    """Frame a JSON-RPC payload as ``Content-Length: n\\r\\n\\r\\n<body>``."""
    body = json.dumps(payload, separators=(',', ':')).encode('utf-8')
    header = f"Content-Length: {len(body)}\r\n\r\n".encode('ascii')
    return header + body


def read_message(stream: BinaryIO) -> Optional[bytes]:
    """Read one framed message body from ``stream``.

    Returns:
        The raw body, ``b''`` for a frame without a usable Content-Length
        (the caller should skip it), or None at end of stream.
    """
    content_length = 0
    while True:
        line = stream.readline()
        if not line:
            return None
        line = line.strip()
        if not line:
            break
        name, _, value = line.decode('ascii', errors='replace').partition(':')
        if name.strip().lower() == CONTENT_LENGTH:
            try:
                content_length = int(value.strip())
            except ValueError:
                content_length = 0

    if content_length <= 0:
        return b''

    body = stream.read(content_length)
    if body is None or len(body) < content_length:
        return None
    return body


def request(request_id: int, method: str, params: Any) -> Dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "method": method, "params": params}


def notification(method: str, params: Any) -> Dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "method": method, "params": params}


def response(request_id: Any, result: Any) -> Dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def path_to_uri(path: Union[str, Path]) -> str:
    """Convert a filesystem path to an absolute ``file://`` URI."""
    return Path(path).resolve().as_uri()


def uri_to_path(uri: str) -> str:
    """Convert a ``file://`` URI back to a filesystem path.

    Non-file URIs are returned unchanged.
    """
    parsed = urlparse(uri)
    if parsed.scheme != 'file':
        return uri
    return unquote(parsed.path)


def relative_to_root(path: str, root: Union[str, Path]) -> str:
    """Express ``path`` relative to ``root`` when it lies inside it."""
    root = Path(root).resolve()
    for candidate in (Path(path), Path(path).resolve()):
        try:
            return candidate.relative_to(root).as_posix()
        except ValueError:
            continue
    return path


def initialize_params(root: Union[str, Path]) -> Dict[str, Any]:
    return {
        "processId": os.getpid(),
        "rootUri": path_to_uri(root),
        "capabilities": {},
    }


def did_open_params(uri: str, language_id: str, text: str, version: int = 1) -> Dict[str, Any]:
    return {
        "textDocument": {
            "uri": uri,
            "languageId": language_id,
            "version": version,
            "text": text,
        }
    }


def reference_params(uri: str, line: int, character: int) -> Dict[str, Any]:
    """Parameters for ``textDocument/references`` at a 0-based position."""
    return {
        "textDocument": {"uri": uri},
        "position": {"line": line, "character": character},
        "context": {"includeDeclaration": False},
    }


def server_request_result(method: str, params: Any) -> Any:
    """Minimal answer to a request the server sends to the client."""
    if method == 'workspace/configuration':
        items = params.get('items', []) if isinstance(params, dict) else []
        return [{} for _ in items]
    if method == 'workspace/workspaceFolders':
        return []
    # workDoneProgress/create, registerCapability, showMessageRequest, ...
    return None
