"""Locate the declarations touched by a diff using tree-sitter."""

import logging
import os
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union
from tree_sitter import Language, Node, Parser
from .errors import SpanExtractionError
from .models import ChangedSpan

logger = logging.getLogger(__name__)


LANGUAGE_BY_EXTENSION = {
    '.go': 'go',
    '.js': 'javascript',
    '.jsx': 'javascript',
    '.mjs': 'javascript',
    '.cjs': 'javascript',
    '.ts': 'typescript',
    '.mts': 'typescript',
    '.cts': 'typescript',
    '.tsx': 'tsx',
    '.py': 'python',
}

# Minified bundles, protobuf output, code generators and lock files
GENERATED_SUFFIXES = (
    '.min.js',
    '.pb.go',
    '_gen.go',
    'generated.go',
    '_pb2.py',
    '_pb2_grpc.py',
    'package-lock.json',
    'yarn.lock',
    'pnpm-lock.yaml',
    'go.sum',
    'poetry.lock',
)


@dataclass(frozen=True)
class DeclarationKind:
    """How to treat one grammar node type as a declaration.

    Attributes:
        name_path: Field names followed from the node to its name token
        top_level_only: Only counts when no other declaration encloses it
        wrapper: Replaces a declaration it directly wraps (decorators)
    """

    name_path: Tuple[str, ...] = ('name',)
    top_level_only: bool = False
    wrapper: bool = False


_JS_DECLARATIONS = {
    'function_declaration': DeclarationKind(),
    'generator_function_declaration': DeclarationKind(),
    'class_declaration': DeclarationKind(),
    'method_definition': DeclarationKind(),
    'variable_declarator': DeclarationKind(top_level_only=True),
}

_TS_DECLARATIONS = dict(
    _JS_DECLARATIONS,
    abstract_class_declaration=DeclarationKind(),
    interface_declaration=DeclarationKind(),
    type_alias_declaration=DeclarationKind(),
    enum_declaration=DeclarationKind(),
)

DECLARATION_KINDS: Dict[str, Dict[str, DeclarationKind]] = {
    'go': {
        'function_declaration': DeclarationKind(),
        'method_declaration': DeclarationKind(),
        'type_spec': DeclarationKind(),
        'type_alias': DeclarationKind(),
        'var_spec': DeclarationKind(top_level_only=True),
        'const_spec': DeclarationKind(top_level_only=True),
    },
    'javascript': _JS_DECLARATIONS,
    'typescript': _TS_DECLARATIONS,
    'tsx': _TS_DECLARATIONS,
    'python': {
        'function_definition': DeclarationKind(),
        'class_definition': DeclarationKind(),
        'decorated_definition': DeclarationKind(name_path=('definition', 'name'), wrapper=True),
        'assignment': DeclarationKind(name_path=('left',), top_level_only=True),
    },
}


def detect_language(file_path: str) -> Optional[str]:
    """Return the grammar name for a path, or None if unsupported."""
    _, ext = os.path.splitext(file_path)
    return LANGUAGE_BY_EXTENSION.get(ext.lower())


def is_generated(file_path: str, extra_patterns: Sequence[str] = ()) -> bool:
    """Check whether a path looks like generated or vendored output."""
    name = file_path.replace('\\', '/')
    return any(name.endswith(suffix) for suffix in (*GENERATED_SUFFIXES, *extra_patterns))


def _load_languages() -> Dict[str, Language]:
    """Load every installed tree-sitter grammar we know how to use."""
    languages = {}

    try:
        import tree_sitter_go as tsgo
        languages['go'] = Language(tsgo.language())
    except ImportError:
        logger.debug("tree-sitter-go not installed")

    try:
        import tree_sitter_javascript as tsjavascript
        languages['javascript'] = Language(tsjavascript.language())
    except ImportError:
        logger.debug("tree-sitter-javascript not installed")

    try:
        import tree_sitter_typescript as tstypescript
        # TypeScript ships two grammars: plain and TSX
        languages['typescript'] = Language(tstypescript.language_typescript())
        languages['tsx'] = Language(tstypescript.language_tsx())
    except ImportError:
        logger.debug("tree-sitter-typescript not installed")

    try:
        import tree_sitter_python as tspython
        languages['python'] = Language(tspython.language())
    except ImportError:
        logger.debug("tree-sitter-python not installed")

    return languages


class SpanExtractor:
    """Find the declarations enclosing changed lines of a file.

    Parsers are created lazily per language and reused across files.
    Instances are not thread-safe.
    """

    def __init__(self, generated_patterns: Sequence[str] = ()):
        self.generated_patterns = tuple(generated_patterns)
        self._languages = _load_languages()
        self._parsers: Dict[str, Parser] = {}

    @property
    def supported_languages(self) -> List[str]:
        return sorted(self._languages)

    def _get_parser(self, language: str) -> Optional[Parser]:
        if language not in self._languages:
            return None
        parser = self._parsers.get(language)
        if parser is None:
            parser = Parser(self._languages[language])
            self._parsers[language] = parser
        return parser

    def extract_spans(
        self,
        file_path: str,
        content: Union[bytes, str],
        changed_lines: Iterable[int]
    ) -> List[ChangedSpan]:
        """Extract deduplicated changed spans from a file.

        Args:
            file_path: Path used for language detection
            content: Full source of the new file version
            changed_lines: 1-based line numbers from the diff

        Returns:
            One ChangedSpan per distinct enclosing declaration, in the order
            the changed lines first reach them. Generated files and files
            with no registered grammar yield an empty list.

        Raises:
            SpanExtractionError: If the file cannot be parsed
        """
        if is_generated(file_path, self.generated_patterns):
            logger.debug("Skipping generated file %s", file_path)
            return []

        language = detect_language(file_path)
        parser = self._get_parser(language) if language else None
        if parser is None:
            return []

        if isinstance(content, str):
            content = content.encode('utf-8')

        try:
            tree = parser.parse(content)
        except (ValueError, RuntimeError) as e:
            raise SpanExtractionError(f"Failed to parse {file_path}: {e}") from e
        if tree is None or tree.root_node is None:
            raise SpanExtractionError(f"Failed to parse {file_path}")

        root = tree.root_node
        kinds = DECLARATION_KINDS[language]
        spans = []
        seen = set()

        for line in changed_lines:
            if line < 1:
                continue
            point = (line - 1, 0)
            node = root.named_descendant_for_point_range(point, point)
            if node is None:
                continue

            declaration = find_enclosing_declaration(node, kinds)
            # Column 0 can land above the declaration that owns the row: on
            # the keyword of a wrapping statement (`var`, `type`, `export`),
            # or in the body of a class before an indented method
            while True:
                tighter = find_declaration_within(declaration or node, line - 1, kinds)
                if tighter is None:
                    break
                declaration = tighter
            if declaration is None:
                continue

            key = (declaration.type, declaration.start_byte, declaration.end_byte)
            if key in seen:
                continue
            seen.add(key)

            spans.append(self._build_span(declaration, kinds[declaration.type]))

        return spans

    def _build_span(self, node: Node, kind: DeclarationKind) -> ChangedSpan:
        name, name_node = resolve_name(node, kind)

        anchor_line, anchor_column = 0, 0
        if name_node is not None:
            anchor_line, anchor_column = name_node.start_point

        return ChangedSpan(
            name=name,
            kind=node.type,
            start_line=node.start_point[0] + 1,
            end_line=node.end_point[0] + 1,
            anchor_line=anchor_line,
            anchor_column=anchor_column,
        )


def find_enclosing_declaration(node: Node, kinds: Dict[str, DeclarationKind]) -> Optional[Node]:
    """Walk up from ``node`` to the nearest declaration in ``kinds``.

    Top-level-only kinds are passed over when another declaration encloses
    them, so a local variable resolves to its function. A wrapper kind
    directly around the result (a decorated Python definition) replaces it.
    """
    current = node
    while current is not None:
        declaration = _as_declaration(current, kinds)
        if declaration is not None:
            return declaration
        current = current.parent
    return None


def find_declaration_within(node: Node, row: int, kinds: Dict[str, DeclarationKind]) -> Optional[Node]:
    """Search below ``node`` for the first declaration whose rows cover ``row``.

    Returns None when nothing tighter than ``node`` itself covers the row.
    """
    for child in node.named_children:
        if child.start_point[0] <= row <= child.end_point[0]:
            declaration = _as_declaration(child, kinds)
            if declaration is not None and declaration != node:
                return declaration
            return find_declaration_within(child, row, kinds)
    return None


def _as_declaration(node: Node, kinds: Dict[str, DeclarationKind]) -> Optional[Node]:
    """The declaration ``node`` stands for, or None if it is not one."""
    kind = kinds.get(node.type)
    if kind is None:
        return None
    if kind.wrapper:
        return node
    if kind.top_level_only and _has_declaration_ancestor(node, kinds):
        return None
    parent = node.parent
    if parent is not None and parent.type in kinds and kinds[parent.type].wrapper:
        return parent
    return node


def _has_declaration_ancestor(node: Node, kinds: Dict[str, DeclarationKind]) -> bool:
    current = node.parent
    while current is not None:
        kind = kinds.get(current.type)
        if kind is not None and not kind.top_level_only:
            return True
        current = current.parent
    return False


def resolve_name(node: Node, kind: DeclarationKind) -> Tuple[str, Optional[Node]]:
    """Follow the kind's name path to the identifier token.

    Falls back to the node's type name, with no token, when the path is
    missing.
    """
    target = node
    for field_name in kind.name_path:
        target = target.child_by_field_name(field_name)
        if target is None:
            break

    if target is None:
        # Fallback: try a plain "name" field
        target = node.child_by_field_name('name')

    if target is None or target.text is None:
        return node.type, None

    return target.text.decode('utf-8', errors='replace'), target
