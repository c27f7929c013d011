"""Tests for tree-sitter span extraction."""

import pytest
from review_lens.language_support import SpanExtractor, detect_language, is_generated


GO_SOURCE = b'''package main

import "fmt"

var Version = "1.0"

type Server struct {
	Name string
}

func Greet(name string) string {
	msg := "hi " + name
	return msg
}

func (s *Server) Start() error {
	return nil
}
'''

JS_SOURCE = b'''export function add(a, b) {
  return a + b;
}

class Counter {
  increment() {
    this.count += 1;
  }
}

const LIMIT = 10;
'''

TS_SOURCE = b'''interface Shape {
  area(): number;
}
type Id = string;
enum Color { Red }
'''

PY_SOURCE = b'''import os

TIMEOUT = 5

@cache
def load(path):
    data = open(path).read()
    return data

class Loader:
    def run(self):
        return load("x")
'''


@pytest.fixture(scope="module")
def extractor():
    return SpanExtractor()


def names(spans):
    return [span.name for span in spans]


def test_detect_language():
    assert detect_language('cmd/main.go') == 'go'
    assert detect_language('web/App.tsx') == 'tsx'
    assert detect_language('lib/index.mjs') == 'javascript'
    assert detect_language('tool.py') == 'python'
    assert detect_language('README.md') is None


def test_is_generated():
    assert is_generated('api/service.pb.go')
    assert is_generated('web/package-lock.json')
    assert is_generated('dist/app.min.js')
    assert not is_generated('cmd/main.go')
    assert is_generated('schema/models.gen.ts', ['.gen.ts'])


def test_go_function_span(extractor):
    """A changed line inside a function yields that function with its name token."""
    spans = extractor.extract_spans('main.go', GO_SOURCE, [12])

    assert len(spans) == 1
    span = spans[0]
    assert span.name == 'Greet'
    assert span.kind == 'function_declaration'
    assert (span.start_line, span.end_line) == (11, 14)
    assert (span.anchor_line, span.anchor_column) == (10, 5)
    assert span.references == []


def test_lines_in_one_declaration_are_deduplicated(extractor):
    spans = extractor.extract_spans('main.go', GO_SOURCE, [11, 12, 13, 14])

    assert names(spans) == ['Greet']


def test_go_declaration_kinds(extractor):
    """Top-level vars, type specs and methods are all found, even from column 0."""
    spans = extractor.extract_spans('main.go', GO_SOURCE, [5, 7, 17])

    assert names(spans) == ['Version', 'Server', 'Start']
    assert [s.kind for s in spans] == ['var_spec', 'type_spec', 'method_declaration']
    assert (spans[0].anchor_line, spans[0].anchor_column) == (4, 4)
    assert (spans[1].start_line, spans[1].end_line) == (7, 9)
    assert (spans[2].anchor_line, spans[2].anchor_column) == (15, 17)


def test_spans_follow_changed_line_order(extractor):
    spans = extractor.extract_spans('main.go', GO_SOURCE, [17, 12])

    assert names(spans) == ['Start', 'Greet']


def test_lines_outside_declarations_are_ignored(extractor):
    # package clause, blank line and import
    assert extractor.extract_spans('main.go', GO_SOURCE, [1, 2, 3]) == []


def test_local_variable_resolves_to_function(extractor):
    """`msg := ...` is local, so the enclosing function is reported."""
    spans = extractor.extract_spans('main.go', GO_SOURCE, [12])

    assert spans[0].kind == 'function_declaration'


def test_javascript_spans(extractor):
    spans = extractor.extract_spans('src/counter.js', JS_SOURCE, [2, 7, 11])

    assert names(spans) == ['add', 'increment', 'LIMIT']
    assert [s.kind for s in spans] == ['function_declaration', 'method_definition', 'variable_declarator']
    assert (spans[0].anchor_line, spans[0].anchor_column) == (0, 16)
    assert (spans[1].anchor_line, spans[1].anchor_column) == (5, 2)


def test_typescript_spans(extractor):
    spans = extractor.extract_spans('src/shape.ts', TS_SOURCE, [2, 4, 5])

    assert names(spans) == ['Shape', 'Id', 'Color']
    assert [s.kind for s in spans] == ['interface_declaration', 'type_alias_declaration', 'enum_declaration']


def test_python_spans(extractor):
    spans = extractor.extract_spans('loader.py', PY_SOURCE, [3, 7, 12])

    assert names(spans) == ['TIMEOUT', 'load', 'run']
    assert spans[0].kind == 'assignment'
    # The decorator is part of the span, the anchor stays on the name
    assert spans[1].kind == 'decorated_definition'
    assert (spans[1].start_line, spans[1].end_line) == (5, 8)
    assert (spans[1].anchor_line, spans[1].anchor_column) == (5, 4)
    assert spans[2].kind == 'function_definition'
    assert spans[2].start_line == 11


def test_indented_method_header_resolves_to_method(extractor):
    """A changed signature line inside a class belongs to the method, not the class."""
    js_spans = extractor.extract_spans('src/counter.js', JS_SOURCE, [6])
    py_spans = extractor.extract_spans('loader.py', PY_SOURCE, [11])

    assert [(s.name, s.kind) for s in js_spans] == [('increment', 'method_definition')]
    assert [(s.name, s.kind) for s in py_spans] == [('run', 'function_definition')]


def test_decorated_method_keeps_its_decorator(extractor):
    source = b'class Api:\n    @route\n    def get(self):\n        return 1\n'

    spans = extractor.extract_spans('api.py', source, [2, 3])

    assert [(s.name, s.kind, s.start_line) for s in spans] == [('get', 'decorated_definition', 2)]


def test_str_content_is_accepted(extractor):
    spans = extractor.extract_spans('main.go', GO_SOURCE.decode('utf-8'), [12])

    assert names(spans) == ['Greet']


def test_generated_and_unknown_files_yield_nothing(extractor):
    assert extractor.extract_spans('api/service.pb.go', GO_SOURCE, [12]) == []
    assert extractor.extract_spans('notes.txt', b'hello\n', [1]) == []


def test_configured_generated_patterns():
    extractor = SpanExtractor(generated_patterns=['_mock.go'])

    assert extractor.extract_spans('store_mock.go', GO_SOURCE, [12]) == []


def test_out_of_range_lines_are_ignored(extractor):
    assert extractor.extract_spans('main.go', GO_SOURCE, [0, -3, 500]) == []


def test_supported_languages(extractor):
    assert {'go', 'javascript', 'typescript', 'tsx', 'python'} <= set(extractor.supported_languages)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
