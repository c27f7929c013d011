"""Tests for assembling review sessions."""

import json
import sys
from pathlib import Path
import pytest
from review_lens.config import AnalyzerSpec, ReviewConfig
from review_lens.models import FileDiff
from review_lens.session import SessionBuilder, summarize, write_session


FAKE_SERVER = str(Path(__file__).parent / 'fake_lsp_server.py')

MAIN_GO = '''package pkg

import "fmt"

var Version = "1.0"

type Server struct {
	Name string
}

func Greet(name string) string {
	msg := "hi " + name
	return msg
}
'''

PATCH = '''diff --git a/pkg/main.go b/pkg/main.go
index 1111111..2222222 100644
--- a/pkg/main.go
+++ b/pkg/main.go
@@ -11,3 +11,3 @@
 func Greet(name string) string {
-	msg := "hello " + name
+	msg := "hi " + name
 	return msg
diff --git a/pkg/gone.go b/pkg/gone.go
deleted file mode 100644
index 3333333..0000000
--- a/pkg/gone.go
+++ /dev/null
@@ -1,2 +0,0 @@
-package pkg
-
diff --git a/docs/notes.md b/docs/notes.md
index 4444444..5555555 100644
--- a/docs/notes.md
+++ b/docs/notes.md
@@ -1 +1,2 @@
 # Notes
+More notes.
'''


@pytest.fixture
def repo_root(tmp_path):
    root = tmp_path.resolve()
    (root / 'pkg').mkdir()
    (root / 'docs').mkdir()
    (root / 'pkg' / 'main.go').write_text(MAIN_GO)
    (root / 'pkg' / 'a.go').write_text(''.join(f'a{i}\n' for i in range(1, 9)))
    (root / 'pkg' / 'b.go').write_text(''.join(f'b{i}\n' for i in range(1, 11)))
    (root / 'docs' / 'notes.md').write_text('# Notes\nMore notes.\n')
    return root


@pytest.fixture
def config(repo_root):
    analyzer = AnalyzerSpec(sys.executable, (FAKE_SERVER, 'references', str(repo_root)), 'go')
    return ReviewConfig(analyzers={'.go': analyzer}, request_timeout=5.0)


def test_build_from_patch(repo_root, config):
    """Patch mode runs spans and references for every file without git."""
    session = SessionBuilder(config).build(repo_root, patch_text=PATCH)

    assert session.repo.root == str(repo_root)
    assert session.repo.repo_name == repo_root.name
    assert session.generated_at
    assert [f.path for f in session.files] == ['pkg/main.go', 'pkg/gone.go', 'docs/notes.md']

    main = session.files[0]
    assert main.references_checked
    assert main.analysis_error is None
    assert [s.name for s in main.changed_spans] == ['Greet']

    refs = main.changed_spans[0].references
    assert [(r.path, r.line) for r in refs] == [('pkg/a.go', 5), ('pkg/b.go', 10)]


def test_reference_context_is_attached(repo_root, config):
    session = SessionBuilder(config).build(repo_root, patch_text=PATCH)
    first, second = session.files[0].changed_spans[0].references

    assert first.context == 'a3\na4\na5\na6\na7'
    assert first.context_start_line == 3
    # Clipped at the end of the file
    assert second.context == 'b8\nb9\nb10'
    assert second.context_start_line == 8


def test_files_without_lookups(repo_root, config):
    """Removed and unsupported files carry no spans but still count as checked."""
    session = SessionBuilder(config).build(repo_root, patch_text=PATCH)
    gone, notes = session.files[1], session.files[2]

    assert gone.status == 'removed'
    assert gone.changed_spans == []
    assert notes.language is None
    assert notes.changed_spans == []
    assert notes.references_checked


def test_summary(repo_root, config):
    session = SessionBuilder(config, resolve_references=False).build(repo_root, patch_text=PATCH)

    assert (session.summary.files, session.summary.add, session.summary.deleted) == (3, 2, 3)
    assert summarize([]).files == 0


def test_references_can_be_skipped(repo_root, config):
    session = SessionBuilder(config, resolve_references=False).build(repo_root, patch_text=PATCH)
    main = session.files[0]

    assert [s.name for s in main.changed_spans] == ['Greet']
    assert main.changed_spans[0].references == []
    assert not main.references_checked


def test_unreadable_file_degrades(repo_root, config):
    (repo_root / 'pkg' / 'main.go').unlink()

    session = SessionBuilder(config).build(repo_root, patch_text=PATCH)
    main = session.files[0]

    assert main.changed_spans == []
    assert not main.references_checked
    assert 'could not read' in main.analysis_error


def test_analyzer_failure_degrades(repo_root):
    analyzer = AnalyzerSpec('definitely-not-a-language-server-binary', (), 'go')
    builder = SessionBuilder(ReviewConfig(analyzers={'.go': analyzer}))

    main = builder.apply(repo_root, FileDiff(path='pkg/main.go', status='modified', patch=PATCH.split('diff --git')[1]))

    assert [s.name for s in main.changed_spans] == ['Greet']
    assert main.changed_spans[0].references == []
    assert not main.references_checked
    assert main.analysis_error


def test_session_json_layout(repo_root, config, tmp_path):
    session = SessionBuilder(config, resolve_references=False).build(repo_root, patch_text=PATCH)
    output = tmp_path / 'session.json'

    payload = write_session(session, str(output))
    data = json.loads(output.read_text())

    assert data == json.loads(payload)
    assert set(data) == {'repo', 'files', 'summary', 'generatedAt'}
    assert data['summary'] == {'files': 3, 'add': 2, 'del': 3}
    assert data['repo']['repoName'] == repo_root.name
    span = data['files'][0]['changedSpans'][0]
    assert span['anchorLine'] == 10
    assert span['anchorColumn'] == 5
    assert data['files'][0]['referencesChecked'] is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
