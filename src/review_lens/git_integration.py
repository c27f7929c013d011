"""Git integration for collecting repository context and diffs."""

import logging
import subprocess
from pathlib import Path
from typing import List, Optional
from .errors import GitError
from .models import RepoInfo

logger = logging.getLogger(__name__)


class GitAnalyzer:
    """Run git commands against a working tree."""

    def __init__(self, repo_path: str):
        """Initialize git analyzer.

        Args:
            repo_path: Path inside a git working tree

        Raises:
            GitError: If the path is not inside a git repository
        """
        self.repo_path = Path(repo_path).resolve()

        if not self._is_git_repo():
            raise GitError(f"Not a git repository: {repo_path}")

        # Diff paths are relative to the top level, so work from there
        self.git_root = self._get_git_root()

    def _is_git_repo(self) -> bool:
        """Check if path is a git repository."""
        try:
            self._run_git_command(['rev-parse', '--git-dir'], cwd=self.repo_path)
            return True
        except (subprocess.CalledProcessError, OSError):
            return False

    def _get_git_root(self) -> Path:
        """Get the git repository root directory.

        Returns:
            Path to git root
        """
        try:
            root = self._run_git_command(['rev-parse', '--show-toplevel'], cwd=self.repo_path).strip()
        except subprocess.CalledProcessError as e:
            raise GitError(f"Failed to find repository root: {e}") from e
        return Path(root).resolve()

    def _run_git_command(self, args: list, cwd: Optional[Path] = None) -> str:
        """Run a git command in the repository.

        Args:
            args: Git command arguments
            cwd: Directory to run in (defaults to the repository root)

        Returns:
            Command output
        """
        cmd = ['git', '-C', str(cwd or self.git_root)] + args
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=True
        )
        return result.stdout

    def get_current_branch(self) -> str:
        """Get current branch name.

        Returns:
            Current branch name or 'HEAD' if detached
        """
        try:
            return self._run_git_command(['rev-parse', '--abbrev-ref', 'HEAD']).strip()
        except subprocess.CalledProcessError:
            return 'HEAD'

    def get_head(self) -> str:
        """Get the full SHA of HEAD, or an empty string in a fresh repository."""
        try:
            return self._run_git_command(['rev-parse', 'HEAD']).strip()
        except subprocess.CalledProcessError:
            return ''

    def get_default_branch(self) -> Optional[str]:
        """Get the remote's default branch (e.g. ``origin/main``).

        Returns:
            Branch ref, or None if the remote HEAD is unknown
        """
        try:
            branch = self._run_git_command(['rev-parse', '--abbrev-ref', 'origin/HEAD']).strip()
        except subprocess.CalledProcessError:
            return None
        return branch or None

    def get_merge_base(self, ref: str, other: str = 'HEAD') -> str:
        """Get the merge base of two refs.

        Raises:
            GitError: If git cannot compute it
        """
        try:
            return self._run_git_command(['merge-base', ref, other]).strip()
        except subprocess.CalledProcessError as e:
            raise GitError(f"Failed to find merge-base with {ref}: {e.stderr.strip() or e}") from e

    def get_remote_url(self) -> str:
        """Get the origin URL, or an empty string when there is no origin."""
        try:
            return self._run_git_command(['config', '--get', 'remote.origin.url']).strip()
        except subprocess.CalledProcessError:
            return ''

    def resolve_base(self, base: Optional[str] = None) -> str:
        """Pick the commit the working tree is compared against.

        An explicit ``base`` is used as given. Otherwise the merge base with
        the remote's default branch is used, falling back to HEAD when the
        repository has no remote default branch.

        Raises:
            GitError: If the chosen ref does not resolve
        """
        if base:
            try:
                return self._run_git_command(['rev-parse', '--verify', f'{base}^{{commit}}']).strip()
            except subprocess.CalledProcessError as e:
                raise GitError(f"Unknown base ref {base}: {e.stderr.strip() or e}") from e

        default_branch = self.get_default_branch()
        if default_branch is None:
            logger.warning("No origin/HEAD in %s; comparing against HEAD", self.git_root)
            head = self.get_head()
            if not head:
                raise GitError(f"Repository {self.git_root} has no commits")
            return head

        return self.get_merge_base(default_branch)

    def get_repo_info(self, base: Optional[str] = None) -> RepoInfo:
        """Collect the git context for a session.

        Raises:
            GitError: If the comparison base cannot be determined
        """
        remote = self.get_remote_url()
        return RepoInfo(
            root=str(self.git_root),
            branch=self.get_current_branch(),
            head=self.get_head(),
            base=self.resolve_base(base),
            remote=remote,
            repo_name=repo_name_from_remote(remote) or self.git_root.name,
        )

    def get_working_directory_diff(self, base: str, include_untracked: bool = False) -> str:
        """Get diff of working directory changes against a base commit.

        Args:
            base: Commit to compare against
            include_untracked: Include untracked (new) files in the diff

        Returns:
            Unified diff text

        Raises:
            GitError: If git diff fails
        """
        try:
            tracked_diff = self._run_git_command([
                'diff', '--no-color', '--no-ext-diff',
                # Fixed prefixes regardless of diff.noprefix / diff.mnemonicPrefix
                '--src-prefix=a/', '--dst-prefix=b/',
                base,
            ])
        except subprocess.CalledProcessError as e:
            raise GitError(f"Failed to get working directory diff: {e.stderr.strip() or e}") from e

        if not include_untracked:
            return tracked_diff

        untracked_diffs = []
        for file_path in self._get_untracked_files():
            file_diff = self._generate_new_file_diff(file_path)
            if file_diff:
                untracked_diffs.append(file_diff)

        all_diffs = [tracked_diff] if tracked_diff.strip() else []
        all_diffs.extend(untracked_diffs)

        return ''.join(all_diffs)

    def _get_untracked_files(self) -> List[str]:
        """Get list of untracked files.

        Returns:
            List of untracked file paths
        """
        try:
            # Get untracked files, excluding ignored files
            output = self._run_git_command(['ls-files', '--others', '--exclude-standard'])
        except subprocess.CalledProcessError:
            return []
        return [f.strip() for f in output.strip().split('\n') if f.strip()]

    def _generate_new_file_diff(self, file_path: str) -> Optional[str]:
        """Generate a unified diff for a new (untracked) file.

        Args:
            file_path: Path to the new file (relative to repo root)

        Returns:
            Unified diff string for the new file, or None if unreadable
        """
        full_path = self.git_root / file_path

        if not full_path.is_file():
            return None

        try:
            content = full_path.read_text(encoding='utf-8')
        except (UnicodeDecodeError, OSError):
            # Skip binary files or unreadable files
            return None

        lines = content.split('\n')
        if lines and lines[-1] == '':
            lines.pop()
        if not lines:
            return None

        diff_lines = [
            f"diff --git a/{file_path} b/{file_path}",
            "new file mode 100644",
            "--- /dev/null",
            f"+++ b/{file_path}",
            f"@@ -0,0 +1,{len(lines)} @@",
        ]
        diff_lines.extend(f"+{line}" for line in lines)

        return '\n'.join(diff_lines) + '\n'


def repo_name_from_remote(remote: str) -> str:
    """Extract the repository name from a remote URL.

    Handles ``https://host/owner/repo.git`` and ``git@host:owner/repo.git``.
    """
    remote = remote.strip().rstrip('/')
    if not remote:
        return ''
    name = remote.replace(':', '/').split('/')[-1]
    if name.endswith('.git'):
        name = name[:-4]
    return name
