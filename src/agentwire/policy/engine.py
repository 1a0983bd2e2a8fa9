"""
Path access policy for the file toolset.

Every file operation goes through a PathGuard before touching the disk:
    1. Resolve: relative paths are joined to the configured working
       directory, never the process cwd; absolute paths must lie inside
       the working directory
    2. Containment: the resolved path must equal an allowed root or sit
       below ``root + os.sep``, both lexically and after following symlinks
    3. Blacklist: basename, full path and working-dir-relative path are
       matched against glob patterns and exact entries

Each failed step raises an AccessError subclass whose message is written
for the model: it says what was denied and why, so the model can pick a
different path without human help.

The guard is fail-closed: a path that cannot be resolved or checked is
denied.
"""

import os
from fnmatch import fnmatch

import structlog
from pydantic import BaseModel, ConfigDict, Field

from agentwire.errors import PathBlacklistedError, PathNotAllowedError, PathResolutionError
from agentwire.schema import FileSystemConfig


def is_within(path: str, root: str) -> bool:
    """
    Containment test on normalized absolute paths.

    True iff ``path`` equals ``root`` or starts with ``root + os.sep``.
    A bare prefix test would let ``/foo/bar`` admit ``/foo/barbaz``.
    """
    if path == root:
        return True
    prefix = root if root.endswith(os.sep) else root + os.sep
    return path.startswith(prefix)


class AccessPolicy(BaseModel):
    """
    Immutable sandbox description built once per toolset.

    Attributes:
        working_dir: Absolute, normalized base for relative paths
        allowed_roots: Absolute, normalized roots; always includes working_dir
        blacklist_patterns: Glob patterns (or exact paths) that are never accessible
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    working_dir: str = Field(..., description="Base directory for relative paths")
    allowed_roots: tuple[str, ...] = Field(..., description="Allowed directory roots")
    blacklist_patterns: tuple[str, ...] = Field(default=(), description="Denied patterns")

    @classmethod
    def build(cls, config: FileSystemConfig, working_dir: str) -> "AccessPolicy":
        """
        Build a policy from configuration.

        Relative allowed directories are taken relative to ``working_dir``.
        The working directory is always the first root.
        """
        base = os.path.normpath(os.path.abspath(os.path.expanduser(working_dir)))

        roots: list[str] = [base]
        for directory in config.allowed_directories:
            expanded = os.path.expanduser(directory)
            if not os.path.isabs(expanded):
                expanded = os.path.join(base, expanded)
            root = os.path.normpath(expanded)
            if root not in roots:
                roots.append(root)

        return cls(
            working_dir=base,
            allowed_roots=tuple(roots),
            blacklist_patterns=tuple(config.blacklisted_files),
        )


class PathGuard:
    """
    Applies an AccessPolicy to caller-supplied paths.

    Stateless apart from the policy, so one guard may be shared by threads.
    """

    def __init__(
        self,
        policy: AccessPolicy,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self.policy = policy
        self._logger = logger or structlog.get_logger(__name__)
        self._real_roots = tuple(os.path.realpath(r) for r in policy.allowed_roots)

    @property
    def working_dir(self) -> str:
        return self.policy.working_dir

    def resolve(self, path: str) -> str:
        """
        Turn a caller path into a normalized absolute path.

        Raises:
            PathResolutionError: If an absolute path lies outside the working directory
            PathNotAllowedError: If the path contains a null byte
        """
        if "\x00" in path:
            raise PathNotAllowedError(
                message="file access denied: path contains a null byte",
                path=path.replace("\x00", "\\0"),
            )
        expanded = os.path.expanduser(path) if path.startswith("~") else path
        if os.path.isabs(expanded):
            resolved = os.path.normpath(expanded)
            if not is_within(resolved, self.working_dir):
                raise PathResolutionError(path=path, working_dir=self.working_dir)
            return resolved
        return os.path.normpath(os.path.join(self.working_dir, expanded))

    def check_allowed(self, resolved: str) -> None:
        """
        Verify that a resolved path lies under an allowed root.

        The real path (symlinks followed) must also stay under the real path
        of some allowed root, which stops a link inside the sandbox from
        pointing outside it.

        Raises:
            PathNotAllowedError: If either check fails
        """
        if not any(is_within(resolved, root) for root in self.policy.allowed_roots):
            self._logger.info("access_denied", path=resolved, rule="allowed_roots")
            raise PathNotAllowedError(path=resolved)

        real = os.path.realpath(resolved)
        if not any(is_within(real, root) for root in self._real_roots):
            self._logger.warning("access_denied", path=resolved, real_path=real, rule="symlink")
            raise PathNotAllowedError(
                message=(
                    "file access denied: path is not within allowed directories "
                    f"({resolved} resolves to {real})"
                ),
                path=resolved,
            )

    def check_blacklist(self, resolved: str) -> None:
        """
        Verify that a resolved path matches no blacklisted pattern.

        Raises:
            PathBlacklistedError: Naming the matching pattern
        """
        match = self._match_blacklist(resolved)
        if match is None:
            return

        pattern, exact, matched = match
        self._logger.info("access_denied", path=resolved, rule="blacklist", pattern=pattern)
        if exact:
            raise PathBlacklistedError(
                message=f"file access denied: {matched} is blacklisted",
                path=matched,
                pattern=pattern,
            )
        raise PathBlacklistedError(path=matched, pattern=pattern)

    def _match_blacklist(self, resolved: str) -> tuple[str, bool, str] | None:
        name = os.path.basename(resolved)
        relative = os.path.relpath(resolved, self.working_dir)
        candidates = (name, resolved, relative)

        for pattern in self.policy.blacklist_patterns:
            for candidate in candidates:
                if fnmatch(candidate, pattern):
                    return pattern, False, candidate
            if pattern in candidates:
                return pattern, True, resolved
        return None

    def authorize(self, path: str, blacklist: bool = True) -> str:
        """
        Resolve and check a path in one step.

        Args:
            path: Path as supplied by the model
            blacklist: Also apply the blacklist (file operations); directory
                listings and searches only need containment

        Returns:
            The resolved absolute path

        Raises:
            AccessError: Subclass describing the first failed check
        """
        resolved = self.resolve(path)
        self.check_allowed(resolved)
        if blacklist:
            self.check_blacklist(resolved)
        return resolved

    def relative(self, resolved: str) -> str:
        """Path relative to the working directory when inside it, else unchanged."""
        if is_within(resolved, self.working_dir):
            return os.path.relpath(resolved, self.working_dir)
        return resolved
