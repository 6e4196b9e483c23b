"""Exclude-filtered recursive copy of a source tree into the build directory."""

import shutil
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from pathlib import Path, PurePosixPath
from typing import Callable, List, Sequence, Set

from aibs_informatics_lambda_deploy.common.logging import get_service_logger

logger = get_service_logger(__name__)

MANIFEST_FILENAME = "requirements.txt"

DEFAULT_EXCLUDE_GLOBS = (
    ".git*",
    "*.swp",
    ".editorconfig",
    ".lambda",
    "deploy.env",
    "*.log",
    "/build/",
)


@dataclass(frozen=True)
class ExcludePattern:
    """A single exclude glob.

    A leading "/" anchors the pattern at the source root, a trailing "/" restricts
    it to directories, any other "/" matches the relative path at any depth and a
    plain pattern matches the base name.
    """

    pattern: str
    anchored: bool
    directory_only: bool

    @classmethod
    def parse(cls, glob: str) -> "ExcludePattern":
        directory_only = glob.endswith("/")
        anchored = glob.startswith("/")
        return cls(
            pattern=glob.strip("/"),
            anchored=anchored,
            directory_only=directory_only,
        )

    def matches(self, relative_path: PurePosixPath, is_dir: bool) -> bool:
        if self.directory_only and not is_dir:
            return False
        if self.anchored:
            return fnmatchcase(relative_path.as_posix(), self.pattern)
        if "/" in self.pattern:
            path = relative_path.as_posix()
            return fnmatchcase(path, self.pattern) or fnmatchcase(path, f"*/{self.pattern}")
        return fnmatchcase(relative_path.name, self.pattern)


@dataclass
class ExcludeRules:
    """Exclusion rules applied while staging the build directory.

    Attributes:
        globs: Exclude globs, defaults first, then caller supplied ones.
        include_manifest: Whether the root `requirements.txt` is always copied.
    """

    globs: Sequence[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE_GLOBS))
    include_manifest: bool = True

    def __post_init__(self):
        self._patterns: List[ExcludePattern] = [ExcludePattern.parse(g) for g in self.globs]

    @classmethod
    def build(
        cls, extra_globs: Sequence[str] = (), include_manifest: bool = True
    ) -> "ExcludeRules":
        return cls(
            globs=[*DEFAULT_EXCLUDE_GLOBS, *extra_globs], include_manifest=include_manifest
        )

    def is_excluded(self, relative_path: PurePosixPath, is_dir: bool) -> bool:
        if (
            self.include_manifest
            and not is_dir
            and relative_path == PurePosixPath(MANIFEST_FILENAME)
        ):
            return False
        return any(p.matches(relative_path, is_dir) for p in self._patterns)

    def as_ignore(self, source_root: Path) -> Callable[[str, List[str]], Set[str]]:
        """Adapt the rules to the `ignore` callable of `shutil.copytree`."""

        def ignore(directory: str, names: List[str]) -> Set[str]:
            parent = Path(directory).relative_to(source_root)
            ignored = set()
            for name in names:
                relative_path = PurePosixPath(parent.as_posix()) / name
                if self.is_excluded(relative_path, (Path(directory) / name).is_dir()):
                    ignored.add(name)
            return ignored

        return ignore


def copy_filtered(source: Path, destination: Path, rules: ExcludeRules) -> Path:
    """Recursively copy `source` into `destination`, skipping excluded paths.

    Symbolic links are dereferenced. Excluded directories are skipped wholesale.

    Args:
        source (Path): Root of the tree to copy.
        destination (Path): Target directory. Created if missing.
        rules (ExcludeRules): The exclusion rules.

    Returns:
        The destination path.
    """
    logger.info(f"Copying {source} to {destination}")
    destination.mkdir(parents=True, exist_ok=True)
    shutil.copytree(
        source,
        destination,
        symlinks=False,
        ignore=rules.as_ignore(source),
        dirs_exist_ok=True,
    )
    return destination
