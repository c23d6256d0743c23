"""
Version resolution from repository tags and local prerelease versions.
"""

import re
from datetime import datetime, timezone
from typing import Optional

from .error_handling import ErrorCategory, VersionError, get_error_handler
from .repositories import Repository
from .tools import ToolRunner

VERSION_PATTERN = re.compile(
    r"(?<![\w.])v?(?P<version>\d+\.\d+\.\d+(?:-[0-9A-Za-z][0-9A-Za-z.-]*)?)(?![\w.])"
)


def extract_version(text: str) -> Optional[str]:
    """Return the first MAJOR.MINOR.PATCH[-pre] token in ``text``."""
    for line in text.splitlines():
        match = VERSION_PATTERN.search(line.strip())
        if match:
            return match.group("version")
    return None


def resolve_version(
    repository: Repository, runner: ToolRunner, git: str = "git"
) -> str:
    """
    Determine a repository's version from its most recent tag.

    Raises:
        ToolInvocationError: If git fails (e.g. no tags at all)
        VersionError: If the tag holds no recognizable version
    """
    result = runner.run([git, "describe", "--tags", "--abbrev=0"], cwd=repository.path)
    version = extract_version(result.stdout)
    if version is None:
        message = f"No version found in tag output for {repository.name}: {result.stdout.strip()!r}"
        get_error_handler().error(
            ErrorCategory.CONFIGURATION,
            message,
            "versioning",
            "resolve_version",
            suggestions=["Tag the repository with a MAJOR.MINOR.PATCH version"],
        )
        raise VersionError(message)
    return version


def base_version(version: str) -> str:
    """Strip any prerelease or build suffix."""
    return re.split(r"[-+]", version, maxsplit=1)[0]


def local_version(
    version: str, suffix: str = "local", stamp: Optional[str] = None
) -> str:
    """
    Build the prerelease version used for locally built packages.

    >>> local_version("1.4.2", stamp="20260101120000")
    '1.4.2-local20260101120000'
    """
    if stamp is None:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    return f"{base_version(version)}-{suffix}{stamp}"
