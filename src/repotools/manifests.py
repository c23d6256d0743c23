import codecs
import re
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from .dependency import DependencyRecord
from .error_handling import (
    ErrorCategory,
    ManifestError,
    MissingResourceError,
    get_error_handler,
    log_manifest_error,
)
from .repositories import Repository
from .structured_logging import log_manifest_scan

DEFAULT_MANIFEST_NAME = "packages.config"

_TRUE_VALUES = {"true", "1", "yes", "on"}

# Start of the root element, after any declaration, comments or doctype
_FIRST_ELEMENT = re.compile(r"<[A-Za-z_]")


def parse_bool(value: Optional[str]) -> bool:
    """Interpret a boolean-like attribute; absent means False."""
    if value is None:
        return False
    return value.strip().lower() in _TRUE_VALUES


def find_manifests(root: Path, manifest_name: str = DEFAULT_MANIFEST_NAME) -> List[Path]:
    """
    Recursively find manifest files beneath ``root``.

    Paths are sorted so discovery order only depends on the tree's contents.
    """
    root = Path(root)
    if not root.is_dir():
        return []
    return sorted(
        (path for path in root.rglob(manifest_name) if path.is_file()),
        key=lambda p: p.relative_to(root).parts,
    )


def _load_manifest(path: Path) -> ET.ElementTree:
    try:
        return ET.parse(path)
    except ET.ParseError as e:
        log_manifest_error(
            f"Invalid XML in manifest: {e}", "manifests", "parse_manifest", str(path), e
        )
        raise ManifestError(f"Invalid XML in manifest {path}: {e}", str(path)) from e
    except OSError as e:
        log_manifest_error(
            f"Cannot read manifest: {e}", "manifests", "parse_manifest", str(path), e
        )
        raise ManifestError(f"Cannot read manifest {path}: {e}", str(path)) from e


def parse_manifest(
    path: Path, project: Optional[str] = None, repository: str = ""
) -> List[DependencyRecord]:
    """
    Parse one packages.config file.

    Args:
        path: Manifest file
        project: Owning project name, defaults to the parent directory name
        repository: Repository name recorded on each record

    Returns:
        List[DependencyRecord]: One record per package entry, in file order

    Raises:
        ManifestError: If the file is not well-formed or an entry lacks id/version
    """
    path = Path(path)
    project = project or path.parent.name
    root = _load_manifest(path).getroot()

    records = []
    for position, element in enumerate(root.iter("package"), start=1):
        package_id = (element.get("id") or "").strip()
        version = (element.get("version") or "").strip()
        if not package_id or not version:
            message = f"Package entry {position} in {path} is missing 'id' or 'version'"
            log_manifest_error(message, "manifests", "parse_manifest", str(path))
            raise ManifestError(message, str(path))

        records.append(
            DependencyRecord(
                referencing_project=project,
                package_id=package_id,
                version=version,
                is_dev_dependency=parse_bool(element.get("developmentDependency")),
                repository=repository,
                manifest_path=str(path),
            )
        )

    return records


def scan_repository(
    repository: Repository, manifest_name: str = DEFAULT_MANIFEST_NAME
) -> List[DependencyRecord]:
    """
    Parse every manifest in a repository's source tree.

    Raises:
        MissingResourceError: If the repository is not checked out
        ManifestError: If any manifest is malformed
    """
    if not repository.exists:
        get_error_handler().error(
            ErrorCategory.MISSING_RESOURCE,
            f"Repository not found: {repository.path}",
            "manifests",
            "scan_repository",
            details={"repository": repository.name},
            suggestions=["Clone the repository or check workspace.root"],
        )
        raise MissingResourceError(f"Repository not found: {repository.path}")

    if not repository.source_path.is_dir():
        get_error_handler().warning(
            ErrorCategory.MISSING_RESOURCE,
            f"{repository.name} has no source tree at {repository.source_path}",
            "manifests",
            "scan_repository",
            details={"repository": repository.name},
        )
        return []

    manifests = find_manifests(repository.source_path, manifest_name)
    records: List[DependencyRecord] = []
    for manifest in manifests:
        records.extend(parse_manifest(manifest, repository=repository.name))

    log_manifest_scan(repository.name, len(manifests), len(records))
    return records


def aggregate_dependencies(
    repositories: Iterable[Repository], manifest_name: str = DEFAULT_MANIFEST_NAME
) -> List[DependencyRecord]:
    """Concatenate the records of each repository, in the order given."""
    records: List[DependencyRecord] = []
    for repository in repositories:
        records.extend(scan_repository(repository, manifest_name))
    return records


def _read_manifest_text(path: Path) -> Tuple[str, str]:
    """Return the manifest text and the encoding that writes it back unchanged."""
    try:
        raw = path.read_bytes()
    except OSError as e:
        log_manifest_error(
            f"Cannot read manifest: {e}", "manifests", "update_manifest_versions", str(path), e
        )
        raise ManifestError(f"Cannot read manifest {path}: {e}", str(path)) from e

    encoding = "utf-8-sig" if raw.startswith(codecs.BOM_UTF8) else "utf-8"
    try:
        return raw.decode(encoding), encoding
    except UnicodeDecodeError as e:
        log_manifest_error(
            f"Manifest is not UTF-8: {e}", "manifests", "update_manifest_versions", str(path), e
        )
        raise ManifestError(f"Manifest {path} is not UTF-8: {e}", str(path)) from e


def update_manifest_versions(path: Path, versions: Dict[str, str]) -> int:
    """
    Rewrite the version of matching package entries in place.

    Comments, the XML declaration, a byte order mark, indentation and line
    endings are kept; only the changed ``version`` attributes differ
    afterwards.

    Args:
        path: Manifest file
        versions: package id -> new version; ids match case-insensitively

    Returns:
        int: Number of entries changed; the file is only written when > 0
    """
    path = Path(path)
    text, encoding = _read_manifest_text(path)

    parser = ET.XMLParser(target=ET.TreeBuilder(insert_comments=True))
    try:
        parser.feed(text)
        root = parser.close()
    except ET.ParseError as e:
        log_manifest_error(
            f"Invalid XML in manifest: {e}", "manifests", "update_manifest_versions", str(path), e
        )
        raise ManifestError(f"Invalid XML in manifest {path}: {e}", str(path)) from e

    by_id = {package_id.lower(): version for package_id, version in versions.items()}
    changed = 0
    for element in root.iter("package"):
        new_version = by_id.get(element.get("id", "").lower())
        if new_version and element.get("version") != new_version:
            element.set("version", new_version)
            changed += 1

    if changed:
        first_element = _FIRST_ELEMENT.search(text)
        prolog = text[: first_element.start()] if first_element else ""
        trailing = text[len(text.rstrip()):]
        # The parser folds CRLF into LF
        body = ET.tostring(root, encoding="unicode")
        if "\r\n" in text:
            body = body.replace("\n", "\r\n")
        with open(path, "w", encoding=encoding, newline="") as f:
            f.write(prolog + body + trailing)
    return changed
