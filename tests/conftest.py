"""
Shared fixtures: a workspace with checked-out repositories and a fake tool runner.
"""

from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from repotools.config import reset_config
from repotools.error_handling import ToolInvocationError, get_error_handler
from repotools.tools import ToolResult, ToolRunner


def write_manifest(path: Path, packages) -> Path:
    """Write a packages.config with (id, version[, dev]) entries."""
    lines = ['<?xml version="1.0" encoding="utf-8"?>', "<packages>"]
    for entry in packages:
        package_id, version = entry[0], entry[1]
        dev = ' developmentDependency="true"' if len(entry) > 2 and entry[2] else ""
        lines.append(
            f'  <package id="{package_id}" version="{version}" targetFramework="net48"{dev} />'
        )
    lines.append("</packages>")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


class FakeToolRunner(ToolRunner):
    """Records commands instead of running them.

    ``on`` registers the stdout (a string, or a callable over the argument
    list) for commands matching a predicate; ``fail`` makes matching
    commands exit non-zero.
    """

    def __init__(self):
        self.calls: List[Dict] = []
        self.handlers: List = []
        self.failures: List = []

    def on(self, predicate: Callable[[List[str]], bool], stdout="") -> "FakeToolRunner":
        self.handlers.append((predicate, stdout))
        return self

    def fail(self, predicate: Callable[[List[str]], bool], returncode: int = 1, stderr: str = "boom"):
        self.failures.append((predicate, returncode, stderr))
        return self

    def commands(self, tool: Optional[str] = None) -> List[List[str]]:
        return [c["command"] for c in self.calls if tool is None or c["command"][0] == tool]

    def run(self, command, cwd=None) -> ToolResult:
        args = [str(arg) for arg in command]
        self.calls.append({"command": args, "cwd": cwd})

        for predicate, returncode, stderr in self.failures:
            if predicate(args):
                raise ToolInvocationError(args, returncode, stderr=stderr, cwd=str(cwd))

        stdout = ""
        for predicate, output in self.handlers:
            if predicate(args):
                stdout = output(args) if callable(output) else output
                break
        return ToolResult(command=args, returncode=0, stdout=stdout, stderr="")


def nuget_pack_output(args: List[str]) -> str:
    """Imitate ``nuget pack`` by creating the package file it reports."""
    nuspec = Path(args[2])
    version = args[args.index("-Version") + 1]
    output_dir = Path(args[args.index("-OutputDirectory") + 1])
    package = output_dir / f"{nuspec.stem}.{version}.nupkg"
    package.write_bytes(b"PK")
    return f"Attempting to build package from '{nuspec.name}'.\nSuccessfully created package '{package}'.\n"


@pytest.fixture(autouse=True)
def clean_state(monkeypatch):
    """Isolate tests from user config, environment and error counters."""
    for name in (
        "REPOTOOLS_ROOT",
        "REPOTOOLS_LOG_LEVEL",
        "REPOTOOLS_FEED_URL",
        "REPOTOOLS_GIT",
        "REPOTOOLS_NUGET",
        "REPOTOOLS_MSBUILD",
        "NUGET_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    get_error_handler().reset_stats()
    yield
    reset_config()


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """Workspace with Platform.Core and Platform.Data checked out.

    Platform.Core references Newtonsoft.Json 12.0.3, Platform.Data
    references 13.0.1, so the two conflict. Platform.Data also consumes
    Platform.Core.Abstractions.
    """
    root = tmp_path / "workspace"
    core = root / "Platform.Core"
    data = root / "Platform.Data"

    write_manifest(
        core / "source" / "Core.Api" / "packages.config",
        [("Newtonsoft.Json", "12.0.3"), ("Serilog", "2.10.0"), ("StyleCop.Analyzers", "1.1.118", True)],
    )
    write_manifest(
        core / "source" / "Core.Abstractions" / "packages.config",
        [("Serilog", "2.10.0")],
    )
    (core / "source" / "Platform.Core.sln").write_text("", encoding="utf-8")
    (core / "source" / "Core.Abstractions" / "Platform.Core.Abstractions.nuspec").write_text(
        "<package />", encoding="utf-8"
    )

    write_manifest(
        data / "source" / "Data.Access" / "packages.config",
        [
            ("Newtonsoft.Json", "13.0.1"),
            ("Platform.Core.Abstractions", "1.4.0"),
            ("StyleCop.Analyzers", "1.2.0", True),
        ],
    )
    (data / "source" / "Platform.Data.sln").write_text("", encoding="utf-8")

    for repo in (core, data):
        (repo / ".git").mkdir()

    monkeypatch.chdir(tmp_path)
    return root


@pytest.fixture
def fake_runner():
    return FakeToolRunner()
