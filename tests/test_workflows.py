"""
Workflow tests: git operations, versioning, packaging, publishing and local updates.

External tools are replaced by FakeToolRunner; the feed is served by
httpx.MockTransport.
"""

import shutil
import stat
import sys

import httpx
import pytest

from conftest import nuget_pack_output, write_manifest
from repotools.error_handling import (
    ConfigurationError,
    FeedError,
    FilesystemError,
    MissingResourceError,
    PackagingError,
    ToolInvocationError,
    VersionError,
    get_error_handler,
)
from repotools.feed_client import FeedClient
from repotools.git_ops import (
    git_hooks_directory,
    install_hooks,
    parse_status_output,
    pull_repository,
    repository_status,
)
from repotools.local_update import find_dependents, local_update
from repotools.manifests import parse_manifest
from repotools.packaging import (
    BuildTools,
    build_and_package,
    build_solution,
    find_solution,
    is_symbols_package,
    parse_package_filename,
    publish_packages,
)
from repotools.repositories import Repository, resolve_repository_set
from repotools.tools import ToolRunner
from repotools.versioning import base_version, extract_version, local_version, resolve_version

FLAT_CONTAINER = "https://feed.example.test/v3-flatcontainer"


def is_pack(args):
    return args[0] == "nuget" and args[1] == "pack"


def is_describe(args):
    return args[:2] == ["git", "describe"]


def feed_transport(published):
    """MockTransport serving ``{lowercase id: [versions]}``."""

    def handler(request: httpx.Request) -> httpx.Response:
        package_id = request.url.path.split("/")[-2]
        if package_id not in published:
            return httpx.Response(404)
        return httpx.Response(200, json={"versions": published[package_id]})

    return httpx.MockTransport(handler)


@pytest.fixture
def core(workspace):
    return Repository("Platform.Core", workspace / "Platform.Core")


@pytest.fixture
def data(workspace):
    return Repository("Platform.Data", workspace / "Platform.Data")


@pytest.fixture
def hooks_dir(workspace):
    hooks = workspace / "hooks"
    hooks.mkdir()
    (hooks / "pre-commit").write_text("#!/bin/sh\n", encoding="utf-8")
    return hooks


class TestToolRunner:
    """Test the real subprocess runner."""

    def test_missing_executable(self):
        """Test missing executable."""
        with pytest.raises(MissingResourceError):
            ToolRunner().run(["definitely-not-a-real-tool-xyz", "--help"])

    def test_successful_run(self, tmp_path):
        """Test captured output."""
        result = ToolRunner().run([sys.executable, "-c", "print('hello')"], cwd=tmp_path)
        assert result.returncode == 0
        assert result.lines == ["hello"]

    def test_non_zero_exit_raises(self):
        """Test non-zero exit status."""
        with pytest.raises(ToolInvocationError) as exc_info:
            ToolRunner().run(
                [sys.executable, "-c", "import sys; sys.stderr.write('bad'); sys.exit(3)"]
            )
        assert exc_info.value.returncode == 3
        assert exc_info.value.stderr == "bad"

    def test_empty_command(self):
        """Test empty command."""
        with pytest.raises(ValueError):
            ToolRunner().run([])

    def test_missing_working_directory(self, tmp_path):
        """Test a command that cannot be started."""
        with pytest.raises(ToolInvocationError) as exc_info:
            ToolRunner().run([sys.executable, "-c", "pass"], cwd=tmp_path / "gone")
        assert exc_info.value.returncode == 126


class TestGitOperations:
    """Test status parsing, pulling and hook installation."""

    def test_parse_status_with_tracking(self):
        """Test status with tracking info and changes."""
        status = parse_status_output(
            "Platform.Core",
            "## main...origin/main [ahead 2, behind 1]\n M src/a.cs\nA  src/b.cs\n?? notes.txt\n",
        )

        assert status.branch == "main"
        assert status.upstream == "origin/main"
        assert (status.ahead, status.behind) == (2, 1)
        assert status.changed_files == 2
        assert status.untracked_files == 1
        assert not status.is_clean
        assert not status.is_synced

    def test_parse_clean_branch_without_upstream(self):
        """Test clean branch without upstream."""
        status = parse_status_output("Platform.Core", "## release/1.2\n")

        assert status.branch == "release/1.2"
        assert status.upstream is None
        assert status.is_clean and status.is_synced

    def test_repository_status_runs_git(self, core, fake_runner):
        """Test status command line."""
        fake_runner.on(lambda a: a[1] == "status", "## main...origin/main\n")

        status = repository_status(core, fake_runner)

        assert status.repository == "Platform.Core"
        assert fake_runner.calls[0]["command"] == ["git", "status", "--porcelain", "--branch"]
        assert fake_runner.calls[0]["cwd"] == core.path

    def test_status_of_missing_repository(self, workspace, fake_runner):
        """Test status of a missing checkout."""
        with pytest.raises(MissingResourceError):
            repository_status(Repository("Platform.Web", workspace / "Platform.Web"), fake_runner)
        assert fake_runner.calls == []

    def test_pull_uses_configured_args(self, core, fake_runner):
        """Test configured pull arguments."""
        pull_repository(core, fake_runner, "git", ["--rebase"])
        assert fake_runner.commands() == [["git", "pull", "--rebase"]]

    def test_pull_failure_propagates(self, core, fake_runner):
        """Test pull failure."""
        fake_runner.fail(lambda a: a[1] == "pull", returncode=128)
        with pytest.raises(ToolInvocationError):
            pull_repository(core, fake_runner)

    def test_install_hooks(self, workspace, core, data):
        """Test hooks copied and made executable."""
        hooks_dir = workspace / "hooks"
        hooks_dir.mkdir()
        (hooks_dir / "pre-commit").write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
        (hooks_dir / "commit-msg").write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")

        result = install_hooks([core, data], hooks_dir)

        assert result.errors == []
        assert result.installed == ["Platform.Core", "Platform.Data"]
        assert result.hooks == ["commit-msg", "pre-commit"]
        installed = core.path / ".git" / "hooks" / "pre-commit"
        assert installed.read_text(encoding="utf-8") == "#!/bin/sh\nexit 0\n"
        assert installed.stat().st_mode & stat.S_IXUSR

    def test_install_hooks_skips_invalid_repository(self, workspace, core):
        """Test skip policy."""
        hooks_dir = workspace / "hooks"
        hooks_dir.mkdir()
        (hooks_dir / "pre-commit").write_text("#!/bin/sh\n", encoding="utf-8")
        (workspace / "Platform.Web").mkdir()
        web = Repository("Platform.Web", workspace / "Platform.Web")

        result = install_hooks([web, core], hooks_dir, on_invalid_repository="skip")

        assert result.skipped == ["Platform.Web"]
        assert result.installed == ["Platform.Core"]
        assert len(result.errors) == 1
        assert get_error_handler().has_errors()

    def test_install_hooks_abort_policy(self, workspace, core):
        """Test abort policy."""
        hooks_dir = workspace / "hooks"
        hooks_dir.mkdir()
        web = Repository("Platform.Web", workspace / "Platform.Web")

        with pytest.raises(ConfigurationError):
            install_hooks([web, core], hooks_dir, on_invalid_repository="abort")
        assert not (core.path / ".git" / "hooks").exists()

    def test_missing_hooks_dir(self, workspace, core):
        """Test missing hooks directory."""
        with pytest.raises(MissingResourceError):
            install_hooks([core], workspace / "no-hooks")

    def test_install_hooks_through_gitdir_file(self, workspace, data, hooks_dir):
        """Test a .git file pointing at a relative git directory."""
        git_dir = workspace / ".modules" / "Platform.Data"
        git_dir.mkdir(parents=True)
        shutil.rmtree(data.path / ".git")
        (data.path / ".git").write_text("gitdir: ../.modules/Platform.Data\n", encoding="utf-8")

        result = install_hooks([data], hooks_dir)

        assert result.installed == ["Platform.Data"]
        assert git_hooks_directory(data) == data.path / ".." / ".modules" / "Platform.Data" / "hooks"
        assert (git_dir / "hooks" / "pre-commit").exists()

    def test_linked_worktree_uses_common_hooks(self, workspace, core, hooks_dir):
        """Test linked worktrees share the main repository's hooks."""
        main_git = workspace / "main-clone" / ".git"
        worktree_git = main_git / "worktrees" / "feature"
        worktree_git.mkdir(parents=True)
        (worktree_git / "commondir").write_text("../..\n", encoding="utf-8")
        shutil.rmtree(core.path / ".git")
        (core.path / ".git").write_text(f"gitdir: {worktree_git}\n", encoding="utf-8")

        install_hooks([core], hooks_dir)

        assert (main_git / "hooks" / "pre-commit").exists()
        assert not (worktree_git / "hooks").exists()

    def test_dangling_gitdir_file_is_invalid(self, workspace, core, hooks_dir):
        """Test a .git file pointing nowhere."""
        shutil.rmtree(core.path / ".git")
        (core.path / ".git").write_text("gitdir: ../gone\n", encoding="utf-8")

        result = install_hooks([core], hooks_dir)

        assert git_hooks_directory(core) is None
        assert result.skipped == ["Platform.Core"]

    def test_unwritable_hooks_location(self, core, data, hooks_dir):
        """Test filesystem failures stop the batch."""
        (core.path / ".git" / "hooks").write_text("not a directory", encoding="utf-8")

        with pytest.raises(FilesystemError):
            install_hooks([core, data], hooks_dir)

        assert get_error_handler().get_error_stats() == {"FILESYSTEM_ERROR": 1}
        assert not (data.path / ".git" / "hooks").exists()


class TestVersioning:
    """Test version extraction and local versions."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("v1.4.2\n", "1.4.2"),
            ("1.4.2", "1.4.2"),
            ("release-2.0.0-beta.1", "2.0.0-beta.1"),
            ("no version here", None),
            ("", None),
        ],
    )
    def test_extract_version(self, text, expected):
        """Test version extraction from tag names."""
        assert extract_version(text) == expected

    def test_resolve_version(self, core, fake_runner):
        """Test version from git describe."""
        fake_runner.on(is_describe, "v1.4.2\n")

        assert resolve_version(core, fake_runner) == "1.4.2"
        assert fake_runner.commands() == [["git", "describe", "--tags", "--abbrev=0"]]

    def test_resolve_version_without_version_tag(self, core, fake_runner):
        """Test tag without a version."""
        fake_runner.on(is_describe, "nightly\n")
        with pytest.raises(VersionError):
            resolve_version(core, fake_runner)

    def test_local_version(self):
        """Test local prerelease versions."""
        assert local_version("1.4.2", stamp="20260101120000") == "1.4.2-local20260101120000"
        assert local_version("1.4.2-beta.3", "dev", "7") == "1.4.2-dev7"

    def test_local_version_default_stamp(self):
        """Test default timestamp."""
        version = local_version("1.0.0")
        assert version.startswith("1.0.0-local")
        assert len(version) == len("1.0.0-local") + 14

    def test_base_version(self):
        """Test prerelease stripping."""
        assert base_version("2.1.0-rc.1+build5") == "2.1.0"


class TestPackaging:
    """Test build, pack and publish command sequences."""

    def test_build_solution(self, core, fake_runner):
        """Test restore and build command lines."""
        solution = build_solution(core, fake_runner, BuildTools(configuration="Debug"))

        assert solution.name == "Platform.Core.sln"
        assert fake_runner.commands() == [
            ["nuget", "restore", str(solution), "-NonInteractive"],
            ["msbuild", str(solution), "/p:Configuration=Debug", "/verbosity:minimal", "/nologo"],
        ]

    def test_find_solution_missing(self, workspace):
        """Test missing solution file."""
        (workspace / "Platform.Tools" / "source").mkdir(parents=True)
        with pytest.raises(MissingResourceError):
            find_solution(Repository("Platform.Tools", workspace / "Platform.Tools"))

    def test_build_and_package(self, core, fake_runner, tmp_path):
        """Test packaging every nuspec."""
        fake_runner.on(is_pack, nuget_pack_output)
        output_dir = tmp_path / "out"

        packages = build_and_package(core, "1.4.2", fake_runner, output_dir)

        assert packages == {output_dir / "Platform.Core.Abstractions.1.4.2.nupkg"}
        pack_command = fake_runner.commands()[-1]
        assert pack_command[:3] == ["nuget", "pack", str(core.source_path / "Core.Abstractions" / "Platform.Core.Abstractions.nuspec")]
        assert "-Version" in pack_command and "1.4.2" in pack_command

    def test_build_failure_stops_packaging(self, core, fake_runner, tmp_path):
        """Test build failure skips packing."""
        fake_runner.fail(lambda a: a[0] == "msbuild")

        with pytest.raises(ToolInvocationError):
            build_and_package(core, "1.4.2", fake_runner, tmp_path / "out")
        assert not any(is_pack(c) for c in fake_runner.commands())

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("Platform.Core.1.4.2.nupkg", ("Platform.Core", "1.4.2")),
            ("Platform.Core.Abstractions.1.4.2-local20260101120000.nupkg", ("Platform.Core.Abstractions", "1.4.2-local20260101120000")),
            ("Platform.Core.1.4.2.7.nupkg", ("Platform.Core", "1.4.2.7")),
            ("Platform.Core.2.0.0-beta.1.symbols.nupkg", ("Platform.Core", "2.0.0-beta.1")),
            ("Platform.Core.2.0.0.symbols.nupkg", ("Platform.Core", "2.0.0")),
        ],
    )
    def test_parse_package_filename(self, name, expected):
        """Test package file names."""
        assert parse_package_filename(name) == expected

    @pytest.mark.parametrize("name", ["readme.txt", "Platform.Core.nupkg", "Platform.Core.1.4.nupkg"])
    def test_parse_package_filename_invalid(self, name):
        """Test names that are not package files."""
        with pytest.raises(PackagingError):
            parse_package_filename(name)

    def test_symbols_package_detection(self):
        """Test symbols package detection."""
        assert is_symbols_package("Platform.Core.2.0.0.symbols.nupkg")
        assert not is_symbols_package("Platform.Core.2.0.0.nupkg")

    def test_publish_leaves_symbols_to_nuget(self, fake_runner, tmp_path):
        """Test symbols packages are not pushed on their own."""
        package = tmp_path / "A.1.0.0.nupkg"
        symbols = tmp_path / "A.1.0.0.symbols.nupkg"

        result = publish_packages([symbols, package], fake_runner, "https://feed", "k3y")

        assert result.pushed == [package]
        assert [c[2] for c in fake_runner.commands()] == [str(package)]

    def test_publish_rejects_foreign_file_before_pushing(self, fake_runner, tmp_path):
        """Test an unrecognized file stops publishing."""
        with pytest.raises(PackagingError):
            publish_packages([tmp_path / "notes.nupkg"], fake_runner, "https://feed", "k3y")
        assert fake_runner.commands() == []

    def test_publish_requires_api_key(self, fake_runner, tmp_path):
        """Test publishing without an API key."""
        with pytest.raises(ConfigurationError):
            publish_packages([tmp_path / "A.1.0.0.nupkg"], fake_runner, "https://feed", None)

    def test_publish_pushes_with_api_key(self, fake_runner, tmp_path):
        """Test push command line."""
        package = tmp_path / "A.1.0.0.nupkg"

        result = publish_packages([package], fake_runner, "https://feed", "k3y")

        assert result.pushed == [package]
        assert fake_runner.commands() == [
            ["nuget", "push", str(package), "-Source", "https://feed", "-ApiKey", "k3y", "-NonInteractive"]
        ]

    def test_publish_skips_published_versions(self, fake_runner, tmp_path):
        """Test already published versions are skipped."""
        old = tmp_path / "Platform.Core.1.4.2.nupkg"
        new = tmp_path / "Platform.Data.2.0.0.nupkg"
        transport = feed_transport({"platform.core": ["1.4.1", "1.4.2"], "platform.data": ["1.0.0"]})

        with FeedClient(FLAT_CONTAINER, transport=transport) as client:
            result = publish_packages([old, new], fake_runner, "https://feed", "k3y", feed_client=client)

        assert result.skipped == [old]
        assert result.pushed == [new]

    def test_publish_force(self, fake_runner, tmp_path):
        """Test forced push."""
        old = tmp_path / "Platform.Core.1.4.2.nupkg"
        transport = feed_transport({"platform.core": ["1.4.2"]})

        with FeedClient(FLAT_CONTAINER, transport=transport) as client:
            result = publish_packages([old], fake_runner, "https://feed", "k3y", feed_client=client, force=True)

        assert result.pushed == [old]

    def test_publish_stops_at_first_failure(self, fake_runner, tmp_path):
        """Test push failure stops publishing."""
        first = tmp_path / "A.1.0.0.nupkg"
        second = tmp_path / "B.1.0.0.nupkg"
        fake_runner.fail(lambda a: a[1] == "push" and a[2] == str(first))

        with pytest.raises(ToolInvocationError) as exc_info:
            publish_packages([second, first], fake_runner, "https://feed", "k3y")

        assert "k3y" not in str(exc_info.value)
        assert len(fake_runner.commands()) == 1


class TestFeedClient:
    """Test the flat-container feed client."""

    def test_published_versions(self):
        """Test version listing."""
        transport = feed_transport({"newtonsoft.json": ["12.0.3", "13.0.1"]})
        with FeedClient(FLAT_CONTAINER, transport=transport) as client:
            assert client.get_published_versions("Newtonsoft.Json") == ["12.0.3", "13.0.1"]
            assert client.is_published("Newtonsoft.Json", "13.0.1")
            assert not client.is_published("Newtonsoft.Json", "14.0.0")

    def test_unknown_package(self):
        """Test unknown package."""
        with FeedClient(FLAT_CONTAINER, transport=feed_transport({})) as client:
            assert client.get_published_versions("Nope") == []

    def test_server_error(self):
        """Test server error."""
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        with FeedClient(FLAT_CONTAINER, transport=transport) as client:
            with pytest.raises(FeedError):
                client.get_published_versions("Serilog")

    def test_network_error(self):
        """Test network error."""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with FeedClient(FLAT_CONTAINER, transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(FeedError):
                client.get_published_versions("Serilog")

    def test_invalid_json(self):
        """Test invalid JSON body."""
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>"))
        with FeedClient(FLAT_CONTAINER, transport=transport) as client:
            with pytest.raises(FeedError):
                client.get_published_versions("Serilog")

    def test_requires_context_manager(self):
        """Test use outside a with block."""
        with pytest.raises(FeedError):
            FeedClient(FLAT_CONTAINER).get_published_versions("Serilog")

    def test_request_url_and_headers(self):
        """Test request URL and headers."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"versions": []})

        with FeedClient(FLAT_CONTAINER + "/", user_agent="repotools-test", transport=httpx.MockTransport(handler)) as client:
            client.get_published_versions("Platform.Core")

        assert str(seen[0].url) == f"{FLAT_CONTAINER}/platform.core/index.json"
        assert seen[0].headers["User-Agent"] == "repotools-test"


class TestLocalUpdate:
    """Test the local build-and-substitute workflow."""

    def test_find_dependents(self, workspace):
        """Test dependent repository discovery."""
        candidates = resolve_repository_set(None, workspace)

        dependents = find_dependents(["platform.core.abstractions"], candidates)

        assert [r.name for r in dependents] == ["Platform.Data"]

    def test_local_update_discovers_dependents(self, workspace, core, data, fake_runner, tmp_path):
        """Test local update of discovered dependents."""
        fake_runner.on(is_describe, "v1.4.2\n").on(is_pack, nuget_pack_output)
        feed = tmp_path / "local-feed"

        result = local_update(
            core,
            fake_runner,
            feed,
            candidates=resolve_repository_set(None, workspace),
            stamp="20260101120000",
        )

        version = "1.4.2-local20260101120000"
        assert result.version == version
        assert result.packages == {
            "Platform.Core.Abstractions": feed / f"Platform.Core.Abstractions.{version}.nupkg"
        }
        assert result.updated_repositories == ["Platform.Data"]

        manifest = data.source_path / "Data.Access" / "packages.config"
        versions = {r.package_id: r.version for r in parse_manifest(manifest)}
        assert versions["Platform.Core.Abstractions"] == version
        assert versions["Newtonsoft.Json"] == "13.0.1"

        solution = data.source_path / "Platform.Data.sln"
        assert fake_runner.commands()[-1] == [
            "nuget", "restore", str(solution), "-NonInteractive", "-Source", str(feed)
        ]

    def test_explicit_targets_without_references(self, workspace, core, fake_runner, tmp_path):
        """Test explicit targets that reference nothing."""
        fake_runner.on(is_describe, "v1.4.2\n").on(is_pack, nuget_pack_output)
        other = workspace / "Platform.Web"
        write_manifest(other / "source" / "Web.App" / "packages.config", [("Serilog", "2.10.0")])
        web = Repository("Platform.Web", other)

        result = local_update(core, fake_runner, tmp_path / "feed", targets=[web], stamp="1")

        assert result.updated_repositories == []
        assert result.updated_manifests == {"Platform.Web": []}
        assert not any(c[1] == "restore" and "Platform.Web" in c[2] for c in fake_runner.commands())

    def test_failed_build_leaves_manifests_untouched(self, workspace, core, data, fake_runner, tmp_path):
        """Test failed build leaves manifests alone."""
        fake_runner.on(is_describe, "v1.4.2\n").fail(lambda a: a[0] == "msbuild")
        manifest = data.source_path / "Data.Access" / "packages.config"
        before = manifest.read_text(encoding="utf-8")

        with pytest.raises(ToolInvocationError):
            local_update(core, fake_runner, tmp_path / "feed", targets=[data], stamp="1")

        assert manifest.read_text(encoding="utf-8") == before

    def test_symbols_packages_not_substituted(self, workspace, core, data, fake_runner, tmp_path):
        """Test symbols packages are not substituted."""
        feed = tmp_path / "local-feed"

        def pack_with_symbols(args):
            output = nuget_pack_output(args)
            symbols = feed / "Platform.Core.Abstractions.1.4.2-local1.symbols.nupkg"
            symbols.write_bytes(b"PK")
            return output + f"Successfully created package '{symbols}'.\n"

        fake_runner.on(is_describe, "v1.4.2\n").on(is_pack, pack_with_symbols)

        result = local_update(core, fake_runner, feed, targets=[data], stamp="1")

        assert result.packages == {
            "Platform.Core.Abstractions": feed / "Platform.Core.Abstractions.1.4.2-local1.nupkg"
        }
        assert result.updated_repositories == ["Platform.Data"]
