"""Tests for argument parsing and the command line entry point."""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest

from conftest import FakeMarshaler, FakeRegistry, MemoryCache, make_package
from xpkgdep.args import parse_args
from xpkgdep.cli import main, run_command
from xpkgdep.config import CONFIG_KEYS
from xpkgdep.constants import Constants, ExitCodes
from xpkgdep.dep.models import Dependency, GroupVersionKind
from xpkgdep.errors import Cancelled, MalformedPackage, Timeout
from xpkgdep.manager import Manager

WIDGET = GroupVersionKind("example.org", "v1", "Widget")
SCHEMA = {
    "type": "object",
    "properties": {"spec": {"type": "object", "required": ["size"]}},
    "required": ["spec"],
}


@pytest.fixture(autouse=True)
def isolated(monkeypatch, tmp_path):
    """Keep CLI runs away from the user's config and restore Constants."""
    monkeypatch.setenv("XPKGDEP_CONFIG", str(tmp_path / "absent.yaml"))
    saved = {attr: getattr(Constants, attr) for attr, _ in CONFIG_KEYS.values()}
    yield
    for attr, value in saved.items():
        setattr(Constants, attr, value)


@pytest.fixture
def manager():
    registry = FakeRegistry([
        make_package("org/a", "v1.2.0", "sha256:a", deps=[Dependency("org/b", "^2.0")]),
        make_package("org/b", "v2.3.0", "sha256:b", types={WIDGET: SCHEMA}),
    ])
    return Manager(MemoryCache(), registry, FakeMarshaler(registry))


class TestParseArgs:
    """Tests for parse_args."""

    def test_resolve(self):
        args = parse_args(["resolve", "org/a@^1.0"])

        assert args.action == "resolve"
        assert args.PACKAGES == ["org/a@^1.0"]
        assert args.LOG_LEVEL == "INFO"
        assert args.INSECURE is False

    def test_common_options_after_subcommand(self):
        args = parse_args([
            "snapshot", "org/a", "org/b",
            "--registry", "localhost:5000", "--timeout", "2.5",
            "--max-concurrency", "2", "--insecure", "--loglevel", "debug",
        ])

        assert args.PACKAGES == ["org/a", "org/b"]
        assert args.REGISTRY == "localhost:5000"
        assert args.TIMEOUT == 2.5
        assert args.MAX_CONCURRENCY == 2
        assert args.INSECURE is True
        assert args.LOG_LEVEL == "DEBUG"

    def test_validate_requires_file(self):
        with pytest.raises(SystemExit):
            parse_args(["validate", "org/a"])

    def test_resolve_takes_one_package(self):
        with pytest.raises(SystemExit):
            parse_args(["resolve", "org/a", "org/b"])

    def test_subcommand_required(self):
        with pytest.raises(SystemExit):
            parse_args([])


class TestRunCommand:
    """Tests for run_command against in-memory collaborators."""

    def test_resolve_output(self, manager):
        code, output = asyncio.run(run_command("resolve", manager, [Dependency("org/a", "^1.0")]))

        assert code is ExitCodes.SUCCESS
        assert output["dependency"] == {"package": "org/a", "constraints": "v1.2.0", "type": "Provider"}
        assert [(p["name"], p["version"]) for p in output["packages"]] == [
            ("org/a", "v1.2.0"),
            ("org/b", "v2.3.0"),
        ]
        assert output["packages"][0]["dependencies"] == ["org/b@^2.0"]
        assert output["packages"][1]["types"] == [str(WIDGET)]

    def test_snapshot_output(self, manager):
        code, output = asyncio.run(run_command("snapshot", manager, [Dependency("org/a", "^1.0")]))

        assert code is ExitCodes.SUCCESS
        assert output == {"types": ["example.org/v1, Kind=Widget"]}

    def test_validate_reports_failures(self, manager):
        manifests = [
            {"apiVersion": "example.org/v1", "kind": "Widget", "metadata": {"name": "ok"}, "spec": {"size": 1}},
            {"apiVersion": "example.org/v1", "kind": "Widget", "metadata": {"name": "bad"}, "spec": {}},
        ]

        code, output = asyncio.run(
            run_command("validate", manager, [Dependency("org/a", "^1.0")], manifests)
        )

        assert code is ExitCodes.VALIDATION_FAILED
        assert output["results"][0]["errors"] == []
        assert output["results"][1]["name"] == "bad"
        assert output["results"][1]["errors"] == ["spec: 'size' is a required property"]

    def test_validate_all_valid(self, manager):
        manifests = [{"apiVersion": "example.org/v1", "kind": "Widget", "spec": {"size": 1}}]

        code, _ = asyncio.run(run_command("validate", manager, [Dependency("org/a", "^1.0")], manifests))

        assert code is ExitCodes.SUCCESS


class TestMain:
    """Tests for main exit codes."""

    def _argv(self, tmp_path, *extra):
        return ["resolve", "org/a@^1.0", "--cache-dir", str(tmp_path / "cache"), *extra]

    def test_success_prints_json(self, tmp_path, capsys):
        output = {"dependency": {"package": "org/a"}}
        with patch("xpkgdep.cli._run", new=AsyncMock(return_value=(ExitCodes.SUCCESS, output))):
            code = main(self._argv(tmp_path))

        assert code == ExitCodes.SUCCESS.value
        assert json.loads(capsys.readouterr().out) == output

    def test_overrides_reach_constants(self, tmp_path):
        with patch("xpkgdep.cli._run", new=AsyncMock(return_value=(ExitCodes.SUCCESS, {}))) as run:
            main(self._argv(tmp_path, "--registry", "localhost:5000", "--max-concurrency", "7"))

        assert Constants.DEFAULT_REGISTRY == "localhost:5000"
        assert Constants.MAX_CONCURRENCY == 7
        deps = run.call_args.args[2]
        assert deps == [Dependency("org/a", "^1.0")]

    @pytest.mark.parametrize("error,expected", [
        (Timeout("slow"), ExitCodes.CONNECTION_ERROR),
        (Cancelled("stop"), ExitCodes.CANCELLED),
        (MalformedPackage("bad"), ExitCodes.RESOLUTION_ERROR),
    ])
    def test_error_exit_codes(self, tmp_path, error, expected):
        with patch("xpkgdep.cli._run", new=AsyncMock(side_effect=error)):
            assert main(self._argv(tmp_path)) == expected.value

    def test_bad_package_token(self, tmp_path):
        assert main(["resolve", "@1.0.0", "--cache-dir", str(tmp_path)]) == ExitCodes.FILE_ERROR.value

    def test_missing_manifest_file(self, tmp_path):
        argv = ["validate", "-f", str(tmp_path / "missing.yaml"), "org/a", "--cache-dir", str(tmp_path)]

        assert main(argv) == ExitCodes.FILE_ERROR.value

    def test_validate_loads_manifests(self, tmp_path):
        manifests = tmp_path / "m.yaml"
        manifests.write_text("apiVersion: example.org/v1\nkind: Widget\n---\n---\nkind: Gadget\n", encoding="utf-8")
        argv = ["validate", "-f", str(manifests), "org/a", "--cache-dir", str(tmp_path / "cache")]

        with patch("xpkgdep.cli._run", new=AsyncMock(return_value=(ExitCodes.SUCCESS, {}))) as run:
            main(argv)

        assert run.call_args.args[3] == [
            {"apiVersion": "example.org/v1", "kind": "Widget"},
            {"kind": "Gadget"},
        ]

    def test_clean_cache(self, tmp_path):
        cache_dir = tmp_path / "cache"
        (cache_dir / "registry").mkdir(parents=True)

        with patch("xpkgdep.cli._run", new=AsyncMock(return_value=(ExitCodes.SUCCESS, {}))):
            main(["resolve", "org/a", "--cache-dir", str(cache_dir), "--clean-cache"])

        assert not cache_dir.exists()
