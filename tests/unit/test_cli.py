"""
Unit tests for the mason command line.
"""

import pytest

from mason import cli
from tests.conftest import FakeCompilerBackend


@pytest.fixture
def fake_swiftc(monkeypatch):
    """Route `mason build` through FakeCompilerBackend."""

    def _install(**kwargs):
        monkeypatch.setattr(cli, "SwiftcBackend", lambda: FakeCompilerBackend(**kwargs))

    return _install


class TestBuildCommand:
    """Tests for `mason build`."""

    def test_build_app(self, diamond_project, fake_swiftc, capsys):
        fake_swiftc()
        code = cli.main(["build", "--source", str(diamond_project), "--no-install", "--no-sign"])

        assert code == 0
        out = capsys.readouterr().out
        assert "BUILD SUMMARY" in out
        assert "Status: SUCCESS" in out
        assert "Built: 4" in out
        assert (diamond_project / ".build" / "Demo.app" / "Info.plist").is_file()

    def test_rebuild_is_cached(self, diamond_project, fake_swiftc, capsys):
        fake_swiftc()
        args = ["build", "-s", str(diamond_project), "--no-install", "--no-sign"]
        cli.main(args)
        capsys.readouterr()

        assert cli.main(args) == 0
        assert "Cached: 4" in capsys.readouterr().out

    def test_clean_flag_ignores_cache(self, diamond_project, fake_swiftc, capsys):
        fake_swiftc()
        args = ["build", "-s", str(diamond_project), "--no-install", "--no-sign"]
        cli.main(args)
        capsys.readouterr()

        assert cli.main(args + ["--clean"]) == 0
        assert "Built: 4" in capsys.readouterr().out

    def test_single_module(self, diamond_project, fake_swiftc, capsys):
        fake_swiftc()
        code = cli.main(["build", "-s", str(diamond_project), "-m", "A", "--workers", "2"])

        assert code == 0
        out = capsys.readouterr().out
        assert "Target: A" in out
        assert "Built: 2" in out

    def test_build_failure(self, diamond_project, fake_swiftc, capsys):
        fake_swiftc(fail_modules=["B"])
        code = cli.main(["build", "-s", str(diamond_project), "--no-install", "--no-sign"])

        assert code == 1
        out = capsys.readouterr().out
        assert "Status: FAILED" in out
        assert "Failed: 1" in out

    def test_missing_source_dir(self, tmp_path):
        assert cli.main(["build", "-s", str(tmp_path / "missing")]) == 1

    def test_unknown_module(self, diamond_project, fake_swiftc):
        fake_swiftc()
        assert cli.main(["build", "-s", str(diamond_project), "-m", "Nope"]) == 1


class TestCleanCommand:
    """Tests for `mason clean`."""

    def test_removes_build_outputs(self, diamond_project):
        (diamond_project / ".build" / "Core").mkdir(parents=True)
        (diamond_project / "Core" / "Core.swiftmodule").mkdir()
        (diamond_project / "Core" / "Core.o").write_text("obj")

        assert cli.main(["clean", str(diamond_project)]) == 0

        assert not (diamond_project / ".build").exists()
        assert not (diamond_project / "Core" / "Core.swiftmodule").exists()
        assert not (diamond_project / "Core" / "Core.o").exists()
        assert (diamond_project / "Core" / "module.yml").exists()

    def test_already_clean(self, diamond_project):
        assert cli.main(["clean", str(diamond_project)]) == 0

    def test_honors_build_dir_env(self, diamond_project, fake_swiftc, monkeypatch, tmp_path):
        """`mason clean` removes the same build directory `mason build` wrote to."""
        custom = tmp_path / "custom-build"
        monkeypatch.setenv("MASON_BUILD_DIR", str(custom))
        fake_swiftc()
        cli.main(["build", "-s", str(diamond_project), "--no-install", "--no-sign"])
        assert (custom / "Demo.app").is_dir()

        assert cli.main(["clean", str(diamond_project)]) == 0

        assert not custom.exists()


class TestCacheCommands:
    """Tests for `mason cache`."""

    def test_list_and_clean(self, diamond_project, fake_swiftc, capsys):
        fake_swiftc()
        cli.main(["build", "-s", str(diamond_project), "--no-install", "--no-sign"])
        capsys.readouterr()

        assert cli.main(["cache", "list", str(diamond_project)]) == 0
        assert "4 entries" in capsys.readouterr().out

        assert cli.main(["cache", "clean", str(diamond_project)]) == 0
        assert "Removed 0 cache entries" in capsys.readouterr().out

        assert cli.main(["cache", "clean", str(diamond_project), "--max-age-days", "0"]) == 0
        assert "Removed 4 cache entries" in capsys.readouterr().out


class TestGraphCommand:
    """Tests for `mason graph`."""

    def test_build_order_and_levels(self, diamond_project, capsys):
        assert cli.main(["graph", str(diamond_project), "--levels"]) == 0
        out = capsys.readouterr().out
        assert "Build Order:" in out
        assert "Depends on: A, B" in out
        assert "2: A, B" in out
        assert "3: App" in out

    def test_count_strategy(self, diamond_project, capsys):
        assert cli.main(["graph", str(diamond_project), "--levels", "--level-strategy", "count"]) == 0
        assert "4: App" in capsys.readouterr().out

    def test_cycle(self, make_project):
        source = make_project({"X": ["Y"], "Y": ["X"]})
        assert cli.main(["graph", str(source)]) == 1
