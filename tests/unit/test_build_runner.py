"""Unit tests for the CMake/make build runner."""

from unittest.mock import MagicMock

import pytest

from sdr_provision.middlewares.cmake import BuildRunner
from sdr_provision.models import ProvisionConfig
from sdr_provision.providers.environment import EnvironmentComposer


@pytest.fixture
def runner():
    return MagicMock()


@pytest.fixture
def source(tmp_path):
    path = tmp_path / "src" / "volk.git"
    path.mkdir(parents=True)
    return path


def _config(tmp_path, **overrides):
    fields = dict(source_dir=tmp_path / "src", install_dir=tmp_path / "prefix", jobs=4)
    fields.update(overrides)
    return ProvisionConfig(**fields)


def _commands(runner):
    return [c.args[0] for c in runner.run.call_args_list]


class TestBuild:
    def test_configure_make_install(self, tmp_path, runner, source):
        build_dir = BuildRunner(_config(tmp_path), runner).build(source, ["-DENABLE_TESTING=OFF"])
        assert build_dir == source / "build"
        cmake, make, install = _commands(runner)
        assert cmake[0] == "cmake"
        assert f"-DCMAKE_INSTALL_PREFIX={tmp_path / 'prefix'}" in cmake
        assert f"-DCMAKE_PREFIX_PATH={tmp_path / 'prefix'}" in cmake
        assert "-DCMAKE_BUILD_TYPE=Release" in cmake
        assert "-DENABLE_TESTING=OFF" in cmake
        assert cmake[-1] == ".."
        assert make == ["make", "-j4"]
        assert install == ["make", "install"]
        for c in runner.run.call_args_list:
            assert c.kwargs["cwd"] == source / "build"

    def test_single_job(self, tmp_path, runner, source):
        BuildRunner(_config(tmp_path, jobs=1), runner).build(source)
        assert ["make", "-j1"] in _commands(runner)

    def test_docs_toggle(self, tmp_path, runner, source):
        off = BuildRunner(_config(tmp_path), runner).common_options()
        on = BuildRunner(_config(tmp_path, docs=True), runner).common_options()
        assert "-DENABLE_DOXYGEN=OFF" in off
        assert "-DENABLE_DOXYGEN=ON" in on

    def test_toolchain_env_passed(self, tmp_path, runner, source):
        (tmp_path / "prefix" / "bin").mkdir(parents=True)
        composer = EnvironmentComposer(tmp_path / "prefix")
        BuildRunner(_config(tmp_path), runner, composer.toolchain_env).build(source)
        for call in runner.run.call_args_list:
            env = call.kwargs["env"]
            assert env["PATH"].split(":")[0] == str(tmp_path / "prefix" / "bin")

    def test_process_env_without_environment(self, tmp_path, runner, source, monkeypatch):
        monkeypatch.setenv("PATH", "/usr/bin")
        (tmp_path / "prefix" / "bin").mkdir(parents=True)
        BuildRunner(_config(tmp_path), runner).build(source)
        assert runner.run.call_args_list[0].kwargs["env"]["PATH"] == "/usr/bin"

    def test_clean_removes_build_dir(self, tmp_path, runner, source):
        stale = source / "build" / "CMakeCache.txt"
        stale.parent.mkdir()
        stale.write_text("stale")
        seen = []

        def _record(cmd, cwd=None, env=None):
            if cmd[0] == "cmake":
                seen.append(stale.exists())

        runner.run.side_effect = _record
        BuildRunner(_config(tmp_path, clean=True), runner).build(source)
        assert seen == [False]
        assert (source / "build").is_dir()

    def test_incremental_keeps_build_dir(self, tmp_path, runner, source):
        stale = source / "build" / "CMakeCache.txt"
        stale.parent.mkdir()
        stale.write_text("cached")
        BuildRunner(_config(tmp_path), runner).build(source)
        assert stale.read_text() == "cached"

    def test_failure_propagates(self, tmp_path, runner, source):
        runner.run.side_effect = RuntimeError("cmake failed")
        with pytest.raises(RuntimeError):
            BuildRunner(_config(tmp_path), runner).build(source)


class TestMakeInstall:
    def test_builds_and_copies_artifacts(self, tmp_path, runner, source):
        (source / "libusb-driver.so").write_bytes(b"\x7fELF")
        dest = tmp_path / "prefix" / "lib"
        installed = BuildRunner(_config(tmp_path), runner).make_install(
            source, ["libusb-driver.so"], dest
        )
        assert _commands(runner) == [["make", "-j4"]]
        assert installed == [dest / "libusb-driver.so"]
        assert (dest / "libusb-driver.so").read_bytes() == b"\x7fELF"

    def test_clean_runs_make_clean_first(self, tmp_path, runner, source):
        BuildRunner(_config(tmp_path, clean=True), runner).make_install(
            source, [], tmp_path / "prefix" / "lib"
        )
        assert _commands(runner) == [["make", "clean"], ["make", "-j4"]]
