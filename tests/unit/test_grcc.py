"""Unit tests for hierarchical block compilation and its retry loop."""

import logging
from unittest.mock import MagicMock

import pytest

from sdr_provision.middlewares.grcc import GRCC_ATTEMPTS, HierBlockCompiler
from sdr_provision.middlewares.shell import CommandError


def _failing(times):
    """Runner side effect that fails the first `times` calls."""
    state = {"calls": 0}

    def _run(cmd, cwd=None, env=None):
        state["calls"] += 1
        if state["calls"] <= times:
            raise CommandError(cmd, 1, "Traceback: flaky")
        return []

    return _run


@pytest.fixture
def runner():
    return MagicMock()


class TestCompile:
    def test_success_first_try(self, tmp_path, runner):
        grc = tmp_path / "channelizer.grc"
        out = tmp_path / "hier"
        attempts = HierBlockCompiler(runner, retry_delay=0).compile(grc, out)
        assert attempts == 1
        runner.run.assert_called_once_with(
            ["grcc", "-o", str(out), str(grc)], env=None
        )
        assert out.is_dir()

    def test_retries_until_success(self, tmp_path, runner, caplog):
        runner.run.side_effect = _failing(5)
        with caplog.at_level(logging.WARNING):
            attempts = HierBlockCompiler(runner, retry_delay=0).compile(
                tmp_path / "a.grc", tmp_path / "hier"
            )
        assert attempts == 6
        assert runner.run.call_count == 6
        assert caplog.text.count("retrying") == 5

    def test_gives_up_after_limit(self, tmp_path, runner):
        runner.run.side_effect = _failing(GRCC_ATTEMPTS)
        with pytest.raises(CommandError):
            HierBlockCompiler(runner, retry_delay=0).compile(
                tmp_path / "a.grc", tmp_path / "hier"
            )
        assert runner.run.call_count == GRCC_ATTEMPTS

    def test_succeeds_on_last_attempt(self, tmp_path, runner):
        runner.run.side_effect = _failing(GRCC_ATTEMPTS - 1)
        attempts = HierBlockCompiler(runner, retry_delay=0).compile(
            tmp_path / "a.grc", tmp_path / "hier"
        )
        assert attempts == GRCC_ATTEMPTS

    def test_default_attempt_limit(self):
        assert GRCC_ATTEMPTS == 20


class TestCompileTree:
    def test_sorted_recursive(self, tmp_path, runner):
        design = tmp_path / "hier_blocks"
        (design / "sub").mkdir(parents=True)
        for rel in ("b.grc", "a.grc", "sub/c.grc", "notes.txt"):
            (design / rel).write_text("")
        compiled = HierBlockCompiler(runner, retry_delay=0).compile_tree(
            design, tmp_path / "hier", env={"PATH": "/x"}
        )
        assert [p.name for p in compiled] == ["a.grc", "b.grc", "c.grc"]
        assert all(c.kwargs["env"] == {"PATH": "/x"} for c in runner.run.call_args_list)

    def test_empty_tree(self, tmp_path, runner):
        design = tmp_path / "hier_blocks"
        design.mkdir()
        assert HierBlockCompiler(runner).compile_tree(design, tmp_path / "hier") == []
        runner.run.assert_not_called()
