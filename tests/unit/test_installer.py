"""Unit tests for the scripted interactive installer driver."""

from unittest.mock import MagicMock, call, patch

import pexpect
import pytest

from sdr_provision.middlewares.installer import InstallerError, ScriptedInstaller

DIALOGUE = [
    (r"runtime libraries be installed\?", "/opt/prefix/lib64"),
    (r"(?i)continue\?", ""),
]


@pytest.fixture
def child():
    c = MagicMock()
    c.exitstatus = 0
    return c


@pytest.fixture
def spawn(child):
    with patch(
        "sdr_provision.middlewares.installer.pexpect.spawn", return_value=child
    ) as s:
        yield s


class TestDrive:
    def test_answers_prompts_in_order(self, spawn, child):
        ScriptedInstaller().drive(["/bin/sh", "install.sh"], DIALOGUE, cwd="/tmp/x")
        assert child.expect.call_args_list[:2] == [
            call(DIALOGUE[0][0]),
            call(DIALOGUE[1][0]),
        ]
        assert child.sendline.call_args_list == [call("/opt/prefix/lib64"), call("")]
        child.close.assert_called_once()

    def test_spawn_arguments(self, spawn, child):
        ScriptedInstaller(prompt_timeout=5).drive(
            ["/bin/sh", "install.sh"], DIALOGUE, cwd="/tmp/x"
        )
        args, kwargs = spawn.call_args
        assert args == ("/bin/sh", ["install.sh"])
        assert kwargs["cwd"] == "/tmp/x"
        assert kwargs["timeout"] == 5
        assert kwargs["encoding"] == "utf-8"

    def test_waits_for_exit(self, spawn, child):
        ScriptedInstaller(finish_timeout=42).drive(["/bin/sh", "install.sh"], DIALOGUE)
        assert child.expect.call_args_list[-1] == call(pexpect.EOF, timeout=42)

    def test_prompt_timeout(self, spawn, child):
        child.expect.side_effect = pexpect.TIMEOUT("no prompt")
        with pytest.raises(InstallerError, match="runtime libraries"):
            ScriptedInstaller().drive(["/bin/sh", "install.sh"], DIALOGUE)
        child.sendline.assert_not_called()
        child.close.assert_called_once()

    def test_early_exit(self, spawn, child):
        child.expect.side_effect = [0, pexpect.EOF("gone")]
        with pytest.raises(InstallerError, match="exited"):
            ScriptedInstaller().drive(["/bin/sh", "install.sh"], DIALOGUE)

    def test_installer_hangs_after_dialogue(self, spawn, child):
        child.expect.side_effect = [0, 0, pexpect.TIMEOUT("hung")]
        with pytest.raises(InstallerError, match="did not finish"):
            ScriptedInstaller().drive(["/bin/sh", "install.sh"], DIALOGUE)

    def test_nonzero_exit(self, spawn, child):
        child.exitstatus = 3
        with pytest.raises(InstallerError, match="exit 3"):
            ScriptedInstaller().drive(["/bin/sh", "install.sh"], DIALOGUE)

    def test_installer_error_is_runtime_error(self):
        assert issubclass(InstallerError, RuntimeError)
