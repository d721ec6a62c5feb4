"""Unit tests for the key=value bundle store."""

from pathlib import Path

import pytest

from sdr_provision.middlewares.bundle import BundleStore


def _entry_lines(path: Path) -> list[str]:
    return [
        line
        for line in path.read_text().splitlines()
        if line.strip() and not line.startswith("#")
    ]


@pytest.fixture
def bundle_in(tmp_path):
    path = tmp_path / "pins.txt"
    path.write_text(
        "# sdr-provision bundle 2024-01-01T00:00:00 host=lab cmd=sdr-provision a b\n"
        "volk.git=v3.1.0\n"
        "\n"
        "uhd.git=\n"
        "adept_runtime=digilent.adept.runtime_2.16.6-amd64.deb\n"
    )
    return path


@pytest.fixture
def bundle_out(tmp_path):
    return tmp_path / "out" / "bundle.txt"


class TestLoad:
    def test_pinned_value(self, bundle_in):
        store = BundleStore(bundle_in)
        assert store.load("volk.git", "main") == "v3.1.0"

    def test_missing_key_uses_default(self, bundle_in):
        store = BundleStore(bundle_in)
        assert store.load("gnuradio.git", "maint-3.10") == "maint-3.10"

    def test_empty_value_uses_default(self, bundle_in):
        store = BundleStore(bundle_in)
        assert store.load("uhd.git", "master") == "master"

    def test_no_input_bundle(self):
        assert BundleStore().load("volk.git", "main") == "main"

    def test_missing_input_file(self, tmp_path):
        store = BundleStore(tmp_path / "absent.txt")
        assert store.load("volk.git", "main") == "main"


class TestSave:
    def test_writes_entry(self, bundle_out):
        store = BundleStore(output_path=bundle_out)
        store.save("volk.git", "abc123")
        assert _entry_lines(bundle_out) == ["volk.git=abc123"]

    def test_last_write_wins(self, bundle_out):
        store = BundleStore(output_path=bundle_out)
        store.save("volk.git", "abc123")
        store.save("uhd.git", "def456")
        store.save("volk.git", "fedcba")
        lines = _entry_lines(bundle_out)
        assert lines.count("volk.git=fedcba") == 1
        assert not any(line == "volk.git=abc123" for line in lines)
        assert BundleStore.read_entries(bundle_out) == {
            "uhd.git": "def456",
            "volk.git": "fedcba",
        }

    def test_without_output_is_noop(self, tmp_path):
        BundleStore().save("volk.git", "abc123")
        assert list(tmp_path.iterdir()) == []

    def test_output_readable_as_input(self, bundle_out):
        BundleStore(output_path=bundle_out).save("volk.git", "abc123")
        assert BundleStore(bundle_out).load("volk.git", "main") == "abc123"


class TestOpenOutput:
    def test_writes_header(self, bundle_out):
        store = BundleStore(output_path=bundle_out)
        store.open_output("sdr-provision bundle test")
        assert bundle_out.read_text().splitlines() == ["# sdr-provision bundle test"]

    def test_keeps_entries_replaces_header(self, bundle_out):
        store = BundleStore(output_path=bundle_out)
        store.open_output("first run")
        store.save("volk.git", "abc123")
        store.open_output("second run")
        lines = bundle_out.read_text().splitlines()
        assert lines == ["# second run", "volk.git=abc123"]


class TestDescribe:
    def test_header_and_entries(self, bundle_in):
        described = BundleStore.describe(bundle_in)
        assert described.header.startswith("sdr-provision bundle")
        assert described.entries["volk.git"] == "v3.1.0"
        assert described.entries["uhd.git"] == ""
        assert described.path == str(bundle_in)

    def test_missing_file(self, tmp_path):
        described = BundleStore.describe(tmp_path / "absent.txt")
        assert described.header is None
        assert described.entries == {}

    def test_value_may_contain_equals(self, tmp_path):
        path = tmp_path / "b.txt"
        path.write_text("weird=a=b\n")
        assert BundleStore.read_entries(path) == {"weird": "a=b"}
