"""Tests for ksrunner.utils module."""

from __future__ import annotations

import io
import subprocess
from http.client import BadStatusLine, IncompleteRead
from unittest.mock import MagicMock, patch
from urllib.error import HTTPError, URLError

import bcrypt
import pytest

from ksrunner.exceptions import DownloadFailure, ManagerError
from ksrunner.models import CommandResult
from ksrunner.utils import (
    CommandRunner,
    download_file,
    generate_run_id,
    get_env,
    get_env_bool,
    hash_password,
    log,
    missing_tools,
    parse_int_env,
    read_os_release,
    restore_selinux_context,
    validate_disk_size,
)


class TestLog:
    def test_info_level(self, capsys):
        log("INFO", "test message")
        captured = capsys.readouterr()
        assert "[INFO]" in captured.out
        assert "test message" in captured.out

    def test_error_goes_to_stderr(self, capsys):
        log("ERROR", "download failed: boom")
        captured = capsys.readouterr()
        assert captured.out == ""
        assert "[ERROR]" in captured.err

    def test_debug_suppressed_by_default(self, capsys):
        log("DEBUG", "should not appear")
        captured = capsys.readouterr()
        assert captured.out == ""


class TestEnvHelpers:
    def test_get_env_default(self, monkeypatch):
        monkeypatch.delenv("TEST_VAR", raising=False)
        assert get_env("TEST_VAR", "fallback") == "fallback"

    @pytest.mark.parametrize("value,expected", [("1", True), ("Yes", True), ("on", True), ("0", False), ("no", False)])
    def test_get_env_bool(self, monkeypatch, value, expected):
        monkeypatch.setenv("TEST_BOOL", value)
        assert get_env_bool("TEST_BOOL") is expected

    def test_get_env_bool_default(self, monkeypatch):
        monkeypatch.delenv("TEST_BOOL", raising=False)
        assert get_env_bool("TEST_BOOL", True) is True

    def test_parse_int_env(self, monkeypatch):
        monkeypatch.setenv("MEMORY", "8192")
        assert parse_int_env("MEMORY", "4096") == 8192

    def test_parse_int_env_rejects_garbage(self, monkeypatch):
        monkeypatch.setenv("MEMORY", "lots")
        with pytest.raises(ManagerError, match="must be an integer"):
            parse_int_env("MEMORY", "4096")

    def test_parse_int_env_bounds(self, monkeypatch):
        monkeypatch.setenv("CPUS", "0")
        with pytest.raises(ManagerError, match=">= 1"):
            parse_int_env("CPUS", "2")

    @pytest.mark.parametrize("size", ["10G", "512M", "2T", "1048576"])
    def test_valid_disk_sizes(self, size):
        assert validate_disk_size(size) == size

    def test_invalid_disk_size(self):
        with pytest.raises(ManagerError, match="Invalid DISK_SIZE"):
            validate_disk_size("10GB")


class TestReadOsRelease:
    def test_parses_quoted_values(self, tmp_path):
        path = tmp_path / "os-release"
        path.write_text('# comment\nNAME="Red Hat Enterprise Linux"\nID="rhel"\nVERSION_ID=\'9.8\'\n\nBAD LINE\n')
        info = read_os_release(path)
        assert info["ID"] == "rhel"
        assert info["VERSION_ID"] == "9.8"
        assert info["NAME"] == "Red Hat Enterprise Linux"

    def test_missing_file(self, tmp_path):
        assert read_os_release(tmp_path / "missing") == {}


class TestMisc:
    def test_run_id_format(self):
        with patch("ksrunner.utils.random.randint", return_value=77) as randint:
            assert generate_run_id() == "qe-review-77"
        randint.assert_called_once_with(1, 1000000)

    def test_hash_password_is_bcrypt(self):
        hashed = hash_password("foobar")
        assert hashed.startswith("$2b$")
        assert bcrypt.checkpw(b"foobar", hashed.encode())

    def test_missing_tools(self):
        with patch("ksrunner.utils.shutil.which", side_effect=lambda t: None if t == "mkksiso" else f"/usr/bin/{t}"):
            assert missing_tools(["ssh", "mkksiso", "virsh"]) == ["mkksiso"]


class TestCommandRunner:
    def test_success_returns_stdout(self):
        completed = subprocess.CompletedProcess(args=["virsh"], returncode=0, stdout="ok\n", stderr="warning")
        with patch("ksrunner.utils.subprocess.run", return_value=completed) as mock_run:
            result = CommandRunner().run(["virsh", "list"], timeout=3)
        assert result == CommandResult("ok\n", 0)
        mock_run.assert_called_once_with(
            ["virsh", "list"], capture_output=True, text=True, timeout=3, check=False
        )

    def test_failure_includes_stderr(self):
        completed = subprocess.CompletedProcess(args=["x"], returncode=2, stdout="", stderr="bad thing")
        with patch("ksrunner.utils.subprocess.run", return_value=completed):
            assert CommandRunner().run(["x"]) == CommandResult("bad thing", 2)

    def test_sudo_prefix(self):
        completed = subprocess.CompletedProcess(args=[], returncode=0, stdout="", stderr="")
        with patch("ksrunner.utils.subprocess.run", return_value=completed) as mock_run:
            CommandRunner(sudo=True).run(["mount", "a", "b"])
            CommandRunner(sudo=True).run(["ssh", "host"], privileged=False)
        assert mock_run.call_args_list[0].args[0] == ["sudo", "mount", "a", "b"]
        assert mock_run.call_args_list[1].args[0] == ["ssh", "host"]

    def test_uncaptured_output(self):
        completed = subprocess.CompletedProcess(args=[], returncode=0, stdout=None, stderr=None)
        with patch("ksrunner.utils.subprocess.run", return_value=completed) as mock_run:
            assert CommandRunner().run(["mkksiso"], capture=False) == CommandResult("", 0)
        assert mock_run.call_args.kwargs["capture_output"] is False

    def test_missing_binary(self):
        with patch("ksrunner.utils.subprocess.run", side_effect=FileNotFoundError("mkksiso")):
            assert CommandRunner().run(["mkksiso"]).status == 127

    def test_timeout(self):
        with patch("ksrunner.utils.subprocess.run", side_effect=subprocess.TimeoutExpired(["ssh"], 5)):
            assert CommandRunner().run(["ssh"], timeout=5) == CommandResult("", 124)


class TestRestoreSelinuxContext:
    def test_skipped_without_restorecon(self, runner, tmp_path):
        with patch("ksrunner.utils.shutil.which", return_value=None):
            restore_selinux_context(runner, tmp_path)
        assert runner.calls == []

    def test_relabels(self, runner, tmp_path):
        with patch("ksrunner.utils.shutil.which", return_value="/usr/sbin/restorecon"):
            restore_selinux_context(runner, tmp_path)
        assert runner.calls == [["restorecon", "-Rv", str(tmp_path)]]

    def test_failure_only_warns(self, runner, tmp_path):
        runner.on(["restorecon"], CommandResult("permission denied", 1))
        with patch("ksrunner.utils.shutil.which", return_value="/usr/sbin/restorecon"), patch(
            "ksrunner.utils.log"
        ) as mock_log:
            restore_selinux_context(runner, tmp_path)
        mock_log.assert_called_once()
        assert mock_log.call_args[0][0] == "WARN"


def _response(payload: bytes, length=True):
    response = MagicMock()
    stream = io.BytesIO(payload)
    response.read.side_effect = stream.read
    response.headers = {"Content-Length": str(len(payload))} if length else {}
    return response


class TestDownloadFile:
    def test_writes_destination(self, tmp_path):
        destination = tmp_path / "image.iso"
        with patch("ksrunner.utils.urlopen", return_value=_response(b"x" * 3000)):
            download_file("https://example.com/image.iso", destination)
        assert destination.read_bytes() == b"x" * 3000
        assert list(tmp_path.iterdir()) == [destination]

    def test_without_content_length(self, tmp_path):
        destination = tmp_path / "image.iso"
        with patch("ksrunner.utils.urlopen", return_value=_response(b"abc", length=False)):
            download_file("https://example.com/image.iso", destination)
        assert destination.read_bytes() == b"abc"

    def test_http_error(self, tmp_path):
        error = HTTPError("https://example.com/image.iso", 404, "Not Found", {}, None)
        with patch("ksrunner.utils.urlopen", side_effect=error):
            with pytest.raises(DownloadFailure, match="404 Not Found"):
                download_file("https://example.com/image.iso", tmp_path / "image.iso")
        assert list(tmp_path.iterdir()) == []

    def test_url_error(self, tmp_path):
        with patch("ksrunner.utils.urlopen", side_effect=URLError("Name or service not known")):
            with pytest.raises(DownloadFailure, match="Name or service not known"):
                download_file("https://example.com/image.iso", tmp_path / "image.iso")

    def test_interrupted_transfer_leaves_nothing(self, tmp_path):
        response = MagicMock()
        response.headers = {"Content-Length": "100"}
        response.read.side_effect = [b"partial", ConnectionResetError("reset by peer")]
        with patch("ksrunner.utils.urlopen", return_value=response):
            with pytest.raises(DownloadFailure, match="interrupted"):
                download_file("https://example.com/image.iso", tmp_path / "image.iso")
        assert list(tmp_path.iterdir()) == []

    def test_truncated_stream_raises_download_failure(self, tmp_path):
        response = MagicMock()
        response.headers = {"Content-Length": "100"}
        response.read.side_effect = [b"x" * 10, IncompleteRead(b"", 90)]
        with patch("ksrunner.utils.urlopen", return_value=response):
            with pytest.raises(DownloadFailure, match="interrupted"):
                download_file("https://example.com/image.iso", tmp_path / "image.iso")
        assert list(tmp_path.iterdir()) == []
        response.close.assert_called_once()

    def test_bad_status_line_on_connect(self, tmp_path):
        with patch("ksrunner.utils.urlopen", side_effect=BadStatusLine("garbage")):
            with pytest.raises(DownloadFailure, match="Failed to download"):
                download_file("https://example.com/image.iso", tmp_path / "image.iso")
        assert list(tmp_path.iterdir()) == []

    def test_malformed_content_length(self, tmp_path):
        response = _response(b"abc")
        response.headers = {"Content-Length": "lots"}
        with patch("ksrunner.utils.urlopen", return_value=response):
            with pytest.raises(DownloadFailure, match="Invalid Content-Length"):
                download_file("https://example.com/image.iso", tmp_path / "image.iso")
        assert list(tmp_path.iterdir()) == []
        response.close.assert_called_once()

    def test_response_closed_after_success(self, tmp_path):
        response = _response(b"abc")
        with patch("ksrunner.utils.urlopen", return_value=response):
            download_file("https://example.com/image.iso", tmp_path / "image.iso")
        response.close.assert_called_once()

    def test_short_read_leaves_nothing(self, tmp_path):
        response = _response(b"abc")
        response.headers = {"Content-Length": "10"}
        with patch("ksrunner.utils.urlopen", return_value=response):
            with pytest.raises(DownloadFailure, match="Short read"):
                download_file("https://example.com/image.iso", tmp_path / "image.iso")
        assert list(tmp_path.iterdir()) == []
