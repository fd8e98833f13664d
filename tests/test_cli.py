"""Tests for testserver/cli.py - start/stop commands."""

import json
import re
import threading
import time
from pathlib import Path
from unittest.mock import patch, MagicMock

import pytest
import requests

# Add src to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from testserver.auth import AuthMode
from testserver.cli import auth_info, main
from conftest import basic_header


class TestAuthInfo:
    """Tests for the printed client auth config."""

    def test_basic(self):
        info = auth_info("127.0.0.1:4443", AuthMode.BASIC)
        assert info == {
            "rktKind": "auth",
            "rktVersion": "v1",
            "domains": ["127.0.0.1:4443"],
            "type": "basic",
            "credentials": {"user": "bar", "password": "baz"},
        }

    def test_oauth(self):
        info = auth_info("127.0.0.1:4443", AuthMode.OAUTH)
        assert info["type"] == "oauth"
        assert info["credentials"] == {"token": "sometoken"}

    def test_none_omits_credentials(self):
        info = auth_info("127.0.0.1:4443", AuthMode.NONE)
        assert info["type"] == "none"
        assert "credentials" not in info


class TestMainDispatch:
    """Tests for argument validation."""

    def test_no_command(self, capsys):
        assert main([]) == 1
        assert "expected a command - start, stop" in capsys.readouterr().out

    def test_unknown_command(self, capsys):
        assert main(["restart"]) == 1
        assert "wrong command 'restart'" in capsys.readouterr().out

    def test_start_without_type(self, capsys):
        assert main(["start"]) == 1
        assert "expected a type - none, basic, oauth" in capsys.readouterr().out

    def test_start_unknown_type(self, capsys):
        assert main(["start", "digest"]) == 1
        assert "wrong type 'digest'" in capsys.readouterr().out

    def test_start_bad_config(self, tmp_path, capsys):
        config = tmp_path / "config.yaml"
        config.write_text("nope: 1\n")
        assert main(["start", "none", "--config", str(config)]) == 1
        assert "Unknown config keys" in capsys.readouterr().out

    def test_start_failure(self, capsys):
        with patch("testserver.cli.Server") as mock_server:
            mock_server.return_value.start.side_effect = RuntimeError("TLS init failed: boom")
            assert main(["start", "none"]) == 1
        assert "Error: TLS init failed: boom" in capsys.readouterr().out

    def test_stop_without_host(self, capsys):
        assert main(["stop"]) == 1
        assert "expected a host" in capsys.readouterr().out

    def test_start_unknown_option(self, capsys):
        assert main(["start", "--bogus", "basic"]) == 1
        assert "unrecognized arguments: --bogus" in capsys.readouterr().out

    def test_stop_extra_argument(self, capsys):
        assert main(["stop", "https://127.0.0.1:4443", "extra"]) == 1
        assert "Error: unrecognized arguments: extra" in capsys.readouterr().out


class TestStop:
    """Tests for the stop command."""

    def test_success(self, capsys):
        resp = MagicMock(status_code=200, reason="OK")
        with patch("testserver.cli.requests.post", return_value=resp) as mock_post:
            assert main(["stop", "https://127.0.0.1:4443"]) == 0

        args, kwargs = mock_post.call_args
        assert args == ("https://127.0.0.1:4443",)
        assert kwargs["verify"] is False
        assert "Response status: 200 OK" in capsys.readouterr().out

    def test_non_success_status(self, capsys):
        resp = MagicMock(status_code=500, reason="Internal Server Error")
        with patch("testserver.cli.requests.post", return_value=resp):
            assert main(["stop", "https://127.0.0.1:4443"]) == 1
        assert "nonsuccess status" in capsys.readouterr().out

    def test_connection_error(self, capsys):
        with patch("testserver.cli.requests.post",
                   side_effect=requests.exceptions.ConnectionError("refused")):
            assert main(["stop", "https://127.0.0.1:1"]) == 1
        assert "failed to send post" in capsys.readouterr().out


class TestStartEndToEnd:
    """Full start/GET/stop cycle through main()."""

    def _wait_for_ready(self, capsys, timeout=30.0) -> str:
        output = ""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            output += capsys.readouterr().out
            if "Ready, waiting for connections at" in output:
                return output
            time.sleep(0.05)
        pytest.fail(f"Server never became ready: {output!r}")

    def test_basic_scenario(self, capsys, fake_builder):
        result = {}

        with patch("testserver.cli.AciBuilder", return_value=fake_builder):
            thread = threading.Thread(
                target=lambda: result.update(rc=main(["start", "basic"]))
            )
            thread.start()

            output = self._wait_for_ready(capsys)
            url = re.search(r"Ready, waiting for connections at (\S+)", output).group(1)
            info = json.loads(output.split("Ready,")[0])
            assert info["type"] == "basic"
            assert info["domains"] == [url[len("https://"):]]

            resp = requests.get(
                f"{url}/x/prog.aci",
                headers={"Authorization": basic_header("bar", "baz")},
                verify=False,
                timeout=10,
            )
            assert resp.status_code == 200
            assert resp.content == b"fake-aci-image"

            assert main(["stop", url]) == 0
            thread.join(timeout=10)

        assert not thread.is_alive()
        assert result["rc"] == 0
        output += capsys.readouterr().out
        assert "Byebye" in output.splitlines()
        assert '  done "/x/prog.aci".' in output
