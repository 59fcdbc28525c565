"""Tests for crosspost CLI helpers."""
import json
import logging
import os

import pytest

from crosspost import cli
from crosspost.cli import (
    CLIError,
    _load_env_file,
    _parse_pairs,
    _resolve_credentials_file,
    _setup_logging,
    run_cli,
)
from crosspost.cli_progress import mask_secret
from crosspost.models import DestinationResult, PostOutcome
from crosspost.utils.sizes import human_size


def test_load_env_file(tmp_path, monkeypatch):
    env_path = tmp_path / ".env"
    env_path.write_text(
        "\n".join(
            [
                "# comment",
                "CROSSPOST_API_KEY=abc",
                "CROSSPOST_BLUESKY_HANDLE='me.bsky.social'",
                "export CROSSPOST_WORK_DIR=/tmp/crosspost",
            ]
        ),
        encoding="utf-8",
    )

    monkeypatch.delenv("CROSSPOST_API_KEY", raising=False)
    monkeypatch.delenv("CROSSPOST_BLUESKY_HANDLE", raising=False)
    monkeypatch.delenv("CROSSPOST_WORK_DIR", raising=False)

    _load_env_file(env_path)

    assert os.environ["CROSSPOST_API_KEY"] == "abc"
    assert os.environ["CROSSPOST_BLUESKY_HANDLE"] == "me.bsky.social"
    assert os.environ["CROSSPOST_WORK_DIR"] == "/tmp/crosspost"


def test_load_env_file_keeps_existing(tmp_path, monkeypatch):
    env_path = tmp_path / ".env"
    env_path.write_text("CROSSPOST_API_KEY=from-file\n", encoding="utf-8")
    monkeypatch.setenv("CROSSPOST_API_KEY", "from-shell")

    _load_env_file(env_path)

    assert os.environ["CROSSPOST_API_KEY"] == "from-shell"


def test_load_env_file_skips_comments_and_junk(tmp_path, monkeypatch):
    env_path = tmp_path / ".env"
    env_path.write_text('#CROSSPOST_API_KEY=commented\nnot a pair\nCROSSPOST_API_SECRET = "s3cr=t"\n', encoding="utf-8")
    monkeypatch.delenv("CROSSPOST_API_KEY", raising=False)
    monkeypatch.delenv("CROSSPOST_API_SECRET", raising=False)

    _load_env_file(env_path)

    assert "CROSSPOST_API_KEY" not in os.environ
    assert os.environ["CROSSPOST_API_SECRET"] == "s3cr=t"


def test_load_env_file_missing(tmp_path):
    with pytest.raises(CLIError):
        _load_env_file(tmp_path / "nope.env")


def test_setup_logging_defaults_to_silent(monkeypatch):
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    mode = _setup_logging(debug=False, silent=False, log_level=None)
    assert mode == "silent"
    assert logging.getLogger().isEnabledFor(logging.ERROR) is False
    logging.disable(logging.NOTSET)


def test_setup_logging_debug_mode():
    mode = _setup_logging(debug=True, silent=False, log_level=None)
    assert mode == "DEBUG"
    assert logging.getLogger().isEnabledFor(logging.DEBUG)
    assert logging.getLogger("httpx").level == logging.WARNING


def test_setup_logging_explicit_level():
    assert _setup_logging(debug=False, silent=False, log_level="warning") == "WARNING"


def test_parse_pairs():
    assert _parse_pairs(["apiKey=k", "blueskyPassword='p=w'"]) == [
        ("apiKey", "k"),
        ("blueskyPassword", "p=w"),
    ]
    with pytest.raises(CLIError):
        _parse_pairs(["apiKey"])
    with pytest.raises(CLIError):
        _parse_pairs(["password=x"])


def test_resolve_credentials_file(tmp_path, monkeypatch):
    monkeypatch.setenv("CROSSPOST_CREDENTIALS_FILE", str(tmp_path / "env.json"))
    assert _resolve_credentials_file(None) == tmp_path / "env.json"
    assert _resolve_credentials_file(tmp_path / "arg.json") == tmp_path / "arg.json"


def test_mask_secret_and_size():
    assert mask_secret(None) == "(not set)"
    assert mask_secret("abc") == "***"
    assert mask_secret("abcdefgh") == "ab****gh"
    assert human_size(512) == "512 B"
    assert human_size(1536) == "1.50 KB"


class TestRunCli:
    def test_credentials_set_and_show(self, tmp_path, monkeypatch, capsys):
        monkeypatch.chdir(tmp_path)
        creds = tmp_path / "creds.json"

        code = run_cli(["--credentials-file", str(creds), "credentials", "set", "apiKey=key123", "apiSecret=sec"])

        assert code == 0
        assert json.loads(creds.read_text()) == {"apiKey": "key123", "apiSecret": "sec"}

        assert run_cli(["--credentials-file", str(creds), "credentials", "show"]) == 0
        out = capsys.readouterr().out
        assert "key123" not in out
        assert "ke**23" in out

    def test_credentials_set_unknown_key(self, tmp_path, monkeypatch, capsys):
        monkeypatch.chdir(tmp_path)
        code = run_cli(["--credentials-file", str(tmp_path / "c.json"), "credentials", "set", "nope=1"])
        assert code == 1
        assert "unknown credential key" in capsys.readouterr().err

    def test_post_without_credentials(self, tmp_path, monkeypatch, capsys):
        monkeypatch.chdir(tmp_path)
        for key in ("API_KEY", "API_SECRET", "ACCESS_TOKEN", "ACCESS_SECRET"):
            monkeypatch.delenv(f"CROSSPOST_{key}", raising=False)

        code = run_cli(["--credentials-file", str(tmp_path / "c.json"), "post", "hello"])

        assert code == 1
        assert "crosspost credentials set" in capsys.readouterr().err

    def test_post_missing_media(self, tmp_path, monkeypatch, capsys):
        monkeypatch.chdir(tmp_path)
        code = run_cli(["post", "hello", "--media", str(tmp_path / "missing.jpg")])
        assert code == 1
        assert "media does not exist" in capsys.readouterr().err

    @pytest.mark.parametrize(
        "outcome, expected",
        [
            (PostOutcome(DestinationResult.ok("1"), DestinationResult.ok("at://x")), 0),
            (PostOutcome(DestinationResult.ok("1"), DestinationResult.fail("down")), 2),
            (PostOutcome(DestinationResult.fail("403")), 1),
        ],
    )
    def test_post_exit_codes(self, tmp_path, monkeypatch, outcome, expected):
        monkeypatch.chdir(tmp_path)

        class FakeCoordinator:
            def __init__(self, store, config=None, transcoder=None):
                from crosspost.utils.events import EventEmitter
                self.events = EventEmitter()

            async def load_credentials(self):
                pass

            def set_text(self, text):
                pass

            def set_bluesky_enabled(self, enabled):
                return enabled

            async def select_media(self, asset):
                pass

            async def request_post(self):
                return outcome

            async def close(self):
                pass

        monkeypatch.setattr(cli, "CrossPostCoordinator", FakeCoordinator)

        assert run_cli(["--credentials-file", str(tmp_path / "c.json"), "post", "hello", "--no-bluesky"]) == expected
