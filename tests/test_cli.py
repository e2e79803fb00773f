"""Tests for the cms-sync command line entry point."""

import json
from unittest.mock import patch

import pytest

from cms_sync import cli
from cms_sync.config_schema import UnifiedConfig
from cms_sync.core.errors import AuthenticationError
from cms_sync.sync.models import SyncBatch


@pytest.fixture
def runtime(config, fake_client):
    """Patch config loading, client construction and logging setup."""
    with patch(
        "cms_sync.cli.load_runtime", return_value=(config, UnifiedConfig())
    ), patch("cms_sync.cli.CMSClient", return_value=fake_client), patch(
        "cms_sync.cli.setup_logging"
    ):
        yield fake_client


class TestBuildParser:
    def test_subcommands(self):
        parser = cli.build_parser()

        args = parser.parse_args(["push", "--dry-run", "--slug", "blog/hello"])

        assert args.command == "push"
        assert args.dry_run
        assert args.slug == "blog/hello"
        assert not args.force

    def test_global_flags(self):
        args = cli.build_parser().parse_args(
            ["--url", "https://x.io", "--debug", "status", "--delete", "--diff"]
        )

        assert args.url == "https://x.io"
        assert args.debug
        assert args.delete and args.diff

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])


class TestMain:
    def test_missing_url_is_config_error(self, tmp_path, monkeypatch, capsys):
        monkeypatch.delenv("CMS_URL", raising=False)
        monkeypatch.delenv("CMS_SYNC_CONFIG", raising=False)
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path / "home"))

        with patch("cms_sync.cli.setup_logging"), patch(
            "cms_sync.cli.load_dotenv"
        ):
            assert cli.main(["pull"]) == 1

        assert "Configuration error" in capsys.readouterr().err

    def test_pull(self, runtime, capsys):
        runtime.batches["content"] = SyncBatch(
            items=[
                {
                    "id": 1,
                    "slug": "about",
                    "type": "page",
                    "language": "en",
                    "body": "Hello",
                    "updatedAt": "2026-01-01T00:00:00.000Z",
                }
            ],
            next_token="t1",
        )

        assert cli.main(["pull"]) == 0

        out = capsys.readouterr().out
        assert "content: 1 created" in out

    def test_pull_json(self, runtime, capsys):
        assert cli.main(["pull", "--json"]) == 0

        data = json.loads(capsys.readouterr().out)
        assert data["success"] is True
        assert [s["store"] for s in data["stores"]] == ["content", "media"]

    def test_pull_store_failure_exit_code(self, runtime, transport_error):
        runtime.errors["media"] = transport_error

        assert cli.main(["pull"]) == 1

    def test_status_in_sync(self, runtime, capsys):
        assert cli.main(["status"]) == 0

        assert "Nothing to push" in capsys.readouterr().out

    def test_push_dry_run(self, runtime, write_content, capsys):
        write_content("new.mdx", "---\ntype: page\n---\nHi\n")

        assert cli.main(["push", "--dry-run"]) == 0

        assert "would create" in capsys.readouterr().out
        assert runtime.created == []

    def test_push(self, runtime, write_content, capsys):
        write_content("new.mdx", "---\ntype: page\n---\nHi\n")

        assert cli.main(["push", "--json"]) == 0

        data = json.loads(capsys.readouterr().out)
        assert data["successful"] == 1
        assert runtime.created[0]["slug"] == "new"

    def test_push_requires_api_key(self, runtime, config, capsys):
        config.api_key = ""

        assert cli.main(["push"]) == 1

        assert "API key" in capsys.readouterr().err

    def test_authentication_error(self, runtime, capsys):
        runtime.errors["content"] = AuthenticationError("invalid API key")

        assert cli.main(["status"]) == 1

        assert "Authentication failed" in capsys.readouterr().err


class TestRun:
    def test_keyboard_interrupt_exits_cleanly(self, capsys):
        with patch("cms_sync.cli.main", side_effect=KeyboardInterrupt):
            with pytest.raises(SystemExit) as exc_info:
                cli.run()

        assert exc_info.value.code == 0
        assert "Interrupted." in capsys.readouterr().err

    def test_exit_code_from_main(self):
        with patch("cms_sync.cli.main", return_value=1):
            with pytest.raises(SystemExit) as exc_info:
                cli.run()

        assert exc_info.value.code == 1
