"""Tests for cli.py - CLI entry point."""

from unittest.mock import patch, MagicMock

import click
import pytest
from click.testing import CliRunner

import cli
from cli import main, cli_progress, parse_variation

from conftest import FakeRemoteClient, make_image_bytes


@pytest.fixture
def model_file(temp_dir):
    path = temp_dir / "model.png"
    path.write_bytes(make_image_bytes("red"))
    return path


@pytest.fixture
def outfit_file(temp_dir):
    path = temp_dir / "jacket.jpg"
    path.write_bytes(make_image_bytes("purple", "JPEG"))
    return path


@pytest.fixture
def remote():
    return FakeRemoteClient()


@pytest.fixture
def run_cli(remote, fast_settings, monkeypatch):
    """Invoke the CLI with a fake remote client and fast progress."""
    monkeypatch.setattr(cli, "_last_message", None)

    def invoke(*args):
        with patch("cli.GeminiClient", return_value=remote), patch("cli.settings", fast_settings):
            return CliRunner().invoke(main, list(args))

    return invoke


class TestParseVariation:
    """Tests for the --variation value parser."""

    def test_valid(self):
        assert parse_variation("2:a linen suit") == (1, "a linen suit")

    def test_text_may_contain_colons(self):
        assert parse_variation("1:style: boho") == (0, "style: boho")

    @pytest.mark.parametrize("value", ["a linen suit", "0:a suit", "x:a suit"])
    def test_invalid(self, value):
        with pytest.raises(click.BadParameter):
            parse_variation(value)


class TestCliProgress:
    """Tests for the cli_progress listener."""

    def test_prints_new_messages_once(self, monkeypatch, capsys):
        """Test that repeated tick messages are printed once."""
        monkeypatch.setattr(cli, "_last_message", None)

        cli_progress("progress", {"percent": 10, "message": "Processing job 1 of 2..."})
        cli_progress("progress", {"percent": 20, "message": "Processing job 1 of 2..."})
        cli_progress("progress", {"percent": 30, "message": "Processing job 2 of 2..."})

        output = capsys.readouterr().out
        assert output.count("Processing job 1 of 2...") == 1
        assert "Processing job 2 of 2..." in output

    def test_result_replaced(self, capsys):
        cli_progress("result_replaced", {"index": 0, "operation": "upscale", "upscaled": True})
        assert "Result 1 updated (upscale)" in capsys.readouterr().out

    def test_ignores_other_events(self, capsys):
        cli_progress("batch_started", {"batch_id": "abc", "jobs": 2})
        assert capsys.readouterr().out == ""


class TestCliValidation:
    """Tests for argument validation."""

    def test_requires_model(self, run_cli):
        result = run_cli("-d", "a red dress")

        assert result.exit_code == 1
        assert "at least one --model" in result.output

    def test_requires_outfit(self, run_cli, model_file):
        result = run_cli("-m", str(model_file))

        assert result.exit_code == 1
        assert "describe an outfit" in result.output

    def test_bad_variation(self, run_cli, model_file):
        result = run_cli("-m", str(model_file), "-d", "a coat", "--variation", "coat")

        assert result.exit_code == 1
        assert "INDEX:TEXT" in result.output

    def test_missing_file(self, run_cli, temp_dir):
        result = run_cli("-m", str(temp_dir / "nope.png"), "-d", "a coat")
        assert result.exit_code == 2


class TestCliServe:
    """Tests for --serve flag."""

    def test_serve_starts_server(self):
        """Test that --serve starts the web server."""
        runner = CliRunner()

        mock_uvicorn = MagicMock()
        mock_app = MagicMock()

        with patch.dict("sys.modules", {
            "uvicorn": mock_uvicorn,
            "server.app": MagicMock(app=mock_app),
        }):
            result = runner.invoke(main, ["--serve", "--port", "9999"])

        assert "Starting web UI server" in result.output
        mock_uvicorn.run.assert_called_once_with(mock_app, host="127.0.0.1", port=9999)


class TestCliGenerate:
    """Tests for running batches via the CLI."""

    def test_generates_and_saves(self, run_cli, remote, model_file, outfit_file, temp_dir):
        """Test that every model/outfit pair is generated and written."""
        output = temp_dir / "out"
        result = run_cli(
            "-m", str(model_file),
            "-i", str(outfit_file),
            "-d", "",
            "-d", "denim overalls",
            "-o", str(output),
        )

        assert result.exit_code == 0, result.output
        assert len(remote.calls) == 2
        assert remote.calls[0]["reference"] is not None
        assert remote.calls[1]["instruction"] == "denim overalls"
        assert sorted(p.name for p in output.iterdir()) == [
            "ai-fashion-try-on-1.png",
            "ai-fashion-try-on-2.png",
        ]
        assert "Saved 2 image(s)" in result.output

    def test_partial_failure_warns(self, run_cli, remote, model_file, temp_dir):
        remote.fail_when = lambda base, ref, text: text == "a cape"

        result = run_cli("-m", str(model_file), "-d", "a coat", "-d", "a cape", "-o", str(temp_dir / "out"))

        assert result.exit_code == 0
        assert "job 2 failed" in result.output
        assert "Saved 1 image(s)" in result.output

    def test_all_failed(self, run_cli, remote, model_file, temp_dir):
        remote.fail_when = lambda base, ref, text: True

        result = run_cli("-m", str(model_file), "-d", "a coat", "-o", str(temp_dir / "out"))

        assert result.exit_code == 1
        assert "Generation failed" in result.output
        assert not (temp_dir / "out").exists()

    def test_variation_and_upscale(self, run_cli, remote, model_file, temp_dir):
        """Test that follow-ups run on the generated batch."""
        output = temp_dir / "out"
        result = run_cli(
            "-m", str(model_file),
            "-d", "a tuxedo",
            "--variation", "1:a white tuxedo",
            "--upscale", "1",
            "-o", str(output),
        )

        assert result.exit_code == 0, result.output
        assert remote.calls[-1]["variation"] is True
        assert len(remote.enhance_calls) == 1
        assert (output / "ai-fashion-try-on-1-upscaled.png").exists()

    def test_upscale_bad_index_reports_error(self, run_cli, model_file, temp_dir):
        result = run_cli("-m", str(model_file), "-d", "a coat", "--upscale", "5", "-o", str(temp_dir / "out"))

        assert result.exit_code == 0
        assert "No result at position 5" in result.output

    def test_undecodable_result_reports_error(self, run_cli, remote, model_file, temp_dir):
        """Test that a result that cannot be saved as PNG exits cleanly."""
        remote.image = b"not an image"

        result = run_cli("-m", str(model_file), "-d", "a coat", "-o", str(temp_dir / "out"))

        assert result.exit_code == 1
        assert "Generated image could not be decoded" in result.output
        assert result.exception is None or isinstance(result.exception, SystemExit)
