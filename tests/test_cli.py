"""Tests for the CLI."""

import json
from pathlib import Path

import yaml
from typer.testing import CliRunner

from episcope.cli import app

runner = CliRunner()


def _json_output(output: str) -> dict:
    return json.loads(output[output.index("{") :])


class TestCLI:
    """Tests for CLI commands."""

    def test_version_command(self):
        """Test the version command."""
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "Episcope v0.1.0" in result.output

    def test_help_command(self):
        """Test help output."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("info", "episode", "lengths", "analyze", "config", "version"):
            assert command in result.output


class TestInfoCommand:
    """Tests for the info command."""

    def test_info_text(self, v3_dataset: Path):
        result = runner.invoke(app, ["info", str(v3_dataset)])
        assert result.exit_code == 0
        assert "v3.0" in result.output
        assert "koch" in result.output
        assert "11.2 MB" in result.output
        assert "observation.images.top" in result.output
        assert "128x96" in result.output

    def test_info_json(self, v2_dataset: Path):
        result = runner.invoke(app, ["info", str(v2_dataset), "--output", "json"])
        assert result.exit_code == 0
        data = _json_output(result.output)
        assert data["version"] == "v2.1"
        assert data["total_episodes"] == 3

    def test_info_nonexistent_path(self):
        result = runner.invoke(app, ["info", "/nonexistent/path"])
        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_info_unsupported_version(self, v2_dataset: Path, tmp_path: Path):
        config_path = tmp_path / "episcope.yaml"
        config_path.write_text("supported_versions: [v3.0]\n")
        result = runner.invoke(app, ["info", str(v2_dataset), "--config", str(config_path)])
        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_missing_config_file(self, v2_dataset: Path):
        result = runner.invoke(app, ["info", str(v2_dataset), "--config", "/nope.yaml"])
        assert result.exit_code == 1
        assert "Config file not found" in result.output


class TestEpisodeCommand:
    """Tests for the episode command."""

    def test_episode_text(self, v3_dataset: Path):
        result = runner.invoke(app, ["episode", str(v3_dataset), "3"])
        assert result.exit_code == 0
        assert "Episode 3" in result.output
        assert "Task: Stack cups" in result.output
        assert "from 3.00s to 4.00s" in result.output
        assert "Group 1" in result.output

    def test_episode_json(self, v2_dataset: Path):
        result = runner.invoke(app, ["episode", str(v2_dataset), "1", "--output", "json"])
        assert result.exit_code == 0
        data = _json_output(result.output)
        assert data["location"]["data_path"] == "data/chunk-000/episode_000001.parquet"
        assert data["record"]["task"] == "Push the block"
        assert data["column_min_max"]["shoulder | action"] == [0.0, 1.8]

    def test_episode_insights(self, v2_dataset: Path):
        result = runner.invoke(app, ["episode", str(v2_dataset), "0", "--insights"])
        assert result.exit_code == 0
        assert "Insights" in result.output
        assert "autocorrelation" in result.output

    def test_episode_not_found(self, v3_dataset: Path):
        result = runner.invoke(app, ["episode", str(v3_dataset), "9"])
        assert result.exit_code == 1
        assert "Episode 9 not found" in result.output


class TestLengthsCommand:
    """Tests for the lengths command."""

    def test_lengths(self, v2_dataset: Path):
        result = runner.invoke(app, ["lengths", str(v2_dataset)])
        assert result.exit_code == 0
        assert "Episode Lengths" in result.output
        assert "1.00s" in result.output
        assert "1.0s" in result.output

    def test_lengths_range(self, v2_dataset: Path):
        result = runner.invoke(app, ["lengths", str(v2_dataset), "--min", "2"])
        assert result.exit_code == 0
        assert "3 episode(s) outside range: 0, 1, 2" in result.output


class TestAnalyzeCommand:
    """Tests for the analyze command."""

    def test_analyze(self, v3_dataset: Path, tmp_path: Path):
        report_path = tmp_path / "report.json"
        export_path = tmp_path / "flagged.txt"
        result = runner.invoke(
            app,
            [
                "analyze",
                str(v3_dataset),
                "--sample",
                "10",
                "--output",
                str(report_path),
                "--export",
                str(export_path),
                "--flag",
                "3",
            ],
        )
        assert result.exit_code == 0
        assert "Analyzed" in result.output
        assert "Insights" in result.output

        with open(report_path) as f:
            report = json.load(f)
        assert report["num_episodes"] == 4
        assert set(report["results"]) >= {"speed", "velocity", "alignment"}

        ids = [int(ep) for ep in export_path.read_text().strip().split(", ")]
        assert 3 in ids
        assert ids == sorted(set(ids))

    def test_analyze_too_few_episodes(self, v2_dataset: Path):
        for ep in (1, 2):
            (v2_dataset / "data" / "chunk-000" / f"episode_{ep:06d}.parquet").unlink()
        result = runner.invoke(app, ["analyze", str(v2_dataset)])
        assert result.exit_code == 1
        assert "Error:" in result.output


class TestConfigCommand:
    """Tests for the config command."""

    def test_config_template(self, tmp_path: Path):
        path = tmp_path / "episcope.yaml"
        result = runner.invoke(app, ["config", "--template", str(path)])
        assert result.exit_code == 0

        with open(path) as f:
            data = yaml.safe_load(f)
        assert data["sampling"]["sample_cap"] == 120
        assert data["supported_versions"] == ["v3.0", "v2.1", "v2.0"]

    def test_config_show(self, monkeypatch):
        monkeypatch.setenv("EPISCOPE_SAMPLE_CAP", "42")
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert _json_output(result.output)["sampling"]["sample_cap"] == 42
