"""Tests for the CLI entry point."""

import gzip
import re
import sys

import pytest
from click.testing import CliRunner
from loguru import logger

from bucketeer.core.cli import main


class TestCliGroup:
    def test_help(self):
        runner = CliRunner()
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "Bucketeer" in result.output
        for command in ("init-stats", "mkbucket", "put", "get", "rm", "recover"):
            assert command in result.output

    def test_version(self):
        runner = CliRunner()
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_put_help(self):
        runner = CliRunner()
        result = runner.invoke(main, ["put", "--help"])
        assert result.exit_code == 0
        assert "--private" in result.output


@pytest.fixture
def cli(tmp_config_file):
    runner = CliRunner()

    def _invoke(*args):
        return runner.invoke(main, ["--config", tmp_config_file, *args])

    yield _invoke
    # setup_logging bound loguru to the runner's stderr
    logger.remove()
    logger.add(sys.stderr)


class TestStorageCommands:
    def test_missing_config_file(self, tmp_path):
        result = CliRunner().invoke(main, ["--config", str(tmp_path / "nope.yaml"), "stats", "alice"])
        assert result.exit_code == 1
        assert "Config file not found" in result.output

    def test_unknown_user(self, cli):
        result = cli("stats", "nobody")
        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_user_and_buckets(self, cli):
        result = cli("init-stats", "alice")
        assert result.exit_code == 0, result.output
        assert "10000 bytes" in result.output

        assert cli("buckets", "alice").output.strip() == "No buckets."

        result = cli("mkbucket", "alice", "pics")
        assert result.exit_code == 0, result.output
        assert "Bucket 'pics' created (test-bucket-" in result.output

        result = cli("mkbucket", "alice", "pics")
        assert result.exit_code == 1
        assert "already been registered" in result.output

        listing = cli("buckets", "alice").output
        assert listing.startswith("pics\ttest-bucket-")

        result = cli("stats", "alice")
        assert "API calls: 1 / 100" in result.output

        result = cli("rmbucket", "alice", "pics")
        assert result.exit_code == 0, result.output
        assert "Removed 1 buckets." in result.output

    @pytest.mark.smoke
    def test_file_round_trip(self, cli, tmp_path):
        cli("init-stats", "alice")
        cli("mkbucket", "alice", "docs")
        source = tmp_path / "notes.txt"
        source.write_bytes(b"some notes\n" * 100)

        result = cli("put", "alice", "docs", str(source))
        assert result.exit_code == 0, result.output
        match = re.search(r"Uploaded 'notes.txt' as (\w+) \(1100 bytes\)", result.output)
        assert match
        file_id = match.group(1)

        plain = tmp_path / "plain.txt"
        result = cli("get", file_id, str(plain))
        assert result.exit_code == 0, result.output
        assert "(identity)" in result.output
        assert plain.read_bytes() == source.read_bytes()

        packed = tmp_path / "packed.gz"
        result = cli("get", file_id, str(packed), "--accept-encoding", "gzip")
        assert "(gzip)" in result.output
        assert gzip.decompress(packed.read_bytes()) == source.read_bytes()

        assert "Memory:    1100 / 10000 bytes" in cli("stats", "alice").output

        result = cli("rm", "alice", file_id)
        assert result.exit_code == 0, result.output
        assert "Removed 1 files." in result.output
        assert "Memory:    0 / 10000 bytes" in cli("stats", "alice").output

    def test_put_into_missing_bucket(self, cli, tmp_path):
        cli("init-stats", "alice")
        source = tmp_path / "a.txt"
        source.write_bytes(b"x")
        result = cli("put", "alice", "nope", str(source))
        assert result.exit_code == 1
        assert "No bucket exists with the name 'nope'" in result.output

    def test_private_upload_prints_no_url(self, cli, tmp_path):
        cli("init-stats", "alice")
        cli("mkbucket", "alice", "docs")
        source = tmp_path / "a.bin"
        source.write_bytes(b"\x00\x01")
        result = cli("put", "alice", "docs", str(source), "--private")
        assert result.exit_code == 0, result.output
        assert "file://" not in result.output

    def test_recover_with_nothing_pending(self, cli):
        result = cli("recover")
        assert result.exit_code == 0, result.output
        assert "Recovered 0 operations." in result.output
