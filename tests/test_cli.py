"""
End-to-end tests for the flowsink CLI.
"""

import io
import json

import pytest
import yaml

from flowsink.bench import generate_chunks
from flowsink.cli import main, read_chunks
from flowsink.devices import MemoryDevice
from flowsink.sink import BufferedSink


class FullDiskDevice(MemoryDevice):
    async def write(self, data: bytes) -> int:
        raise OSError("No space left on device")


@pytest.fixture
def source_file(tmp_path):
    path = tmp_path / "source.bin"
    path.write_bytes(bytes(range(256)) * 400)
    return path


class TestWriteCommand:
    """flowsink write"""

    def test_copies_source_to_target(self, tmp_path, source_file):
        target = tmp_path / "out" / "target.bin"

        code = main([
            "write", str(target),
            "--source", str(source_file),
            "--chunk-size", "1000",
            "--high-water-mark", "4096",
        ])

        assert code == 0
        assert target.read_bytes() == source_file.read_bytes()

    def test_reads_stdin(self, tmp_path, monkeypatch, capsys):
        target = tmp_path / "stdin.txt"
        monkeypatch.setattr("sys.stdin", io.TextIOWrapper(io.BytesIO(b"from stdin\n")))

        code = main(["write", str(target)])

        assert code == 0
        assert target.read_bytes() == b"from stdin\n"
        assert "Wrote 11 bytes" in capsys.readouterr().out

    def test_append(self, tmp_path, source_file):
        target = tmp_path / "log.bin"
        target.write_bytes(b"header")

        code = main(["write", str(target), "--source", str(source_file), "--append"])

        assert code == 0
        assert target.read_bytes() == b"header" + source_file.read_bytes()

    def test_missing_source(self, tmp_path, capsys):
        code = main(["write", str(tmp_path / "t.bin"), "--source", str(tmp_path / "nope")])

        assert code == 1
        assert "Source file not found" in capsys.readouterr().out

    def test_invalid_high_water_mark(self, tmp_path, source_file, capsys):
        code = main([
            "write", str(tmp_path / "t.bin"),
            "--source", str(source_file),
            "--high-water-mark", "0",
        ])

        assert code == 1
        assert "high_water_mark" in capsys.readouterr().out

    def test_uses_config_file(self, tmp_path, source_file):
        config_path = tmp_path / "flowsink.yaml"
        config_path.write_text(yaml.safe_dump({"sink": {"high_water_mark": 100, "coalesce": False}}))
        target = tmp_path / "t.bin"

        code = main(["--config", str(config_path), "write", str(target), "--source", str(source_file)])

        assert code == 0
        assert target.read_bytes() == source_file.read_bytes()

    def test_config_and_verbose_after_subcommand(self, tmp_path, source_file):
        config_path = tmp_path / "flowsink.yaml"
        config_path.write_text(yaml.safe_dump({"sink": {"high_water_mark": 100}}))
        target = tmp_path / "t.bin"

        code = main([
            "write", str(target),
            "--source", str(source_file),
            "--config", str(config_path),
            "-v",
        ])

        assert code == 0
        assert target.read_bytes() == source_file.read_bytes()

    def test_failing_device_exits_with_error(self, tmp_path, source_file, monkeypatch, capsys):
        monkeypatch.setattr(
            "flowsink.cli.open_file_sink",
            lambda target, config, append=False: BufferedSink(FullDiskDevice(), config),
        )

        code = main(["write", str(tmp_path / "t.bin"), "--source", str(source_file)])

        assert code == 1
        assert "No space left on device" in capsys.readouterr().out


class TestBenchCommand:
    """flowsink bench"""

    def test_json_output(self, tmp_path, capsys):
        code = main([
            "bench",
            "--count", "500",
            "--strategy", "sync", "streamed",
            "--output-dir", str(tmp_path),
            "--json",
        ])

        assert code == 0
        out = capsys.readouterr().out
        results = json.loads(out[out.index("["):])
        assert [r["strategy"] for r in results] == ["sync", "streamed"]

        expected = b"".join(generate_chunks(500))
        assert (tmp_path / "sync.txt").read_bytes() == expected
        assert (tmp_path / "streamed.txt").read_bytes() == expected

    def test_unknown_strategy_rejected(self, tmp_path):
        with pytest.raises(SystemExit):
            main(["bench", "--strategy", "callback", "--output-dir", str(tmp_path)])


class TestInitCommand:
    """flowsink init"""

    def test_creates_config(self, tmp_path, capsys):
        config_path = tmp_path / "flowsink.yaml"

        assert main(["--config", str(config_path), "init"]) == 0
        assert "Created" in capsys.readouterr().out

        data = yaml.safe_load(config_path.read_text())
        assert data["sink"]["high_water_mark"] == 16384

    def test_config_after_subcommand(self, tmp_path):
        config_path = tmp_path / "custom.yaml"

        assert main(["init", "--config", str(config_path)]) == 0
        assert config_path.exists()

    def test_refuses_to_overwrite(self, tmp_path, capsys):
        config_path = tmp_path / "flowsink.yaml"
        config_path.write_text("existing: true\n")

        assert main(["--config", str(config_path), "init"]) == 1
        assert "already exists" in capsys.readouterr().out
        assert config_path.read_text() == "existing: true\n"


def test_read_chunks():
    chunks = list(read_chunks(io.BytesIO(b"abcdefg"), 3))

    assert chunks == [b"abc", b"def", b"g"]
