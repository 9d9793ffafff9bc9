"""Tests for the command-line interface."""

import tomllib

import pytest

from retrack.cli import create_parser, main


class TestParser:
    def test_run_options(self):
        args = create_parser().parse_args(
            ["run", "cfg.toml", "--max-num-frames", "10", "--skip", "2"])
        assert args.command == "run"
        assert args.config == "cfg.toml"
        assert args.max_num_frames == 10
        assert args.skip == 2
        assert args.log_interval is None


class TestMain:
    def test_no_command(self):
        with pytest.raises(SystemExit) as exc:
            main([])
        assert exc.value.code == 1

    def test_auto_config_writes_file(self, tmp_path, make_braidz):
        make_braidz([("CamA", 0, (8, 6))], [], name="run1.braidz")
        out = tmp_path / "retrack.toml"

        main(["auto-config", str(tmp_path), "-o", str(out)])

        with open(out, "rb") as f:
            data = tomllib.load(f)
        assert data["input_braidz"] == "run1.braidz"
        assert [o["type"] for o in data["output"]] == ["video", "debug_txt"]
        assert data["output"][1]["filename"] == "retrack-output/run1_debug.txt"

    def test_auto_config_to_stdout(self, tmp_path, capsys):
        (tmp_path / "movie20211108_084523_CamA.mp4").write_bytes(b"")
        main(["auto-config", str(tmp_path)])
        assert "[[input_video]]" in capsys.readouterr().out

    def test_info(self, make_braidz, capsys):
        rows = [(0, 1, 1.0, 1.0, 2.0, 3.0), (0, 2, 1.1, 1.1, 2.0, 3.0)]
        path = make_braidz([("CamA", 0, (8, 6)), ("CamB", 1, (4, 2))], rows)

        main(["info", path])

        out = capsys.readouterr().out
        assert "expected fps: 100.00" in out
        assert "camn 0: CamA (8x6), 2 rows" in out
        assert "camn 1: CamB (4x2), 0 rows" in out

    def test_run_end_to_end(self, tmp_path, make_braidz):
        rows = [(camn, f, 1636361123.0 + f * 0.01, 1636361123.0 + f * 0.01, 1.0, 2.0)
                for f in range(4) for camn in (0, 1)]
        make_braidz([("CamA", 0, (8, 6)), ("CamB", 1, (8, 6))], rows, name="run1.braidz")
        cfg = tmp_path / "run.toml"
        cfg.write_text('input_braidz = "run1.braidz"\n\n'
                       '[[output]]\ntype = "debug_txt"\nfilename = "out/debug.txt"\n')

        main(["run", str(cfg), "--max-num-frames", "3"])

        text = (tmp_path / "out" / "debug.txt").read_text()
        assert text.count("output frame") == 3

    def test_run_error_exits(self, tmp_path, capsys):
        cfg = tmp_path / "run.toml"
        cfg.write_text('input_braidz = "missing.braidz"\n')
        with pytest.raises(SystemExit) as exc:
            main(["run", str(cfg)])
        assert exc.value.code == 1
        assert "Error: braidz archive not found" in capsys.readouterr().err

    def test_run_wrongly_typed_value_exits(self, tmp_path, capsys):
        cfg = tmp_path / "run.toml"
        cfg.write_text('max_num_frames = "5"\n')
        with pytest.raises(SystemExit) as exc:
            main(["run", str(cfg)])
        assert exc.value.code == 1
        assert "Error: max_num_frames must be an integer" in capsys.readouterr().err

    def test_run_negative_override(self, tmp_path, capsys):
        cfg = tmp_path / "run.toml"
        cfg.write_text("")
        with pytest.raises(SystemExit):
            main(["run", str(cfg), "--skip", "-1"])
        assert "skip_n_first_output_frames" in capsys.readouterr().err
