"""Tests for config files and command line overrides."""

from __future__ import annotations

from pathlib import Path

import pytest

from configurator import build_config, load_config, parse_overrides

DEFAULTS = {"batch_size": 64, "learning_rate": 1e-3, "device": "cuda", "compile": False, "data_dir": None}


@pytest.fixture()
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "my_config.py"
    path.write_text('config = {"batch_size": 12, "device": "cpu"}\n')
    return path


class TestLoadConfig:
    def test_reads_config_dict(self, config_file: Path) -> None:
        assert load_config(str(config_file)) == {"batch_size": 12, "device": "cpu"}

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.py"))

    def test_file_without_config(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.py"
        path.write_text("batch_size = 12\n")
        with pytest.raises(ValueError, match="config"):
            load_config(str(path))

    def test_repo_configs_load(self) -> None:
        root = Path(__file__).resolve().parent.parent
        for name in ("train_shakespeare_char.py", "train_shakespeare.py", "train_fashion_mnist.py"):
            cfg = load_config(str(root / "config" / name))
            assert "out_dir" in cfg


class TestParseOverrides:
    def test_literals_and_strings(self) -> None:
        out = parse_overrides(["--batch_size=32", "--compile=False", "--device=cuda:1", "--channels=(16, 32)"])
        assert out == {"batch_size": 32, "compile": False, "device": "cuda:1", "channels": (16, 32)}

    def test_value_may_contain_equals(self) -> None:
        assert parse_overrides(["--start=a=b"]) == {"start": "a=b"}

    @pytest.mark.parametrize("token", ["batch_size=3", "--batch_size", "--=3"])
    def test_malformed(self, token: str) -> None:
        with pytest.raises(ValueError):
            parse_overrides([token])


class TestBuildConfig:
    def test_precedence(self, config_file: Path) -> None:
        cfg = build_config(DEFAULTS, str(config_file), {"batch_size": 4})
        assert cfg["batch_size"] == 4
        assert cfg["device"] == "cpu"
        assert cfg["learning_rate"] == 1e-3

    def test_defaults_untouched(self) -> None:
        build_config(DEFAULTS, None, {"batch_size": 4})
        assert DEFAULTS["batch_size"] == 64

    def test_unknown_key(self) -> None:
        with pytest.raises(ValueError, match="Unknown config key"):
            build_config(DEFAULTS, None, {"batch_sz": 4})

    def test_type_mismatch(self) -> None:
        with pytest.raises(ValueError, match="type"):
            build_config(DEFAULTS, None, {"batch_size": "big"})

    def test_int_coerced_to_float(self) -> None:
        cfg = build_config(DEFAULTS, None, {"learning_rate": 1})
        assert cfg["learning_rate"] == 1.0
        assert isinstance(cfg["learning_rate"], float)

    def test_bool_is_not_float(self) -> None:
        with pytest.raises(ValueError):
            build_config(DEFAULTS, None, {"learning_rate": True})

    def test_none_default_accepts_anything(self) -> None:
        assert build_config(DEFAULTS, None, {"data_dir": "/tmp/x"})["data_dir"] == "/tmp/x"
