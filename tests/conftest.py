"""Shared pytest fixtures."""

import importlib.util
from pathlib import Path

import pytest

from distributed import TORCHRUN_ENV_VARS

REPO_ROOT = Path(__file__).resolve().parent.parent

SAMPLE_TEXT = (
    "First Citizen:\nBefore we proceed any further, hear me speak.\n\n"
    "All:\nSpeak, speak.\n\n"
    "First Citizen:\nYou are all resolved rather to die than to famish?\n\n"
) * 40


def load_script(rel_path: str, name: str):
    """Import a script that lives outside any package (e.g. data/*/prepare.py)."""
    spec = importlib.util.spec_from_file_location(name, REPO_ROOT / rel_path)
    module = importlib.util.module_from_spec(spec)
    assert spec.loader is not None
    spec.loader.exec_module(module)
    return module


@pytest.fixture(autouse=True)
def _no_torchrun_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Tests run as a single process regardless of the caller's environment."""
    for name in TORCHRUN_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def sample_text() -> str:
    return SAMPLE_TEXT


@pytest.fixture()
def char_data_dir(tmp_path: Path) -> Path:
    """Character-level dataset (train.bin, val.bin, meta.pkl) built from SAMPLE_TEXT."""
    prepare = load_script("data/shakespeare_char/prepare.py", "shakespeare_char_prepare")
    data_dir = tmp_path / "shakespeare_char"
    prepare.prepare(str(data_dir), text=SAMPLE_TEXT)
    return data_dir


@pytest.fixture()
def tiny_gpt_args(char_data_dir: Path, tmp_path: Path) -> list:
    """CLI overrides for a GPT small enough to train a few steps on CPU."""
    return [
        f"--data_dir={char_data_dir}",
        f"--out_dir={tmp_path / 'out-gpt'}",
        "--device=cpu",
        "--dtype=float32",
        "--compile=False",
        "--n_layer=1",
        "--n_head=2",
        "--n_embd=16",
        "--dropout=0.0",
        "--block_size=8",
        "--batch_size=4",
        "--max_iters=4",
        "--lr_decay_iters=4",
        "--warmup_iters=1",
        "--eval_interval=2",
        "--eval_iters=2",
        "--log_interval=1",
        "--always_save_checkpoint=True",
    ]


@pytest.fixture()
def tiny_cnn_args(tmp_path: Path) -> list:
    """CLI overrides for a two-epoch CNN run on torchvision FakeData."""
    return [
        "--dataset=fake_data",
        "--fake_train_size=48",
        "--fake_test_size=24",
        "--batch_size=8",
        "--num_workers=0",
        "--epochs=2",
        "--channels=(4, 8)",
        "--hidden_dim=16",
        "--device=cpu",
        "--log_interval=2",
        "--always_save_checkpoint=True",
        f"--out_dir={tmp_path / 'out-cnn'}",
    ]
