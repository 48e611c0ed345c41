"""Tests for CheckpointManager."""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict
from pathlib import Path

import pytest
import torch
import torch.nn as nn

from checkpoint import CheckpointManager, unwrap_model
from cnn import CNNConfig, FashionCNN
from model import GPT, GPTConfig


@pytest.fixture()
def gpt_config() -> GPTConfig:
    return GPTConfig(vocab_size=13, block_size=8, n_layer=1, n_head=2, n_embd=16)


def _save_gpt(gpt_config: GPTConfig, save_dir: Path, **kwargs):
    model = GPT(gpt_config)
    optimizer = model.configure_optimizers(0.1, 1e-3, (0.9, 0.95))
    _, loss = model(torch.zeros(1, 4, dtype=torch.long), torch.zeros(1, 4, dtype=torch.long))
    loss.backward()
    optimizer.step()
    CheckpointManager.save_checkpoint(
        model,
        str(save_dir),
        {
            "model_type": "gpt",
            "model_args": asdict(gpt_config),
            "config": {"dataset": "shakespeare_char", "betas": (0.9, 0.95)},
            "iter": 42,
            "best_val_loss": 1.5,
        },
        optimizer=optimizer,
        **kwargs,
    )
    return model, optimizer


class TestSaveCheckpoint:
    def test_files_written(self, gpt_config: GPTConfig, tmp_path: Path) -> None:
        _save_gpt(gpt_config, tmp_path)
        for name in ("ckpt.pt", "model.safetensors", "model_args.json", "config.json", "export_meta.json"):
            assert (tmp_path / name).exists()

    def test_export_meta(self, gpt_config: GPTConfig, tmp_path: Path) -> None:
        _save_gpt(gpt_config, tmp_path)
        meta = json.loads((tmp_path / "export_meta.json").read_text())
        assert meta["model_type"] == "gpt"
        assert meta["iter"] == 42
        assert meta["best_val_loss"] == 1.5
        digest = hashlib.sha256((tmp_path / "model.safetensors").read_bytes()).hexdigest()
        assert meta["safetensors"]["sha256"] == digest

    def test_without_safetensors(self, gpt_config: GPTConfig, tmp_path: Path) -> None:
        _save_gpt(gpt_config, tmp_path, save_safetensors=False)
        assert not (tmp_path / "model.safetensors").exists()
        assert "safetensors" not in json.loads((tmp_path / "export_meta.json").read_text())

    def test_model_type_required(self, gpt_config: GPTConfig, tmp_path: Path) -> None:
        with pytest.raises(ValueError, match="model_type"):
            CheckpointManager.save_checkpoint(GPT(gpt_config), str(tmp_path), {"model_args": {}})


class TestLoadModel:
    def test_gpt_round_trip(self, gpt_config: GPTConfig, tmp_path: Path) -> None:
        model, optimizer = _save_gpt(gpt_config, tmp_path)
        loaded, metadata = CheckpointManager.load_model(str(tmp_path / "ckpt.pt"))
        assert isinstance(loaded, GPT)
        assert metadata["model_type"] == "gpt"
        assert metadata["iter"] == 42
        assert metadata["config"]["dataset"] == "shakespeare_char"
        for k, v in model.state_dict().items():
            assert torch.equal(loaded.state_dict()[k], v)

        fresh = loaded.configure_optimizers(0.1, 1e-3, (0.9, 0.95))
        fresh.load_state_dict(metadata["optimizer"])
        assert fresh.state_dict()["state"].keys() == optimizer.state_dict()["state"].keys()

    def test_cnn_round_trip(self, tmp_path: Path) -> None:
        config = CNNConfig(channels=(4, 8), hidden_dim=16)
        model = FashionCNN(config)
        CheckpointManager.save_checkpoint(
            model,
            str(tmp_path),
            {"model_type": "cnn", "model_args": asdict(config), "epoch": 3, "best_val_accuracy": 0.9},
        )
        loaded, metadata = CheckpointManager.load_model(str(tmp_path / "ckpt.pt"))
        assert isinstance(loaded, FashionCNN)
        assert metadata["epoch"] == 3
        assert metadata["optimizer"] is None
        x = torch.randn(2, 1, 28, 28)
        model.eval()
        loaded.eval()
        assert torch.allclose(model(x)[0], loaded(x)[0])

    def test_compiled_prefix_stripped(self, gpt_config: GPTConfig, tmp_path: Path) -> None:
        model = GPT(gpt_config)
        state = {f"_orig_mod.{k}": v for k, v in model.state_dict().items()}
        torch.save({"model": state, "model_args": asdict(gpt_config), "model_type": "gpt"}, tmp_path / "ckpt.pt")
        loaded, _ = CheckpointManager.load_model(str(tmp_path / "ckpt.pt"))
        assert torch.equal(loaded.lm_head.weight, model.lm_head.weight)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            CheckpointManager.load_model(str(tmp_path / "ckpt.pt"))

    def test_missing_model_args(self, tmp_path: Path) -> None:
        torch.save({"model": {}}, tmp_path / "ckpt.pt")
        with pytest.raises(ValueError, match="model_args"):
            CheckpointManager.load_model(str(tmp_path / "ckpt.pt"))

    def test_unknown_model_type(self, gpt_config: GPTConfig, tmp_path: Path) -> None:
        torch.save({"model": {}, "model_args": asdict(gpt_config), "model_type": "rnn"}, tmp_path / "ckpt.pt")
        with pytest.raises(ValueError, match="Unknown model_type"):
            CheckpointManager.load_model(str(tmp_path / "ckpt.pt"))


class TestUnwrapModel:
    def test_plain_module(self) -> None:
        m = nn.Linear(2, 2)
        assert unwrap_model(m) is m

    def test_wrapper_with_module_attribute(self) -> None:
        class Wrapper(nn.Module):
            def __init__(self, inner: nn.Module) -> None:
                super().__init__()
                self.module = inner

        inner = nn.Linear(2, 2)
        assert unwrap_model(Wrapper(Wrapper(inner))) is inner
