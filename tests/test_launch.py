"""Tests for the torchrun command builder."""

from __future__ import annotations

import pytest
import torch

import launch


class TestBuildTorchrunCommand:
    def test_single_node_is_standalone(self) -> None:
        cmd = launch.build_torchrun_command("train.py", ["config/train_shakespeare_char.py"], nproc_per_node=4)
        assert cmd == [
            "torchrun",
            "--standalone",
            "--nnodes=1",
            "--nproc_per_node=4",
            "train.py",
            "config/train_shakespeare_char.py",
        ]

    def test_multi_node(self) -> None:
        cmd = launch.build_torchrun_command(
            "train_cnn.py",
            ["config/train_fashion_mnist.py", "--epochs=5"],
            nnodes=2,
            nproc_per_node=8,
            node_rank=1,
            master_addr="10.0.0.1",
            master_port=1234,
        )
        assert cmd == [
            "torchrun",
            "--nnodes=2",
            "--nproc_per_node=8",
            "--node_rank=1",
            "--master_addr=10.0.0.1",
            "--master_port=1234",
            "train_cnn.py",
            "config/train_fashion_mnist.py",
            "--epochs=5",
        ]

    def test_single_node_with_master_addr(self) -> None:
        cmd = launch.build_torchrun_command("train.py", nproc_per_node=2, master_addr="127.0.0.1")
        assert "--standalone" not in cmd
        assert "--master_addr=127.0.0.1" in cmd

    def test_default_nproc_uses_gpu_count(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(torch.cuda, "is_available", lambda: True)
        monkeypatch.setattr(torch.cuda, "device_count", lambda: 3)
        assert "--nproc_per_node=3" in launch.build_torchrun_command("train.py")

    def test_default_nproc_without_gpu(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(torch.cuda, "is_available", lambda: False)
        assert launch.default_nproc_per_node() == 1

    @pytest.mark.parametrize(
        "kwargs, match",
        [
            ({"nnodes": 0}, "nnodes"),
            ({"nproc_per_node": 0}, "nproc_per_node"),
            ({"nnodes": 2, "node_rank": 2, "master_addr": "h"}, "node_rank"),
            ({"node_rank": -1}, "node_rank"),
            ({"master_port": 70000}, "master_port"),
            ({"nnodes": 2}, "master_addr"),
            ({"nnodes": 2, "master_addr": "h", "standalone": True}, "standalone"),
        ],
    )
    def test_invalid(self, kwargs: dict, match: str) -> None:
        kwargs.setdefault("nproc_per_node", 1)
        with pytest.raises(ValueError, match=match):
            launch.build_torchrun_command("train.py", **kwargs)


class TestMain:
    def test_dry_run_prints_command(self, capsys: pytest.CaptureFixture[str]) -> None:
        rc = launch.main(["--dry_run", "--nproc_per_node=2", "train.py", "config/train_shakespeare_char.py", "--device=cpu"])
        assert rc == 0
        out = capsys.readouterr().out.strip()
        assert out == (
            "torchrun --standalone --nnodes=1 --nproc_per_node=2 "
            "train.py config/train_shakespeare_char.py --device=cpu"
        )

    def test_runs_command(self, monkeypatch: pytest.MonkeyPatch) -> None:
        calls = []

        class Done:
            returncode = 3

        def fake_run(cmd):
            calls.append(cmd)
            return Done()

        monkeypatch.setattr(launch.subprocess, "run", fake_run)
        assert launch.main(["--nproc_per_node=1", "train_cnn.py"]) == 3
        assert calls[0][-1] == "train_cnn.py"
