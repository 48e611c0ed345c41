"""Tests for the character-level Shakespeare preparation script."""

from __future__ import annotations

import pickle
from pathlib import Path

import numpy as np


class TestShakespeareCharPrepare:
    def test_writes_splits_and_meta(self, char_data_dir: Path, sample_text: str) -> None:
        train = np.fromfile(char_data_dir / "train.bin", dtype=np.uint16)
        val = np.fromfile(char_data_dir / "val.bin", dtype=np.uint16)
        assert len(train) == int(len(sample_text) * 0.9)
        assert len(train) + len(val) == len(sample_text)

        with open(char_data_dir / "meta.pkl", "rb") as f:
            meta = pickle.load(f)
        assert meta["vocab_size"] == len(set(sample_text))
        assert int(train.max()) < meta["vocab_size"]

    def test_ids_decode_back_to_text(self, char_data_dir: Path, sample_text: str) -> None:
        with open(char_data_dir / "meta.pkl", "rb") as f:
            meta = pickle.load(f)
        train = np.fromfile(char_data_dir / "train.bin", dtype=np.uint16)
        decoded = "".join(meta["itos"][int(i)] for i in train[:40])
        assert decoded == sample_text[:40]
