"""
Prepare tiny Shakespeare for character-level language modeling.

Instead of BPE tokens every character becomes one integer id. Writes
train.bin / val.bin (uint16 ids) and meta.pkl (vocabulary) next to this file.

    python data/shakespeare_char/prepare.py
"""

import os
import pickle
import sys
import urllib.request

import numpy as np

# Add repo root to path to import from root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from tokenizer import CharTokenizer  # noqa: E402


SHAKESPEARE_URL = "https://raw.githubusercontent.com/karpathy/char-rnn/master/data/tinyshakespeare/input.txt"


def download_shakespeare(data_dir: str) -> str:
    os.makedirs(data_dir, exist_ok=True)
    input_file_path = os.path.join(data_dir, "input.txt")
    if os.path.exists(input_file_path):
        return input_file_path

    print(f"Downloading {SHAKESPEARE_URL}...")
    urllib.request.urlretrieve(SHAKESPEARE_URL, input_file_path)
    return input_file_path


def prepare(data_dir: str, text: str = None, train_fraction: float = 0.9) -> dict:
    """Tokenize `text` (or the downloaded corpus) and write the binary splits to data_dir."""
    if text is None:
        with open(download_shakespeare(data_dir), "r", encoding="utf-8") as f:
            text = f.read()
    os.makedirs(data_dir, exist_ok=True)
    print(f"length of dataset in characters: {len(text):,}")

    tok = CharTokenizer.from_text(text)
    print(f"all the unique characters: {''.join(tok.stoi)!r}")
    print(f"vocab size: {tok.vocab_size:,}")

    n = len(text)
    split = int(n * train_fraction)
    train_ids = np.array(tok.encode(text[:split]), dtype=np.uint16)
    val_ids = np.array(tok.encode(text[split:]), dtype=np.uint16)
    print(f"train has {len(train_ids):,} tokens")
    print(f"val has {len(val_ids):,} tokens")

    train_ids.tofile(os.path.join(data_dir, "train.bin"))
    val_ids.tofile(os.path.join(data_dir, "val.bin"))

    meta = tok.to_meta()
    with open(os.path.join(data_dir, "meta.pkl"), "wb") as f:
        pickle.dump(meta, f)
    print("Saved meta.pkl with vocab_size", tok.vocab_size)
    return meta


if __name__ == "__main__":
    prepare(os.path.dirname(os.path.abspath(__file__)))
