"""
Prepare tiny Shakespeare with GPT-2 BPE tokens.

    python data/shakespeare/prepare.py
"""

import os
import pickle
import sys
import urllib.request

import numpy as np

# Add repo root to path to import from root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from tokenizer import BPETokenizer  # noqa: E402


SHAKESPEARE_URL = "https://raw.githubusercontent.com/karpathy/char-rnn/master/data/tinyshakespeare/input.txt"


def download_shakespeare(data_dir: str):
    os.makedirs(data_dir, exist_ok=True)
    input_file_path = os.path.join(data_dir, "input.txt")
    if os.path.exists(input_file_path):
        return input_file_path

    print(f"Downloading {SHAKESPEARE_URL}...")
    urllib.request.urlretrieve(SHAKESPEARE_URL, input_file_path)
    return input_file_path


def main():
    data_dir = os.path.dirname(os.path.abspath(__file__))
    input_path = download_shakespeare(data_dir)

    with open(input_path, "r", encoding="utf-8") as f:
        text = f.read()

    print(f"Loaded {len(text):,} characters.")
    enc = BPETokenizer()

    n = len(text)
    train_ids = np.array(enc.enc.encode_ordinary(text[: int(n * 0.9)]), dtype=np.uint16)
    val_ids = np.array(enc.enc.encode_ordinary(text[int(n * 0.9) :]), dtype=np.uint16)
    print(f"train has {len(train_ids):,} tokens")
    print(f"val has {len(val_ids):,} tokens")

    train_ids.tofile(os.path.join(data_dir, "train.bin"))
    val_ids.tofile(os.path.join(data_dir, "val.bin"))
    print(f"Wrote train.bin ({train_ids.nbytes/1e6:.1f} MB) and val.bin ({val_ids.nbytes/1e6:.1f} MB)")

    meta = {"vocab_size": enc.vocab_size}
    with open(os.path.join(data_dir, "meta.pkl"), "wb") as f:
        pickle.dump(meta, f)
    print("Saved meta.pkl with vocab_size", enc.vocab_size)


if __name__ == "__main__":
    main()
