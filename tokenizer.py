"""
Tokenizers used by the text datasets.

- CharTokenizer: one token per character, vocabulary stored in meta.pkl
- BPETokenizer: GPT-2 byte-pair encoding via tiktoken
"""

import os
import pickle
from typing import Dict, List

import tiktoken


class CharTokenizer:
    def __init__(self, stoi: Dict[str, int], itos: Dict[int, str]):
        self.stoi = stoi
        self.itos = itos

    @classmethod
    def from_text(cls, text: str) -> "CharTokenizer":
        chars = sorted(set(text))
        stoi = {ch: i for i, ch in enumerate(chars)}
        itos = {i: ch for i, ch in enumerate(chars)}
        return cls(stoi, itos)

    @property
    def vocab_size(self) -> int:
        return len(self.stoi)

    def encode(self, text: str) -> List[int]:
        try:
            return [self.stoi[c] for c in text]
        except KeyError as e:
            raise ValueError(f"Character {e.args[0]!r} is not in the vocabulary") from None

    def decode(self, ids: List[int]) -> str:
        return "".join(self.itos[i] for i in ids)

    def to_meta(self) -> dict:
        return {"vocab_size": self.vocab_size, "stoi": self.stoi, "itos": self.itos}


class BPETokenizer:
    def __init__(self, encoding: str = "gpt2"):
        self.enc = tiktoken.get_encoding(encoding)

    @property
    def vocab_size(self) -> int:
        return self.enc.n_vocab

    def encode(self, text: str) -> List[int]:
        return self.enc.encode(text, allowed_special={"<|endoftext|>"})

    def decode(self, ids: List[int]) -> str:
        return self.enc.decode(ids)


def load_tokenizer(meta_path: str):
    """Char-level tokenizer if meta.pkl carries a vocabulary, GPT-2 BPE otherwise."""
    if os.path.exists(meta_path):
        with open(meta_path, "rb") as f:
            meta = pickle.load(f)
        if "stoi" in meta and "itos" in meta:
            print(f"Loading char-level vocabulary from {meta_path}")
            return CharTokenizer(meta["stoi"], meta["itos"])
    print("No vocabulary found in meta.pkl, assuming GPT-2 encodings...")
    return BPETokenizer()
