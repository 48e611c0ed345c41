"""Shared helpers for the GPT and CNN trainers."""

import math
from contextlib import nullcontext
from typing import Tuple

import numpy as np
import torch


DTYPE_MAP = {
    "float16": torch.float16,
    "bfloat16": torch.bfloat16,
    "float32": torch.float32,
}


def set_seed(seed: int):
    torch.manual_seed(seed)
    torch.cuda.manual_seed_all(seed)
    np.random.seed(seed)


def resolve_device(device: str) -> Tuple[str, str]:
    """
    Map a requested device onto one that exists on this machine.

    Returns:
        (device, device_type), e.g. ("cuda:1", "cuda") or ("cpu", "cpu")
    """
    if device.startswith("cuda"):
        if torch.cuda.is_available():
            return device, "cuda"
        print(f"Requested device {device} but CUDA is not available, falling back to cpu")
        return "cpu", "cpu"
    if device == "mps":
        mps = getattr(torch.backends, "mps", None)
        if mps is not None and mps.is_available():
            return "mps", "mps"
        print("Requested device mps but MPS is not available, falling back to cpu")
        return "cpu", "cpu"
    return device, "cpu"


def autocast_setup(device_type: str, dtype_name: str):
    """
    Build the mixed precision pieces for a training loop.

    Returns:
        (ptdtype, autocast context, GradScaler)
    """
    if dtype_name not in DTYPE_MAP:
        raise ValueError(f"Unknown dtype: {dtype_name}. Use one of {sorted(DTYPE_MAP)}")
    dtype = DTYPE_MAP[dtype_name]
    if device_type != "cuda" and dtype == torch.float16:
        dtype = torch.float32  # safer fallback off-GPU

    # GradScaler is only needed for fp16 on CUDA
    scaler = torch.amp.GradScaler(enabled=(dtype == torch.float16 and device_type == "cuda"))
    ctx = (
        torch.amp.autocast(device_type=device_type, dtype=dtype)
        if dtype in (torch.float16, torch.bfloat16)
        else nullcontext()
    )
    return dtype, ctx, scaler


def get_lr(
    it: int,
    learning_rate: float,
    warmup_iters: int = 0,
    lr_decay_iters: int = 0,
    min_lr: float = 0.0,
    decay_lr: bool = True,
) -> float:
    """Linear warmup followed by cosine decay down to min_lr."""
    if not decay_lr:
        return learning_rate
    if it < warmup_iters:
        return learning_rate * (it + 1) / (warmup_iters + 1)
    if it > lr_decay_iters:
        return min_lr
    decay_ratio = (it - warmup_iters) / max(1, lr_decay_iters - warmup_iters)
    coeff = 0.5 * (1.0 + math.cos(math.pi * decay_ratio))
    return min_lr + coeff * (learning_rate - min_lr)
