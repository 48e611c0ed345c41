"""
Train a nanoGPT-style language model.

Single process:
    python train.py config/train_shakespeare_char.py
    python train.py config/train_shakespeare_char.py --device=cpu --compile=False --max_iters=2000

Distributed data parallel on one node with 4 GPUs:
    torchrun --standalone --nproc_per_node=4 train.py config/train_shakespeare_char.py

Across 2 nodes (run on each node with its own --node_rank):
    torchrun --nnodes=2 --nproc_per_node=8 --node_rank=0 --master_addr=10.0.0.1 \
        --master_port=29500 train.py config/train_shakespeare_char.py
"""

import argparse
import os
import pickle
import time

import numpy as np
import torch
from torch.nn.parallel import DistributedDataParallel as DDP

from checkpoint import CheckpointManager, unwrap_model
from configurator import build_config, parse_overrides
from distributed import cleanup, setup_distributed
from model import GPT, GPTConfig
from train_utils import autocast_setup, get_lr, resolve_device, set_seed


DEFAULT_CONFIG = {
    # I/O
    "out_dir": "out",
    "eval_interval": 250,
    "eval_iters": 200,
    "log_interval": 10,
    "eval_only": False,
    "always_save_checkpoint": False,
    "init_from": "scratch",  # 'scratch' or 'resume'
    "resume_dir": None,
    "save_safetensors": True,
    # data
    "dataset": "shakespeare_char",
    "data_dir": None,  # defaults to data/<dataset>
    "gradient_accumulation_steps": 1,
    "batch_size": 64,
    "block_size": 256,
    # model
    "n_layer": 6,
    "n_head": 6,
    "n_embd": 384,
    "dropout": 0.2,
    "bias": False,
    # adamw optimizer
    "learning_rate": 1e-3,
    "max_iters": 5000,
    "weight_decay": 1e-1,
    "beta1": 0.9,
    "beta2": 0.99,
    "grad_clip": 1.0,  # 0.0 disables clipping
    # lr schedule
    "decay_lr": True,
    "warmup_iters": 100,
    "lr_decay_iters": 5000,
    "min_lr": 1e-4,
    # system
    "device": "cuda",
    "backend": None,  # nccl/gloo, picked from the device when None
    "dtype": "bfloat16",
    "compile": False,
    "seed": 1337,
}


def load_split(data_dir: str, split: str) -> np.memmap:
    path = os.path.join(data_dir, f"{split}.bin")
    if not os.path.exists(path):
        raise FileNotFoundError(
            f"Expected preprocessed data at {path}. "
            f"Run the dataset prepare script first (e.g., python {os.path.join(data_dir, 'prepare.py')})."
        )
    return np.memmap(path, dtype=np.uint16, mode="r")


def load_vocab_size(data_dir: str) -> int:
    meta_path = os.path.join(data_dir, "meta.pkl")
    if os.path.exists(meta_path):
        with open(meta_path, "rb") as f:
            meta = pickle.load(f)
        print(f"Found vocab_size = {meta['vocab_size']} (inside {meta_path})")
        return meta["vocab_size"]
    print("No meta.pkl found, defaulting to the GPT-2 vocab size of 50257")
    return 50257


def get_batch(data: np.ndarray, batch_size: int, block_size: int, device: str):
    """Sample random (input, target) windows; targets are inputs shifted by one token."""
    if len(data) <= block_size:
        raise ValueError(
            f"Dataset has {len(data)} tokens, need more than block_size={block_size}"
        )
    ix = torch.randint(len(data) - block_size, (batch_size,))
    x = torch.stack([torch.from_numpy((data[i : i + block_size]).astype(np.int64)) for i in ix])
    y = torch.stack([torch.from_numpy((data[i + 1 : i + 1 + block_size]).astype(np.int64)) for i in ix])
    if device.startswith("cuda"):
        # pin arrays so the host-to-device copy can be async
        x = x.pin_memory().to(device, non_blocking=True)
        y = y.pin_memory().to(device, non_blocking=True)
    else:
        x, y = x.to(device), y.to(device)
    return x, y


@torch.no_grad()
def estimate_loss(model, splits: dict, eval_iters: int, batch_size: int, block_size: int, device: str, ctx):
    """Average loss over eval_iters random batches for each split."""
    out = {}
    model.eval()
    for split, data in splits.items():
        losses = torch.zeros(eval_iters)
        for k in range(eval_iters):
            xb, yb = get_batch(data, batch_size, block_size, device)
            with ctx:
                _, loss = model(xb, yb)
            losses[k] = loss.item()
        out[split] = losses.mean().item()
    model.train()
    return out


def main(argv=None):
    parser = argparse.ArgumentParser(description="Train a nanoGPT-style model.")
    parser.add_argument("config", type=str, nargs="?", default=None, help="Path to a config Python file")
    args, rest = parser.parse_known_args(argv)
    cfg = build_config(DEFAULT_CONFIG, args.config, parse_overrides(rest))

    # system settings
    ctx_dist = setup_distributed(cfg["device"], cfg["backend"])
    master_process = ctx_dist.is_master
    if ctx_dist.ddp:
        device, device_type = ctx_dist.device, "cuda" if ctx_dist.device.startswith("cuda") else "cpu"
    else:
        device, device_type = resolve_device(cfg["device"])

    grad_accum_steps = cfg["gradient_accumulation_steps"]
    if grad_accum_steps % ctx_dist.world_size != 0:
        raise ValueError(
            f"gradient_accumulation_steps ({grad_accum_steps}) must be divisible "
            f"by the number of processes ({ctx_dist.world_size})"
        )
    grad_accum_steps //= ctx_dist.world_size

    tokens_per_iter = grad_accum_steps * ctx_dist.world_size * cfg["batch_size"] * cfg["block_size"]
    out_dir = cfg["out_dir"]
    if master_process:
        print(f"tokens per iteration will be: {tokens_per_iter:,}")
        os.makedirs(out_dir, exist_ok=True)

    set_seed(cfg["seed"] + ctx_dist.rank)
    torch.backends.cuda.matmul.allow_tf32 = True
    torch.backends.cudnn.allow_tf32 = True
    _, ctx, scaler = autocast_setup(device_type, cfg["dtype"])

    # data
    data_dir = cfg["data_dir"] or os.path.join("data", cfg["dataset"])
    train_data = load_split(data_dir, "train")
    val_data = load_split(data_dir, "val")

    # model init
    init_from = cfg["init_from"]
    iter_num = 0
    best_val_loss = float("inf")
    optimizer_state = None

    if init_from == "scratch":
        if master_process:
            print("Initializing model from scratch...")
        model_args = dict(
            vocab_size=load_vocab_size(data_dir),
            block_size=cfg["block_size"],
            n_layer=cfg["n_layer"],
            n_head=cfg["n_head"],
            n_embd=cfg["n_embd"],
            dropout=cfg["dropout"],
            bias=cfg["bias"],
        )
        model = GPT(GPTConfig(**model_args))
    elif init_from == "resume":
        resume_dir = cfg["resume_dir"] or out_dir
        model, metadata = CheckpointManager.load_model(os.path.join(resume_dir, "ckpt.pt"), device="cpu")
        if metadata["model_type"] != "gpt":
            raise ValueError(f"Cannot resume GPT training from a {metadata['model_type']} checkpoint")
        model_args = metadata["model_args"]
        iter_num = metadata.get("iter", 0)
        best_val_loss = metadata.get("best_val_loss") or float("inf")
        optimizer_state = metadata["optimizer"]
        if cfg["block_size"] < model.config.block_size:
            model.crop_block_size(cfg["block_size"])
            model_args["block_size"] = cfg["block_size"]
    else:
        raise ValueError(f"Unknown init_from: {init_from}. Use 'scratch' or 'resume'.")

    model.to(device)
    if master_process:
        print(f"number of parameters: {model.get_num_params() / 1e6:.2f}M")

    optimizer = model.configure_optimizers(
        weight_decay=cfg["weight_decay"],
        learning_rate=cfg["learning_rate"],
        betas=(cfg["beta1"], cfg["beta2"]),
    )
    if optimizer_state is not None:
        optimizer.load_state_dict(optimizer_state)
    optimizer_state = None  # free memory

    if cfg["compile"] and hasattr(torch, "compile"):
        if master_process:
            print("compiling the model... (takes a ~minute)")
        model = torch.compile(model)  # type: ignore

    if ctx_dist.ddp:
        device_ids = [ctx_dist.local_rank] if device_type == "cuda" else None
        model = DDP(model, device_ids=device_ids)
    raw_model = unwrap_model(model)

    batch_size = cfg["batch_size"]
    block_size = cfg["block_size"]
    splits = {"train": train_data, "val": val_data}

    def lr_at(it: int) -> float:
        return get_lr(
            it,
            cfg["learning_rate"],
            warmup_iters=cfg["warmup_iters"],
            lr_decay_iters=cfg["lr_decay_iters"],
            min_lr=cfg["min_lr"],
            decay_lr=cfg["decay_lr"],
        )

    xb, yb = get_batch(train_data, batch_size, block_size, device)
    t0 = time.time()
    running_loss = 0.0
    model.train()

    while True:
        lr = lr_at(iter_num)
        for param_group in optimizer.param_groups:
            param_group["lr"] = lr

        # evaluation and checkpointing happen on the master process only
        if (iter_num % cfg["eval_interval"] == 0 or cfg["eval_only"]) and master_process:
            # raw_model: the other ranks don't take part in this forward pass
            losses = estimate_loss(raw_model, splits, cfg["eval_iters"], batch_size, block_size, device, ctx)
            print(f"iter {iter_num}: train loss {losses['train']:.4f}, val loss {losses['val']:.4f}")
            if losses["val"] < best_val_loss or cfg["always_save_checkpoint"]:
                best_val_loss = min(best_val_loss, losses["val"])
                if iter_num > 0 and not cfg["eval_only"]:
                    print(f"Saving checkpoint (iter {iter_num}, val loss {losses['val']:.4f})...")
                    CheckpointManager.save_checkpoint(
                        model=raw_model,
                        save_dir=out_dir,
                        metadata={
                            "model_type": "gpt",
                            "model_args": model_args,
                            "config": cfg,
                            "iter": iter_num,
                            "best_val_loss": best_val_loss,
                        },
                        optimizer=optimizer,
                        save_safetensors=cfg["save_safetensors"],
                    )
        if cfg["eval_only"]:
            break

        # training step with grad accumulation
        for micro_step in range(grad_accum_steps):
            if ctx_dist.ddp:
                # only all-reduce gradients on the last micro step
                model.require_backward_grad_sync = micro_step == grad_accum_steps - 1
            with ctx:
                _, loss = model(xb, yb)
                loss = loss / grad_accum_steps
            # prefetch the next batch while the GPU works on the backward pass
            xb, yb = get_batch(train_data, batch_size, block_size, device)
            scaler.scale(loss).backward()

        if cfg["grad_clip"] != 0.0:
            scaler.unscale_(optimizer)
            torch.nn.utils.clip_grad_norm_(model.parameters(), cfg["grad_clip"])
        scaler.step(optimizer)
        scaler.update()
        optimizer.zero_grad(set_to_none=True)

        running_loss += loss.item() * grad_accum_steps
        if iter_num % cfg["log_interval"] == 0 and master_process:
            t1 = time.time()
            dt = t1 - t0
            t0 = t1
            n = 1 if iter_num == 0 else cfg["log_interval"]
            avg_loss = running_loss / n
            print(f"iter {iter_num:06d} | loss {avg_loss:.4f} | lr {lr:.5e} | time {dt * 1000:.0f}ms")
            running_loss = 0.0

        iter_num += 1
        if iter_num > cfg["max_iters"]:
            break

    cleanup(ctx_dist)
    return best_val_loss


if __name__ == "__main__":
    main()
