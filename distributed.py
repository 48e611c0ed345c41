"""
Process-group setup for runs launched with torchrun.

torchrun exports RANK, LOCAL_RANK and WORLD_SIZE (plus MASTER_ADDR/MASTER_PORT)
for every worker it starts. When none of them are set the scripts run as a
single ordinary process.

    torchrun --standalone --nproc_per_node=4 train.py config/train_shakespeare_char.py
    torchrun --nnodes=2 --nproc_per_node=8 --node_rank=0 \
        --master_addr=10.0.0.1 --master_port=29500 train_cnn.py config/train_fashion_mnist.py
"""

import os
from dataclasses import dataclass
from typing import Optional

import torch
import torch.distributed as dist


TORCHRUN_ENV_VARS = ("RANK", "LOCAL_RANK", "WORLD_SIZE")


@dataclass
class DistContext:
    ddp: bool
    rank: int
    local_rank: int
    world_size: int
    device: str
    backend: Optional[str] = None

    @property
    def is_master(self) -> bool:
        return self.rank == 0


def setup_distributed(device: str = "cuda", backend: Optional[str] = None) -> DistContext:
    """
    Initialize the default process group if this process was started by torchrun.

    Args:
        device: Device requested in the config ('cuda', 'cpu', ...)
        backend: 'nccl' or 'gloo'. Defaults to nccl for CUDA, gloo otherwise.

    Returns:
        DistContext describing this process
    """
    present = [name for name in TORCHRUN_ENV_VARS if name in os.environ]
    if not present:
        return DistContext(ddp=False, rank=0, local_rank=0, world_size=1, device=device)
    if len(present) != len(TORCHRUN_ENV_VARS):
        missing = [name for name in TORCHRUN_ENV_VARS if name not in os.environ]
        raise RuntimeError(
            f"Incomplete distributed environment: missing {', '.join(missing)}. "
            "Launch multi-process runs with torchrun."
        )

    rank = int(os.environ["RANK"])
    local_rank = int(os.environ["LOCAL_RANK"])
    world_size = int(os.environ["WORLD_SIZE"])

    cuda_ok = device.startswith("cuda") and torch.cuda.is_available()
    if backend is None:
        backend = "nccl" if cuda_ok else "gloo"
    if backend == "nccl" and not cuda_ok:
        raise RuntimeError(
            "The nccl backend needs CUDA devices. Use --backend=gloo (or --device=cpu) on CPU-only machines."
        )

    if cuda_ok:
        device = f"cuda:{local_rank}"
        torch.cuda.set_device(device)
    else:
        device = "cpu"

    dist.init_process_group(backend=backend)
    return DistContext(
        ddp=True,
        rank=rank,
        local_rank=local_rank,
        world_size=world_size,
        device=device,
        backend=backend,
    )


def all_reduce_sum(tensor: torch.Tensor, ctx: DistContext) -> torch.Tensor:
    """Sum a tensor across ranks in place."""
    if ctx.ddp:
        dist.all_reduce(tensor, op=dist.ReduceOp.SUM)
    return tensor


def reduce_mean(value: float, ctx: DistContext) -> float:
    """Average a python scalar across ranks."""
    if not ctx.ddp:
        return value
    t = torch.tensor([value], dtype=torch.float64, device=ctx.device)
    dist.all_reduce(t, op=dist.ReduceOp.SUM)
    return t.item() / ctx.world_size


def barrier(ctx: DistContext):
    if ctx.ddp:
        dist.barrier()


def cleanup(ctx: DistContext):
    if ctx.ddp and dist.is_initialized():
        dist.destroy_process_group()
