"""
Build (and run) torchrun commands for the training scripts.

Single node, all local GPUs:
    python launch.py train.py config/train_shakespeare_char.py

Two nodes with 8 GPUs each (run once per node, changing --node_rank):
    python launch.py --nnodes=2 --nproc_per_node=8 --node_rank=0 \
        --master_addr=10.0.0.1 --master_port=29500 train_cnn.py config/train_fashion_mnist.py

Print the command without running it:
    python launch.py --dry_run --nproc_per_node=4 train.py config/train_shakespeare_char.py
"""

import argparse
import shlex
import subprocess
import sys
from typing import List, Optional

import torch


DEFAULT_MASTER_PORT = 29500


def default_nproc_per_node() -> int:
    if torch.cuda.is_available():
        return max(1, torch.cuda.device_count())
    return 1


def build_torchrun_command(
    script: str,
    script_args: Optional[List[str]] = None,
    nnodes: int = 1,
    nproc_per_node: Optional[int] = None,
    node_rank: int = 0,
    master_addr: Optional[str] = None,
    master_port: int = DEFAULT_MASTER_PORT,
    standalone: Optional[bool] = None,
) -> List[str]:
    """
    Assemble a torchrun invocation.

    Args:
        script: Training script to launch (train.py, train_cnn.py)
        script_args: Arguments forwarded to the script
        nnodes: Number of machines taking part
        nproc_per_node: Worker processes per machine (defaults to the local GPU count)
        node_rank: Index of this machine, 0 .. nnodes-1
        master_addr: Address of the rank-0 machine (required for nnodes > 1)
        master_port: Free TCP port on the rank-0 machine
        standalone: Use torchrun's single-node rendezvous. Defaults to True for
            one node without an explicit master address.

    Returns:
        argv list, ready for subprocess.run
    """
    if nproc_per_node is None:
        nproc_per_node = default_nproc_per_node()
    if nnodes < 1:
        raise ValueError(f"nnodes must be >= 1, got {nnodes}")
    if nproc_per_node < 1:
        raise ValueError(f"nproc_per_node must be >= 1, got {nproc_per_node}")
    if not 0 <= node_rank < nnodes:
        raise ValueError(f"node_rank must be in [0, {nnodes - 1}], got {node_rank}")
    if not 1 <= master_port <= 65535:
        raise ValueError(f"master_port must be in [1, 65535], got {master_port}")
    if nnodes > 1 and not master_addr:
        raise ValueError("Multi-node launches need --master_addr (address of the node_rank 0 machine)")
    if standalone is None:
        standalone = nnodes == 1 and master_addr is None
    if standalone and nnodes > 1:
        raise ValueError("--standalone only applies to single-node launches")

    cmd = ["torchrun"]
    if standalone:
        cmd.append("--standalone")
        cmd += ["--nnodes=1", f"--nproc_per_node={nproc_per_node}"]
    else:
        cmd += [
            f"--nnodes={nnodes}",
            f"--nproc_per_node={nproc_per_node}",
            f"--node_rank={node_rank}",
            f"--master_addr={master_addr or '127.0.0.1'}",
            f"--master_port={master_port}",
        ]
    cmd.append(script)
    cmd += list(script_args or [])
    return cmd


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Launch a training script with torchrun.")
    parser.add_argument("--nnodes", type=int, default=1)
    parser.add_argument("--nproc_per_node", type=int, default=None)
    parser.add_argument("--node_rank", type=int, default=0)
    parser.add_argument("--master_addr", type=str, default=None)
    parser.add_argument("--master_port", type=int, default=DEFAULT_MASTER_PORT)
    parser.add_argument("--dry_run", action="store_true", help="Print the command and exit")
    parser.add_argument("script", type=str, help="Training script, e.g. train.py")
    parser.add_argument("script_args", nargs=argparse.REMAINDER, help="Arguments for the training script")
    args = parser.parse_args(argv)

    cmd = build_torchrun_command(
        args.script,
        args.script_args,
        nnodes=args.nnodes,
        nproc_per_node=args.nproc_per_node,
        node_rank=args.node_rank,
        master_addr=args.master_addr,
        master_port=args.master_port,
    )
    print(" ".join(shlex.quote(c) for c in cmd))
    if args.dry_run:
        return 0
    return subprocess.run(cmd).returncode


if __name__ == "__main__":
    sys.exit(main())
