"""
Check that Python, PyTorch and the GPU stack are installed correctly.

    python env_check.py
    python env_check.py --json
    python env_check.py --require_cuda   # exit 1 if CUDA is not usable
"""

import argparse
import json
import platform
import sys

import psutil
import torch
import torch.distributed as dist


def collect_env_info() -> dict:
    info = {
        "python": sys.version.replace("\n", " "),
        "platform": platform.platform(),
        "machine": platform.machine(),
        "cpu_count": psutil.cpu_count(logical=True),
        "ram_gb": round(psutil.virtual_memory().total / (1024**3), 2),
        "torch": torch.__version__,
        "torchvision": None,
        "cuda_available": torch.cuda.is_available(),
        "cuda_version": torch.version.cuda,
        "cudnn_version": None,
        "gpu_count": 0,
        "gpus": [],
        "mps_built": False,
        "mps_available": False,
        "distributed_available": dist.is_available(),
        "nccl_available": False,
        "gloo_available": False,
    }

    try:
        import torchvision

        info["torchvision"] = torchvision.__version__
    except ImportError:
        pass

    if info["cuda_available"]:
        info["cudnn_version"] = torch.backends.cudnn.version()
        info["gpu_count"] = torch.cuda.device_count()
        for i in range(info["gpu_count"]):
            props = torch.cuda.get_device_properties(i)
            info["gpus"].append(
                {"name": props.name, "memory_gb": round(props.total_memory / (1024**3), 2)}
            )

    mps = getattr(torch.backends, "mps", None)
    if mps is not None:
        info["mps_built"] = mps.is_built()
        info["mps_available"] = mps.is_available()

    if info["distributed_available"]:
        info["nccl_available"] = dist.is_nccl_available()
        info["gloo_available"] = dist.is_gloo_available()
    return info


def troubleshooting_hints(info: dict) -> list:
    hints = []
    if info["torchvision"] is None:
        hints.append("torchvision is not installed: pip install torchvision (needed for Fashion-MNIST).")
    if not info["cuda_available"]:
        if info["cuda_version"] is None:
            hints.append(
                "CUDA not available: this is a CPU-only PyTorch build. Reinstall a CUDA wheel "
                "from https://pytorch.org/get-started/locally/ if this machine has an NVIDIA GPU."
            )
        else:
            hints.append(
                f"CUDA not available although PyTorch was built with CUDA {info['cuda_version']}: "
                "check the NVIDIA driver (nvidia-smi) and CUDA_VISIBLE_DEVICES."
            )
        if info["mps_available"]:
            hints.append("Apple MPS is available: train with --device=mps.")
        else:
            hints.append("Training will run on CPU: pass --device=cpu --compile=False.")
    if not info["distributed_available"]:
        hints.append("torch.distributed is not available: torchrun multi-process training will not work.")
    elif info["cuda_available"] and not info["nccl_available"]:
        hints.append("NCCL is not available: launch torchrun jobs with --backend=gloo.")
    return hints


def format_report(info: dict) -> str:
    lines = ["=== Environment ==="]
    lines.append(f"Python: {info['python']}")
    lines.append(f"Platform: {info['platform']} ({info['machine']})")
    lines.append(f"CPU: {info['cpu_count']} logical cores | RAM: {info['ram_gb']} GB")
    lines.append(f"PyTorch: {info['torch']} | torchvision: {info['torchvision'] or 'not installed'}")
    if info["cuda_available"]:
        lines.append(f"CUDA: {info['cuda_version']} | cuDNN: {info['cudnn_version']} | GPUs: {info['gpu_count']}")
        for i, gpu in enumerate(info["gpus"]):
            lines.append(f"  [{i}] {gpu['name']} ({gpu['memory_gb']} GB)")
    else:
        lines.append("GPU: None (CUDA not available)")
    lines.append(f"MPS built: {info['mps_built']} | MPS available: {info['mps_available']}")
    lines.append(
        f"Distributed: {info['distributed_available']} | NCCL: {info['nccl_available']} | gloo: {info['gloo_available']}"
    )
    hints = troubleshooting_hints(info)
    if hints:
        lines.append("")
        lines.append("=== Hints ===")
        lines.extend(f"- {h}" for h in hints)
    return "\n".join(lines)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Report the installed PyTorch stack.")
    parser.add_argument("--json", action="store_true", help="Print machine-readable JSON")
    parser.add_argument("--require_cuda", action="store_true", help="Exit with status 1 if CUDA is unavailable")
    args = parser.parse_args(argv)

    info = collect_env_info()
    if args.json:
        print(json.dumps(info, indent=2))
    else:
        print(format_report(info))

    if args.require_cuda and not info["cuda_available"]:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
