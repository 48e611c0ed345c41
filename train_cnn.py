"""
Train the Fashion-MNIST CNN.

Single process:
    python data/fashion_mnist/prepare.py
    python train_cnn.py config/train_fashion_mnist.py
    python train_cnn.py config/train_fashion_mnist.py --device=cpu --epochs=2

Distributed data parallel (each process sees a disjoint shard of every epoch):
    torchrun --standalone --nproc_per_node=2 train_cnn.py config/train_fashion_mnist.py

Smoke-test an installation without downloading anything:
    python train_cnn.py config/train_fashion_mnist.py --dataset=fake_data --epochs=1 --device=cpu

Checkpoints: <out_dir>/ckpt.pt holds the best test accuracy so far, <out_dir>/last/ckpt.pt
the most recent epoch. --init_from=resume continues from last/, --eval_only=True
evaluates the best one.
"""

import argparse
import os
import time

import torch
from torch.nn.parallel import DistributedDataParallel as DDP
from torch.utils.data import DataLoader
from torch.utils.data.distributed import DistributedSampler
from torchvision import datasets, transforms

from checkpoint import CheckpointManager, unwrap_model
from cnn import FASHION_MNIST_CLASSES, CNNConfig, FashionCNN
from configurator import build_config, parse_overrides
from distributed import DistContext, all_reduce_sum, barrier, cleanup, reduce_mean, setup_distributed
from train_utils import autocast_setup, get_lr, resolve_device, set_seed


LAST_CHECKPOINT_DIR = "last"

# per-channel statistics of the Fashion-MNIST training split
FASHION_MNIST_MEAN = 0.2860
FASHION_MNIST_STD = 0.3530

DEFAULT_CONFIG = {
    # I/O
    "out_dir": "out-fashion-mnist",
    "log_interval": 100,
    "eval_only": False,
    "always_save_checkpoint": False,
    "init_from": "scratch",  # 'scratch' or 'resume'
    "resume_dir": None,
    "save_safetensors": True,
    # data
    "dataset": "fashion_mnist",  # 'fashion_mnist' or 'fake_data'
    "data_dir": "data/fashion_mnist",
    "fake_train_size": 512,
    "fake_test_size": 128,
    "batch_size": 64,
    "num_workers": 2,
    "pin_memory": True,
    # model
    "channels": (32, 64),
    "hidden_dim": 128,
    "dropout": 0.25,
    # adamw optimizer
    "learning_rate": 1e-3,
    "epochs": 10,
    "weight_decay": 1e-4,
    "beta1": 0.9,
    "beta2": 0.999,
    "grad_clip": 0.0,  # 0.0 disables clipping
    # lr schedule, stepped once per epoch
    "decay_lr": True,
    "warmup_epochs": 1,
    "min_lr": 1e-5,
    # system
    "device": "cuda",
    "backend": None,
    "dtype": "float32",
    "compile": False,
    "seed": 1337,
}


def resume_checkpoint_path(resume_dir: str, eval_only: bool = False) -> str:
    """Best checkpoint for evaluation, most recent epoch to continue training."""
    last = os.path.join(resume_dir, LAST_CHECKPOINT_DIR, "ckpt.pt")
    if not eval_only and os.path.exists(last):
        return last
    return os.path.join(resume_dir, "ckpt.pt")


def build_datasets(cfg: dict):
    """Return (train_set, test_set) for the configured dataset."""
    transform = transforms.Compose(
        [
            transforms.ToTensor(),
            transforms.Normalize((FASHION_MNIST_MEAN,), (FASHION_MNIST_STD,)),
        ]
    )
    name = cfg["dataset"]
    if name == "fashion_mnist":
        root = cfg["data_dir"]
        try:
            train_set = datasets.FashionMNIST(root=root, train=True, download=False, transform=transform)
            test_set = datasets.FashionMNIST(root=root, train=False, download=False, transform=transform)
        except RuntimeError as e:
            raise FileNotFoundError(
                f"Fashion-MNIST not found under {root}. "
                f"Run the dataset prepare script first (python data/fashion_mnist/prepare.py)."
            ) from e
        return train_set, test_set
    if name == "fake_data":
        image_size = (1, 28, 28)
        n_classes = len(FASHION_MNIST_CLASSES)
        train_set = datasets.FakeData(
            size=cfg["fake_train_size"], image_size=image_size, num_classes=n_classes,
            transform=transform, random_offset=0,
        )
        test_set = datasets.FakeData(
            size=cfg["fake_test_size"], image_size=image_size, num_classes=n_classes,
            transform=transform, random_offset=cfg["fake_train_size"],
        )
        return train_set, test_set
    raise ValueError(f"Unknown dataset: {name}. Use 'fashion_mnist' or 'fake_data'.")


def build_loaders(train_set, test_set, cfg: dict, ctx_dist: DistContext):
    train_sampler = None
    test_sampler = None
    if ctx_dist.ddp:
        train_sampler = DistributedSampler(
            train_set, num_replicas=ctx_dist.world_size, rank=ctx_dist.rank, shuffle=True, seed=cfg["seed"]
        )
        test_sampler = DistributedSampler(
            test_set, num_replicas=ctx_dist.world_size, rank=ctx_dist.rank, shuffle=False
        )
    pin_memory = cfg["pin_memory"] and ctx_dist.device.startswith("cuda")
    train_loader = DataLoader(
        train_set,
        batch_size=cfg["batch_size"],
        shuffle=train_sampler is None,
        sampler=train_sampler,
        num_workers=cfg["num_workers"],
        pin_memory=pin_memory,
        drop_last=False,
    )
    test_loader = DataLoader(
        test_set,
        batch_size=cfg["batch_size"],
        shuffle=False,
        sampler=test_sampler,
        num_workers=cfg["num_workers"],
        pin_memory=pin_memory,
    )
    return train_loader, test_loader


def eval_counters(num_classes: int, device: str):
    """Zeroed (loss_sum, class_correct, class_total) accumulators.

    float32 and int64 only: MPS has no float64.
    """
    loss_sum = torch.zeros(1, dtype=torch.float32, device=device)
    class_correct = torch.zeros(num_classes, dtype=torch.int64, device=device)
    class_total = torch.zeros(num_classes, dtype=torch.int64, device=device)
    return loss_sum, class_correct, class_total


@torch.no_grad()
def evaluate(model, loader, ctx_dist: DistContext, num_classes: int, ctx) -> dict:
    """
    Loss, accuracy and per-class accuracy over a loader.

    Counts are summed across ranks, so every process gets the global numbers.
    Note that DistributedSampler pads the last shard, so a few test images may
    be counted twice under DDP.
    """
    device = ctx_dist.device
    model.eval()
    loss_sum, class_correct, class_total = eval_counters(num_classes, device)
    for images, labels in loader:
        images = images.to(device, non_blocking=True)
        labels = torch.as_tensor(labels, device=device)
        with ctx:
            logits, loss = model(images, labels)
        loss_sum += loss.float() * labels.size(0)
        preds = logits.argmax(dim=-1)
        class_total += torch.bincount(labels, minlength=num_classes)
        class_correct += torch.bincount(labels[preds == labels], minlength=num_classes)
    model.train()

    for t in (loss_sum, class_correct, class_total):
        all_reduce_sum(t, ctx_dist)

    total = class_total.sum().item()
    per_class = (class_correct.float() / class_total.clamp(min=1).float()).tolist()
    return {
        "loss": loss_sum.item() / max(1.0, total),
        "accuracy": class_correct.sum().item() / max(1.0, total),
        "per_class_accuracy": per_class,
        "count": int(total),
    }


def print_report(metrics: dict):
    print(f"test loss {metrics['loss']:.4f} | accuracy {metrics['accuracy'] * 100:.2f}% ({metrics['count']} images)")
    for name, acc in zip(FASHION_MNIST_CLASSES, metrics["per_class_accuracy"]):
        print(f"  {name:<12s} {acc * 100:6.2f}%")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Train a CNN on Fashion-MNIST.")
    parser.add_argument("config", type=str, nargs="?", default=None, help="Path to a config Python file")
    args, rest = parser.parse_known_args(argv)
    cfg = build_config(DEFAULT_CONFIG, args.config, parse_overrides(rest))

    ctx_dist = setup_distributed(cfg["device"], cfg["backend"])
    master_process = ctx_dist.is_master
    if ctx_dist.ddp:
        device_type = "cuda" if ctx_dist.device.startswith("cuda") else "cpu"
    else:
        device, device_type = resolve_device(cfg["device"])
        ctx_dist.device = device
    device = ctx_dist.device

    out_dir = cfg["out_dir"]
    if master_process:
        os.makedirs(out_dir, exist_ok=True)
    set_seed(cfg["seed"] + ctx_dist.rank)
    _, ctx, scaler = autocast_setup(device_type, cfg["dtype"])

    train_set, test_set = build_datasets(cfg)
    train_loader, test_loader = build_loaders(train_set, test_set, cfg, ctx_dist)
    if master_process:
        print(f"train images: {len(train_set):,} | test images: {len(test_set):,} | world size: {ctx_dist.world_size}")

    start_epoch = 0
    best_val_accuracy = 0.0
    optimizer_state = None
    if cfg["init_from"] == "scratch":
        model_args = dict(
            in_channels=1,
            num_classes=len(FASHION_MNIST_CLASSES),
            image_size=28,
            channels=tuple(cfg["channels"]),
            hidden_dim=cfg["hidden_dim"],
            dropout=cfg["dropout"],
        )
        model = FashionCNN(CNNConfig(**model_args))
    elif cfg["init_from"] == "resume":
        resume_dir = cfg["resume_dir"] or out_dir
        model, metadata = CheckpointManager.load_model(
            resume_checkpoint_path(resume_dir, cfg["eval_only"]), device="cpu"
        )
        if metadata["model_type"] != "cnn":
            raise ValueError(f"Cannot resume CNN training from a {metadata['model_type']} checkpoint")
        model_args = metadata["model_args"]
        start_epoch = metadata.get("epoch", 0)
        best_val_accuracy = metadata.get("best_val_accuracy") or 0.0
        optimizer_state = metadata["optimizer"]
    else:
        raise ValueError(f"Unknown init_from: {cfg['init_from']}. Use 'scratch' or 'resume'.")

    model.to(device)
    if master_process:
        print(f"number of parameters: {model.get_num_params():,}")

    optimizer = model.configure_optimizers(
        weight_decay=cfg["weight_decay"],
        learning_rate=cfg["learning_rate"],
        betas=(cfg["beta1"], cfg["beta2"]),
    )
    if optimizer_state is not None:
        optimizer.load_state_dict(optimizer_state)
    optimizer_state = None

    if cfg["compile"] and hasattr(torch, "compile"):
        model = torch.compile(model)  # type: ignore
    if ctx_dist.ddp:
        device_ids = [ctx_dist.local_rank] if device_type == "cuda" else None
        model = DDP(model, device_ids=device_ids)
    raw_model = unwrap_model(model)
    num_classes = raw_model.config.num_classes

    if cfg["eval_only"]:
        metrics = evaluate(model, test_loader, ctx_dist, num_classes, ctx)
        if master_process:
            print_report(metrics)
        cleanup(ctx_dist)
        return metrics

    metrics = {}
    model.train()
    for epoch in range(start_epoch, cfg["epochs"]):
        lr = get_lr(
            epoch,
            cfg["learning_rate"],
            warmup_iters=cfg["warmup_epochs"],
            lr_decay_iters=cfg["epochs"],
            min_lr=cfg["min_lr"],
            decay_lr=cfg["decay_lr"],
        )
        for param_group in optimizer.param_groups:
            param_group["lr"] = lr
        if isinstance(train_loader.sampler, DistributedSampler):
            train_loader.sampler.set_epoch(epoch)

        t0 = time.time()
        running_loss = 0.0
        epoch_loss = 0.0
        n_steps = 0
        for step, (images, labels) in enumerate(train_loader):
            images = images.to(device, non_blocking=True)
            labels = torch.as_tensor(labels, device=device)
            with ctx:
                _, loss = model(images, labels)
            scaler.scale(loss).backward()
            if cfg["grad_clip"] != 0.0:
                scaler.unscale_(optimizer)
                torch.nn.utils.clip_grad_norm_(model.parameters(), cfg["grad_clip"])
            scaler.step(optimizer)
            scaler.update()
            optimizer.zero_grad(set_to_none=True)

            running_loss += loss.item()
            epoch_loss += loss.item()
            n_steps += 1
            if (step + 1) % cfg["log_interval"] == 0 and master_process:
                print(
                    f"epoch {epoch} step {step + 1:05d} | loss {running_loss / cfg['log_interval']:.4f} | lr {lr:.5e}"
                )
                running_loss = 0.0

        train_loss = reduce_mean(epoch_loss / max(1, n_steps), ctx_dist)
        metrics = evaluate(model, test_loader, ctx_dist, num_classes, ctx)
        if master_process:
            print(
                f"epoch {epoch}: train loss {train_loss:.4f}, test loss {metrics['loss']:.4f}, "
                f"accuracy {metrics['accuracy'] * 100:.2f}% | time {time.time() - t0:.1f}s"
            )
            improved = metrics["accuracy"] > best_val_accuracy
            best_val_accuracy = max(best_val_accuracy, metrics["accuracy"])
            metadata = {
                "model_type": "cnn",
                "model_args": model_args,
                "config": cfg,
                "epoch": epoch + 1,
                "best_val_accuracy": best_val_accuracy,
            }
            if improved or cfg["always_save_checkpoint"]:
                print(f"Saving checkpoint (epoch {epoch}, accuracy {metrics['accuracy'] * 100:.2f}%)...")
                CheckpointManager.save_checkpoint(
                    model=raw_model,
                    save_dir=out_dir,
                    metadata=metadata,
                    optimizer=optimizer,
                    save_safetensors=cfg["save_safetensors"],
                )
            # resume point, whether or not this epoch was the best
            CheckpointManager.save_checkpoint(
                model=raw_model,
                save_dir=os.path.join(out_dir, LAST_CHECKPOINT_DIR),
                metadata=metadata,
                optimizer=optimizer,
                save_safetensors=False,
            )
        # keep ranks in step while rank 0 writes the checkpoint
        barrier(ctx_dist)

    cleanup(ctx_dist)
    return metrics


if __name__ == "__main__":
    main()
