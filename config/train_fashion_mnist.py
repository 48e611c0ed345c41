"""
CNN on Fashion-MNIST. Reaches ~91-92% test accuracy in 10 epochs.

Run `python data/fashion_mnist/prepare.py` first.
"""

config = {
    "out_dir": "out-fashion-mnist",
    "log_interval": 100,
    # data
    "dataset": "fashion_mnist",
    "data_dir": "data/fashion_mnist",
    "batch_size": 64,  # per process; global batch is batch_size * world_size under torchrun
    "num_workers": 2,
    # model
    "channels": (32, 64),
    "hidden_dim": 128,
    "dropout": 0.25,
    # adamw optimizer
    "learning_rate": 1e-3,
    "epochs": 10,
    "weight_decay": 1e-4,
    # lr schedule
    "decay_lr": True,
    "warmup_epochs": 1,
    "min_lr": 1e-5,
    # system
    "device": "cuda",
    "dtype": "float32",
    "seed": 1337,
}
