"""
Small convolutional classifier for Fashion-MNIST.

Two conv -> ReLU -> max-pool stages take a 1x28x28 image down to 64x7x7,
followed by a two-layer classifier head over the ten clothing classes.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import torch
import torch.nn as nn
import torch.nn.functional as F


FASHION_MNIST_CLASSES = (
    "T-shirt/top",
    "Trouser",
    "Pullover",
    "Dress",
    "Coat",
    "Sandal",
    "Shirt",
    "Sneaker",
    "Bag",
    "Ankle boot",
)


@dataclass
class CNNConfig:
    in_channels: int = 1
    num_classes: int = 10
    image_size: int = 28
    channels: Tuple[int, ...] = (32, 64)
    hidden_dim: int = 128
    dropout: float = 0.25


class FashionCNN(nn.Module):
    def __init__(self, config: CNNConfig):
        super().__init__()
        self.config = config

        n_stages = len(config.channels)
        if n_stages == 0:
            raise ValueError("CNNConfig.channels needs at least one stage")
        if config.image_size % (2 ** n_stages) != 0:
            raise ValueError(
                f"image_size {config.image_size} is not divisible by 2**{n_stages} "
                f"(one 2x2 max-pool per conv stage)"
            )

        layers = []
        in_ch = config.in_channels
        for out_ch in config.channels:
            layers += [
                nn.Conv2d(in_ch, out_ch, kernel_size=3, padding=1),
                nn.ReLU(),
                nn.MaxPool2d(2),
            ]
            in_ch = out_ch
        self.features = nn.Sequential(*layers)

        spatial = config.image_size // (2 ** n_stages)
        self.classifier = nn.Sequential(
            nn.Flatten(),
            nn.Linear(in_ch * spatial * spatial, config.hidden_dim),
            nn.ReLU(),
            nn.Dropout(config.dropout),
            nn.Linear(config.hidden_dim, config.num_classes),
        )

    def forward(
        self, x: torch.Tensor, targets: Optional[torch.Tensor] = None
    ) -> Tuple[torch.Tensor, Optional[torch.Tensor]]:
        logits = self.classifier(self.features(x))
        loss = None
        if targets is not None:
            loss = F.cross_entropy(logits, targets)
        return logits, loss

    def configure_optimizers(self, weight_decay: float, learning_rate: float, betas):
        # conv kernels and linear weights decay, biases don't
        decay = [p for p in self.parameters() if p.requires_grad and p.dim() >= 2]
        no_decay = [p for p in self.parameters() if p.requires_grad and p.dim() < 2]
        optim_groups = [
            {"params": decay, "weight_decay": weight_decay},
            {"params": no_decay, "weight_decay": 0.0},
        ]
        return torch.optim.AdamW(optim_groups, lr=learning_rate, betas=betas)

    def get_num_params(self, trainable_only: bool = False):
        if trainable_only:
            return sum(p.numel() for p in self.parameters() if p.requires_grad)
        return sum(p.numel() for p in self.parameters())
