"""
Download Fashion-MNIST (60k train / 10k test, 28x28 grayscale, 10 classes).

Files land in data/fashion_mnist/FashionMNIST/raw, where train_cnn.py expects them.

    python data/fashion_mnist/prepare.py
"""

import os

from torchvision import datasets


def main():
    data_dir = os.path.dirname(os.path.abspath(__file__))
    for train in (True, False):
        ds = datasets.FashionMNIST(root=data_dir, train=train, download=True)
        split = "train" if train else "test"
        print(f"{split}: {len(ds):,} images, classes: {', '.join(ds.classes)}")
    print(f"Fashion-MNIST ready under {data_dir}")


if __name__ == "__main__":
    main()
