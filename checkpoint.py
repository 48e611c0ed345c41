"""
Unified checkpoint manager for the GPT and CNN models.

Handles loading and saving checkpoints in different scenarios:
- Training from scratch (periodic/best checkpoints)
- Resuming training (model + optimizer state + progress counters)
- Inference (sampling text, evaluating the classifier)

Each checkpoint records a `model_type` so the right model class is rebuilt on load.
"""

import os
import json
import hashlib
from typing import Optional, Dict, Any, Tuple

import torch
import torch.nn as nn
from safetensors.torch import save_file

from cnn import CNNConfig, FashionCNN
from model import GPT, GPTConfig


MODEL_REGISTRY = {
    "gpt": (GPT, GPTConfig),
    "cnn": (FashionCNN, CNNConfig),
}

# progress/metric fields copied into export_meta.json when present
EXPORT_FIELDS = ("model_type", "iter", "epoch", "best_val_loss", "best_val_accuracy")


def unwrap_model(model: nn.Module) -> nn.Module:
    """Strip DistributedDataParallel and torch.compile wrappers."""
    while True:
        if hasattr(model, "module") and isinstance(model.module, nn.Module):
            model = model.module
        elif hasattr(model, "_orig_mod"):
            model = model._orig_mod
        else:
            return model


class CheckpointManager:
    """
    Unified checkpoint manager for loading and saving models.

    Automatically handles:
    - GPT and CNN checkpoints (via `model_type`)
    - Optimizer state for resuming
    - Metadata and configuration
    - SafeTensors export
    """

    @staticmethod
    def build_model(model_type: str, model_args: Dict[str, Any]) -> nn.Module:
        if model_type not in MODEL_REGISTRY:
            raise ValueError(
                f"Unknown model_type: {model_type}. Expected one of {sorted(MODEL_REGISTRY)}"
            )
        model_cls, config_cls = MODEL_REGISTRY[model_type]
        return model_cls(config_cls(**model_args))

    @staticmethod
    def load_model(ckpt_path: str, device: str = 'cpu') -> Tuple[nn.Module, Dict[str, Any]]:
        """
        Load a model from checkpoint.

        Args:
            ckpt_path: Path to checkpoint file
            device: Device to load model on

        Returns:
            (model, metadata) tuple. metadata includes the saved optimizer
            state (or None) so training can resume where it stopped.
        """
        if not os.path.exists(ckpt_path):
            raise FileNotFoundError(f"Checkpoint not found: {ckpt_path}")

        print(f"\nLoading checkpoint: {ckpt_path}")
        checkpoint = torch.load(ckpt_path, map_location=device, weights_only=False)

        model_args = checkpoint.get('model_args', {})
        if not model_args:
            raise ValueError("Checkpoint missing 'model_args'. Invalid checkpoint format.")

        # checkpoints written before model_type existed were GPT-only
        model_type = checkpoint.get('model_type', 'gpt')
        model = CheckpointManager.build_model(model_type, model_args)

        state_dict = checkpoint['model']
        # checkpoints saved from a compiled model carry this prefix
        unwanted_prefix = '_orig_mod.'
        for k in list(state_dict.keys()):
            if k.startswith(unwanted_prefix):
                state_dict[k[len(unwanted_prefix):]] = state_dict.pop(k)
        model.load_state_dict(state_dict)
        model.to(device)

        metadata = {k: v for k, v in checkpoint.items() if k != 'model'}
        metadata['model_type'] = model_type
        metadata.setdefault('optimizer', None)
        metadata.setdefault('config', {})

        print(f"Model type: {model_type}")
        print(f"  Total parameters: {model.get_num_params():,}")
        return model, metadata

    @staticmethod
    def save_checkpoint(
        model: nn.Module,
        save_dir: str,
        metadata: Dict[str, Any],
        optimizer: Optional[torch.optim.Optimizer] = None,
        save_safetensors: bool = True,
    ):
        """
        Save model checkpoint with metadata.

        Saves:
        - PyTorch checkpoint (ckpt.pt), including optimizer state
        - SafeTensors weights (model.safetensors) [optional]
        - Model args JSON (model_args.json)
        - Config JSON (config.json)
        - Export metadata (export_meta.json)

        Args:
            model: Model to save (DDP/compiled wrappers are unwrapped)
            save_dir: Directory to save checkpoint in
            metadata: Dictionary with model_type, model_args, config, iter/epoch, best metrics
            optimizer: Optimizer whose state should be stored for resuming
            save_safetensors: Whether to also save SafeTensors format
        """
        if 'model_type' not in metadata:
            raise ValueError("metadata must include 'model_type'")
        os.makedirs(save_dir, exist_ok=True)

        raw_model = unwrap_model(model)
        state_dict = raw_model.state_dict()

        checkpoint = dict(metadata)
        checkpoint['model'] = state_dict
        checkpoint['optimizer'] = optimizer.state_dict() if optimizer is not None else None

        ckpt_path = os.path.join(save_dir, 'ckpt.pt')
        torch.save(checkpoint, ckpt_path)
        print(f"[OK] Saved checkpoint: {ckpt_path}")

        sha256_hash = None
        if save_safetensors:
            st_path = os.path.join(save_dir, 'model.safetensors')
            save_file({k: v.contiguous() for k, v in state_dict.items()}, st_path)
            print(f"[OK] Saved SafeTensors: {st_path}")
            sha256_hash = CheckpointManager._sha256_file(st_path)

        model_args_path = os.path.join(save_dir, 'model_args.json')
        with open(model_args_path, 'w') as f:
            json.dump(metadata.get('model_args', {}), f, indent=2)

        config_path = os.path.join(save_dir, 'config.json')
        with open(config_path, 'w') as f:
            json.dump(metadata.get('config', {}), f, indent=2, default=str)

        export_meta = {k: metadata[k] for k in EXPORT_FIELDS if k in metadata}
        export_meta['ckpt_pt'] = 'ckpt.pt'
        if sha256_hash:
            export_meta['safetensors'] = {
                'path': 'model.safetensors',
                'sha256': sha256_hash,
            }

        export_meta_path = os.path.join(save_dir, 'export_meta.json')
        with open(export_meta_path, 'w') as f:
            json.dump(export_meta, f, indent=2)
        print(f"[OK] Saved metadata: {model_args_path}, {config_path}, {export_meta_path}")

    @staticmethod
    def _sha256_file(path: str) -> str:
        """Compute SHA256 hash of a file."""
        h = hashlib.sha256()
        with open(path, 'rb') as f:
            for chunk in iter(lambda: f.read(8192), b''):
                h.update(chunk)
        return h.hexdigest()

