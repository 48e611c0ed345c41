"""
Sample from a trained GPT checkpoint.

    python sample.py --out_dir=out-shakespeare-char --start="ROMEO:" --num_samples=3
    python sample.py --out_dir=out-shakespeare-char --start=FILE:prompt.txt --top_k=200
"""

import argparse
import os

import torch

from checkpoint import CheckpointManager
from tokenizer import load_tokenizer
from train_utils import autocast_setup, resolve_device, set_seed


def read_prompt(start: str) -> str:
    if start.startswith("FILE:"):
        with open(start[5:], "r", encoding="utf-8") as f:
            return f.read()
    return start


def generate_samples(
    model,
    tokenizer,
    prompt: str,
    num_samples: int = 1,
    max_new_tokens: int = 500,
    temperature: float = 0.8,
    top_k=None,
    top_p=None,
    device: str = "cpu",
    ctx=None,
):
    """Return a list of decoded samples continuing `prompt`."""
    start_ids = tokenizer.encode(prompt)
    if not start_ids:
        raise ValueError("Prompt encodes to zero tokens; pass a non-empty --start")
    start_ids = start_ids[-model.config.block_size :]
    x = torch.tensor(start_ids, dtype=torch.long, device=device)[None, ...]

    samples = []
    for _ in range(num_samples):
        with torch.no_grad():
            if ctx is not None:
                with ctx:
                    y = model.generate(x, max_new_tokens, temperature=temperature, top_k=top_k, top_p=top_p)
            else:
                y = model.generate(x, max_new_tokens, temperature=temperature, top_k=top_k, top_p=top_p)
        samples.append(tokenizer.decode(y[0].tolist()))
    return samples


def main(argv=None):
    parser = argparse.ArgumentParser(description="Sample from a trained nanoGPT-style model.")
    parser.add_argument("--out_dir", type=str, default="out-shakespeare-char", help="Checkpoint directory")
    parser.add_argument("--data_dir", type=str, default=None, help="Directory with meta.pkl (default: the run's data_dir)")
    parser.add_argument("--start", type=str, default="\n", help="Prompt text, or FILE:path to read it from a file")
    parser.add_argument("--max_new_tokens", type=int, default=500)
    parser.add_argument("--num_samples", type=int, default=1)
    parser.add_argument("--temperature", type=float, default=0.8)
    parser.add_argument("--top_k", type=int, default=200, help="0 = disabled")
    parser.add_argument("--top_p", type=float, default=1.0, help="1.0 = disabled")
    parser.add_argument("--seed", type=int, default=1337)
    parser.add_argument("--device", type=str, default="cuda")
    parser.add_argument("--dtype", type=str, default="float32")
    args = parser.parse_args(argv)

    set_seed(args.seed)
    device, device_type = resolve_device(args.device)
    _, ctx, _ = autocast_setup(device_type, args.dtype)

    model, metadata = CheckpointManager.load_model(os.path.join(args.out_dir, "ckpt.pt"), device=device)
    if metadata["model_type"] != "gpt":
        raise ValueError(f"Cannot sample text from a {metadata['model_type']} checkpoint")
    model.eval()

    # tokenizer follows the dataset the checkpoint was trained on
    cfg = metadata["config"]
    data_dir = args.data_dir or cfg.get("data_dir") or os.path.join("data", cfg.get("dataset", "shakespeare_char"))
    tokenizer = load_tokenizer(os.path.join(data_dir, "meta.pkl"))
    if tokenizer.vocab_size != model.config.vocab_size:
        raise ValueError(
            f"Tokenizer vocab_size {tokenizer.vocab_size} does not match the checkpoint's "
            f"vocab_size {model.config.vocab_size}. Pass --data_dir pointing at the directory "
            "with the meta.pkl the model was trained on."
        )

    samples = generate_samples(
        model,
        tokenizer,
        read_prompt(args.start),
        num_samples=args.num_samples,
        max_new_tokens=args.max_new_tokens,
        temperature=args.temperature,
        top_k=args.top_k or None,
        top_p=args.top_p,
        device=device,
        ctx=ctx,
    )
    for text in samples:
        print("---- SAMPLE ----")
        print(text)
    return samples


if __name__ == "__main__":
    main()
