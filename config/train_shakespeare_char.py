"""
Baby GPT on character-level tiny Shakespeare.

Sized for a single GPU (a few minutes on an A100). On a laptop, add
--device=cpu --compile=False --eval_iters=20 --log_interval=1 --block_size=64
--batch_size=12 --n_layer=4 --n_head=4 --n_embd=128 --max_iters=2000
--lr_decay_iters=2000 --dropout=0.0
"""

config = {
    "out_dir": "out-shakespeare-char",
    "eval_interval": 250,  # keep frequent because we'll overfit
    "eval_iters": 200,
    "log_interval": 10,
    # only save when val improves, the model overfits on this small dataset
    "always_save_checkpoint": False,
    # data
    "dataset": "shakespeare_char",
    "gradient_accumulation_steps": 1,
    "batch_size": 64,
    "block_size": 256,  # context of up to 256 previous characters
    # model
    "n_layer": 6,
    "n_head": 6,
    "n_embd": 384,
    "dropout": 0.2,
    # adamw optimizer
    "learning_rate": 1e-3,  # with baby networks can afford to go a bit higher
    "max_iters": 5000,
    "weight_decay": 1e-1,
    "beta1": 0.9,
    "beta2": 0.99,  # make a bit bigger because number of tokens per iter is small
    "grad_clip": 1.0,
    # lr schedule
    "decay_lr": True,
    "warmup_iters": 100,
    "lr_decay_iters": 5000,  # make equal to max_iters usually
    "min_lr": 1e-4,  # learning_rate / 10 usually
    # system
    "device": "cuda",
    "dtype": "bfloat16",
    "compile": True,
    "seed": 1337,
}
