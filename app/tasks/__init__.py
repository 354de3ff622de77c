from app.tasks.collections import run_anchor_daily

__all__ = [
    "run_anchor_daily",
]
