"""
Batching package: merges same-turn single-object fetches into multi-gets.
"""

from .coalescer import IdBatchingCoalescer, id_selector

__all__ = ["IdBatchingCoalescer", "id_selector"]
