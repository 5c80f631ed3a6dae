"""Source adapters and their registry."""

from .base import Adapter, FunctionAdapter, item_from_feed_entry  # noqa: F401
from .registry import AdapterRegistry  # noqa: F401

__all__ = ["Adapter", "AdapterRegistry", "FunctionAdapter", "item_from_feed_entry"]
