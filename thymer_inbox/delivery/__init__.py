"""Delivery of rendered changes to the single downstream consumer."""

from thymer_inbox.delivery.queue import DeliveryQueue
from thymer_inbox.delivery.renderer import ChangeDispatcher, FrontmatterRenderer, Renderer
from thymer_inbox.delivery.streaming import drain_stream, format_item

__all__ = [
    "ChangeDispatcher",
    "DeliveryQueue",
    "FrontmatterRenderer",
    "Renderer",
    "drain_stream",
    "format_item",
]
