"""HTTP surface for the delivery queue and sync triggers."""

from thymer_inbox.server.app import ApiError, PrivateNetworkAccessMiddleware, create_app

__all__ = ["ApiError", "PrivateNetworkAccessMiddleware", "create_app"]
