"""Feed reconciliation — merges pull and push updates, serves the tiered view."""

from signal_feed.feed.service import EngineSnapshot, FeedService, FeedView, signal_from_trade

__all__ = ["EngineSnapshot", "FeedService", "FeedView", "signal_from_trade"]
