"""Allow running the feed as: python -m signal_feed.feed [--config path]."""

from signal_feed.feed.runner import main

main()
