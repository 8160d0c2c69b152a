"""PulseFeed: notification aggregation engine for the business dashboard."""

__version__ = "0.1.0"
