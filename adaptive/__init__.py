"""Meta Ads insights scoring, ranking and ingestion."""

__version__ = "1.0.0"
