"""Well pump monitoring: sensor filtering, aggregation, event detection and HTTP upload."""

__version__ = "0.1.0"