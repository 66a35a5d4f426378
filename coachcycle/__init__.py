"""Program replication and client cache engine for periodized training programs."""

__version__ = "0.1.0"
