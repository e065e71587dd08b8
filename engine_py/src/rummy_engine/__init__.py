"""Server and rules engine for a six-round Rummy variant with wild cards."""

__version__ = "1.0.0"
