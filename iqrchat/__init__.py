"""iqrchat: PDF knowledge ingestion and streaming tool-calling chat."""

__version__ = "0.1.0"
