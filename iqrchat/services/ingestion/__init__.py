"""Document ingestion helpers.

The stage orchestration lives in ``iqrchat.pipeline.ingestion_pipeline``;
this package holds the pure text-processing pieces it calls:

* **chunker.py** (TokenChunker) -- token windows with exact token and
  character offsets, plus page attribution for each window.
"""

from iqrchat.services.ingestion.chunker import TokenChunker, clamp_window, page_range

__all__ = ["TokenChunker", "clamp_window", "page_range"]
