"""Token-aware text chunking with exact token and character offsets.

Splits extracted text into :class:`~iqrchat.models.chunk.ChunkRecord`
windows sized for embedding models (1000 tokens with 200-token overlap by
default).

The chunker tokenizes the full text once with the HuggingFace
``tokenizers`` library.  The encoding's ``offsets`` give the character span
of every token, so each window's content is the exact source slice from the
first character of its first token to the last character of its last token.

Windows of ``chunk_size`` tokens advance by ``chunk_size - overlap``.  The
last window ends at the final token and the loop stops there, so adjacent
windows overlap by exactly ``overlap`` tokens except possibly the final one.

Character offsets are recovered by locating the **first occurrence** of the
window content in the source text.  For documents with repeated passages
this can point at an earlier copy than the one the tokens came from; the
behaviour is kept because ingestion clients rely on it.
"""

from __future__ import annotations

from bisect import bisect_right

import structlog

from iqrchat.models.chunk import ChunkRecord

logger = structlog.get_logger(logger_name=__name__)

MIN_CHUNK_SIZE = 100
# overlap may not come closer than this many tokens to chunk_size
_MIN_STRIDE = 50

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_OVERLAP = 200
DEFAULT_TOKENIZER = "bert-base-uncased"


def clamp_window(chunk_size: int, overlap: int) -> tuple[int, int]:
    """Clamp ``chunk_size`` to at least 100 and ``overlap`` to ``[0, chunk_size - 50]``."""
    size = max(int(chunk_size), MIN_CHUNK_SIZE)
    lap = min(max(int(overlap), 0), size - _MIN_STRIDE)
    return size, lap


def page_range(char_start: int, char_end: int, page_offsets: list[int]) -> tuple[int, int] | None:
    """Return the 1-based ``(page_start, page_end)`` a character span covers.

    *page_offsets* holds the character index at which each page begins.
    Returns ``None`` when no offsets are known.
    """
    if not page_offsets:
        return None
    first = max(bisect_right(page_offsets, char_start), 1)
    last = max(bisect_right(page_offsets, max(char_end - 1, char_start)), first)
    return first, last


class TokenChunker:
    """Splits text into overlapping token windows.

    Parameters
    ----------
    chunk_size:
        Tokens per window (default 1000, clamped up to 100).
    overlap:
        Tokens shared by adjacent windows (default 200, clamped to
        ``[0, chunk_size - 50]``).
    tokenizer_name:
        Pretrained ``tokenizers`` model id.  An empty string selects the
        offline word-level tokenizer directly.
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        overlap: int = DEFAULT_OVERLAP,
        tokenizer_name: str = DEFAULT_TOKENIZER,
    ) -> None:
        self._chunk_size, self._overlap = clamp_window(chunk_size, overlap)
        self._tokenizer_name = tokenizer_name
        # Loaded on first use; from_pretrained may hit the network.
        self._tokenizer = None

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def overlap(self) -> int:
        return self._overlap

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(
        self,
        text: str,
        chunk_size: int | None = None,
        overlap: int | None = None,
    ) -> list[ChunkRecord]:
        """Split *text* into ordered, overlapping :class:`ChunkRecord` windows.

        Returns an empty list for blank input or when tokenization fails;
        callers decide whether zero chunks is an error.
        """
        if not text or not text.strip():
            return []

        size, lap = clamp_window(
            self._chunk_size if chunk_size is None else chunk_size,
            self._overlap if overlap is None else overlap,
        )

        try:
            offsets = self._token_offsets(text)
        except Exception as exc:  # noqa: BLE001 -- tokenizers raises bare Exception
            logger.warning("tokenization_failed", error=str(exc))
            return []

        total = len(offsets)
        records: list[ChunkRecord] = []
        start = 0
        while start < total:
            end = min(start + size, total)
            content = text[offsets[start][0] : offsets[end - 1][1]]
            if content:
                char_start = text.find(content)
                records.append(
                    ChunkRecord(
                        content=content,
                        token_start=start,
                        token_end=end,
                        char_start=char_start,
                        char_end=char_start + len(content),
                    )
                )
            if end == total:
                break
            start += size - lap

        logger.debug(
            "chunking_complete",
            num_chunks=len(records),
            total_tokens=total,
            chunk_size=size,
            overlap=lap,
        )
        return records

    def count_tokens(self, text: str) -> int:
        """Return the number of tokens *text* encodes to."""
        if not text:
            return 0
        return len(self._token_offsets(text))

    # ------------------------------------------------------------------
    # Tokenizer handling
    # ------------------------------------------------------------------

    def _token_offsets(self, text: str) -> list[tuple[int, int]]:
        encoding = self._get_tokenizer().encode(text, add_special_tokens=False)
        # Special tokens carry (0, 0) spans; drop any that slipped through.
        return [(s, e) for s, e in encoding.offsets if e > s]

    def _get_tokenizer(self):  # noqa: ANN202 -- tokenizers.Tokenizer
        if self._tokenizer is None:
            self._tokenizer = self._load_tokenizer(self._tokenizer_name)
        return self._tokenizer

    @staticmethod
    def _load_tokenizer(name: str):  # noqa: ANN205 -- tokenizers.Tokenizer
        """Load the pretrained tokenizer, falling back to a word-level one.

        The fallback needs no download: every whitespace/punctuation
        delimited word is one token, mapped to ``[UNK]``.  Only the offsets
        matter for chunking, so the vocabulary is irrelevant.
        """
        from tokenizers import Tokenizer, models, pre_tokenizers

        if name:
            try:
                tokenizer = Tokenizer.from_pretrained(name)
                tokenizer.no_truncation()
                tokenizer.no_padding()
                return tokenizer
            except Exception:  # noqa: BLE001
                logger.info(
                    "tokenizer_unavailable",
                    tokenizer=name,
                    msg="Falling back to offline word-level tokenizer.",
                )

        tokenizer = Tokenizer(models.WordLevel(vocab={"[UNK]": 0}, unk_token="[UNK]"))
        tokenizer.pre_tokenizer = pre_tokenizers.Whitespace()
        return tokenizer
