"""
Tokenizers used to measure prompt sections against the token budget.
"""

from typing import Any, Dict, List, Protocol

import tiktoken

# Cache for tiktoken encoders to avoid recreation
_encoder_cache: Dict[str, Any] = {}


def _get_encoder(model: str) -> Any:
    """Get cached encoder for model."""
    if model not in _encoder_cache:
        try:
            _encoder_cache[model] = tiktoken.encoding_for_model(model)
        except KeyError:
            # Unknown model names fall back to the common chat encoding
            _encoder_cache[model] = tiktoken.get_encoding("cl100k_base")
    return _encoder_cache[model]


class Tokenizer(Protocol):
    """Encodes text into tokens and back"""

    def encode(self, text: str) -> List[int]:
        ...

    def decode(self, tokens: List[int]) -> str:
        ...


class TiktokenTokenizer:
    """Tokenizer backed by tiktoken encodings"""

    def __init__(self, model: str = "gpt-4o"):
        self.model = model

    def encode(self, text: str) -> List[int]:
        return _get_encoder(self.model).encode(text)

    def decode(self, tokens: List[int]) -> str:
        return _get_encoder(self.model).decode(tokens)
