"""Repository context assembly for the language model."""

from src.bugfixer.context.assembler import (
    CONTEXT_UNAVAILABLE,
    ContextAssembler,
    extract_referenced_paths,
    truncate_content,
)

__all__ = [
    "CONTEXT_UNAVAILABLE",
    "ContextAssembler",
    "extract_referenced_paths",
    "truncate_content",
]
