"""Core pipeline logic.

Modules:
- errors: Error taxonomy
- ingestion: Material upload, extraction and bounded worker pool
- context_assembler: Materials + transcript context for generation
- quiz_generator: Quiz generation, parsing and schema validation
- push_coordinator: At-most-once quiz push to the live audience
"""

__all__ = [
    "errors",
    "ingestion",
    "context_assembler",
    "quiz_generator",
    "push_coordinator",
]
