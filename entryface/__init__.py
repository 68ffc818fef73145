"""Entry composition and synchronization engine.

Expands catalog token sequences into editable row blocks, derives
hierarchical identifiers for every row and ships the resulting
identifier/value pairs to an upsert endpoint (or a local queue).
"""

__version__ = "0.3.0"
