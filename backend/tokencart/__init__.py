"""tokencart - token-based session authority with a per-principal cart store"""

__version__ = "0.1.0"
