"""Knowledge retrieval-and-generation support layer."""

__version__ = "1.0.0"
