"""kiln - recipe driven package build orchestrator."""

__version__ = "0.1.0"
