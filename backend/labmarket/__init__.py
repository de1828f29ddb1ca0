"""labmarket: crowdfunded research experiments with a binary parimutuel market."""

__version__ = "0.1.0"
__author__ = "labmarket Team"

__all__ = ["__version__", "__author__"]
