"""audiomerger - queue audio sources per owner and merge them into one file."""

__version__ = "0.1.0"
