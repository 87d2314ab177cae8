"""Client-side image pipeline: load, transform, blurhash and signed upload."""

__version__ = "0.1.0"
