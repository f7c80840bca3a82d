"""Descriptor-driven decoding of the Protocol Buffers wire format into dictionaries."""

__version__ = "0.1.0"

__all__ = ["decoder", "fields", "stream", "values"]