"""INI file reading and writing, and x86/x86-64 instruction length decoding."""

__version__ = "0.1.0"
__all__ = ["ini", "hde32", "hde64"]