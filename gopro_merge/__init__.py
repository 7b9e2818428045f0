"""Merge GoPro chapter files back into one recording per sequence."""

__version__ = "1.0.0"
