"""Commodore 64 TAP images: pause and turbo-loader block scanning, and AU/WAV audio export."""

__version__ = "0.1.0"
__all__ = ["tapfile", "pause", "audio", "pavloda", "superpav", "supertape", "visiload"]