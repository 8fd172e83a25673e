"""
QR Module - Black Box Interface

Purpose: Present login challenges to operators
Interface: encode_challenge(), render_ascii(), QRChannel
Hidden: QR encoding parameters, image format
"""

from .qr import QRChannel, encode_challenge, render_ascii

__all__ = ["QRChannel", "encode_challenge", "render_ascii"]
