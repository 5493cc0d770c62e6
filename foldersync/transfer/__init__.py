"""
Transfer Module - Folder Upload/Download Client

Moves a whole folder to or from the server as one zip archive.
"""

from .client import TransferClient, TransferError

__all__ = [
    'TransferClient',
    'TransferError',
]
