"""
Tokens Module - Bearer Token Storage and Generation
"""

from .store import TokenStore, parse_tokens, DEFAULT_REFRESH_INTERVAL
from .generator import generate_token, append_token

__all__ = [
    'TokenStore',
    'parse_tokens',
    'DEFAULT_REFRESH_INTERVAL',
    'generate_token',
    'append_token',
]
