"""
Token generation for the server's token file.
"""

import os
import secrets
import string
from pathlib import Path
from typing import Union

TOKEN_ALPHABET = string.ascii_letters + string.digits
DEFAULT_TOKEN_LENGTH = 64


def generate_token(length: int = DEFAULT_TOKEN_LENGTH) -> str:
    """Return a random alphanumeric token."""
    if length <= 0:
        raise ValueError(f"Token length must be positive, got {length}")
    return ''.join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def append_token(path: Union[str, os.PathLike], token: str) -> Path:
    """Append token as a new line, creating the file (and its directory) if needed."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    prefix = ''
    if path.exists() and path.stat().st_size > 0:
        with open(path, 'rb') as f:
            f.seek(-1, os.SEEK_END)
            if f.read(1) != b'\n':
                prefix = '\n'

    with open(path, 'a', encoding='utf-8') as f:
        f.write(f"{prefix}{token}\n")
    return path
