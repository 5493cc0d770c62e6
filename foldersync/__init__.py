"""
foldersync - wholesale folder replacement over HTTP.

A client uploads a local folder to replace the server's copy, or
downloads the server's copy to replace the local folder. Transfers are a
single zip archive, authorized by a static token.
"""

__version__ = "1.0.0"
