"""
Location: python/chatstream_sdk/exceptions.py

Summary:
    Root exception for chatstream-sdk. Concrete errors are defined next to
    the module that raises them and all derive from ChatStreamError.
"""


class ChatStreamError(Exception):
    """Base class for every error raised by chatstream-sdk."""
    pass
