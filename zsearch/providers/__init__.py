"""
zsearch providers module.

This module provides the Z.AI chat completions client.
"""

from zsearch.providers.chat import ChatError, ChatResult, chat_completion

__all__ = ["ChatError", "ChatResult", "chat_completion"]
