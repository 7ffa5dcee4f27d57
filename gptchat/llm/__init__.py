"""Chat Completions 客户端与 SSE 解码"""

from gptchat.llm.client import ChatCompletionClient, LLMConfig, LLMError, TransportUnavailable

__all__ = ["ChatCompletionClient", "LLMConfig", "LLMError", "TransportUnavailable"]
