"""OpenAI Chat Completions 客户端（流式 + 一次性调用）"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Iterator

import requests
from loguru import logger

from gptchat.chat.cost import Model
from gptchat.llm.sse import (
    STREAM_OPENED,
    Done,
    MessageDelta,
    StreamReadFailed,
    decode_event,
    iter_sse_events,
)


@dataclass
class LLMConfig:
    api_key: str
    base_url: str = "https://api.openai.com/v1"
    model: Model = Model.GPT3
    connect_timeout: float = 10
    title_timeout: float = 180


class LLMError(Exception):
    """Chat API call failed; message is safe to show to the user."""
    pass


class TransportUnavailable(LLMError):
    """The outgoing request could not be built."""
    pass


class DeltaStream:
    """One streaming request, decoded into MessageDelta values.

    The connection is made lazily on first iteration. ``close()`` may be
    called from another thread to abandon a blocked read.
    """

    def __init__(self, session: requests.Session, request: requests.PreparedRequest,
                 connect_timeout: float):
        self._session = session
        self._request = request
        self._connect_timeout = connect_timeout
        self._response: requests.Response | None = None
        self._closed = threading.Event()

    def __iter__(self) -> Iterator[MessageDelta]:
        if self._closed.is_set():
            return
        try:
            resp = self._session.send(
                self._request,
                stream=True,
                timeout=(self._connect_timeout, None),
            )
            resp.raise_for_status()
            resp.encoding = "utf-8"
        except requests.exceptions.RequestException as e:
            raise StreamReadFailed(str(ChatCompletionClient.handle_error(e))) from e

        self._response = resp
        if self._closed.is_set():
            resp.close()
            return

        yield decode_event(STREAM_OPENED)
        try:
            for event in iter_sse_events(resp.iter_lines(decode_unicode=True, delimiter="\n")):
                delta = decode_event(event)
                yield delta
                if isinstance(delta, Done):
                    return
        except requests.exceptions.RequestException as e:
            raise StreamReadFailed(f"Error while reading response stream: {e}") from e
        finally:
            resp.close()

    def close(self) -> None:
        self._closed.set()
        if self._response is not None:
            self._response.close()
        self._session.close()


class ChatCompletionClient:
    """OpenAI 兼容的 Chat Completions 客户端"""

    def __init__(self, config: LLMConfig):
        self.config = config
        self._url = f"{config.base_url.rstrip('/')}/chat/completions"
        self._headers = {
            "Authorization": f"Bearer {config.api_key}",
            "Content-Type": "application/json",
        }

    def _build_payload(self, messages: list[dict], stream: bool = False) -> dict:
        return {
            "model": self.config.model.api_name,
            "messages": messages,
            "stream": stream,
        }

    @staticmethod
    def handle_error(e: Exception) -> LLMError:
        """将各种 requests 异常转换为可读的 LLMError"""
        if isinstance(e, requests.exceptions.ConnectionError):
            return LLMError("Could not connect to the chat API, check the network or base URL")
        if isinstance(e, requests.exceptions.Timeout):
            return LLMError("The chat API request timed out")
        if isinstance(e, requests.exceptions.HTTPError):
            status = e.response.status_code if e.response is not None else 0
            detail = _api_error_message(e.response)
            if status == 401:
                return LLMError("Invalid API key, check the settings")
            if status == 429:
                return LLMError("Rate limited by the chat API, try again later")
            if status == 404:
                return LLMError("Model not found, check the model setting")
            return LLMError(f"Chat API returned an error ({status}): {detail}")
        return LLMError(f"Chat API call failed: {e}")

    def open_stream(self, messages: list[dict]) -> DeltaStream:
        """Prepare a streaming request. Raises TransportUnavailable if it cannot be built."""
        if not self.config.api_key:
            raise TransportUnavailable("Please provide an API key in the settings")
        try:
            request = requests.Request(
                "POST",
                self._url,
                headers=self._headers,
                json=self._build_payload(messages, stream=True),
            ).prepare()
        except (requests.exceptions.RequestException, TypeError, ValueError) as e:
            raise TransportUnavailable(f"Something went wrong while building the API request: {e}") from e

        logger.debug(f"Opening chat stream: model={self.config.model.api_name}, {len(messages)} messages")
        return DeltaStream(requests.Session(), request, self.config.connect_timeout)

    def chat(self, messages: list[dict]) -> str:
        """阻塞式调用，返回完整回复文本"""
        if not self.config.api_key:
            raise TransportUnavailable("Please provide an API key in the settings")
        try:
            resp = requests.post(
                self._url,
                headers=self._headers,
                json=self._build_payload(messages, stream=False),
                timeout=(self.config.connect_timeout, self.config.title_timeout),
            )
            resp.raise_for_status()
            data = resp.json()
            return data["choices"][0]["message"]["content"]
        except requests.exceptions.RequestException as e:
            raise self.handle_error(e) from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise LLMError(f"Failed to parse chat API response body: {e}") from e


def _api_error_message(response: requests.Response | None) -> str:
    """Pull ``error.message`` out of an OpenAI error body, else the raw text."""
    if response is None:
        return ""
    try:
        body = response.json()
        return str(body["error"]["message"])
    except (ValueError, KeyError, TypeError):
        pass
    try:
        return response.text[:200]
    except Exception:
        return ""
