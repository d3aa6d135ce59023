# File: rag_worker/infrastructure/llm/azure_openai_chat.py
import time
from typing import Callable

from openai import AzureOpenAI

from rag_worker.application.ports.chat_port import ChatCompletionPort
from rag_worker.core.config import Settings
from rag_worker.infrastructure.llm.azure_openai_base import AzureOpenAIAdapterBase, build_azure_openai_client


class AzureOpenAIChat(AzureOpenAIAdapterBase, ChatCompletionPort):

    service = "chat"

    def __init__(
        self,
        client: AzureOpenAI,
        deployment: str,
        max_output_tokens: int = 512,
        max_attempts: int = 3,
        backoff_base_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        super().__init__(client, deployment, max_attempts, backoff_base_seconds, sleep)
        self._max_output_tokens = max_output_tokens

    @classmethod
    def from_settings(cls, settings: Settings) -> "AzureOpenAIChat":
        return cls(
            client=build_azure_openai_client(settings, settings.AZURE_CHAT_TIMEOUT_SECONDS),
            deployment=settings.AZURE_OPENAI_CHAT_DEPLOYMENT,
            max_output_tokens=settings.CHAT_MAX_OUTPUT_TOKENS,
            max_attempts=settings.UPSTREAM_MAX_ATTEMPTS,
            backoff_base_seconds=settings.UPSTREAM_BACKOFF_BASE_SECONDS,
        )

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        return self._invoke(lambda: self._complete_once(system_prompt, user_prompt))

    def _complete_once(self, system_prompt: str, user_prompt: str) -> str:
        response = self._client.chat.completions.create(
            model=self._deployment,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            max_tokens=self._max_output_tokens,
        )

        choices = getattr(response, "choices", None)
        if not choices:
            raise self._malformed("chat response missing choices")
        message = getattr(choices[0], "message", None)
        content = getattr(message, "content", None) if message is not None else None
        if not isinstance(content, str):
            raise self._malformed("chat response missing content")

        self.log.debug("Chat completion received", answer_length=len(content))
        return content
