"""Chat completion invoker.

Stateless adapter over the OpenAI chat completions API: conversation turns
in, one assistant turn out. No caching; identical input may produce a
different reply.
"""

import logging
import time
from collections.abc import Sequence

import openai
from openai import AsyncOpenAI

from voicerelay.conversation import Role, Turn
from voicerelay.errors import BackendError

logger = logging.getLogger(__name__)


class CompletionClient:
    """Request/response chat completion adapter.

    Example:
        >>> client = CompletionClient(api_key="sk-...")
        >>> reply = await client.complete([Turn(Role.USER, "hello")])
        >>> reply.content
        'Hi there! How can I help?'
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-3.5-turbo",
        system_prompt: str = "You are a helpful assistant.",
        base_url: str | None = None,
        timeout_s: float = 30.0,
        client: AsyncOpenAI | None = None,
    ) -> None:
        """Initialize completion client.

        Args:
            api_key: OpenAI API key
            model: Chat completion model
            system_prompt: Prepended to every request
            base_url: Optional API base URL override
            timeout_s: Request timeout in seconds
            client: Pre-built client (for testing)
        """
        self.model = model
        self.system_prompt = system_prompt
        self._client = client or AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout_s,
            max_retries=0,
        )

    async def complete(self, turns: Sequence[Turn]) -> Turn:
        """Request the next assistant turn for a conversation.

        Args:
            turns: Conversation so far, oldest first, ending with the user turn

        Returns:
            The assistant turn

        Raises:
            BackendError: On any non-success response or transport failure
        """
        messages = [{"role": "system", "content": self.system_prompt}]
        messages.extend(turn.as_message() for turn in turns)

        start = time.monotonic()
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=messages,  # type: ignore[arg-type]
            )
        except openai.APIStatusError as e:
            raise BackendError(
                "completion", str(e), status=e.status_code, category="http_status"
            ) from e
        except openai.APITimeoutError as e:
            raise BackendError("completion", str(e), category="timeout") from e
        except openai.APIConnectionError as e:
            raise BackendError("completion", str(e), category="network") from e
        except openai.OpenAIError as e:
            raise BackendError("completion", str(e), category="api") from e

        if not response.choices or not response.choices[0].message.content:
            raise BackendError("completion", "response has no content", category="empty_response")

        content = response.choices[0].message.content
        logger.info(
            "Completion received",
            extra={
                "model": self.model,
                "turns": len(turns),
                "reply_length": len(content),
                "latency_ms": (time.monotonic() - start) * 1000.0,
            },
        )
        return Turn(Role.ASSISTANT, content)

    async def close(self) -> None:
        """Release the underlying HTTP client."""
        await self._client.close()
