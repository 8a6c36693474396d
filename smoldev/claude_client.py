from anthropic import AsyncAnthropic, APIStatusError, APIConnectionError, APITimeoutError
from typing import Optional, AsyncIterator, Callable
import asyncio
import random
import httpx

from smoldev.config import PipelineConfig
from smoldev.exceptions import ConfigError, ExternalCallError
from smoldev.logging_config import logger

RETRYABLE_STATUS_CODES = [408, 429, 500, 502, 503, 504, 529]
RETRYABLE_ERRORS = ['overloaded_error', 'rate_limit_error', 'api_error']


class ClaudeClient:
    """Claude API client wrapper for streaming requests with retry"""

    def __init__(self, config: PipelineConfig, async_client: Optional[AsyncAnthropic] = None):
        self.config = config
        self.model = config.model_name
        self.max_retries = config.max_retries

        if async_client is not None:
            self.async_client = async_client
            return

        if not config.api_key:
            raise ConfigError(
                "ANTHROPIC_API_KEY not set. Please set it in environment or config.",
                field="api_key"
            )

        client_kwargs = {"api_key": config.api_key}

        if config.base_url and config.base_url.strip():
            client_kwargs["base_url"] = config.base_url.strip()
            logger.info(f"Using custom Claude API base URL: {config.base_url}")

        client_kwargs["timeout"] = httpx.Timeout(
            connect=config.connect_timeout,
            read=config.timeout,
            write=config.timeout,
            pool=config.timeout
        )
        # SDK retries off; stream() retries only before the first chunk
        client_kwargs["max_retries"] = 0

        self.async_client = AsyncAnthropic(**client_kwargs)
        logger.info(f"Claude client initialized: timeout={config.timeout}s, model={self.model}")

    def _is_retryable_error(self, error: Exception) -> bool:
        """Check if an error is retryable (overload, rate limit, network issues)"""
        if isinstance(error, (APIConnectionError, APITimeoutError)):
            return True

        if isinstance(error, (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError)):
            return True

        if isinstance(error, APIStatusError):
            if isinstance(error.body, dict):
                error_type = error.body.get('error', {}).get('type', '')
                if error_type in RETRYABLE_ERRORS:
                    return True
            return error.status_code in RETRYABLE_STATUS_CODES

        return False

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate delay with exponential backoff and jitter"""
        delay = min(self.config.retry_base_delay * (2 ** attempt), self.config.retry_max_delay)
        jitter = delay * random.uniform(0, 0.25)
        return delay + jitter

    async def stream(
        self,
        system_prompt: str,
        prompt: str,
        operation: str = "generate",
    ) -> AsyncIterator[str]:
        """
        Stream a response from Claude

        Args:
            system_prompt: System prompt
            prompt: User prompt
            operation: Name used in logs and errors

        Yields:
            Chunks of text as they arrive

        Raises:
            ExternalCallError: when the request fails and cannot be retried
        """
        logger.info(f"Claude Streaming [{operation}]: model={self.model}, max_tokens={self.config.max_tokens}, prompt_len={len(prompt)}")
        logger.debug(f"[{operation}] system prompt:\n{system_prompt}")
        logger.debug(f"[{operation}] user prompt:\n{prompt}")

        for attempt in range(self.max_retries + 1):
            has_yielded = False
            try:
                async with self.async_client.messages.stream(
                    model=self.model,
                    max_tokens=self.config.max_tokens,
                    temperature=self.config.temperature,
                    system=system_prompt,
                    messages=[{"role": "user", "content": prompt}]
                ) as stream:
                    async for text in stream.text_stream:
                        has_yielded = True
                        yield text

                    final_message = await stream.get_final_message()

                total_tokens = final_message.usage.input_tokens + final_message.usage.output_tokens
                logger.info(f"Claude Streaming response [{operation}]: id={final_message.id}, tokens={total_tokens}, stop={final_message.stop_reason}")
                if final_message.stop_reason == "max_tokens":
                    logger.warning(f"[{operation}] response was cut off at max_tokens={self.config.max_tokens}")
                return

            except asyncio.CancelledError:
                raise
            except Exception as e:
                error_type = type(e).__name__
                # Can't recover once output has reached the caller
                if not has_yielded and self._is_retryable_error(e) and attempt < self.max_retries:
                    delay = self._calculate_retry_delay(attempt)
                    logger.warning(
                        f"Claude Streaming API error [{error_type}] (attempt {attempt + 1}/{self.max_retries + 1}), retrying in {delay:.1f}s...",
                        extra={
                            "event_type": "claude_stream_retry",
                            "error_type": error_type,
                            "attempt": attempt + 1,
                            "retry_delay": delay
                        }
                    )
                    await asyncio.sleep(delay)
                    continue

                logger.error(
                    f"Claude Streaming API error [{operation}]: {error_type}: {e}",
                    extra={
                        "event_type": "claude_stream_error",
                        "error_type": error_type,
                        "has_yielded": has_yielded,
                        "attempt": attempt + 1
                    }
                )
                raise ExternalCallError(f"{operation} call failed: {e}", operation=operation, cause=e) from e

    async def complete(
        self,
        system_prompt: str,
        prompt: str,
        operation: str = "generate",
        on_chunk: Optional[Callable[[str], None]] = None,
    ) -> str:
        """Run a streaming request and return the collected text"""
        collected = []
        async for chunk in self.stream(system_prompt, prompt, operation=operation):
            collected.append(chunk)
            if on_chunk is not None:
                on_chunk(chunk)
        return "".join(collected)

    async def close(self) -> None:
        await self.async_client.close()
