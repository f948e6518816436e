"""
Amazon Bedrock chat client on the ConverseStream API.
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple

import boto3
from botocore.config import Config as BotoConfig

from .config import BedrockLLMConfig
from .errors import CompletionFailure
from .logging_config import get_logger
from .retry import AWS_ERRORS, call_with_retry

logger = get_logger(__name__)

# Error events ConverseStream can deliver after the HTTP call itself succeeded
RETRYABLE_STREAM_EVENTS = ('internalServerException', 'modelStreamErrorException', 'throttlingException',
                           'serviceUnavailableException')
FATAL_STREAM_EVENTS = ('validationException', )


class StreamError(Exception):
    """An error event received inside a ConverseStream response."""

    def __init__(self, event_type: str, message: str):
        self.event_type = event_type
        super().__init__(f'{event_type}: {message}')


class RetryableStreamError(StreamError):
    """A transient error event; the request can be sent again."""


def user_message(text: str, prefill: Optional[str] = None) -> List[Dict[str, Any]]:
    """Build a Converse message list, optionally pre-filling the assistant turn."""
    messages = [{'role': 'user', 'content': [{'text': text}]}]
    if prefill:
        messages.append({'role': 'assistant', 'content': [{'text': prefill}]})
    return messages


def read_stream(stream: Optional[Iterable[Dict[str, Any]]]) -> Tuple[str, Dict[str, Any]]:
    """
    Collect a ConverseStream response.

    Returns:
        Tuple of (text, metrics) where metrics merges token usage, latency and the stop reason

    Raises:
        RetryableStreamError: On a transient error event
        StreamError: On any other error event
    """
    chunks = []
    metrics: Dict[str, Any] = {}
    for event in stream or []:
        for event_type in RETRYABLE_STREAM_EVENTS:
            if event_type in event:
                raise RetryableStreamError(event_type, event[event_type].get('message', ''))
        for event_type in FATAL_STREAM_EVENTS:
            if event_type in event:
                raise StreamError(event_type, event[event_type].get('message', ''))

        if 'contentBlockDelta' in event:
            chunks.append(event['contentBlockDelta']['delta'].get('text', ''))
        elif 'messageStop' in event:
            metrics['stopReason'] = event['messageStop'].get('stopReason')
        elif 'metadata' in event:
            metrics.update(event['metadata'].get('usage', {}))
            metrics.update(event['metadata'].get('metrics', {}))
    return ''.join(chunks), metrics


class BedrockLLM:
    """Bedrock chat client. Transient failures, including in-stream error events, are retried."""

    def __init__(self, config: BedrockLLMConfig, client: Optional[Any] = None):
        """
        Initialize Bedrock LLM client.

        Args:
            config: BedrockLLMConfig instance with connection parameters
            client: Pre-built bedrock-runtime client (built from config if None)
        """
        self.config = config
        self.model_id = config.model_id

        if client is None:
            client = boto3.client('bedrock-runtime',
                                  region_name=config.region,
                                  config=BotoConfig(connect_timeout=config.connect_timeout,
                                                    read_timeout=config.read_timeout,
                                                    retries={'max_attempts': 0}))
        self.bedrock_runtime = client

        logger.info(f'Initialized Bedrock LLM client with model: {self.model_id}')

    def generate_response(self,
                          messages: List[Dict[str, Any]],
                          system_prompt: str,
                          max_tokens: Optional[int] = None,
                          temperature: Optional[float] = None,
                          stop_sequences: Optional[List[str]] = None) -> Tuple[str, Dict[str, Any]]:
        """
        Generate a completion.

        Args:
            messages: Converse messages, see ``user_message``
            system_prompt: System prompt for the conversation
            max_tokens: Maximum tokens to generate (config default if None)
            temperature: Sampling temperature (config default if None; 0.0 is honored)
            stop_sequences: Stop sequences for generation

        Returns:
            Tuple of (response_text, metrics)

        Raises:
            CompletionFailure: If the request cannot be completed
        """
        inference_config = {
            'maxTokens': max_tokens if max_tokens is not None else self.config.max_tokens,
            'temperature': temperature if temperature is not None else self.config.temperature,
            'stopSequences': list(stop_sequences or []),
        }

        def converse() -> Tuple[str, Dict[str, Any]]:
            response = self.bedrock_runtime.converse_stream(modelId=self.model_id,
                                                            messages=messages,
                                                            system=[{'text': system_prompt}],
                                                            inferenceConfig=inference_config)
            return read_stream(response.get('stream'))

        text, metrics = call_with_retry(converse,
                                        attempts=self.config.retry_attempts,
                                        base_delay=self.config.retry_delay,
                                        failure=CompletionFailure,
                                        label='Bedrock LLM',
                                        retryable=AWS_ERRORS + (RetryableStreamError, ))

        if metrics.get('stopReason') == 'max_tokens':
            logger.warning(f"Bedrock LLM response was cut off at {inference_config['maxTokens']} tokens")
        logger.debug(f'Bedrock LLM response generated (length: {len(text)})')
        return text, metrics

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock LLM service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response, _ = self.generate_response(messages=user_message('Hi'),
                                                 system_prompt="You are a helpful assistant. Respond with just 'OK'.",
                                                 max_tokens=10,
                                                 temperature=0.0)
            return bool(response.strip())

        except CompletionFailure as e:
            logger.error(f'Bedrock LLM health check failed: {e}')
            return False
