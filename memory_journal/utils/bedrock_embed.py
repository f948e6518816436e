"""
Amazon Bedrock embedding client for memory content and search queries.
"""

import json
from typing import Any, Dict, List, Optional

import boto3
from botocore.config import Config as BotoConfig

from .config import BedrockEmbedConfig
from .errors import EmbeddingFailure
from .logging_config import get_logger
from .retry import call_with_retry

logger = get_logger(__name__)


class BedrockEmbed:
    """Amazon Bedrock embedding client with retry logic and error handling.

    Embedding is a pure function of its input, so failed calls are retried with
    exponential backoff. A call that still fails raises ``EmbeddingFailure``;
    there is never a zero-vector fallback.
    """

    def __init__(self, config: BedrockEmbedConfig, client: Optional[Any] = None):
        """
        Initialize Bedrock embedding client.

        Args:
            config: BedrockEmbedConfig instance with connection parameters
            client: Pre-built bedrock-runtime client (built from config if None)
        """
        self.config = config
        self.model_id = config.model_id
        self.output_embedding_length = config.dimension

        if client is None:
            client = boto3.client(service_name='bedrock-runtime',
                                  region_name=config.region,
                                  config=BotoConfig(connect_timeout=config.connect_timeout,
                                                    read_timeout=config.read_timeout,
                                                    retries={'max_attempts': 0}))
        self.bedrock = client

        logger.info(f'Initialized Bedrock Embed client with model: {self.model_id}')

    def _invoke(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Send one embedding request, retrying transient AWS errors."""
        body = json.dumps(data)

        def invoke() -> Dict[str, Any]:
            response = self.bedrock.invoke_model(body=body,
                                                 modelId=self.model_id,
                                                 accept='application/json',
                                                 contentType='application/json')
            return json.loads(response.get('body').read())

        return call_with_retry(invoke,
                               attempts=self.config.retry_attempts,
                               base_delay=self.config.retry_delay,
                               failure=EmbeddingFailure,
                               label='Bedrock Embed')

    def _build_request(self, text: str, input_type: str) -> Dict[str, Any]:
        model = self.model_id.lower()
        if 'titan' in model:
            return {'inputText': text, 'dimensions': self.output_embedding_length, 'normalize': True}
        if 'cohere' in model:
            if self.output_embedding_length != 1024:
                raise EmbeddingFailure(f'Cohere models only support 1024 dimensions, got {self.output_embedding_length}')
            return {'input_type': input_type, 'texts': [text]}
        raise EmbeddingFailure(f'Unsupported embedding model: {self.model_id}')

    def _extract_vector(self, response: Dict[str, Any]) -> List[float]:
        if 'embedding' in response:
            vector = response['embedding']
        else:
            embeddings = response.get('embeddings') or []
            vector = embeddings[0] if embeddings else None

        if not isinstance(vector, list) or not vector:
            raise EmbeddingFailure('Malformed embedding response: no vector returned')
        if len(vector) != self.output_embedding_length:
            raise EmbeddingFailure(f'Embedding dimension mismatch: expected {self.output_embedding_length}, got {len(vector)}')
        try:
            return [float(value) for value in vector]
        except (TypeError, ValueError) as e:
            raise EmbeddingFailure(f'Malformed embedding response: {e}') from e

    def _embed(self, text: str, input_type: str) -> List[float]:
        if not text or not text.strip():
            raise EmbeddingFailure('Cannot embed empty text')

        data = self._build_request(text, input_type)
        return self._extract_vector(self._invoke(data))

    def embed_document(self, text: str) -> List[float]:
        """
        Generate embeddings for memory content.

        Args:
            text: Text to embed

        Returns:
            List of embedding values

        Raises:
            EmbeddingFailure: If embedding generation fails
        """
        return self._embed(text, 'search_document')

    def embed_query(self, text: str) -> List[float]:
        """
        Generate embeddings for a natural-language query.

        Args:
            text: Query text to embed

        Returns:
            List of embedding values

        Raises:
            EmbeddingFailure: If embedding generation fails
        """
        return self._embed(text, 'search_query')

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock embedding service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            test_embedding = self.embed_document('test')
            return len(test_embedding) == self.output_embedding_length

        except Exception as e:
            logger.error(f'Bedrock Embed health check failed: {e}')
            return False
