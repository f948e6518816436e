"""
Configuration management for AWS services, storage backends and application settings.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass
class BedrockLLMConfig:
    """Configuration for Amazon Bedrock LLM service."""
    region: str
    model_id: str
    max_tokens: int
    temperature: float
    retry_attempts: int
    retry_delay: float
    connect_timeout: float
    read_timeout: float


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    region: str
    model_id: str
    dimension: int
    retry_attempts: int
    retry_delay: float
    connect_timeout: float
    read_timeout: float


@dataclass
class OpenSearchConfig:
    """Configuration for OpenSearch."""
    endpoint: str
    port: int
    region: str
    index_name: str
    dimension: int
    timeout: float


@dataclass
class DatabaseConfig:
    """Configuration for the relational store."""
    url: str
    echo: bool
    pool_timeout: float


@dataclass
class RetrievalConfig:
    """Configuration for semantic memory retrieval."""
    default_limit: int
    similarity_floor: float
    max_content_length: int


@dataclass
class NudgeConfig:
    """Configuration for nudge generation."""
    temperature: float
    max_tokens: int
    max_nudges: int
    expiry_days: int
    inactive_days: int
    recent_memory_window: int


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    bedrock_llm: BedrockLLMConfig
    bedrock_embed: BedrockEmbedConfig
    opensearch: OpenSearchConfig
    database: DatabaseConfig
    retrieval: RetrievalConfig
    nudge: NudgeConfig
    mcp: MCPConfig


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Bedrock configuration
    bedrock_llm_config = BedrockLLMConfig(region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
                                          model_id=os.getenv('BEDROCK_LLM_MODEL_ID', 'anthropic.claude-3-sonnet-20240229-v1:0'),
                                          max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '500')),
                                          temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.3')),
                                          retry_attempts=int(os.getenv('BEDROCK_LLM_RETRY_ATTEMPTS', '3')),
                                          retry_delay=float(os.getenv('BEDROCK_LLM_RETRY_DELAY', '1.0')),
                                          connect_timeout=float(os.getenv('BEDROCK_LLM_CONNECT_TIMEOUT', '10')),
                                          read_timeout=float(os.getenv('BEDROCK_LLM_READ_TIMEOUT', '60')))

    # Bedrock Embed configuration
    bedrock_embed_config = BedrockEmbedConfig(region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                              model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                                              dimension=int(os.getenv('BEDROCK_EMBED_DIMENSION', '1024')),
                                              retry_attempts=int(os.getenv('BEDROCK_EMBED_RETRY_ATTEMPTS', '3')),
                                              retry_delay=float(os.getenv('BEDROCK_EMBED_RETRY_DELAY', '1.0')),
                                              connect_timeout=float(os.getenv('BEDROCK_EMBED_CONNECT_TIMEOUT', '10')),
                                              read_timeout=float(os.getenv('BEDROCK_EMBED_READ_TIMEOUT', '30')))

    # Vector search configuration
    opensearch_config = OpenSearchConfig(endpoint=os.getenv('OPENSEARCH_ENDPOINT', 'localhost'),
                                         port=int(os.getenv('OPENSEARCH_PORT', '443')),
                                         region=os.getenv('OPENSEARCH_AWS_REGION', 'us-east-1'),
                                         index_name=os.getenv('OPENSEARCH_INDEX', 'memory_embeddings'),
                                         dimension=int(os.getenv('OPENSEARCH_DIMENSION', '1024')),
                                         timeout=float(os.getenv('OPENSEARCH_TIMEOUT', '30')))

    # Relational store configuration
    database_config = DatabaseConfig(url=os.getenv('DATABASE_URL', 'sqlite:///memory_journal.db'),
                                     echo=_env_bool('DATABASE_ECHO', 'false'),
                                     pool_timeout=float(os.getenv('DATABASE_POOL_TIMEOUT', '30')))

    # Retrieval configuration
    retrieval_config = RetrievalConfig(default_limit=int(os.getenv('RETRIEVAL_DEFAULT_LIMIT', '10')),
                                       similarity_floor=float(os.getenv('RETRIEVAL_SIMILARITY_FLOOR', '0.6')),
                                       max_content_length=int(os.getenv('MEMORY_MAX_CONTENT_LENGTH', '10000')))

    # Nudge configuration
    nudge_config = NudgeConfig(temperature=float(os.getenv('NUDGE_TEMPERATURE', '0.7')),
                               max_tokens=int(os.getenv('NUDGE_MAX_TOKENS', '800')),
                               max_nudges=int(os.getenv('NUDGE_MAX_COUNT', '4')),
                               expiry_days=int(os.getenv('NUDGE_EXPIRY_DAYS', '7')),
                               inactive_days=int(os.getenv('NUDGE_INACTIVE_DAYS', '30')),
                               recent_memory_window=int(os.getenv('NUDGE_RECENT_MEMORY_WINDOW', '10')))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     bedrock_llm=bedrock_llm_config,
                     bedrock_embed=bedrock_embed_config,
                     opensearch=opensearch_config,
                     database=database_config,
                     retrieval=retrieval_config,
                     nudge=nudge_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
