"""
Health check utilities for the application.
"""

from typing import Any, Dict, Optional

from .bedrock_embed import BedrockEmbed
from .bedrock_llm import BedrockLLM
from .config import AppConfig, config
from .database_client import DatabaseClient
from .logging_config import get_logger
from .opensearch_client import OpenSearchClient

logger = get_logger(__name__)


def check_health(components: Optional[Dict[str, Any]] = None, app_config: Optional[AppConfig] = None) -> bool:
    """Check the health of all system components.

    Returns:
        True if all components are healthy, False otherwise
    """
    health_status = get_health_status(components, app_config)

    all_healthy = all(status.get('healthy', False) for status in health_status.values())
    if all_healthy:
        logger.info('All system components are healthy')
    else:
        logger.warning('Some system components are unhealthy')
    return all_healthy


def get_health_status(components: Optional[Dict[str, Any]] = None,
                      app_config: Optional[AppConfig] = None) -> Dict[str, Any]:
    """Get detailed health status of all components.

    Args:
        components: Already-built clients keyed by 'bedrock_llm', 'bedrock_embed',
            'opensearch' and 'database'; missing ones are built from config
        app_config: Application configuration (global config if None)

    Returns:
        Dictionary with health status of each component
    """
    cfg = app_config or config
    components = components or {}

    checks = [
        ('bedrock_llm', 'Amazon Bedrock LLM', lambda: BedrockLLM(cfg.bedrock_llm), {'model': cfg.bedrock_llm.model_id}),
        ('bedrock_embed', 'Amazon Bedrock Embed', lambda: BedrockEmbed(cfg.bedrock_embed), {'model': cfg.bedrock_embed.model_id}),
        ('opensearch', 'Amazon OpenSearch', lambda: OpenSearchClient(cfg.opensearch), {'endpoint': cfg.opensearch.endpoint}),
        ('database', 'Relational store', lambda: DatabaseClient(cfg.database), {}),
    ]

    health_status = {}
    for key, service, build, details in checks:
        try:
            client = components.get(key) or build()
            health_status[key] = {'healthy': bool(client.health_check()), 'service': service, **details}
        except Exception as e:
            logger.error(f'Health check for {service} failed: {e}')
            health_status[key] = {'healthy': False, 'service': service, 'error': str(e)}

    return health_status


def get_system_info(components: Optional[Dict[str, Any]] = None, app_config: Optional[AppConfig] = None) -> Dict[str, Any]:
    """Get system information and configuration.

    Returns:
        Dictionary with system information
    """
    cfg = app_config or config
    return {
        'service_name': 'Memory Journal',
        'version': '1.0.0',
        'configuration': {
            'bedrock_llm_model': cfg.bedrock_llm.model_id,
            'bedrock_embed_model': cfg.bedrock_embed.model_id,
            'embedding_dimension': cfg.bedrock_embed.dimension,
            'similarity_floor': cfg.retrieval.similarity_floor,
            'aws_region': cfg.bedrock_llm.region
        },
        'health_status': get_health_status(components, cfg)
    }
