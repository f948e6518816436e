from dataclasses import replace

import pytest

from fakes import DIMENSION, FakeEmbedder, FakeLLM, FakeVectorIndex
from memory_journal.services.memory_management import MemoryManagementService
from memory_journal.utils.config import DatabaseConfig, config
from memory_journal.utils.database_client import DatabaseClient


@pytest.fixture
def app_config():
    """Application config pointed at an in-memory SQLite store."""
    return replace(config,
                   database=DatabaseConfig(url='sqlite://', echo=False, pool_timeout=5),
                   retrieval=replace(config.retrieval, similarity_floor=0.1),
                   bedrock_embed=replace(config.bedrock_embed, dimension=DIMENSION),
                   opensearch=replace(config.opensearch, dimension=DIMENSION))


@pytest.fixture
def database(app_config):
    client = DatabaseClient(app_config.database)
    client.create_schema()
    yield client
    client.close()


@pytest.fixture
def embedder():
    return FakeEmbedder(dimension=DIMENSION)


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def vector_index():
    return FakeVectorIndex(dimension=DIMENSION)


@pytest.fixture
def service(database, vector_index, embedder, llm, app_config):
    memory_service = MemoryManagementService(database=database,
                                             vector_index=vector_index,
                                             embed=embedder,
                                             llm=llm,
                                             app_config=app_config)
    memory_service.initialize()
    return memory_service
