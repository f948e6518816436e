"""
OpenSearch client wrapper for the per-user memory vector index.
"""

import time
from typing import Any, Dict, List, Optional

import boto3
from opensearchpy import OpenSearch, RequestsHttpConnection
from opensearchpy.exceptions import NotFoundError, OpenSearchException
from requests_aws4auth import AWS4Auth

from ..models.core import VectorHit
from .config import OpenSearchConfig
from .errors import VectorIndexFailure
from .logging_config import get_logger

logger = get_logger(__name__)

ENTRY_TYPE = 'memory'
INDEX_SYNC_WAIT_SECONDS = 15
MAX_SCAN_SIZE = 10000
# Extra neighbours requested so duplicate entries for one memory do not crowd out others
CANDIDATE_FACTOR = 2


def score_to_similarity(score: float) -> float:
    """Convert a faiss ``innerproduct`` k-NN score back to the inner product.

    Embeddings are unit-normalized, so the inner product is the cosine similarity.
    Faiss scores a non-negative product p as 1 + p and a negative one as 1 / (1 - p).
    """
    if score >= 1.0:
        return score - 1.0
    if score <= 0.0:
        return -1.0
    return 1.0 - 1.0 / score


def flatten_metadata(title: str, people: List[str], tags: List[str], mood: int) -> Dict[str, Any]:
    """Build the flat metadata bag stored next to each embedding."""
    return {'title': title, 'people': ','.join(people), 'tags': ','.join(tags), 'mood': mood}


class OpenSearchClient:
    """OpenSearch vector index for memory embeddings, partitioned by user ID."""

    def __init__(self, config: OpenSearchConfig, client: Optional[Any] = None):
        """
        Initialize OpenSearch client.

        Args:
            config: OpenSearchConfig instance with connection parameters
            client: Pre-built OpenSearch client (built from config if None)
        """
        self.config = config
        self.index_name = config.index_name

        if client is None:
            # Get AWS credentials and create auth
            credentials = boto3.Session().get_credentials()
            auth = AWS4Auth(region=config.region, service='aoss', refreshable_credentials=credentials)
            endpoint = config.endpoint
            if '://' in endpoint:
                # Remove protocol if present
                endpoint = endpoint.split('://', 1)[1]

            client = OpenSearch(hosts=[{
                'host': endpoint,
                'port': config.port
            }],
                                http_auth=auth,
                                use_ssl=True,
                                verify_certs=True,
                                timeout=config.timeout,
                                connection_class=RequestsHttpConnection)
        self.client = client

        logger.info(f'Initialized OpenSearch client for endpoint: {config.endpoint}')

    def create_index_if_not_exists(self) -> str:
        """
        Create the memory index if it doesn't exist.

        Returns:
            'exists', 'created' or 'failed'
        """
        try:
            if self.client.indices.exists(index=self.index_name):
                logger.debug(f'Index {self.index_name} already exists')
                return 'exists'

            index_body = {
                'mappings': {
                    'properties': {
                        'id': {
                            'type': 'keyword'
                        },
                        'user_id': {
                            'type': 'keyword'
                        },
                        'type': {
                            'type': 'keyword'
                        },
                        'text': {
                            'type': 'text'
                        },
                        'summary': {
                            'type': 'text'
                        },
                        'title': {
                            'type': 'text'
                        },
                        'people': {
                            'type': 'text'
                        },
                        'tags': {
                            'type': 'text'
                        },
                        'mood': {
                            'type': 'integer'
                        },
                        'embedding': {
                            'type': 'knn_vector',
                            'dimension': self.config.dimension,
                            'method': {
                                'name': 'hnsw',
                                'space_type': 'innerproduct',
                                'engine': 'faiss'
                            }
                        }
                    }
                },
                'settings': {
                    'index': {
                        'knn': True,
                        'knn.algo_param.ef_search': 100
                    }
                }
            }

            response = self.client.indices.create(index=self.index_name, body=index_body)
            logger.info(f'Created index {self.index_name}')
            if response.get('acknowledged', False):
                logger.info(f'Waiting {INDEX_SYNC_WAIT_SECONDS}s for index {self.index_name} sync-up...')
                time.sleep(INDEX_SYNC_WAIT_SECONDS)
                return 'created'
            return 'failed'
        except OpenSearchException as e:
            logger.error(f'Error creating index {self.index_name}: {e}')
            raise VectorIndexFailure(f'Failed to create index: {e}') from e
        except Exception as e:
            logger.error(f'Unexpected error creating index {self.index_name}: {e}')
            raise VectorIndexFailure(f'Unexpected error creating index: {e}') from e

    @staticmethod
    def _user_filters(user_id: str) -> List[Dict[str, Any]]:
        return [{'term': {'user_id': user_id}}, {'term': {'type': ENTRY_TYPE}}]

    def _scan_user_entries(self, user_id: str, memory_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Fetch up to MAX_SCAN_SIZE entries for a user, optionally narrowed to one memory."""
        filters = self._user_filters(user_id)
        if memory_id is not None:
            filters.append({'term': {'id': memory_id}})
        search_body = {'size': MAX_SCAN_SIZE, 'query': {'bool': {'filter': filters}}, '_source': ['id']}

        hits = self.client.search(index=self.index_name, body=search_body)['hits']['hits']
        if len(hits) >= MAX_SCAN_SIZE:
            logger.warning(f'Index scan for user {user_id} reached {MAX_SCAN_SIZE} entries; '
                           'the result is incomplete, repeat the operation to cover the rest')
        return hits

    def _find_doc_ids(self, user_id: str, memory_id: Optional[str] = None) -> List[str]:
        """Find document IDs scoped to a user, optionally narrowed to one memory."""
        return [hit['_id'] for hit in self._scan_user_entries(user_id, memory_id)]

    def _delete_doc(self, doc_id: str) -> bool:
        try:
            response = self.client.delete(index=self.index_name, id=doc_id)
            return response.get('result') == 'deleted'
        except NotFoundError:
            return False

    def upsert(self,
               memory_id: str,
               user_id: str,
               text: str,
               summary: str,
               embedding: List[float],
               metadata: Optional[Dict[str, Any]] = None) -> None:
        """
        Insert or replace the index entry for a memory.

        Replacement is delete-then-insert. The two steps are not atomic: a crash
        between them leaves the memory absent from the index until the next write
        or reconciliation.

        Raises:
            VectorIndexFailure: If either step fails
        """
        if len(embedding) != self.config.dimension:
            raise VectorIndexFailure(f'Embedding dimension {len(embedding)} does not match index dimension {self.config.dimension}')

        document = {
            'id': memory_id,
            'user_id': user_id,
            'type': ENTRY_TYPE,
            'text': text,
            'summary': summary,
            'embedding': embedding,
            **(metadata or {})
        }

        try:
            for doc_id in self._find_doc_ids(user_id, memory_id):
                self._delete_doc(doc_id)

            # Serverless vector collections assign their own document IDs
            response = self.client.index(index=self.index_name, body=document)
            if response.get('result') not in ('created', 'updated'):
                raise VectorIndexFailure(f'Unexpected result indexing memory {memory_id}: {response}')

            logger.debug(f'Upserted index entry for memory {memory_id}')

        except VectorIndexFailure:
            raise
        except OpenSearchException as e:
            logger.error(f'Error upserting memory {memory_id}: {e}')
            raise VectorIndexFailure(f'Failed to upsert memory: {e}') from e
        except Exception as e:
            logger.error(f'Unexpected error upserting memory {memory_id}: {e}')
            raise VectorIndexFailure(f'Unexpected error upserting memory: {e}') from e

    def delete(self, memory_id: str, user_id: str) -> bool:
        """
        Delete a memory's index entry. Deleting an absent entry is not an error.

        Returns:
            True if an entry was removed, False if there was nothing to remove
        """
        try:
            removed = False
            for doc_id in self._find_doc_ids(user_id, memory_id):
                removed = self._delete_doc(doc_id) or removed

            if removed:
                logger.debug(f'Deleted index entry for memory {memory_id}')
            else:
                logger.debug(f'No index entry to delete for memory {memory_id}')
            return removed

        except OpenSearchException as e:
            logger.error(f'Error deleting memory {memory_id}: {e}')
            raise VectorIndexFailure(f'Failed to delete memory: {e}') from e
        except Exception as e:
            logger.error(f'Unexpected error deleting memory {memory_id}: {e}')
            raise VectorIndexFailure(f'Unexpected error deleting memory: {e}') from e

    def delete_user_entries(self, user_id: str) -> int:
        """
        Delete every index entry owned by a user.

        Returns:
            Number of entries removed
        """
        try:
            removed = sum(1 for doc_id in self._find_doc_ids(user_id) if self._delete_doc(doc_id))
            logger.info(f'Cleared {removed} index entries for user {user_id}')
            return removed

        except OpenSearchException as e:
            logger.error(f'Error clearing index entries for user {user_id}: {e}')
            raise VectorIndexFailure(f'Failed to clear user entries: {e}') from e
        except Exception as e:
            logger.error(f'Unexpected error clearing index entries for user {user_id}: {e}')
            raise VectorIndexFailure(f'Unexpected error clearing user entries: {e}') from e

    def list_memory_ids(self, user_id: str) -> List[str]:
        """List the memory IDs indexed for a user."""
        try:
            return sorted({hit['_source'].get('id', hit['_id']) for hit in self._scan_user_entries(user_id)})

        except OpenSearchException as e:
            logger.error(f'Error listing index entries for user {user_id}: {e}')
            raise VectorIndexFailure(f'Failed to list user entries: {e}') from e

    def query(self, embedding: List[float], user_id: str, limit: int = 10, similarity_floor: float = 0.6) -> List[VectorHit]:
        """
        Similarity search scoped to one user.

        The user filter runs inside the k-NN clause, so the nearest neighbours are
        chosen among the user's own entries. A memory with more than one entry
        (a replacement whose old document is still visible) is reported once,
        with its best score.

        Returns at most ``limit`` hits with similarity >= ``similarity_floor``, ordered
        by descending similarity with ties broken by memory ID.

        Raises:
            VectorIndexFailure: If the search fails
        """
        if limit <= 0:
            return []

        candidates = limit * CANDIDATE_FACTOR
        search_body = {
            'size': candidates,
            'query': {
                'knn': {
                    'embedding': {
                        'vector': embedding,
                        'k': candidates,
                        'filter': {
                            'bool': {
                                'filter': self._user_filters(user_id)
                            }
                        }
                    }
                }
            },
            '_source': {
                'excludes': ['embedding']  # Don't return embedding in results
            }
        }

        try:
            response = self.client.search(index=self.index_name, body=search_body)
        except OpenSearchException as e:
            logger.error(f'Error performing vector search: {e}')
            raise VectorIndexFailure(f'Vector search failed: {e}') from e
        except Exception as e:
            logger.error(f'Unexpected error in vector search: {e}')
            raise VectorIndexFailure(f'Unexpected error in vector search: {e}') from e

        best: Dict[str, VectorHit] = {}
        for hit in response['hits']['hits']:
            source = hit.get('_source', {})
            if source.get('user_id') != user_id:
                logger.warning(f"Dropping index hit {hit['_id']} owned by another user")
                continue

            similarity = score_to_similarity(float(hit['_score']))
            if similarity < similarity_floor:
                continue

            memory_id = source.get('id', hit['_id'])
            if memory_id in best:
                logger.warning(f'Memory {memory_id} has more than one index entry')
                if best[memory_id].similarity >= similarity:
                    continue

            metadata = {key: source[key] for key in ('title', 'people', 'tags', 'mood') if key in source}
            best[memory_id] = VectorHit(memory_id=memory_id,
                                        similarity=similarity,
                                        text=source.get('text', ''),
                                        summary=source.get('summary', ''),
                                        metadata=metadata)

        hits = sorted(best.values(), key=lambda h: (-h.similarity, h.memory_id))[:limit]
        logger.debug(f'Vector search returned {len(hits)} results for user {user_id}')
        return hits

    def close(self) -> None:
        """Close the underlying transport."""
        try:
            self.client.close()
        except Exception as e:
            logger.warning(f'Error closing OpenSearch client: {e}')

    def health_check(self) -> bool:
        """
        Perform a health check on the OpenSearch service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.client.indices.exists(index=self.index_name)

            return response in [True, False]

        except Exception as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False
