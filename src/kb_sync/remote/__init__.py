from kb_sync.remote.client import KnowledgeClient
from kb_sync.remote.collections import CollectionInfo, CollectionsClient
from kb_sync.remote.files import FilesClient
from kb_sync.remote.http import build_http_client

__all__ = [
    "CollectionInfo",
    "CollectionsClient",
    "FilesClient",
    "KnowledgeClient",
    "build_http_client",
]
