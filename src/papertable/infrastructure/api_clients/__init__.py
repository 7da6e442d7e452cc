from .base import APIClient, APIError
from .semantic_scholar import SemanticScholarClient

__all__ = ["APIClient", "APIError", "SemanticScholarClient"]
