from greengarden.client.api_client import ContentApiClient, ContentApiError
from greengarden.client.cache import CacheFetch, CacheKey, ContentCache

__all__ = ["CacheFetch", "CacheKey", "ContentApiClient", "ContentApiError", "ContentCache"]
