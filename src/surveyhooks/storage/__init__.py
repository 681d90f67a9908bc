"""Storage backends for surveyhooks.

The engine talks to storage only through the WebhookRegistry and
DeliveryLogStore protocols. Two implementations ship with the package:
in-process dicts (default) and Qdrant collections.

Example:
    ```python
    from surveyhooks.storage import QdrantDeliveryLogStore

    async with QdrantDeliveryLogStore(prefix="prod") as store:
        await store.append(attempt)
        attempts = await store.get_delivery(attempt.delivery_id)
    ```
"""

from .base import DeliveryLogStore, WebhookRegistry
from .memory import InMemoryDeliveryLogStore, InMemoryWebhookRegistry
from .qdrant import QdrantDeliveryLogStore, QdrantStorageBase, QdrantWebhookRegistry
from .retry import qdrant_retry, storage_operation

__all__ = [
    "DeliveryLogStore",
    "InMemoryDeliveryLogStore",
    "InMemoryWebhookRegistry",
    "QdrantDeliveryLogStore",
    "QdrantStorageBase",
    "QdrantWebhookRegistry",
    "WebhookRegistry",
    "qdrant_retry",
    "storage_operation",
]
