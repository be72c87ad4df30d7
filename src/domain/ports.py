from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

Resource = Dict[str, Any]


class BackendAdapter(ABC):
    """
    Port every storage backend implements.
    These are the only I/O primitives the repository calls.
    """

    identity_key: str = "id"

    @abstractmethod
    async def fetch_resources(self) -> List[Resource]:
        """Return every stored resource in backend-native order."""

    @abstractmethod
    async def persist_resource(self, resource: Resource) -> Resource:
        """
        Insert the resource when it carries no identity, replace the stored one otherwise.

        Returns:
            Resource: The stored resource, including its identity.

        Raises:
            NotFoundError: When replacing an identity the backend does not hold.
        """

    @abstractmethod
    async def delete_resource(self, identity: str) -> None:
        """Delete the resource, raising NotFoundError when it does not exist."""

    async def fetch_resource(self, identity: str) -> Optional[Resource]:
        """Look up one resource by identity. Adapters with a native index override this."""
        for resource in await self.fetch_resources():
            if str(resource.get(self.identity_key)) == identity:
                return resource
        return None
