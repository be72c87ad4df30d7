import copy
from typing import Dict, List, Optional

from src.domain.exceptions import NotFoundError
from src.domain.ports import BackendAdapter, Resource


class InMemoryBackend(BackendAdapter):
    """
    Process-local backend holding resources in insertion order.
    Assigns sequential string identities ("1", "2", ...). Useful for tests and demos.
    """

    def __init__(self, identity_key: str = "id"):
        self.identity_key = identity_key
        self._resources: Dict[str, Resource] = {}
        self._next_id = 1

    async def fetch_resources(self) -> List[Resource]:
        return [copy.deepcopy(resource) for resource in self._resources.values()]

    async def fetch_resource(self, identity: str) -> Optional[Resource]:
        resource = self._resources.get(identity)
        return copy.deepcopy(resource) if resource is not None else None

    async def persist_resource(self, resource: Resource) -> Resource:
        stored = copy.deepcopy(resource)
        identity = stored.get(self.identity_key)

        if identity is None:
            identity = str(self._next_id)
            self._next_id += 1
            stored[self.identity_key] = identity
        else:
            identity = str(identity)
            if identity not in self._resources:
                raise NotFoundError(identity)

        self._resources[identity] = stored
        return copy.deepcopy(stored)

    async def delete_resource(self, identity: str) -> None:
        if identity not in self._resources:
            raise NotFoundError(identity)
        del self._resources[identity]
