from typing import Callable, Dict, Hashable, List, Mapping, Sequence, Tuple, TypeVar

from src.domain.exceptions import MissingIdentityError
from src.domain.models import RepositoryChanges

T = TypeVar("T")


def detect_changes(
    previous: Mapping[Hashable, T],
    current: Sequence[T],
    identity_of: Callable[[T], Hashable],
) -> Tuple[RepositoryChanges, Dict[Hashable, T]]:
    """
    Computes the three-way diff between the last snapshot and a fresh collection.

    Identity is the only correlation key: an entity whose identity changed shows up
    as a deletion of the old key and an addition of the new one.

    Args:
        previous: Last snapshot, identity -> entity, in discovery order.
        current: Freshly fetched entities in backend order.
        identity_of: Extracts the identity key of an entity.

    Returns:
        The changes, and the identity-keyed mapping of ``current`` that becomes
        the next snapshot.
    """
    current_by_key: Dict[Hashable, T] = {}
    for entity in current:
        key = identity_of(entity)
        if key is None:
            raise MissingIdentityError("Fetched entity has no identity; cannot diff.")
        # A repeated key keeps its first position and its latest value
        current_by_key[key] = entity

    added: List[T] = []
    modified: List[T] = []
    for key, entity in current_by_key.items():
        if key not in previous:
            added.append(entity)
        elif previous[key] != entity:
            modified.append(entity)

    deleted = [entity for key, entity in previous.items() if key not in current_by_key]

    changes = RepositoryChanges(added=tuple(added), modified=tuple(modified), deleted=tuple(deleted))
    return changes, current_by_key
