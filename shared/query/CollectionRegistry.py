"""Optional registry of known collections and their top-level fields."""

from shared.helper.HelperConfig import HelperConfig


class CollectionRegistry:
    """Supplies known collection identifiers and field names for builder-side checks.

    An empty registry, or a collection that was never registered, disables the checks
    for that collection: field paths are then accepted untyped.
    """

    def __init__(self, collections: dict[str, list[str]] | None = None):
        self._collections: dict[str, frozenset[str]] = {
            name: frozenset(fields) for name, fields in (collections or {}).items()
        }

    @classmethod
    def from_config(cls, helper_config: HelperConfig) -> "CollectionRegistry":
        """Build a registry from `QUERY_COLLECTIONS` and `QUERY_COLLECTION_<NAME>_FIELDS`.

        Both variables use the "[a,b,c]" list syntax. Missing variables yield an empty registry.
        """
        collections: dict[str, list[str]] = {}
        for name in helper_config.get_list_val("QUERY_COLLECTIONS", default=[]):
            collections[name] = helper_config.get_list_val(f"QUERY_COLLECTION_{name}_FIELDS", default=[])
        return cls(collections)

    def register(self, collection: str, fields: list[str]) -> None:
        self._collections[collection] = frozenset(fields)

    def is_known(self, collection: str) -> bool:
        return collection in self._collections

    def known_fields(self, collection: str) -> frozenset[str] | None:
        """Return the registered fields, or None when the collection is untyped."""
        fields = self._collections.get(collection)
        # a collection registered without fields is treated as untyped as well
        return fields or None

    def collections(self) -> list[str]:
        return sorted(self._collections)
