"""
# Tenant-Scoped Collection Wrapper

`TenantAwareCollection` is a proxy around a Motor collection that confines
every operation to one tenant:

- **Reads** (`find`, `find_one`, `count_documents`) get `{"tenantId": ...}`
  added to their filter.
- **Writes** (`insert_one`, `insert_many`) get `tenantId` stamped onto each
  document.
- **Updates and deletes** are filtered by tenant. Upserts inherit `tenantId`
  from the equality filter, so created documents land in the same tenant.
- **Aggregations** get a leading `$match` on the tenant. When the pipeline
  starts with `$geoNear` (which must stay the first stage) the tenant is merged
  into its `query` instead.

```python
posts = db.get_tenant_collection("posts", tenant_id="acme")
await posts.insert_one({"title": "Need a ladder"})
# stored as {"title": "Need a ladder", "tenantId": "acme"}
```

Handlers never touch raw collections for tenant data; `DatabaseManager`
hands out these wrappers.
"""

from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorCollection

from community_microhelp.managers.logging_manager import get_logger

logger = get_logger(prefix="[Tenant Collection]")

TENANT_FIELD = "tenantId"


class TenantAwareCollection:
    """
    A wrapper around `AsyncIOMotorCollection` that enforces tenant isolation.

    Attributes:
        _collection (`AsyncIOMotorCollection`): The underlying Motor collection instance.
        _tenant_id (`str`): The tenant this wrapper is scoped to.
    """

    def __init__(self, collection: AsyncIOMotorCollection, tenant_id: str):
        if not tenant_id:
            raise ValueError("tenant_id is required for a tenant-aware collection")
        self._collection = collection
        self._tenant_id = tenant_id

    def _add_tenant_filter(self, filter_dict: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Return a copy of the filter constrained to the current tenant.

        Any caller-supplied `tenantId` is overwritten.
        """
        scoped = dict(filter_dict or {})
        scoped[TENANT_FIELD] = self._tenant_id
        return scoped

    def _add_tenant_to_document(self, document: Dict[str, Any]) -> Dict[str, Any]:
        """Stamp the tenant onto a document in place and return it."""
        document[TENANT_FIELD] = self._tenant_id
        return document

    async def find_one(self, filter: Optional[Dict[str, Any]] = None, *args, **kwargs) -> Optional[Dict[str, Any]]:
        filter = self._add_tenant_filter(filter)
        result = await self._collection.find_one(filter, *args, **kwargs)
        logger.debug("find_one on %s for tenant %s: %s", self.name, self._tenant_id, "found" if result else "not found")
        return result

    def find(self, filter: Optional[Dict[str, Any]] = None, *args, **kwargs):
        """
        Find documents of the current tenant.

        Returns the Motor cursor unchanged so callers can chain `sort`, `skip`,
        `limit` and `to_list`.
        """
        filter = self._add_tenant_filter(filter)
        logger.debug("find on %s for tenant %s with filter: %s", self.name, self._tenant_id, filter)
        return self._collection.find(filter, *args, **kwargs)

    async def insert_one(self, document: Dict[str, Any], *args, **kwargs):
        document = self._add_tenant_to_document(document)
        result = await self._collection.insert_one(document, *args, **kwargs)
        logger.debug("insert_one on %s for tenant %s: inserted_id=%s", self.name, self._tenant_id, result.inserted_id)
        return result

    async def insert_many(self, documents: List[Dict[str, Any]], *args, **kwargs):
        documents = [self._add_tenant_to_document(doc) for doc in documents]
        result = await self._collection.insert_many(documents, *args, **kwargs)
        logger.debug(
            "insert_many on %s for tenant %s: inserted %d documents",
            self.name,
            self._tenant_id,
            len(result.inserted_ids),
        )
        return result

    async def update_one(self, filter: Dict[str, Any], update: Dict[str, Any], *args, **kwargs):
        """Update a single document of the current tenant."""
        filter = self._add_tenant_filter(filter)
        result = await self._collection.update_one(filter, update, *args, **kwargs)
        logger.debug(
            "update_one on %s for tenant %s: matched=%d, modified=%d",
            self.name,
            self._tenant_id,
            result.matched_count,
            result.modified_count,
        )
        return result

    async def update_many(self, filter: Dict[str, Any], update: Dict[str, Any], *args, **kwargs):
        filter = self._add_tenant_filter(filter)
        result = await self._collection.update_many(filter, update, *args, **kwargs)
        logger.debug(
            "update_many on %s for tenant %s: matched=%d, modified=%d",
            self.name,
            self._tenant_id,
            result.matched_count,
            result.modified_count,
        )
        return result

    async def delete_one(self, filter: Dict[str, Any], *args, **kwargs):
        filter = self._add_tenant_filter(filter)
        result = await self._collection.delete_one(filter, *args, **kwargs)
        logger.debug("delete_one on %s for tenant %s: deleted=%d", self.name, self._tenant_id, result.deleted_count)
        return result

    async def delete_many(self, filter: Dict[str, Any], *args, **kwargs):
        filter = self._add_tenant_filter(filter)
        result = await self._collection.delete_many(filter, *args, **kwargs)
        logger.debug("delete_many on %s for tenant %s: deleted=%d", self.name, self._tenant_id, result.deleted_count)
        return result

    async def find_one_and_update(
        self, filter: Dict[str, Any], update: Dict[str, Any], *args, **kwargs
    ) -> Optional[Dict[str, Any]]:
        """
        Atomically find and update one document of the current tenant.

        Used for single-use tokens: the filter carries the "still unused"
        condition so only one concurrent caller can win.
        """
        filter = self._add_tenant_filter(filter)
        result = await self._collection.find_one_and_update(filter, update, *args, **kwargs)
        logger.debug(
            "find_one_and_update on %s for tenant %s: %s", self.name, self._tenant_id, "found" if result else "not found"
        )
        return result

    async def count_documents(self, filter: Optional[Dict[str, Any]] = None, *args, **kwargs) -> int:
        filter = self._add_tenant_filter(filter)
        count = await self._collection.count_documents(filter, *args, **kwargs)
        logger.debug("count_documents on %s for tenant %s: %d", self.name, self._tenant_id, count)
        return count

    def aggregate(self, pipeline: List[Dict[str, Any]], *args, **kwargs):
        """
        Run an aggregation pipeline restricted to the current tenant.

        A leading `$geoNear` stage keeps its position and receives the tenant
        in its `query`; any other pipeline gets a `$match` stage prepended.

        Returns:
            `AsyncIOMotorCommandCursor`: A cursor over the aggregation results.
        """
        pipeline = list(pipeline)
        if pipeline and "$geoNear" in pipeline[0]:
            geo_near = dict(pipeline[0]["$geoNear"])
            geo_near["query"] = self._add_tenant_filter(geo_near.get("query"))
            pipeline[0] = {"$geoNear": geo_near}
        else:
            pipeline.insert(0, {"$match": {TENANT_FIELD: self._tenant_id}})
        logger.debug("aggregate on %s for tenant %s with %d stages", self.name, self._tenant_id, len(pipeline))
        return self._collection.aggregate(pipeline, *args, **kwargs)

    @property
    def name(self) -> str:
        return self._collection.name

    @property
    def tenant_id(self) -> str:
        return self._tenant_id
