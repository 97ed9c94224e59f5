"""
A client which reads from one place and writes to another.

The reconcilers read a lot, and mostly the same objects as watched.
Reading them from the cache saves the store from excessive requests,
at the cost of an eventual consistency: the cache can lag behind the writes.
The writes always go directly to the store.
"""
from typing import Collection, Optional

from konverge.clients import api
from konverge.structs import bodies, references


class DelegatingClient:

    def __init__(self, *, reader: api.Reader, writer: api.Writer) -> None:
        super().__init__()
        self.reader = reader
        self.writer = writer

    async def get(
            self,
            resource: references.Resource,
            key: references.ObjectKey,
    ) -> bodies.Body:
        return await self.reader.get(resource, key)

    async def list(
            self,
            resource: references.Resource,
            namespace: references.Namespace = None,
            labels: Optional[bodies.Labels] = None,
    ) -> Collection[bodies.Body]:
        return await self.reader.list(resource, namespace, labels)

    async def create(self, resource: references.Resource, body: bodies.Body) -> bodies.Body:
        return await self.writer.create(resource, body)

    async def update(self, resource: references.Resource, body: bodies.Body) -> bodies.Body:
        return await self.writer.update(resource, body)

    async def delete(self, resource: references.Resource, key: references.ObjectKey) -> None:
        await self.writer.delete(resource, key)
