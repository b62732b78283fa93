"""
Document database boundary.

``DocumentStore`` is what the protocols use; ``FirestoreDocumentStore`` backs it
with Cloud Firestore through the Firebase Admin SDK.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from google.cloud.firestore_v1.base_query import FieldFilter

from ..utils.firestore_client import get_firestore_client


@dataclass
class BatchOperation:
    kind: str  # "set" or "delete"
    collection: str
    doc_id: str
    fields: Dict[str, Any] = field(default_factory=dict)
    merge: bool = True

    @classmethod
    def set(cls, collection: str, doc_id: str, fields: Dict[str, Any], merge: bool = True) -> "BatchOperation":
        return cls(kind="set", collection=collection, doc_id=doc_id, fields=dict(fields), merge=merge)

    @classmethod
    def delete(cls, collection: str, doc_id: str) -> "BatchOperation":
        return cls(kind="delete", collection=collection, doc_id=doc_id)


@runtime_checkable
class DocumentStore(Protocol):
    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        ...

    async def set(
        self,
        collection: str,
        doc_id: str,
        fields: Dict[str, Any],
        merge: bool = True,
    ) -> None:
        ...

    async def delete(self, collection: str, doc_id: str) -> None:
        ...

    async def query_where(
        self,
        collection: str,
        field_name: str,
        value: Any,
    ) -> List[Tuple[str, Dict[str, Any]]]:
        """Return ``(doc_id, data)`` pairs whose ``field_name`` equals ``value``."""
        ...

    async def commit_batch(self, operations: List[BatchOperation]) -> None:
        """Apply all operations atomically."""
        ...


class FirestoreDocumentStore:
    def __init__(self, client: Any = None) -> None:
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_firestore_client()
        return self._client

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        def _get():
            snapshot = self.client.collection(collection).document(doc_id).get()
            return snapshot.to_dict() if snapshot.exists else None

        return await asyncio.to_thread(_get)

    async def set(
        self,
        collection: str,
        doc_id: str,
        fields: Dict[str, Any],
        merge: bool = True,
    ) -> None:
        def _set():
            self.client.collection(collection).document(doc_id).set(fields, merge=merge)

        await asyncio.to_thread(_set)

    async def delete(self, collection: str, doc_id: str) -> None:
        def _delete():
            self.client.collection(collection).document(doc_id).delete()

        await asyncio.to_thread(_delete)

    async def query_where(
        self,
        collection: str,
        field_name: str,
        value: Any,
    ) -> List[Tuple[str, Dict[str, Any]]]:
        def _query():
            query = self.client.collection(collection).where(
                filter=FieldFilter(field_name, "==", value)
            )
            return [(doc.id, doc.to_dict() or {}) for doc in query.stream()]

        return await asyncio.to_thread(_query)

    async def commit_batch(self, operations: List[BatchOperation]) -> None:
        if not operations:
            return

        def _commit():
            batch = self.client.batch()
            for op in operations:
                ref = self.client.collection(op.collection).document(op.doc_id)
                if op.kind == "set":
                    batch.set(ref, op.fields, merge=op.merge)
                elif op.kind == "delete":
                    batch.delete(ref)
                else:
                    raise ValueError(f"Unknown batch operation: {op.kind}")
            batch.commit()

        await asyncio.to_thread(_commit)
