"""
In-process document store.

Used for local development (DATABASE_URL=memory://) and the test suite.
Documents go through a JSON round trip on every read and write, so callers
see exactly what a JSON-backed store would give back.
"""
import json
import threading
from typing import Any, Dict, Optional, Tuple

from .database import DocumentStore, _prepare_for_json


class InMemoryDocumentStore(DocumentStore):

    def __init__(self):
        self._documents: Dict[str, str] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _dump(document: Dict[str, Any]) -> str:
        return json.dumps(_prepare_for_json(document))

    def get(self, doc_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            raw = self._documents.get(doc_id)
        return json.loads(raw) if raw is not None else None

    def set(self, doc_id: str, partial: Dict[str, Any], merge: bool = True) -> None:
        with self._lock:
            current = json.loads(self._documents.get(doc_id, "{}")) if merge else {}
            current.update(json.loads(self._dump(partial)))
            self._documents[doc_id] = json.dumps(current)

    def create_if_absent(self, doc_id: str, document: Dict[str, Any]) -> Tuple[Dict[str, Any], bool]:
        with self._lock:
            created = doc_id not in self._documents
            if created:
                self._documents[doc_id] = self._dump(document)
            raw = self._documents[doc_id]
        return json.loads(raw), created

    def clear(self) -> None:
        with self._lock:
            self._documents.clear()
