"""
Survey Review Hub - Record Stores

The RecordStore abstraction keeps the review service independent of the
backing database. Two implementations:
- InMemoryRecordStore: for tests and local development
- MongoRecordStore: motor/MongoDB, used by the API server

Both implement optimistic concurrency: ``save`` with an ``expected_version``
only succeeds if the stored version still matches, and bumps the version.
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from .errors import (
    DuplicateRecordError,
    RecordConflictError,
    RecordNotFoundError,
    StorageUnavailableError,
)
from .records import SurveyRecord

logger = logging.getLogger(__name__)


class RecordStore(ABC):
    """Abstract key/document store for survey records."""

    @abstractmethod
    async def get(self, record_id: str) -> Optional[SurveyRecord]:
        """Return a private copy of the record, or None."""
        pass

    @abstractmethod
    async def insert(self, record: SurveyRecord) -> SurveyRecord:
        """
        Store a new record at version 1.

        Raises:
            DuplicateRecordError: id or (survey_id, response_id) already stored
        """
        pass

    @abstractmethod
    async def save(self, record: SurveyRecord, expected_version: Optional[int] = None) -> SurveyRecord:
        """
        Replace a stored record and return it with its new version.

        Raises:
            RecordConflictError: stored version differs from expected_version,
                or the record vanished
            RecordNotFoundError: no expected_version given and record is absent
        """
        pass

    @abstractmethod
    async def delete(self, record_id: str) -> bool:
        pass

    @abstractmethod
    async def find_by_provenance(self, survey_id: str, response_id: str) -> Optional[SurveyRecord]:
        pass

    @abstractmethod
    async def list_records(
        self,
        status: Optional[str] = None,
        assigned_user_id: Optional[str] = None
    ) -> List[SurveyRecord]:
        pass


# =============================================================================
# IN-MEMORY STORE
# =============================================================================

class InMemoryRecordStore(RecordStore):
    """
    Dict-backed store. Records are held as serialized documents, so callers
    always work on copies and never mutate stored state by accident.
    """

    def __init__(self):
        self._documents: Dict[str, Dict[str, Any]] = {}
        # (survey_id, response_id) -> record id
        self._provenance: Dict[Tuple[str, str], str] = {}
        self._lock = threading.Lock()

    async def get(self, record_id: str) -> Optional[SurveyRecord]:
        with self._lock:
            doc = self._documents.get(record_id)
            return SurveyRecord.from_dict(doc) if doc else None

    async def insert(self, record: SurveyRecord) -> SurveyRecord:
        with self._lock:
            if record.id in self._documents:
                raise DuplicateRecordError(f"Record {record.id} already exists")
            key = (record.external_survey_id, record.external_response_id)
            if key in self._provenance:
                raise DuplicateRecordError(
                    f"Response {record.external_response_id} of survey {record.external_survey_id} already imported"
                )
            record.version = 1
            self._documents[record.id] = record.to_dict()
            self._provenance[key] = record.id
            return SurveyRecord.from_dict(self._documents[record.id])

    async def save(self, record: SurveyRecord, expected_version: Optional[int] = None) -> SurveyRecord:
        with self._lock:
            current = self._documents.get(record.id)
            if current is None:
                if expected_version is not None:
                    raise RecordConflictError(record.id, expected_version, None)
                raise RecordNotFoundError(record.id)
            if expected_version is not None and current["version"] != expected_version:
                raise RecordConflictError(record.id, expected_version, current["version"])

            doc = record.to_dict()
            doc["version"] = current["version"] + 1
            self._documents[record.id] = doc
            record.version = doc["version"]
            return SurveyRecord.from_dict(doc)

    async def delete(self, record_id: str) -> bool:
        with self._lock:
            doc = self._documents.pop(record_id, None)
            if doc is None:
                return False
            self._provenance.pop((doc["external_survey_id"], doc["external_response_id"]), None)
            return True

    async def find_by_provenance(self, survey_id: str, response_id: str) -> Optional[SurveyRecord]:
        with self._lock:
            record_id = self._provenance.get((survey_id, response_id))
            if record_id is None:
                return None
            return SurveyRecord.from_dict(self._documents[record_id])

    async def list_records(
        self,
        status: Optional[str] = None,
        assigned_user_id: Optional[str] = None
    ) -> List[SurveyRecord]:
        with self._lock:
            docs = [copy.deepcopy(d) for d in self._documents.values()]
        records = [SurveyRecord.from_dict(d) for d in docs]
        if status is not None:
            records = [r for r in records if r.status == status]
        if assigned_user_id is not None:
            records = [r for r in records if r.assigned_user_id == assigned_user_id]
        return sorted(records, key=lambda r: r.created_at or "")


# =============================================================================
# MONGODB STORE
# =============================================================================

class MongoRecordStore(RecordStore):
    """
    motor-backed store. The conditional ``replace_one`` on (id, version) is the
    atomic unit for a transition: status, assignment and audit trail live in
    the same document.
    """

    def __init__(self, collection):
        self.collection = collection

    async def ensure_indexes(self) -> None:
        try:
            await self.collection.create_index("id", unique=True)
            await self.collection.create_index(
                [("external_survey_id", ASCENDING), ("external_response_id", ASCENDING)],
                unique=True,
            )
            await self.collection.create_index("status")
            await self.collection.create_index("assigned_user_id")
        except PyMongoError as e:
            raise StorageUnavailableError(str(e)) from e

    async def get(self, record_id: str) -> Optional[SurveyRecord]:
        try:
            doc = await self.collection.find_one({"id": record_id}, {"_id": 0})
        except PyMongoError as e:
            raise StorageUnavailableError(str(e)) from e
        return SurveyRecord.from_dict(doc) if doc else None

    async def insert(self, record: SurveyRecord) -> SurveyRecord:
        doc = record.to_dict()
        doc["version"] = 1
        try:
            # insert_one adds _id to the dict it is given
            await self.collection.insert_one(dict(doc))
        except DuplicateKeyError as e:
            raise DuplicateRecordError(str(e)) from e
        except PyMongoError as e:
            raise StorageUnavailableError(str(e)) from e
        record.version = 1
        return SurveyRecord.from_dict(doc)

    async def save(self, record: SurveyRecord, expected_version: Optional[int] = None) -> SurveyRecord:
        doc = record.to_dict()
        try:
            if expected_version is None:
                current = await self.collection.find_one({"id": record.id}, {"_id": 0, "version": 1})
                if current is None:
                    raise RecordNotFoundError(record.id)
                expected_version = current.get("version", 0)

            doc["version"] = expected_version + 1
            result = await self.collection.replace_one(
                {"id": record.id, "version": expected_version},
                doc,
            )
        except PyMongoError as e:
            raise StorageUnavailableError(str(e)) from e

        if result.matched_count == 0:
            raise RecordConflictError(record.id, expected_version)

        record.version = doc["version"]
        return SurveyRecord.from_dict(doc)

    async def delete(self, record_id: str) -> bool:
        try:
            result = await self.collection.delete_one({"id": record_id})
        except PyMongoError as e:
            raise StorageUnavailableError(str(e)) from e
        return result.deleted_count > 0

    async def find_by_provenance(self, survey_id: str, response_id: str) -> Optional[SurveyRecord]:
        try:
            doc = await self.collection.find_one(
                {"external_survey_id": survey_id, "external_response_id": response_id},
                {"_id": 0},
            )
        except PyMongoError as e:
            raise StorageUnavailableError(str(e)) from e
        return SurveyRecord.from_dict(doc) if doc else None

    async def list_records(
        self,
        status: Optional[str] = None,
        assigned_user_id: Optional[str] = None
    ) -> List[SurveyRecord]:
        query: Dict[str, Any] = {}
        if status is not None:
            query["status"] = status
        if assigned_user_id is not None:
            query["assigned_user_id"] = assigned_user_id
        try:
            docs = await self.collection.find(query, {"_id": 0}).sort("created_at", 1).to_list(None)
        except PyMongoError as e:
            raise StorageUnavailableError(str(e)) from e
        return [SurveyRecord.from_dict(d) for d in docs]
