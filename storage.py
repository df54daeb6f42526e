import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import UpdateOne
from pymongo.errors import ConfigurationError

from metrics.intervals import id_sort_key, to_utc

logger = logging.getLogger(__name__)


def detect_db_type(conn_string: str) -> str:
    """
    Detect event source type from connection string.

    :param conn_string: Database connection string.
    :return: Source type ('mongo' or 'memory').
    :raises ValueError: If the source type cannot be determined.
    """
    if not conn_string:
        raise ValueError("Connection string is required")

    conn_lower = conn_string.lower()

    # MongoDB connection strings
    if conn_lower.startswith("mongodb://") or conn_lower.startswith("mongodb+srv://"):
        return "mongo"

    # In-process source (tests, demos)
    if conn_lower.startswith("memory://"):
        return "memory"

    # Extract scheme for better error reporting
    scheme = conn_string.split("://", 1)[0] if "://" in conn_string else "unknown"
    raise ValueError(
        f"Could not detect event source type from connection string. "
        f"Supported: mongodb://, mongodb+srv://, memory://. Got scheme: '{scheme}', "
        f"connection string (first 100 chars): {conn_string[:100]}..."
    )


def create_event_source(
    conn_string: str,
    db_type: Optional[str] = None,
    db_name: Optional[str] = None,
) -> Union["MongoEventSource", "MemoryEventSource"]:
    """
    Create an event source based on the connection string.

    :param conn_string: Source connection string.
    :param db_type: Optional explicit type ('mongo', 'memory').
    :param db_name: Optional database name (for MongoDB).
    :return: MongoEventSource or MemoryEventSource.
    """
    if db_type is None:
        db_type = detect_db_type(conn_string)

    db_type = db_type.lower()

    if db_type == "mongo":
        return MongoEventSource(conn_string, db_name=db_name)
    elif db_type == "memory":
        return MemoryEventSource()
    else:
        raise ValueError(
            f"Unsupported event source type: {db_type}. Supported types: mongo, memory"
        )


def _to_mongo_datetime(value: datetime) -> datetime:
    # BSON stores naive UTC.
    return to_utc(value).replace(tzinfo=None)


def _mongo_filter(match: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    for key, value in (match or {}).items():
        if isinstance(value, (list, tuple, set, frozenset)):
            query[key] = {"$in": list(value)}
        else:
            query[key] = value
    return query


def _matches(doc: Mapping[str, Any], match: Optional[Mapping[str, Any]]) -> bool:
    """
    Evaluate the subset of Mongo filters the reports use: equality,
    membership (list values) and `{"$exists": bool}`.
    """
    for key, expected in (match or {}).items():
        actual = doc.get(key)
        if isinstance(expected, dict):
            unsupported = set(expected) - {"$exists"}
            if unsupported:
                raise ValueError(f"Unsupported filter operators for {key}: {unsupported}")
            if (actual is not None) != bool(expected["$exists"]):
                return False
        elif isinstance(expected, (list, tuple, set, frozenset)):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


def _event_sort_key(time_field: str) -> Callable[[Mapping[str, Any]], Any]:
    def key(doc: Mapping[str, Any]) -> Any:
        return (to_utc(doc[time_field]), id_sort_key(doc.get("id")))

    return key


class MongoEventSource:
    """Read-mostly event source backed by MongoDB (via Motor)."""

    def __init__(self, conn_string: str, db_name: Optional[str] = None) -> None:
        if not conn_string:
            raise ValueError("MongoDB connection string is required")
        self.client = AsyncIOMotorClient(conn_string)
        self.db_name = db_name
        self.db = None

    async def __aenter__(self) -> "MongoEventSource":
        if self.db_name:
            self.db = self.client[self.db_name]
        else:
            try:
                default_db = self.client.get_default_database()
                self.db = (
                    default_db if default_db is not None else self.client["ado_metrics"]
                )
            except ConfigurationError:
                raise ValueError(
                    "No default database specified. Please provide a database name "
                    "either via the MONGO_DB_NAME environment variable or include it "
                    "in your MongoDB connection string (e.g., 'mongodb://localhost:27017/mydb')"
                )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.client.close()

    async def fetch_events(
        self,
        collection: str,
        *,
        start: datetime,
        end: datetime,
        time_field: str,
        match: Optional[Mapping[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """All events with `start <= time_field < end`, oldest first."""
        query = _mongo_filter(match)
        query[time_field] = {
            "$gte": _to_mongo_datetime(start),
            "$lt": _to_mongo_datetime(end),
        }
        logger.debug("Fetching %s events: %s", collection, query)
        cursor = (
            self.db[collection]
            .find(query, {"_id": 0})
            .sort([(time_field, 1), ("id", 1)])
        )
        return await cursor.to_list(length=None)

    async def fetch_latest_before(
        self,
        collection: str,
        *,
        before: datetime,
        time_field: str,
        match: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """The most recent event strictly before `before`, or None."""
        query = _mongo_filter(match)
        query[time_field] = {"$lt": _to_mongo_datetime(before)}
        return await self.db[collection].find_one(
            query, {"_id": 0}, sort=[(time_field, -1), ("id", -1)]
        )

    async def distinct(
        self,
        collection: str,
        field: str,
        *,
        match: Optional[Mapping[str, Any]] = None,
    ) -> List[Any]:
        values = await self.db[collection].distinct(field, _mongo_filter(match))
        return [v for v in values if v is not None]

    async def insert_events(self, collection: str, events: Iterable[Mapping[str, Any]]) -> None:
        operations = []
        for event in events:
            doc = {
                key: _to_mongo_datetime(value) if isinstance(value, datetime) else value
                for key, value in event.items()
            }
            doc["_id"] = str(doc["id"])
            operations.append(UpdateOne({"_id": doc["_id"]}, {"$set": doc}, upsert=True))

        if not operations:
            return
        await self.db[collection].bulk_write(operations, ordered=False)


class MemoryEventSource:
    """In-process event source with the same ordering rules as MongoEventSource."""

    def __init__(self, events: Optional[Mapping[str, Iterable[Mapping[str, Any]]]] = None) -> None:
        self.collections: Dict[str, List[Dict[str, Any]]] = {}
        for collection, docs in (events or {}).items():
            self.collections[collection] = [dict(d) for d in docs]

    async def __aenter__(self) -> "MemoryEventSource":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None

    async def fetch_events(
        self,
        collection: str,
        *,
        start: datetime,
        end: datetime,
        time_field: str,
        match: Optional[Mapping[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        start_utc, end_utc = to_utc(start), to_utc(end)
        docs = [
            dict(doc)
            for doc in self.collections.get(collection, [])
            if doc.get(time_field) is not None
            and start_utc <= to_utc(doc[time_field]) < end_utc
            and _matches(doc, match)
        ]
        return sorted(docs, key=_event_sort_key(time_field))

    async def fetch_latest_before(
        self,
        collection: str,
        *,
        before: datetime,
        time_field: str,
        match: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        before_utc = to_utc(before)
        docs = [
            doc
            for doc in self.collections.get(collection, [])
            if doc.get(time_field) is not None
            and to_utc(doc[time_field]) < before_utc
            and _matches(doc, match)
        ]
        if not docs:
            return None
        return dict(max(docs, key=_event_sort_key(time_field)))

    async def distinct(
        self,
        collection: str,
        field: str,
        *,
        match: Optional[Mapping[str, Any]] = None,
    ) -> List[Any]:
        values: List[Any] = []
        for doc in self.collections.get(collection, []):
            value = doc.get(field)
            if value is not None and _matches(doc, match) and value not in values:
                values.append(value)
        return values

    async def insert_events(self, collection: str, events: Iterable[Mapping[str, Any]]) -> None:
        docs = self.collections.setdefault(collection, [])
        by_id = {str(d.get("id")): i for i, d in enumerate(docs)}
        for event in events:
            doc = dict(event)
            existing = by_id.get(str(doc.get("id")))
            if existing is None:
                by_id[str(doc.get("id"))] = len(docs)
                docs.append(doc)
            else:
                docs[existing] = doc
