"""
Database access

Thin wrapper around a pymongo client. One Database is built at startup and
handed to the routes through a dependency; collections are addressed by the
lowercase schema name ("user", "product", "cart", "order").
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, List, Optional, Union

from bson.objectid import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, TEXT, MongoClient
from pymongo.client_session import ClientSession

from errors import ValidationFailed

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def oid(id_str: str, field: str = "id") -> ObjectId:
    try:
        return ObjectId(id_str)
    except Exception:
        raise ValidationFailed([{"field": field, "message": f"Invalid {field}"}], message=f"Invalid {field}")


def _plain(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def serialize(doc: Optional[dict]) -> Optional[dict]:
    """Turn a stored document into a JSON-friendly dict with ``id`` instead of ``_id``."""
    if not doc:
        return None
    out = {k: v for k, v in doc.items() if k != "_id"}
    if "_id" in doc:
        out = {"id": doc["_id"], **out}
    return _plain(out)


class Database:
    def __init__(self, client: MongoClient, name: str):
        self.client = client
        self.name = name
        self.db = client[name]

    def __getitem__(self, collection: str):
        return self.db[collection]

    def list_collection_names(self) -> List[str]:
        return self.db.list_collection_names()

    @contextmanager
    def transaction(self) -> Iterator[ClientSession]:
        """Run the block inside a multi-document transaction.

        Commits when the block exits normally and aborts on any exception;
        nothing is retried.
        """
        with self.client.start_session() as session:
            with session.start_transaction():
                yield session

    def create_document(
        self,
        collection_name: str,
        data: Union[BaseModel, dict],
        session: Optional[ClientSession] = None,
    ) -> str:
        if isinstance(data, BaseModel):
            data_dict = data.model_dump()
        else:
            data_dict = dict(data)
        now = utc_now()
        data_dict.setdefault("created_at", now)
        data_dict["updated_at"] = now
        result = self.db[collection_name].insert_one(data_dict, session=session)
        return str(result.inserted_id)

    def ensure_indexes(self) -> None:
        self.db["user"].create_index("email", unique=True)
        self.db["cart"].create_index("user_id", unique=True)
        self.db["order"].create_index("order_number", unique=True)
        self.db["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
        self.db["order"].create_index("order_status")
        self.db["order"].create_index("payment_info.status")
        self.db["product"].create_index([("name", TEXT), ("description", TEXT)])
        self.db["product"].create_index("category")
        logger.info("Indexes ensured on database %s", self.name)


def connect(url: str, name: str) -> Database:
    client = MongoClient(url)
    logger.info("Connected to MongoDB database %s", name)
    return Database(client, name)
