"""
MongoDB access helpers.

The client is built once per process (by the app lifespan or the migration
CLI) and the resulting ``Database`` handle is handed to every service call.
Nothing in here holds a module-level connection.

Collections are named after the lowercase schema class, as in schemas.py.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from config import Settings
from errors import ValidationError

TEMPLATES = "template"
PORTFOLIOS = "portfolio"
USERS = "user"
SESSIONS = "session"
TOKENS = "token"
VIEWS = "portfolio_view"


def connect(settings: Settings) -> MongoClient:
    # MongoClient is lazy; no round trip happens until the first operation.
    return MongoClient(
        settings.database_url,
        maxPoolSize=10,
        serverSelectionTimeoutMS=10000,
        socketTimeoutMS=45000,
    )


def get_database(client: MongoClient, settings: Settings) -> Database:
    return client[settings.database_name]


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what pymongo hands back by default."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_oid(id_str: str, what: str = "Resource") -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    if not ObjectId.is_valid(id_str or ""):
        raise ValidationError(f"Invalid {what.lower()} ID")
    return ObjectId(id_str)


def to_public(doc: Optional[dict]):
    if not doc:
        return doc
    doc = {**doc}
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    return doc


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document, stamping created_at/updated_at, and return its id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump(exclude_none=True)
    else:
        data_dict = {k: v for k, v in data.items() if v is not None}
    now = utcnow()
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now
    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[Sequence[Tuple[str, int]]] = None,
) -> List[dict]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(list(sort))
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes(db: Database) -> None:
    """Create the indexes the services rely on. Safe to call repeatedly."""
    # Subdomains are stored lowercased, so a plain unique index is
    # effectively case-insensitive.
    db[PORTFOLIOS].create_index([("subdomain", ASCENDING)], unique=True, name="subdomain_unique")
    db[PORTFOLIOS].create_index([("custom_domain", ASCENDING)], unique=True, sparse=True, name="custom_domain_unique")
    db[PORTFOLIOS].create_index([("user_id", ASCENDING)], name="user_id")
    db[TEMPLATES].create_index([("category", ASCENDING)], name="category")
    db[TEMPLATES].create_index([("usage_count", DESCENDING)], name="usage_count")
    db[USERS].create_index([("username", ASCENDING)], unique=True, name="username_unique")
    db[USERS].create_index([("email", ASCENDING)], unique=True, name="email_unique")
    db[SESSIONS].create_index([("token_hash", ASCENDING)], unique=True, name="session_token")
    db[TOKENS].create_index([("token_hash", ASCENDING)], name="token_hash")
    db[VIEWS].create_index(
        [("portfolio_id", ASCENDING), ("ip_address", ASCENDING), ("date", DESCENDING)],
        name="portfolio_ip_date",
    )
