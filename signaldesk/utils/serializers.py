"""
Serialization utilities for MongoDB documents
Converts ObjectId and datetime to JSON-serializable formats
"""
from bson import ObjectId
from datetime import datetime
from typing import Any, Dict, List


def serialize_value(obj: Any) -> Any:
    """Convert ObjectId / datetime recursively"""
    if isinstance(obj, ObjectId):
        return str(obj)
    elif isinstance(obj, datetime):
        return obj.isoformat()
    elif isinstance(obj, dict):
        return {key: serialize_value(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [serialize_value(item) for item in obj]
    return obj


def serialize_document(document: Dict) -> Dict:
    """Serialize a single document, exposing _id as "id" """
    serialized = serialize_value(document)
    if "_id" in serialized:
        serialized["id"] = serialized.pop("_id")
    return serialized


def serialize_documents(documents: List[Dict]) -> List[Dict]:
    return [serialize_document(doc) for doc in documents]


def to_object_id(value: str):
    """ObjectId for a valid hex id, otherwise the raw value (ids minted elsewhere)"""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return value
