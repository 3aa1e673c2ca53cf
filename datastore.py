# datastore.py
"""Small helpers shared by every module that talks to Firestore."""
import logging
from functools import wraps

from firebase_admin import firestore
from google.api_core import exceptions as gcp_exceptions

logger = logging.getLogger(__name__)

# Firestore rejects 'in' filters with more than 30 values.
IN_QUERY_LIMIT = 30


class FirestorePermissionError(Exception):
    """A write or read refused by the security rules."""

    def __init__(self, path, operation, request_data=None):
        self.path, self.operation, self.request_data = path, operation, request_data
        super().__init__(f"Missing or insufficient permissions: {operation} on {path}")


def doc_to_dict(doc):
    return {'id': doc.id, **(doc.to_dict() or {})}


def chunks(items, size=IN_QUERY_LIMIT):
    items = list(items)
    for i in range(0, len(items), size):
        yield items[i:i + size]


def stream_dicts(query):
    return [doc_to_dict(doc) for doc in query.stream()]


def fetch_users_by_ids(db, user_ids):
    """Returns {uid: user_data} for the given ids, querying 30 at a time."""
    unique_ids = [uid for uid in dict.fromkeys(user_ids) if uid]
    users = {}
    for batch_ids in chunks(unique_ids):
        query = db.collection('users').where(filter=firestore.FieldFilter('uid', 'in', batch_ids))
        for doc in query.stream():
            users[doc.id] = doc.to_dict()
    return users


def fetch_where_in(db, collection_name, field, values):
    """Runs one 'in' query per chunk of values and concatenates the results."""
    results = []
    for batch_values in chunks(dict.fromkeys(v for v in values if v)):
        query = db.collection(collection_name).where(filter=firestore.FieldFilter(field, 'in', batch_values))
        results.extend(stream_dicts(query))
    return results


def get_cached(db, collection_name, doc_id, cache):
    if doc_id not in cache:
        doc = db.collection(collection_name).document(doc_id).get()
        cache[doc_id] = doc.to_dict() if doc.exists else {}
    return cache[doc_id]


def guarded(path, operation):
    """Turns a Firestore PermissionDenied into FirestorePermissionError."""
    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except gcp_exceptions.PermissionDenied:
                logger.warning("Permission denied: %s on %s", operation, path)
                raise FirestorePermissionError(path, operation)
        return wrapper
    return decorator
