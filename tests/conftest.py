"""In-memory stand-in for the Firestore client plus Flask fixtures."""
import copy
import datetime
import uuid

import pytest
from firebase_admin import firestore
from google.api_core import exceptions as gcp_exceptions


def _resolve(value, now):
    if value is firestore.SERVER_TIMESTAMP: return now
    if isinstance(value, dict): return {k: _resolve(v, now) for k, v in value.items()}
    if isinstance(value, list): return [_resolve(v, now) for v in value]
    return value


def _deep_merge(base, override):
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict): merged[key] = _deep_merge(merged[key], value)
        else: merged[key] = value
    return merged


_MISSING = object()


def _lookup(data, field_path):
    value = data
    for part in field_path.split('.'):
        if not isinstance(value, dict) or part not in value: return _MISSING
        value = value[part]
    return value


def _matches(value, op, expected):
    if value is _MISSING: return False
    try:
        if op == '==': return value == expected
        if op == '!=': return value != expected
        if op == '<': return value < expected
        if op == '<=': return value <= expected
        if op == '>': return value > expected
        if op == '>=': return value >= expected
        if op == 'in': return value in expected
        if op == 'not-in': return value not in expected
        if op == 'array_contains': return isinstance(value, list) and expected in value
        if op == 'array_contains_any': return isinstance(value, list) and any(v in value for v in expected)
    except TypeError:
        return False
    raise ValueError(f"Unsupported operator {op}")


class FakeSnapshot:
    def __init__(self, reference, data):
        self.reference, self._data = reference, data

    @property
    def id(self): return self.reference.id

    @property
    def exists(self): return self._data is not None

    def to_dict(self): return copy.deepcopy(self._data) if self._data is not None else None


class FakeDocumentReference:
    def __init__(self, db, path):
        self._db, self.path = db, path

    @property
    def id(self): return self.path.rsplit('/', 1)[-1]

    def collection(self, name): return FakeCollection(self._db, f"{self.path}/{name}")

    def get(self): return FakeSnapshot(self, self._db.docs.get(self.path))

    def set(self, data, merge=False):
        self._db.check_permission(self.path)
        data = _resolve(copy.deepcopy(data), self._db.timestamp())
        existing = self._db.docs.get(self.path)
        self._db.docs[self.path] = _deep_merge(existing, data) if merge and existing else data

    def update(self, data):
        self._db.check_permission(self.path)
        if self.path not in self._db.docs: raise gcp_exceptions.NotFound(f"No document to update: {self.path}")
        self._db.docs[self.path].update(_resolve(copy.deepcopy(data), self._db.timestamp()))

    def delete(self):
        self._db.check_permission(self.path)
        self._db.docs.pop(self.path, None)


class FakeQuery:
    def __init__(self, db, path, filters=(), orders=(), limit_to=None):
        self._db, self._path, self._filters, self._orders, self._limit = db, path, tuple(filters), tuple(orders), limit_to

    def where(self, field_path=None, op_string=None, value=None, filter=None):
        f = (filter.field_path, filter.op_string, filter.value) if filter is not None else (field_path, op_string, value)
        return FakeQuery(self._db, self._path, self._filters + (f,), self._orders, self._limit)

    def order_by(self, field_path, direction='ASCENDING'):
        return FakeQuery(self._db, self._path, self._filters, self._orders + ((field_path, direction),), self._limit)

    def limit(self, count):
        return FakeQuery(self._db, self._path, self._filters, self._orders, count)

    def _documents(self):
        prefix = self._path + '/'
        docs = [(path, data) for path, data in self._db.docs.items() if path.startswith(prefix) and '/' not in path[len(prefix):]]
        docs = [d for d in docs if all(_matches(_lookup(d[1], f), op, v) for f, op, v in self._filters)]
        docs.sort(key=lambda d: d[0])
        for field, direction in reversed(self._orders):
            docs = [d for d in docs if _lookup(d[1], field) is not _MISSING]
            docs.sort(key=lambda d: _lookup(d[1], field), reverse=direction == 'DESCENDING')
        if self._limit is not None: docs = docs[:self._limit]
        return [FakeSnapshot(FakeDocumentReference(self._db, path), copy.deepcopy(data)) for path, data in docs]

    def stream(self): return iter(self._documents())

    def get(self): return self._documents()


class FakeCollection(FakeQuery):
    def __init__(self, db, path):
        super().__init__(db, path)

    @property
    def id(self): return self._path.rsplit('/', 1)[-1]

    def document(self, document_id=None):
        return FakeDocumentReference(self._db, f"{self._path}/{document_id or uuid.uuid4().hex[:20]}")

    def add(self, data):
        ref = self.document()
        ref.set(data)
        return self._db.timestamp(), ref


class FakeBatch:
    def __init__(self, db):
        self._db, self._ops = db, []

    def set(self, ref, data, merge=False): self._ops.append(('set', ref, data, merge))

    def update(self, ref, data): self._ops.append(('update', ref, data, False))

    def delete(self, ref): self._ops.append(('delete', ref, None, False))

    def commit(self):
        # All-or-nothing: validate every op before applying any.
        present = {}
        for op, ref, _, _ in self._ops:
            self._db.check_permission(ref.path)
            exists = present.get(ref.path, ref.path in self._db.docs)
            if op == 'update' and not exists: raise gcp_exceptions.NotFound(f"No document to update: {ref.path}")
            present[ref.path] = op != 'delete'
        for op, ref, data, merge in self._ops:
            if op == 'set': ref.set(data, merge=merge)
            elif op == 'update': ref.update(data)
            else: ref.delete()
        self._db.commits += 1
        return []


class FakeFirestore:
    def __init__(self):
        self.docs, self.denied, self.commits = {}, set(), 0
        self._now, self._tick = datetime.datetime.now(datetime.timezone.utc), 0

    def timestamp(self):
        self._tick += 1
        return self._now + datetime.timedelta(milliseconds=self._tick)

    def check_permission(self, path):
        if path.split('/', 1)[0] in self.denied: raise gcp_exceptions.PermissionDenied("Missing or insufficient permissions.")

    def collection(self, name): return FakeCollection(self, name)

    def batch(self): return FakeBatch(self)

    def data(self, path): return self.docs.get(path)


def seed_user(db, uid, role='student', **extra):
    db.docs[f"users/{uid}"] = {'uid': uid, 'email': f"{uid}@example.com", 'fullName': uid.capitalize(), 'role': role,
                               'isInstructorApproved': role != 'student', 'status': 'active', **extra}
    return db.docs[f"users/{uid}"]


def seed_course(db, course_id, instructor_id='prof', price=0, status='Published', sections=(), **extra):
    """`sections` is a sequence of (section_id, [lecture_id, ...])."""
    db.docs[f"courses/{course_id}"] = {'title': f"Cours {course_id}", 'titleLower': f"cours {course_id}", 'price': price, 'status': status,
                                       'instructorId': instructor_id, 'category': 'Design', 'description': 'Une description.',
                                       'createdAt': db.timestamp(), 'isPopular': False, **extra}
    for s_order, (section_id, lecture_ids) in enumerate(sections):
        db.docs[f"courses/{course_id}/sections/{section_id}"] = {'title': f"Section {section_id}", 'order': s_order}
        for l_order, lecture_id in enumerate(lecture_ids):
            db.docs[f"courses/{course_id}/sections/{section_id}/lectures/{lecture_id}"] = {'title': f"Leçon {lecture_id}", 'order': l_order, 'duration': 10, 'videoUrl': ''}
    return {'id': course_id, **db.docs[f"courses/{course_id}"]}


@pytest.fixture
def fake_db():
    return FakeFirestore()


@pytest.fixture
def flask_app(fake_db, monkeypatch):
    import app as app_module
    monkeypatch.setattr(app_module, 'db', fake_db)
    app_module.app.config.update(TESTING=True, SECRET_KEY='test-secret')
    return app_module.app


@pytest.fixture
def client(flask_app):
    with flask_app.test_client() as client:
        yield client


def login(client, uid, role='student', email=None):
    with client.session_transaction() as sess:
        sess['user_id'], sess['email'], sess['role'] = uid, email or f"{uid}@example.com", role
