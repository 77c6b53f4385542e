import copy
from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from carts import CartAggregator
from errors import StoreUnavailable
from registry import ListingRegistry


class InMemoryStore:
    """DocumentStore kept in a dict, with a switch to simulate an outage."""

    def __init__(self):
        self.docs = {}
        self.down = False

    def _check(self):
        if self.down:
            raise StoreUnavailable()

    @staticmethod
    def _matches(doc, filter_dict):
        for key, cond in (filter_dict or {}).items():
            value = doc.get(key)
            if isinstance(cond, dict):
                if "$lt" in cond and not (value is not None and value < cond["$lt"]):
                    return False
            elif value != cond:
                return False
        return True

    def _out(self, doc_id):
        doc = copy.deepcopy(self.docs[doc_id])
        doc["id"] = doc_id
        return doc

    def is_valid_id(self, doc_id):
        return isinstance(doc_id, str) and ObjectId.is_valid(doc_id)

    def find_by_id(self, doc_id):
        self._check()
        return self._out(doc_id) if doc_id in self.docs else None

    def find_one(self, filter_dict):
        self._check()
        for doc_id, doc in self.docs.items():
            if self._matches(doc, filter_dict):
                return self._out(doc_id)
        return None

    def find(self, filter_dict=None, sort=None):
        self._check()
        found = [self._out(i) for i, d in self.docs.items() if self._matches(d, filter_dict)]
        for key, direction in reversed(list(sort or [])):
            found.sort(key=lambda d: d.get(key), reverse=direction < 0)
        return found

    def insert(self, document):
        self._check()
        doc_id = str(ObjectId())
        doc = copy.deepcopy(document)
        doc.pop("id", None)
        self.docs[doc_id] = doc
        return doc_id

    def find_or_insert(self, filter_dict, document):
        found = self.find_one(filter_dict)
        if found is not None:
            return found
        return self._out(self.insert({**document, **filter_dict}))

    def update_by_id(self, doc_id, changes):
        self._check()
        if doc_id not in self.docs:
            return None
        self.docs[doc_id].update(copy.deepcopy(changes))
        return self._out(doc_id)

    def delete_by_id(self, doc_id):
        self._check()
        return self.docs.pop(doc_id, None) is not None

    def delete_many(self, filter_dict):
        self._check()
        doomed = [i for i, d in self.docs.items() if self._matches(d, filter_dict)]
        for doc_id in doomed:
            del self.docs[doc_id]
        return len(doomed)


class TickingClock:
    """Returns a strictly increasing UTC time on every call."""

    def __init__(self, start=None, step=timedelta(seconds=1)):
        self.current = start or datetime(2024, 9, 1, 12, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self):
        self.current += self.step
        return self.current


def listing_input(**overrides):
    data = {
        "title": "Calculus: Early Transcendentals",
        "description": "8th edition, some highlighting",
        "price": 45.0,
        "category": "textbooks",
        "images": ["https://res.cloudinary.com/demo/image/upload/calc.jpg"],
        "sellerName": "Jordan",
        "contactMethod": "email",
        "contactDetails": "jordan@campus.edu",
        "condition": "good",
    }
    data.update(overrides)
    return data


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def listing_store():
    return InMemoryStore()


@pytest.fixture
def cart_store():
    return InMemoryStore()


@pytest.fixture
def registry(listing_store, clock):
    return ListingRegistry(listing_store, clock=clock)


@pytest.fixture
def carts(cart_store, clock):
    return CartAggregator(cart_store, clock=clock)


@pytest.fixture
def client(registry, carts):
    from main import app, get_carts, get_registry

    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_carts] = lambda: carts
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
