import pytest

from agrocart.exceptions import PersistenceError
from agrocart.local_storage import MemoryStorage
from agrocart.models import CartSnapshot
from agrocart.cart_line import build_snapshot
from agrocart.normalizer import normalize
from agrocart.persistence import CartPersistence


@pytest.fixture
def unit_record():
    return {
        "_id": "p-unit",
        "name": "Organic Tomatoes",
        "price": 100,
        "stock": 10,
        "images": ["tomatoes.jpg"],
    }


@pytest.fixture
def variant_record():
    return {
        "_id": "p-seeds",
        "name": "Maize Seeds",
        "price": 150,
        "hasVariants": True,
        "variants": [
            {"_id": "v-1kg", "label": "1 kg", "price": 150, "stock": 4, "status": "active"},
            {"_id": "v-5kg", "label": "5 kg", "price": 600, "salePrice": 550, "stock": 6, "isDefault": True},
            {"_id": "v-old", "label": "10 kg", "price": 1000, "stock": 9, "status": "inactive"},
        ],
    }


@pytest.fixture
def weight_record():
    return {
        "_id": "p-fish",
        "name": "Tilapia",
        "sizeCategories": [
            {"_id": "c-small", "label": "Small", "pricePerKg": 500, "stock": 5, "status": "active"},
            {"_id": "c-large", "label": "Large", "pricePerKg": 650, "stock": 0, "status": "inactive"},
        ],
    }


@pytest.fixture
def unit_product(unit_record):
    return normalize(unit_record)


@pytest.fixture
def weight_product(weight_record):
    return normalize(weight_record)


@pytest.fixture
def storage():
    return MemoryStorage()


class FakePersistence(CartPersistence):
    """In-memory server cart recording every call it receives"""

    def __init__(self, lines=None, fail_on=()):
        self.lines = {line.key: line.model_copy() for line in lines or []}
        self.fail_on = set(fail_on)
        self.calls = []

    def _snapshot(self) -> CartSnapshot:
        return build_snapshot(line.model_copy() for line in self.lines.values())

    def _record(self, operation, *args):
        self.calls.append((operation, args))
        if operation in self.fail_on:
            raise PersistenceError(f"{operation} failed")

    async def fetch(self):
        self._record("fetch")
        return self._snapshot()

    async def add(self, line):
        self._record("add", line)
        existing = self.lines.get(line.key)
        if existing is None:
            self.lines[line.key] = line.model_copy()
        else:
            existing.quantity = existing.quantity + line.quantity
        return self._snapshot()

    async def update(self, product_id, quantity, variant_or_category_id=None):
        self._record("update", product_id, quantity, variant_or_category_id)
        key = (product_id, variant_or_category_id)
        if quantity <= 0:
            self.lines.pop(key, None)
        elif key in self.lines:
            self.lines[key].quantity = quantity
        return self._snapshot()

    async def remove(self, product_id, variant_or_category_id=None):
        self._record("remove", product_id, variant_or_category_id)
        self.lines.pop((product_id, variant_or_category_id), None)
        return self._snapshot()

    async def clear(self):
        self._record("clear")
        self.lines.clear()
        return self._snapshot()

    async def replace(self, lines):
        self._record("replace", lines)
        self.lines = {line.key: line.model_copy() for line in lines}
        return self._snapshot()

    def operations(self):
        return [operation for operation, _ in self.calls]


@pytest.fixture
def fake_persistence():
    return FakePersistence()
