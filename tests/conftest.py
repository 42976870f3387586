import copy
from contextlib import contextmanager

import pytest

import identity
import kv_store
import storage
from app import create_app
from errors import StorageError, ValidationError

ADMIN_PASSWORD = "letmein-please"
ADMIN_EMAIL = "admin@rideunited.org"


# ---------------------------------------------------------------------------
# In-memory doubles
# ---------------------------------------------------------------------------

class FakeTransaction:
    def __init__(self, store):
        self.store = store

    def lock(self, *keys):
        self.store.locked.extend(sorted(set(keys)))

    def get(self, key, default=None):
        if key not in self.store.data:
            return default
        return copy.deepcopy(self.store.data[key])

    def set(self, key, value):
        if self.store.fail_writes:
            raise StorageError("Key-value store unavailable")
        self.store.data[key] = copy.deepcopy(value)

    def delete(self, key):
        self.store.data.pop(key, None)

    def mget(self, keys):
        return [self.get(k) for k in keys]

    def get_by_prefix(self, prefix):
        return [copy.deepcopy(self.store.data[k])
                for k in sorted(self.store.data) if k.startswith(prefix)]

    def append_to_list(self, key, item):
        items = self.get(key) or []
        if item not in items:
            items.append(item)
            self.set(key, items)

    def remove_from_list(self, key, item):
        items = self.get(key) or []
        if item not in items:
            return False
        self.set(key, [i for i in items if i != item])
        return True


class FakeKV:
    """Dict-backed key-value store; a failed transaction leaves no trace."""

    def __init__(self):
        self.data = {}
        self.locked = []
        self.fail_writes = False

    @contextmanager
    def transaction(self):
        snapshot = copy.deepcopy(self.data)
        try:
            yield FakeTransaction(self)
        except Exception:
            self.data = snapshot
            raise


class FakeImages:
    def __init__(self):
        self.stored = {}
        self.deleted = []
        self._next = 0

    def upload_image(self, data, content_type, filename=None):
        if not (content_type or "").startswith("image/"):
            raise ValidationError("Route image must be an image file.")
        self._next += 1
        ref = f"img-{self._next}.png"
        self.stored[ref] = {"ref": ref, "content_type": content_type, "data": data}
        return ref

    def delete_image(self, ref):
        if not ref or storage.is_external(ref):
            return False
        self.stored.pop(ref, None)
        self.deleted.append(ref)
        return True

    def load_image(self, ref):
        return self.stored.get(ref)


class FakeIdentity:
    def __init__(self):
        self.tokens = {
            "rider-token": {"id": "u1", "email": "rita@example.com", "name": "Rita Rider"},
            "other-token": {"id": "u2", "email": "otto@example.com", "name": None},
            "admin-token": {"id": "a1", "email": ADMIN_EMAIL, "name": "Admin"},
        }
        self.created = []
        self.deleted = []

    def get_user(self, access_token):
        user = self.tokens.get(access_token)
        return dict(user) if user else None

    def create_user(self, email, password, name=None):
        user = {"id": f"new-{len(self.created) + 1}", "email": email, "name": name}
        self.created.append(user)
        return user

    def delete_user(self, user_id):
        self.deleted.append(user_id)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def kv(monkeypatch):
    fake = FakeKV()
    monkeypatch.setattr(kv_store, "transaction", fake.transaction)
    return fake


@pytest.fixture
def images(monkeypatch):
    fake = FakeImages()
    monkeypatch.setattr(storage, "upload_image", fake.upload_image)
    monkeypatch.setattr(storage, "delete_image", fake.delete_image)
    monkeypatch.setattr(storage, "load_image", fake.load_image)
    return fake


@pytest.fixture
def users(monkeypatch):
    fake = FakeIdentity()
    monkeypatch.setattr(identity, "get_user", fake.get_user)
    monkeypatch.setattr(identity, "create_user", fake.create_user)
    monkeypatch.setattr(identity, "delete_user", fake.delete_user)
    return fake


@pytest.fixture
def app(kv, users):
    app = create_app({
        "TESTING":        True,
        "SECRET_KEY":     "test-secret",
        "ADMIN_PASSWORD": ADMIN_PASSWORD,
        "ADMIN_EMAILS":   [ADMIN_EMAIL],
        "IMAGE_BASE_URL": "http://testserver",
        "API_PREFIX":     "",
        "EMAIL_ENABLED":  False,
    })
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_headers(client):
    resp = client.post("/admin/login", json={"password": ADMIN_PASSWORD})
    return {"X-Admin-Token": resp.get_json()["token"]}


def make_waypoints(*coords):
    return [{"id": f"wp{i}", "position": {"lat": lat, "lng": lng}, "order": i}
            for i, (lat, lng) in enumerate(coords, start=1)]


BOSTON_COMMON = (42.3554, -71.0655)
ESPLANADE = (42.3601, -71.0731)
RIVERGREEN = (42.3995, -71.0701)


@pytest.fixture
def route_fields():
    def _make(**overrides):
        fields = {
            "routeName":        "Sunday Loop",
            "description":      "Easy river loop",
            "leaderName":       "Rita Rider",
            "waypoints":        make_waypoints(BOSTON_COMMON, ESPLANADE, RIVERGREEN),
            "startingLocation": "Boston Common",
            "startTime":        "2099-06-01T10:00:00",
            "tags":             ["Group Ride"],
        }
        fields.update(overrides)
        return fields
    return _make
