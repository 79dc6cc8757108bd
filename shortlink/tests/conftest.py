import os

# Must be set before shortlink modules build their engine / settings
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("ACCESS_LOG_ENABLED", "false")
os.environ.setdefault("BASE_URL", "http://s.test")

import fnmatch

import pytest
import redis.exceptions
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from shortlink.api import deps
from shortlink.core.errors import CacheError, MembershipIndexError
from shortlink.db.Connection import database
from shortlink.db.Models.models import Base
from shortlink.db.repository import SQLShortLinkStore
from shortlink.main import app
from shortlink.services.Analytics import AnalyticsService
from shortlink.services.interfaces import AccessLogSink, Cache, MembershipIndex
from shortlink.services.shortener import URLService


# Create in-memory SQLite database for testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeCache(Cache):
    """Dict-backed cache. Set ``fail`` to make every call raise CacheError."""

    def __init__(self):
        self.values = {}
        self.sets = {}
        self.ttls = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise CacheError("cache down")

    def set(self, key, value, ttl):
        self._check()
        self.values[key] = str(value)
        self.ttls[key] = ttl

    def get(self, key):
        self._check()
        return self.values.get(key)

    def exists(self, key):
        self._check()
        return key in self.values or key in self.sets

    def delete(self, key):
        self._check()
        self.values.pop(key, None)
        self.sets.pop(key, None)

    def incr(self, key, ttl):
        self._check()
        count = int(self.values.get(key, 0)) + 1
        self.values[key] = str(count)
        if count == 1:
            self.ttls[key] = ttl
        return count

    def sadd(self, key, member, ttl):
        self._check()
        members = self.sets.setdefault(key, set())
        added = member not in members
        members.add(member)
        self.ttls[key] = ttl
        return added

    def scan_prefix(self, prefix):
        self._check()
        return [k for k in list(self.values) + list(self.sets) if k.startswith(prefix)]

    def union_cardinality(self, keys):
        self._check()
        union = set()
        for key in keys:
            union |= self.sets.get(key, set())
        return len(union)


class FakeIndex(MembershipIndex):

    def __init__(self):
        self.codes = set()
        self.fail = False
        # Codes the index claims to hold although they were never added
        self.false_positives = set()

    def add(self, short_code):
        if self.fail:
            raise MembershipIndexError("index down")
        self.codes.add(short_code)

    def exists(self, short_code):
        if self.fail:
            raise MembershipIndexError("index down")
        return short_code in self.codes or short_code in self.false_positives

    def is_available(self):
        return not self.fail

    def reset(self):
        self.codes.clear()

    @property
    def capacity(self):
        return 1000


class FakeSink(AccessLogSink):

    def __init__(self):
        self.messages = []

    def send(self, message):
        self.messages.append(message)
        return True


class InlineDispatcher:
    """Runs submitted jobs immediately so tests can assert on their effects."""

    def __init__(self):
        self.jobs = 0

    def submit(self, fn, *args, **kwargs):
        self.jobs += 1
        fn(*args, **kwargs)
        return True

    def shutdown(self, wait=True):
        pass


class FakeRedisClient:
    """In-memory stand-in for the redis-py calls the adapters make.

    ``bloom`` turns on the RedisBloom commands; without it BF.* fails the way
    a server lacking the module does. ``down`` makes every call fail like a
    dead connection.
    """

    def __init__(self, bloom=False, down=False):
        self.bloom = bloom
        self.down = down
        self.values = {}
        self.sets = {}
        self.ttls = {}
        self.filters = {}
        self.reserved = []
        self.streams = {}
        self.groups = {}
        self._seq = 0

    def _check(self):
        if self.down:
            raise redis.exceptions.ConnectionError("connection refused")

    def ping(self):
        self._check()
        return True

    def get(self, key):
        self._check()
        return self.values.get(key)

    def set(self, key, value):
        self._check()
        self.values[key] = str(value)
        return True

    def setex(self, key, ttl, value):
        self.set(key, value)
        self.ttls[key] = ttl
        return True

    def exists(self, *keys):
        self._check()
        return sum(1 for k in keys if k in self.values or k in self.sets or k in self.filters)

    def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            self.ttls.pop(key, None)
            for space in (self.values, self.sets, self.filters):
                if space.pop(key, None) is not None:
                    removed += 1
        return removed

    def incr(self, key):
        self._check()
        count = int(self.values.get(key, 0)) + 1
        self.values[key] = str(count)
        return count

    def expire(self, key, ttl):
        self._check()
        self.ttls[key] = ttl
        return True

    def ttl(self, key):
        return self.ttls.get(key, -1)

    def sadd(self, key, *members):
        self._check()
        bucket = self.sets.setdefault(key, set())
        before = len(bucket)
        bucket.update(members)
        return len(bucket) - before

    def sunion(self, keys):
        self._check()
        union = set()
        for key in keys:
            union |= self.sets.get(key, set())
        return union

    def scan_iter(self, match="*", count=None):
        self._check()
        keys = list(self.values) + list(self.sets)
        return iter([k for k in keys if fnmatch.fnmatchcase(k, match)])

    def pipeline(self):
        return FakePipeline(self)

    def execute_command(self, command, *args):
        self._check()
        if not self.bloom:
            raise redis.exceptions.ResponseError(f"unknown command '{command}'")
        if command == "BF.RESERVE":
            self.reserved.append(args)
            self.filters[args[0]] = set()
            return "OK"
        if command == "BF.ADD":
            items = self.filters.setdefault(args[0], set())
            added = args[1] not in items
            items.add(args[1])
            return int(added)
        if command == "BF.EXISTS":
            return int(args[1] in self.filters.get(args[0], set()))
        if command == "BF.INFO":
            if args[0] not in self.filters:
                raise redis.exceptions.ResponseError("ERR not found")
            return ["Capacity", 0]
        raise redis.exceptions.ResponseError(f"unknown command '{command}'")

    # -- streams --

    def xadd(self, name, fields, maxlen=None, approximate=True):
        self._check()
        self._seq += 1
        msg_id = f"{self._seq}-0"
        entries = self.streams.setdefault(name, [])
        entries.append((msg_id, {k: str(v) for k, v in fields.items()}))
        if maxlen is not None and len(entries) > maxlen:
            del entries[: len(entries) - maxlen]
        return msg_id

    def xrange(self, name):
        self._check()
        return list(self.streams.get(name, []))

    def xgroup_create(self, name, groupname, id="0", mkstream=False):
        self._check()
        if (name, groupname) in self.groups:
            raise redis.exceptions.ResponseError("BUSYGROUP Consumer Group name already exists")
        if name not in self.streams:
            if not mkstream:
                raise redis.exceptions.ResponseError("ERR no such key")
            self.streams[name] = []
        self.groups[(name, groupname)] = {"delivered": 0, "pending": set()}
        return True

    def xreadgroup(self, groupname, consumername, streams, count=None, block=None):
        self._check()
        response = []
        for name in streams:
            group = self.groups[(name, groupname)]
            entries = self.streams.get(name, [])[group["delivered"]:]
            if count:
                entries = entries[:count]
            if entries:
                group["delivered"] += len(entries)
                group["pending"].update(msg_id for msg_id, _ in entries)
                response.append([name, entries])
        return response

    def xack(self, name, groupname, *ids):
        self._check()
        pending = self.groups[(name, groupname)]["pending"]
        acked = len(pending & set(ids))
        pending.difference_update(ids)
        return acked

    def xpending(self, name, groupname):
        return {"pending": len(self.groups[(name, groupname)]["pending"])}

    def close(self):
        pass


class FakePipeline:

    def __init__(self, client):
        self.client = client
        self.calls = []

    def sadd(self, key, *members):
        self.calls.append(("sadd", key, members))
        return self

    def expire(self, key, ttl):
        self.calls.append(("expire", key, ttl))
        return self

    def execute(self):
        results = []
        for name, key, arg in self.calls:
            if name == "sadd":
                results.append(self.client.sadd(key, *arg))
            else:
                results.append(self.client.expire(key, arg))
        self.calls = []
        return results


@pytest.fixture
def fake_redis_factory():
    def _factory(bloom=False, down=False):
        return FakeRedisClient(bloom=bloom, down=down)

    return _factory


@pytest.fixture
def redis_client(fake_redis_factory):
    return fake_redis_factory()


@pytest.fixture
def db_session():
    """Creates a fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store(db_session):
    return SQLShortLinkStore(db_session)


@pytest.fixture
def cache():
    return FakeCache()


@pytest.fixture
def index():
    return FakeIndex()


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def dispatcher():
    return InlineDispatcher()


@pytest.fixture
def service(store, cache, index):
    return URLService(store, cache, index, domain="http://s.test")


@pytest.fixture
def analytics(cache):
    return AnalyticsService(cache)


@pytest.fixture
def client(db_session, cache, index, sink, dispatcher):
    """Creates a test client with every backend swapped for a test double."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[database.get_db] = override_get_db
    app.dependency_overrides[deps.get_cache] = lambda: cache
    app.dependency_overrides[deps.get_membership_index] = lambda: index
    app.dependency_overrides[deps.get_access_log_sink] = lambda: sink
    app.dependency_overrides[deps.get_dispatcher] = lambda: dispatcher
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def sample_urls():
    """Provides sample URLs for testing."""
    return [
        "https://example.com/test1",
        "https://google.com/search?q=test",
        "https://github.com/user/repo",
    ]
