import os

os.environ.setdefault("BUDGET_DATABASE_URL", "sqlite://")
os.environ.setdefault("BUDGET_SWEEP_MINUTES", "0")

import mongomock  # noqa: E402
import pytest  # noqa: E402
from pymongo.errors import BulkWriteError  # noqa: E402

from config import get_settings  # noqa: E402
from database import Base, build_engine, build_session_factory  # noqa: E402
from mongo_store import MongoSummaryStore  # noqa: E402
from sql_store import SqlSummaryStore  # noqa: E402


@pytest.fixture
def session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'budget.db'}")
    Base.metadata.create_all(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def sql_store(session_factory) -> SqlSummaryStore:
    return SqlSummaryStore(session_factory)


@pytest.fixture
def mongo_store() -> MongoSummaryStore:
    return MongoSummaryStore(mongomock.MongoClient(), get_settings())


class FlakyCategories:
    """Applies only the first operation of a bulk write, then fails."""

    def __init__(self, inner) -> None:
        self.inner = inner

    def __getattr__(self, name):
        return getattr(self.inner, name)

    def bulk_write(self, ops, ordered=True):
        self.inner.bulk_write(ops[:1], ordered=ordered)
        raise BulkWriteError(
            {
                "writeErrors": [{"index": 1, "code": 91, "errmsg": "shutting down"}],
                "writeConcernErrors": [],
                "nInserted": 0,
                "nUpserted": 0,
                "nMatched": 1,
                "nModified": 1,
                "nRemoved": 0,
                "upserted": [],
            }
        )


@pytest.fixture
def flaky_categories():
    return FlakyCategories


@pytest.fixture(params=["sql_store", "mongo_store"])
def any_store(request):
    return request.getfixturevalue(request.param)
