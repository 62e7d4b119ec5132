import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        backend: str,
        database_url: str,
        mongo_url: str,
        mongo_db: str,
        users_collection: str,
        categories_collection: str,
        charges_collection: str,
        token_secret: str,
        token_max_age_hours: int,
        sweep_minutes: int,
    ) -> None:
        self.backend = backend
        self.database_url = database_url
        self.mongo_url = mongo_url
        self.mongo_db = mongo_db
        self.users_collection = users_collection
        self.categories_collection = categories_collection
        self.charges_collection = charges_collection
        self.token_secret = token_secret
        self.token_max_age_hours = token_max_age_hours
        self.sweep_minutes = sweep_minutes


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGET_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    backend = os.getenv("BUDGET_BACKEND", "sql").strip().lower()
    database_url = os.getenv("BUDGET_DATABASE_URL")
    if not database_url:
        database_url = f"sqlite:///{_ensure_data_dir() / 'budget.db'}"
    mongo_url = os.getenv("BUDGET_MONGO_URL", "mongodb://localhost:27017")
    mongo_db = os.getenv("BUDGET_MONGO_DB", "budget")
    token_secret = os.getenv(
        "BUDGET_TOKEN_SECRET",
        "5c1f0b8e2d7a43e69f0c4b1a8d2e7f3a9b6c0d1e2f3a4b5c6d7e8f9a0b1c2d3e",
    )
    token_max_age_hours = int(os.getenv("BUDGET_TOKEN_MAX_AGE_HOURS", "2"))
    sweep_minutes = int(os.getenv("BUDGET_SWEEP_MINUTES", "60"))
    return Settings(
        backend=backend,
        database_url=database_url,
        mongo_url=mongo_url,
        mongo_db=mongo_db,
        users_collection=os.getenv("BUDGET_USERS_COLLECTION", "users"),
        categories_collection=os.getenv("BUDGET_CATEGORIES_COLLECTION", "categories"),
        charges_collection=os.getenv("BUDGET_CHARGES_COLLECTION", "charges"),
        token_secret=token_secret,
        token_max_age_hours=token_max_age_hours,
        sweep_minutes=sweep_minutes,
    )
