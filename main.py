from functools import lru_cache

from fastapi import Depends, FastAPI, HTTPException, Response

from auth import issue_token, require_token
from errors import InvalidId, NotFound, PartialReconciliation, StoreError
from scheduler import SweepScheduler
from schemas import (
    CategoryIn,
    CategoryOut,
    ChargeIn,
    ChargeOut,
    Summary,
    TokenIn,
    UserIn,
    UserOut,
)
from services import CategoryService, ChargeService, SummaryService, UserService
from store import SummaryStore, build_store

app = FastAPI(title="Budget Tracker")


@lru_cache(maxsize=1)
def get_store() -> SummaryStore:
    return build_store()


scheduler_manager = SweepScheduler()


@app.on_event("startup")
def startup_event():
    scheduler_manager.store = get_store()
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, InvalidId):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, NotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, PartialReconciliation):
        return HTTPException(status_code=500, detail="Partial reconciliation")
    return HTTPException(status_code=500, detail="Storage failure")


@app.post("/api/token")
def create_token(data: TokenIn):
    return {"access_token": issue_token(data.subject), "token_type": "bearer"}


@app.get("/api/user/{user_id}", response_model=Summary)
def get_summary(
    user_id: str,
    store: SummaryStore = Depends(get_store),
    _subject: str = Depends(require_token),
):
    try:
        return SummaryService(store).recompute_summary(user_id)
    except (InvalidId, NotFound, StoreError) as exc:
        raise http_error(exc) from exc


@app.post("/api/users", response_model=UserOut, status_code=201)
def create_user(
    data: UserIn,
    store: SummaryStore = Depends(get_store),
    _subject: str = Depends(require_token),
):
    try:
        return UserService(store).create(data)
    except StoreError as exc:
        raise http_error(exc) from exc


@app.post(
    "/api/users/{user_id}/categories", response_model=CategoryOut, status_code=201
)
def create_category(
    user_id: str,
    data: CategoryIn,
    store: SummaryStore = Depends(get_store),
    _subject: str = Depends(require_token),
):
    try:
        return CategoryService(store, user_id).create(data)
    except (InvalidId, NotFound, StoreError) as exc:
        raise http_error(exc) from exc


@app.put("/api/users/{user_id}/categories/{category_id}", response_model=CategoryOut)
def update_category(
    user_id: str,
    category_id: str,
    data: CategoryIn,
    store: SummaryStore = Depends(get_store),
    _subject: str = Depends(require_token),
):
    try:
        return CategoryService(store, user_id).update(category_id, data)
    except (InvalidId, NotFound, StoreError) as exc:
        raise http_error(exc) from exc


@app.delete("/api/users/{user_id}/categories/{category_id}", status_code=204)
def delete_category(
    user_id: str,
    category_id: str,
    store: SummaryStore = Depends(get_store),
    _subject: str = Depends(require_token),
):
    try:
        CategoryService(store, user_id).delete(category_id)
    except (InvalidId, NotFound, StoreError) as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.post("/api/users/{user_id}/charges", response_model=ChargeOut, status_code=201)
def create_charge(
    user_id: str,
    data: ChargeIn,
    store: SummaryStore = Depends(get_store),
    _subject: str = Depends(require_token),
):
    try:
        return ChargeService(store, user_id).create(data)
    except (InvalidId, NotFound, StoreError) as exc:
        raise http_error(exc) from exc


@app.put("/api/users/{user_id}/charges/{charge_id}", response_model=ChargeOut)
def update_charge(
    user_id: str,
    charge_id: str,
    data: ChargeIn,
    store: SummaryStore = Depends(get_store),
    _subject: str = Depends(require_token),
):
    try:
        return ChargeService(store, user_id).update(charge_id, data)
    except (InvalidId, NotFound, StoreError) as exc:
        raise http_error(exc) from exc


@app.delete("/api/users/{user_id}/charges/{charge_id}", status_code=204)
def delete_charge(
    user_id: str,
    charge_id: str,
    store: SummaryStore = Depends(get_store),
    _subject: str = Depends(require_token),
):
    try:
        ChargeService(store, user_id).delete(charge_id)
    except (InvalidId, NotFound, StoreError) as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
