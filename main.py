import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from access import InvalidPrincipalToken, Principal, load_principal_token
from config import get_settings
from database import SessionLocal, session_scope
from errors import ServiceError
from schemas import (
    CategoryIn,
    CategoryOut,
    ExpenseIn,
    ExpenseOut,
    SegmentBatchIn,
    SegmentIn,
    SegmentOut,
)
from services import CategoryService, ExpenseService, SegmentService

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Expense Segmentation")


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def current_principal(authorization: Optional[str] = Header(default=None)) -> Principal:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    token = authorization.split(" ", 1)[1].strip()
    try:
        return load_principal_token(token)
    except InvalidPrincipalToken as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc


@app.exception_handler(ServiceError)
def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.warning(f"request_failed: path={request.url.path} error={exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "reason": exc.reason, "detail": str(exc)},
    )


@app.exception_handler(RequestValidationError)
def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={
            "error": "validation_error",
            "reason": None,
            "detail": jsonable_errors(exc),
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, object]]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]


@app.on_event("startup")
def startup_event():
    with session_scope() as session:
        CategoryService(session).ensure_defaults()


@app.get("/version")
def version():
    return {"version": APP_VERSION}


@app.get("/categories", response_model=list[CategoryOut])
def list_categories(
    principal: Principal = Depends(current_principal),
    db: Session = Depends(get_db),
):
    return CategoryService(db).list_active()


@app.post("/categories", response_model=CategoryOut, status_code=201)
def create_category(
    data: CategoryIn,
    principal: Principal = Depends(current_principal),
    db: Session = Depends(get_db),
):
    return CategoryService(db).create(data, principal)


@app.delete("/categories/{category_id}", status_code=204)
def deactivate_category(
    category_id: int,
    principal: Principal = Depends(current_principal),
    db: Session = Depends(get_db),
):
    CategoryService(db).deactivate(category_id, principal)
    return Response(status_code=204)


@app.post("/expenses", response_model=ExpenseOut, status_code=201)
def create_expense(
    data: ExpenseIn,
    principal: Principal = Depends(current_principal),
    db: Session = Depends(get_db),
):
    return ExpenseService(db).create(data, principal)


@app.get("/expenses/{expense_id}", response_model=ExpenseOut)
def get_expense(
    expense_id: int,
    principal: Principal = Depends(current_principal),
    db: Session = Depends(get_db),
):
    return ExpenseService(db).get_for(expense_id, principal)


@app.get("/expenses/{expense_id}/segments", response_model=list[SegmentOut])
def list_segments(
    expense_id: int,
    principal: Principal = Depends(current_principal),
    db: Session = Depends(get_db),
):
    return SegmentService(db).list_segments(expense_id, principal)


@app.post(
    "/expenses/{expense_id}/segments", response_model=SegmentOut, status_code=201
)
def create_segment(
    expense_id: int,
    data: SegmentIn,
    principal: Principal = Depends(current_principal),
    db: Session = Depends(get_db),
):
    return SegmentService(db).create_single_segment(expense_id, data, principal)


@app.post(
    "/expenses/{expense_id}/segments/batch",
    response_model=list[SegmentOut],
    status_code=201,
)
def create_segments(
    expense_id: int,
    data: SegmentBatchIn,
    principal: Principal = Depends(current_principal),
    db: Session = Depends(get_db),
):
    return SegmentService(db).create_multiple_segments(
        expense_id, data.segments, principal
    )


@app.put("/expenses/{expense_id}/segments", response_model=list[SegmentOut])
def replace_segments(
    expense_id: int,
    data: SegmentBatchIn,
    principal: Principal = Depends(current_principal),
    db: Session = Depends(get_db),
):
    return SegmentService(db).replace_all_segments(
        expense_id, data.segments, principal
    )


@app.put(
    "/expenses/{expense_id}/segments/{segment_id}", response_model=SegmentOut
)
def update_segment(
    expense_id: int,
    segment_id: int,
    data: SegmentIn,
    principal: Principal = Depends(current_principal),
    db: Session = Depends(get_db),
):
    return SegmentService(db).update_segment(expense_id, segment_id, data, principal)


@app.delete("/expenses/{expense_id}/segments/{segment_id}", status_code=204)
def delete_segment(
    expense_id: int,
    segment_id: int,
    principal: Principal = Depends(current_principal),
    db: Session = Depends(get_db),
):
    SegmentService(db).delete_segment(expense_id, segment_id, principal)
    return Response(status_code=204)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
