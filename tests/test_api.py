from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from access import Principal, Role, issue_principal_token
from database import Base
from main import app, get_db
from services import CategoryService

OWNER = Principal(user_id=7, role=Role.employee)
COLLEAGUE = Principal(user_id=8, role=Role.employee)


def make_client() -> TestClient:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    with SessionLocal() as session:
        CategoryService(session).ensure_defaults()
        session.commit()

    def override_get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


def auth(principal: Principal) -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_principal_token(principal)}"}


def create_expense(client: TestClient, amount_cents: int = 10_000) -> int:
    resp = client.post(
        "/expenses",
        json={"date": "2025-03-14", "vendor": "Acme Travel", "amount_cents": amount_cents},
        headers=auth(OWNER),
    )
    assert resp.status_code == 201
    assert resp.json()["status"] == "submitted"
    return resp.json()["id"]


def test_replace_and_list_segments() -> None:
    client = make_client()
    expense_id = create_expense(client)

    resp = client.put(
        f"/expenses/{expense_id}/segments",
        json={
            "segments": [
                {"category": "Travel", "amount_cents": 6000},
                {"category": "Meals", "amount_cents": 4000},
            ]
        },
        headers=auth(OWNER),
    )

    assert resp.status_code == 200
    body = resp.json()
    assert [(s["category"], s["amount_cents"], s["percentage"]) for s in body] == [
        ("Travel", 6000, "60.00"),
        ("Meals", 4000, "40.00"),
    ]

    listed = client.get(f"/expenses/{expense_id}/segments", headers=auth(OWNER))
    assert listed.status_code == 200
    assert [s["id"] for s in listed.json()] == [s["id"] for s in body]


def test_sum_mismatch_reports_reason() -> None:
    client = make_client()
    expense_id = create_expense(client)

    resp = client.put(
        f"/expenses/{expense_id}/segments",
        json={
            "segments": [
                {"category": "Travel", "amount_cents": 6000},
                {"category": "Meals", "amount_cents": 3000},
            ]
        },
        headers=auth(OWNER),
    )

    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_argument"
    assert resp.json()["reason"] == "sum_mismatch"


def test_single_segment_lifecycle() -> None:
    client = make_client()
    expense_id = create_expense(client, amount_cents=5000)

    created = client.post(
        f"/expenses/{expense_id}/segments",
        json={"category": "travel", "amount_cents": 5000},
        headers=auth(OWNER),
    )
    assert created.status_code == 201
    segment = created.json()
    assert (segment["category"], segment["percentage"]) == ("Travel", "100.00")

    too_big = client.put(
        f"/expenses/{expense_id}/segments/{segment['id']}",
        json={"category": "Travel", "amount_cents": 7500},
        headers=auth(OWNER),
    )
    assert too_big.status_code == 400
    assert too_big.json()["reason"] == "amount_exceeds_total"

    updated = client.put(
        f"/expenses/{expense_id}/segments/{segment['id']}",
        json={"category": "Lodging", "amount_cents": 5000},
        headers=auth(OWNER),
    )
    assert updated.status_code == 200
    assert updated.json()["category"] == "Lodging"

    deleted = client.delete(
        f"/expenses/{expense_id}/segments/{segment['id']}", headers=auth(OWNER)
    )
    assert deleted.status_code == 204
    listed = client.get(f"/expenses/{expense_id}/segments", headers=auth(OWNER))
    assert listed.json() == []


def test_batch_create_conflicts_once_segmented() -> None:
    client = make_client()
    expense_id = create_expense(client)
    payload = {
        "segments": [
            {"category": "Software", "amount_cents": 2500, "percentage": 25},
            {"category": "Training", "amount_cents": 7500},
        ]
    }

    first = client.post(
        f"/expenses/{expense_id}/segments/batch", json=payload, headers=auth(OWNER)
    )
    assert first.status_code == 201
    assert len(first.json()) == 2

    second = client.post(
        f"/expenses/{expense_id}/segments/batch", json=payload, headers=auth(OWNER)
    )
    assert second.status_code == 409
    assert second.json()["error"] == "conflict"


def test_identity_and_capability_errors() -> None:
    client = make_client()
    expense_id = create_expense(client)

    assert client.get(f"/expenses/{expense_id}/segments").status_code == 401
    assert (
        client.get(
            f"/expenses/{expense_id}/segments",
            headers={"Authorization": "Bearer not-a-token"},
        ).status_code
        == 401
    )
    assert (
        client.get(
            f"/expenses/{expense_id}/segments", headers=auth(COLLEAGUE)
        ).status_code
        == 403
    )
    assert client.get("/expenses/999/segments", headers=auth(OWNER)).status_code == 404


def test_empty_batch_is_rejected_by_schema() -> None:
    client = make_client()
    expense_id = create_expense(client)

    resp = client.put(
        f"/expenses/{expense_id}/segments",
        json={"segments": []},
        headers=auth(OWNER),
    )

    assert resp.status_code == 422
    assert resp.json()["error"] == "validation_error"


def test_category_registry_endpoints() -> None:
    client = make_client()
    admin = Principal(user_id=1, role=Role.admin)

    created = client.post(
        "/categories", json={"name": "Parking"}, headers=auth(admin)
    )
    assert created.status_code == 201

    forbidden = client.post(
        "/categories", json={"name": "Snacks"}, headers=auth(OWNER)
    )
    assert forbidden.status_code == 403

    removed = client.delete(
        f"/categories/{created.json()['id']}", headers=auth(admin)
    )
    assert removed.status_code == 204
    names = [c["name"] for c in client.get("/categories", headers=auth(OWNER)).json()]
    assert "Parking" not in names
    assert "Travel" in names


def test_percentage_precision_is_left_to_the_tolerance_check() -> None:
    client = make_client()
    expense_id = create_expense(client)

    resp = client.put(
        f"/expenses/{expense_id}/segments",
        json={
            "segments": [
                {"category": "Travel", "amount_cents": 6000, "percentage": "60.004"},
                {"category": "Meals", "amount_cents": 4000, "percentage": "45.5"},
            ]
        },
        headers=auth(OWNER),
    )

    assert resp.status_code == 400
    assert resp.json()["reason"] == "percentage_mismatch"
    assert "Meals" in resp.json()["detail"]
