from datetime import date

import pytest
from fastapi.testclient import TestClient

from library_app import api as api_module
from library_app.book import Book
from library_app.config import settings

HEADERS = {"X-API-Key": settings.api_key}


@pytest.fixture
def client(lib, monkeypatch):
    # Point the module-level Library at the per-test database and clock
    monkeypatch.setattr(api_module, "library", lib)
    return TestClient(api_module.app)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_get_books(client, book):
    response = client.get("/books")
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    assert data["books"][0]["title"] == "Dune"
    assert response.headers["X-Total-Count"] == "1"


def test_get_books_page_size_is_bounded(client):
    response = client.get("/books", params={"limit": settings.max_page_size + 1})
    assert response.status_code == 422


def test_add_book_with_valid_api_key(client):
    payload = {"title": "Ulysses", "isbn": "9780199535675", "total_copies": 3}
    response = client.post("/books", headers=HEADERS, json=payload)
    assert response.status_code == 201
    data = response.json()
    assert data["isbn"] == "9780199535675"
    assert data["available_copies"] == 3
    assert data["status"] == "available"


def test_add_book_with_invalid_api_key(client):
    response = client.post("/books", headers={"X-API-Key": "invalid-key"}, json={"title": "Ulysses"})
    assert response.status_code == 403


def test_add_book_without_api_key(client):
    response = client.post("/books", json={"title": "Ulysses"})
    assert response.status_code == 403


def test_add_book_invalid_isbn(client):
    response = client.post("/books", headers=HEADERS, json={"title": "Bad", "isbn": "9780321765723"})
    assert response.status_code == 400
    assert response.json()["code"] == "invalid"


def test_get_book_not_found(client):
    assert client.get("/books/999").status_code == 404


def test_update_and_delete_book(client, book):
    response = client.put(f"/books/{book.id}", headers=HEADERS, json={"total_copies": 4})
    assert response.status_code == 200
    assert response.json()["available_copies"] == 4

    assert client.put(f"/books/{book.id}", headers=HEADERS, json={}).status_code == 400
    assert client.delete(f"/books/{book.id}", headers=HEADERS).status_code == 200
    assert client.delete(f"/books/{book.id}", headers=HEADERS).status_code == 404


def test_delete_book_on_loan_is_refused(client, lib, member, book):
    lib.loans.create_loan(member.id, book.id)
    response = client.delete(f"/books/{book.id}", headers=HEADERS)
    assert response.status_code == 400
    assert response.json()["code"] == "book_has_active_loans"


def test_authors_and_publishers(client):
    response = client.post("/authors", headers=HEADERS, json={"name": "Frank Herbert", "date_of_birth": "1920-10-08"})
    assert response.status_code == 201
    author_id = response.json()["id"]
    assert client.get(f"/authors/{author_id}").json()["date_of_birth"] == "1920-10-08"
    assert client.get("/authors/999").status_code == 404
    assert [a["name"] for a in client.get("/authors", params={"q": "Herb"}).json()] == ["Frank Herbert"]

    response = client.post("/publishers", headers=HEADERS, json={"name": "Chilton"})
    assert response.status_code == 201
    assert len(client.get("/publishers").json()) == 1


def test_book_with_unknown_author(client):
    response = client.post("/books", headers=HEADERS, json={"title": "Orphan", "author_id": 42})
    assert response.status_code == 404
    assert response.json()["code"] == "author_not_found"


def test_members_require_api_key(client, member):
    assert client.get("/members").status_code == 403
    assert client.get(f"/members/{member.id}").status_code == 403


def test_member_lifecycle(client):
    response = client.post(
        "/members", headers=HEADERS,
        json={"email": "grace@example.com", "first_name": "Grace", "last_name": "Hopper"},
    )
    assert response.status_code == 201
    member_id = response.json()["id"]
    assert response.json()["full_name"] == "Grace Hopper"

    response = client.put(f"/members/{member_id}", headers=HEADERS, json={"membership_type": "premium"})
    assert response.json()["membership_type"] == "premium"

    response = client.post(f"/members/{member_id}/deactivate", headers=HEADERS)
    assert response.json()["is_active"] is False
    assert client.post("/members/999/deactivate", headers=HEADERS).status_code == 404


def test_duplicate_member_email(client, member):
    response = client.post("/members", headers=HEADERS, json={"email": "ada@example.com"})
    assert response.status_code == 400


def test_loan_lifecycle(client, clock, member, book):
    response = client.post("/loans", headers=HEADERS, json={"user_id": member.id, "book_id": book.id})
    assert response.status_code == 201
    loan = response.json()
    assert loan["status"] == "active"
    assert loan["due_date"] == "2024-01-15"
    assert loan["fine"] == "0.00"
    assert client.get(f"/books/{book.id}").json()["available_copies"] == 1

    response = client.post(f"/loans/{loan['id']}/renew", headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["due_date"] == "2024-01-29"
    assert response.json()["renewal_count"] == 1

    clock.set(date(2024, 2, 3))
    response = client.post(f"/loans/{loan['id']}/return", headers=HEADERS)
    assert response.status_code == 200
    returned = response.json()
    assert returned["status"] == "returned"
    assert returned["fine"] == "2.50"
    assert client.get(f"/books/{book.id}").json()["available_copies"] == 2

    detail = client.get(f"/members/{member.id}", headers=HEADERS).json()
    assert [l["id"] for l in detail["loans"]] == [loan["id"]]


def test_return_with_explicit_date(client, lib, member, book):
    loan = lib.loans.create_loan(member.id, book.id)
    response = client.post(f"/loans/{loan.id}/return", headers=HEADERS, json={"return_date": "2024-01-20"})
    assert response.status_code == 200
    assert response.json()["fine"] == "2.50"


def test_loan_errors_map_to_codes(client, lib, member):
    single = lib.add_book(Book("Single", total_copies=1))
    client.post("/loans", headers=HEADERS, json={"user_id": member.id, "book_id": single.id})

    other = lib.add_member("grace@example.com")
    response = client.post("/loans", headers=HEADERS, json={"user_id": other.id, "book_id": single.id})
    assert response.status_code == 400
    assert response.json()["code"] == "book_unavailable"

    response = client.post("/loans", headers=HEADERS, json={"user_id": 999, "book_id": 999})
    assert response.status_code == 404
    assert response.json()["code"] == "book_not_found"

    response = client.post("/loans/999/renew", headers=HEADERS)
    assert response.status_code == 404
    assert response.json()["code"] == "loan_not_found"


def test_inactive_member_cannot_borrow(client, lib, member, book):
    lib.deactivate_member(member.id)
    response = client.post("/loans", headers=HEADERS, json={"user_id": member.id, "book_id": book.id})
    assert response.status_code == 400
    assert response.json()["code"] == "patron_inactive"


def test_renewal_limit(client, lib, member, book):
    loan = lib.loans.create_loan(member.id, book.id)
    for _ in range(2):
        assert client.post(f"/loans/{loan.id}/renew", headers=HEADERS).status_code == 200
    response = client.post(f"/loans/{loan.id}/renew", headers=HEADERS)
    assert response.status_code == 400
    assert response.json()["code"] == "renewal_limit_exceeded"


@pytest.mark.parametrize("days", [0, 366, 10**9])
def test_invalid_loan_days(client, member, book, days):
    response = client.post(
        "/loans", headers=HEADERS, json={"user_id": member.id, "book_id": book.id, "loan_days": days}
    )
    assert response.status_code == 422


def test_overdue_listing_and_sweep(client, clock, lib, member, book):
    lib.loans.create_loan(member.id, book.id)
    clock.advance(20)

    overdue = client.get("/loans/overdue", headers=HEADERS).json()
    assert len(overdue) == 1
    assert overdue[0]["days_overdue"] == 6

    response = client.post("/loans/sweep-overdue", headers=HEADERS)
    assert response.json() == {"updated": 1, "as_of": "2024-01-21"}
    assert client.post("/loans/sweep-overdue", headers=HEADERS).json()["updated"] == 0

    page = client.get("/loans", headers=HEADERS, params={"status": "overdue"}).json()
    assert page["total"] == 1

    response = client.post("/loans", headers=HEADERS, json={"user_id": member.id, "book_id": book.id})
    assert response.json()["code"] == "patron_has_overdue_items"


def test_loans_require_api_key(client):
    assert client.get("/loans").status_code == 403
    assert client.post("/loans", json={"user_id": 1, "book_id": 1}).status_code == 403
