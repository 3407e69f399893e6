from bson import ObjectId

import database
from conftest import make_admin, register
from routers.books import estimated_reading_time, rating_summary

BOOK = {"title": " Dune ", "author": "Frank Herbert", "publishYear": 1965}


def create(client, headers, **fields):
    resp = client.post("/api/books", json={**BOOK, **fields}, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_rating_summary_rounds_half_up():
    assert rating_summary([]) == {"averageRating": 0, "totalReviews": 0}
    assert rating_summary([{"rating": 4}, {"rating": 5}]) == {"averageRating": 4.5, "totalReviews": 2}
    assert rating_summary([{"rating": 5}, {"rating": 4}, {"rating": 4}]) == {"averageRating": 4.3, "totalReviews": 3}
    assert rating_summary([{"rating": 4}, {"rating": 4}, {"rating": 4}, {"rating": 5}])["averageRating"] == 4.3


def test_estimated_reading_time():
    assert estimated_reading_time(None) is None
    assert estimated_reading_time(100) == 150
    assert estimated_reading_time(3) == 5


def test_requires_token(client):
    assert client.get("/api/books").status_code == 401
    assert client.post("/api/books", json=BOOK).status_code == 401
    bad = {"Authorization": "Bearer not-a-token"}
    assert client.get("/api/books", headers=bad).status_code == 401


def test_create_assigns_owner_and_defaults(client, auth, fake_search):
    headers, user = auth
    book = create(client, headers, pageCount=100, genres=["Science Fiction"])
    assert ObjectId.is_valid(book["_id"])
    assert book["title"] == "Dune"
    assert book["owner"] == user["_id"]
    assert book["readingStatus"] == "Want to Read"
    assert book["averageRating"] == 0
    assert book["estimatedReadingTime"] == 150
    assert "isbn" not in book
    assert book["_id"] in fake_search.indexed


def test_create_missing_publish_year_is_400(client, auth):
    headers, _ = auth
    resp = client.post("/api/books", json={"title": "A", "author": "B"}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Send all required fields: title, author, publishYear"
    assert database.db["book"].count_documents({}) == 0


def test_create_rejects_unknown_genre(client, auth):
    headers, _ = auth
    resp = client.post("/api/books", json={**BOOK, "genres": ["Cooking"]}, headers=headers)
    assert resp.status_code == 400


def test_isbn_validation_and_uniqueness(client, auth):
    headers, _ = auth
    assert client.post("/api/books", json={**BOOK, "isbn": "0306406153"}, headers=headers).status_code == 400
    book = create(client, headers, isbn="978-0-306-40615-7")
    assert book["isbn"] == "9780306406157"
    resp = client.post("/api/books", json={**BOOK, "isbn": "9780306406157"}, headers=headers)
    assert resp.status_code == 409


def test_books_without_isbn_do_not_conflict(client, auth):
    headers, _ = auth
    create(client, headers)
    create(client, headers)
    assert client.get("/api/books", headers=headers).json()["count"] == 2


def test_read_by_id(client, auth):
    headers, _ = auth
    book = create(client, headers)
    resp = client.get(f"/api/books/{book['_id']}", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["title"] == "Dune"
    assert client.get(f"/api/books/{ObjectId()}", headers=headers).status_code == 404
    assert client.get("/api/books/not-an-id", headers=headers).status_code == 404


def test_list_with_filters(client, auth):
    headers, _ = auth
    other_headers, _ = register(client, email="other@example.com")
    create(client, headers, genres=["Fantasy"])
    create(client, other_headers, genres=["Horror"])

    assert client.get("/api/books", headers=headers).json()["count"] == 2
    mine = client.get("/api/books", params={"mine": "true"}, headers=headers).json()
    assert mine["count"] == 1
    horror = client.get("/api/books", params={"genre": "Horror"}, headers=headers).json()
    assert [b["genres"] for b in horror["data"]] == [["Horror"]]


def test_update_merges_and_returns_document(client, auth):
    headers, _ = auth
    book = create(client, headers, description="desert planet", pageCount=10)
    resp = client.put(
        f"/api/books/{book['_id']}",
        json={"title": "Dune Messiah", "author": "Frank Herbert", "publishYear": 1969, "pageCount": 200},
        headers=headers,
    )
    assert resp.status_code == 200
    updated = resp.json()
    assert updated["title"] == "Dune Messiah"
    assert updated["publishYear"] == 1969
    assert updated["description"] == "desert planet"
    assert updated["estimatedReadingTime"] == 300
    assert updated["owner"] == book["owner"]


def test_update_requires_fields_and_existing_book(client, auth):
    headers, _ = auth
    book = create(client, headers)
    resp = client.put(f"/api/books/{book['_id']}", json={"title": "x"}, headers=headers)
    assert resp.status_code == 400
    resp = client.put(f"/api/books/{ObjectId()}", json=BOOK, headers=headers)
    assert resp.status_code == 404


def test_update_cannot_touch_derived_fields(client, auth):
    headers, _ = auth
    book = create(client, headers)
    resp = client.put(
        f"/api/books/{book['_id']}",
        json={**BOOK, "averageRating": 5, "owner": "someone", "reviews": [{"rating": 5}]},
        headers=headers,
    )
    assert resp.status_code == 200
    assert resp.json()["averageRating"] == 0
    assert resp.json()["owner"] == book["owner"]


def test_only_owner_or_admin_may_modify(client, auth):
    headers, _ = auth
    book = create(client, headers)
    other_headers, other = register(client, email="other@example.com")

    assert client.put(f"/api/books/{book['_id']}", json=BOOK, headers=other_headers).status_code == 403
    assert client.delete(f"/api/books/{book['_id']}", headers=other_headers).status_code == 403

    make_admin(other["_id"])
    assert client.delete(f"/api/books/{book['_id']}", headers=other_headers).status_code == 200


def test_delete(client, auth, fake_search):
    headers, _ = auth
    book = create(client, headers)
    resp = client.delete(f"/api/books/{book['_id']}", headers=headers)
    assert resp.status_code == 200
    assert resp.json() == {"message": "Book deleted successfully!"}
    assert fake_search.deleted == [book["_id"]]
    assert client.delete(f"/api/books/{book['_id']}", headers=headers).status_code == 404
    assert client.delete(f"/api/books/{ObjectId()}", headers=headers).status_code == 404


def test_reviews_recompute_average(client, auth):
    headers, _ = auth
    other_headers, _ = register(client, email="other@example.com")
    book = create(client, headers)

    client.post(f"/api/books/{book['_id']}/reviews", json={"rating": 5, "comment": "great"}, headers=headers)
    resp = client.post(f"/api/books/{book['_id']}/reviews", json={"rating": 4, "comment": "good"}, headers=other_headers)
    assert resp.status_code == 201
    assert resp.json()["averageRating"] == 4.5
    assert resp.json()["totalReviews"] == 2

    reviews = client.get(f"/api/books/{book['_id']}/reviews", headers=headers).json()
    assert reviews["count"] == 2
    assert [r["rating"] for r in reviews["data"]] == [5, 4]

    bad = client.post(f"/api/books/{book['_id']}/reviews", json={"rating": 6, "comment": "x"}, headers=headers)
    assert bad.status_code == 400


def test_reading_status(client, auth):
    headers, _ = auth
    other_headers, _ = register(client, email="other@example.com")
    book = create(client, headers)

    resp = client.patch(f"/api/books/{book['_id']}/status", json={"readingStatus": "Read"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["readingStatus"] == "Read"
    assert resp.json()["readingProgress"] == 100

    resp = client.patch(f"/api/books/{book['_id']}/status", json={"readingStatus": "Read"}, headers=other_headers)
    assert resp.status_code == 403


def test_activity_log(client, auth):
    headers, user = auth
    book = create(client, headers)
    client.put(f"/api/books/{book['_id']}", json=BOOK, headers=headers)
    client.delete(f"/api/books/{book['_id']}", headers=headers)

    stored = database.db["user"].find_one({"_id": ObjectId(user["_id"])})
    actions = [(a["action"], a["bookId"]) for a in stored["activityLog"]]
    assert actions == [("ADD_BOOK", book["_id"]), ("UPDATE_BOOK", book["_id"]), ("DELETE_BOOK", book["_id"])]


def test_recommendation_routes_exclude_own_and_read(client, auth):
    headers, _ = auth
    other_headers, _ = register(client, email="other@example.com")
    mine = create(client, headers, genres=["Fantasy"])
    client.patch(f"/api/books/{mine['_id']}/status", json={"readingStatus": "Read"}, headers=headers)
    theirs = create(client, other_headers, title="Other", genres=["Fantasy"])

    for path in ("/api/books/recommendations", "/api/books/recommendations/personalized"):
        ids = [b["_id"] for b in client.get(path, headers=headers).json()]
        assert ids == [theirs["_id"]]

    similar = client.get(f"/api/books/{mine['_id']}/similar", headers=headers).json()
    assert [b["_id"] for b in similar] == [theirs["_id"]]
    assert client.get(f"/api/books/{ObjectId()}/similar", headers=headers).status_code == 404


def test_review_summary_stays_consistent_with_competing_review(client, auth, monkeypatch):
    from routers import books as books_router

    headers, _ = auth
    book = create(client, headers)
    load_book = books_router.get_book_or_404

    def load_then_compete(book_id):
        snapshot = load_book(book_id)
        database.db["book"].update_one(
            {"_id": snapshot["_id"]},
            {"$push": {"reviews": {"user": "someone", "rating": 1, "comment": "meh", "createdAt": database.utcnow()}}},
        )
        return snapshot

    monkeypatch.setattr(books_router, "get_book_or_404", load_then_compete)
    resp = client.post(f"/api/books/{book['_id']}/reviews", json={"rating": 5, "comment": "great"}, headers=headers)
    assert resp.status_code == 201

    stored = database.db["book"].find_one({"_id": ObjectId(book["_id"])})
    assert [r["rating"] for r in stored["reviews"]] == [1, 5]
    assert stored["totalReviews"] == 2
    assert stored["averageRating"] == 3.0
    assert resp.json()["totalReviews"] == 2


def test_unhandled_error_is_logged_as_500(auth, monkeypatch):
    import recommendations
    from fastapi.testclient import TestClient
    from main import app

    headers, user = auth

    def broken(*args, **kwargs):
        raise RuntimeError("ranking failed")

    monkeypatch.setattr(recommendations, "get_recommendations", broken)
    resp = TestClient(app, raise_server_exceptions=False).get("/api/books/recommendations", headers=headers)
    assert resp.status_code == 500
    assert resp.json()["detail"] == "Internal server error"

    errors = database.db["analytics"].find_one({})["errors"]
    assert [(e["code"], e["endpoint"], e["userId"]) for e in errors] == [("500", "/api/books/recommendations", user["_id"])]
    assert errors[0]["message"] == "Internal Server Error"
