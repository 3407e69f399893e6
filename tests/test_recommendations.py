from bson import ObjectId

import database
from recommendations import (
    exclude_candidates,
    favorite_genre_score,
    get_personalized_recommendations,
    get_recommendations,
    get_similar_books,
    personalized_score,
    rank_candidates,
    reading_profile,
    similarity_score,
)


def book(title, author="Anon", genres=(), rating=0, owner="other", status="Want to Read", _id=None):
    return {
        "_id": _id or ObjectId(),
        "title": title,
        "author": author,
        "genres": list(genres),
        "averageRating": rating,
        "owner": owner,
        "readingStatus": status,
    }


def test_reading_profile_counts_genres_and_authors():
    history = [
        book("a", author="Le Guin", genres=["Fantasy", "Science Fiction"]),
        book("b", author="Le Guin", genres=["Fantasy"]),
        book("c", author="Asimov", genres=["Science Fiction"]),
    ]
    genres, authors = reading_profile(history)
    assert genres == {"Fantasy": 2, "Science Fiction": 2}
    assert authors == {"Le Guin": 2, "Asimov": 1}


def test_personalized_score_combines_rating_genre_and_author():
    genres, authors = reading_profile([
        book("a", author="Le Guin", genres=["Fantasy"]),
        book("b", author="Le Guin", genres=["Fantasy"]),
    ])
    candidate = book("c", author="Le Guin", genres=["Fantasy", "Drama"], rating=4)
    # 4 * 1.5 + 2 * 2 + 2 * 3
    assert personalized_score(candidate, genres, authors) == 16


def test_favorite_genre_score():
    assert favorite_genre_score(book("x", genres=["Horror"], rating=3.5), ["Horror"]) == 10
    assert favorite_genre_score(book("x", genres=["Drama"], rating=3.5), ["Horror"]) == 7


def test_similarity_score():
    source = book("s", author="Tolkien", genres=["Fantasy", "Fiction"])
    candidate = book("c", author="Tolkien", genres=["Fantasy", "Fiction", "Poetry"], rating=4.2)
    assert similarity_score(candidate, source) == 2 * 2 + 3 + 4.2


def test_rank_orders_by_score_then_id():
    ids = sorted(ObjectId() for _ in range(3))
    books = [book("b", rating=3, _id=ids[2]), book("a", rating=3, _id=ids[0]), book("c", rating=5, _id=ids[1])]
    ranked = rank_candidates(books, lambda b: b["averageRating"])
    assert [b["title"] for b in ranked] == ["c", "a", "b"]
    assert ranked[0]["score"] == 5
    assert len(rank_candidates(books, lambda b: 0, limit=2)) == 2


def test_exclude_candidates_drops_owned_and_listed():
    mine = book("mine", owner="u1")
    read = book("read")
    other = book("other")
    kept = exclude_candidates([mine, read, other], "u1", [read["_id"]])
    assert kept == [other]


def _insert(*books):
    for b in books:
        database.db["book"].insert_one(b)


def test_recommendations_exclude_own_and_read_books():
    user = {"_id": "u1", "preferences": {"favoriteGenres": []}}
    own_read = book("own read", owner="u1", status="Read", genres=["Fantasy"])
    own = book("own", owner="u1", rating=5)
    good = book("good", owner="u2", rating=4.5, genres=["Fantasy"])
    ok = book("ok", owner="u2", rating=2)
    _insert(own_read, own, good, ok)

    basic = [b["title"] for b in get_recommendations(user)]
    personal = [b["title"] for b in get_personalized_recommendations(user)]

    assert basic == ["good", "ok"]
    assert personal == ["good", "ok"]
    assert "score" in get_recommendations(user)[0]


def test_recommendations_restricted_to_favorite_genres():
    user = {"_id": "u1", "preferences": {"favoriteGenres": ["Mystery"]}}
    _insert(
        book("mystery", owner="u2", genres=["Mystery"], rating=1),
        book("romance", owner="u2", genres=["Romance"], rating=5),
    )
    assert [b["title"] for b in get_recommendations(user)] == ["mystery"]


def test_personalized_recommendations_prefer_history():
    user = {"_id": "u1"}
    _insert(
        book("read1", owner="u1", status="Read", author="Christie", genres=["Mystery"]),
        book("read2", owner="u1", status="Read", author="Christie", genres=["Mystery"]),
        book("same author", owner="u2", author="Christie", rating=1),
        book("high rated", owner="u2", author="Other", genres=["Romance"], rating=5),
    )
    ranked = get_personalized_recommendations(user, limit=10)
    # 1 * 1.5 + 2 * 3 = 7.5 vs 5 * 1.5 = 7.5 -> tie broken by id
    assert {b["title"] for b in ranked} == {"same author", "high rated"}
    assert ranked[0]["score"] == ranked[1]["score"] == 7.5
    assert str(ranked[0]["_id"]) < str(ranked[1]["_id"])


def test_similar_books():
    source = book("source", author="Pratchett", genres=["Fantasy"])
    _insert(
        source,
        book("same genre", genres=["Fantasy"], rating=1),
        book("same author", author="Pratchett", genres=["Poetry"], rating=1),
        book("both", author="Pratchett", genres=["Fantasy"]),
        book("unrelated", genres=["History"], rating=5),
    )
    titles = [b["title"] for b in get_similar_books(str(source["_id"]))]
    assert titles == ["both", "same author", "same genre"]


def test_similar_books_unknown_id():
    assert get_similar_books(str(ObjectId())) is None
    assert get_similar_books("not-an-id") is None
