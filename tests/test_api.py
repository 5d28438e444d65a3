import datetime
import logging
from http import HTTPStatus

import pytest
from sqlalchemy.exc import StatementError

import refinery
from refinery import DB, RefineryApi, ResourceConfig
from conftest import BAKERY_ID, FLORIST_ID, Post, Shop, Tag, User


def test_end_to_end_refinement(client, queries) -> None:
    response = client.get("/posts?author.name=Alice&order=-created_at&per_page=5&page=1")

    assert response.status_code == HTTPStatus.OK
    posts = response.get_json()["posts"]
    assert [post["id"] for post in posts] == [7, 6, 5, 4, 3]
    assert all(post["author"]["name"] == "Alice" for post in posts)
    # the posts and their (batch loaded) authors
    assert len(queries) == 2


def test_no_n_plus_one(client, queries) -> None:
    client.get("/posts?include=comments.author,author&per_page=2")
    few = len(queries)
    queries.clear()
    response = client.get("/posts?include=comments.author,author&per_page=10")

    assert len(response.get_json()["posts"]) == 10
    assert len(queries) == few


def test_serialized_record(client) -> None:
    post = client.get("/posts?id=1&include=tags").get_json()["posts"][0]

    assert post["title"] == "Alice post 1"
    assert post["author_id"] == 1
    assert post["created_at"] == "2024-01-02 12:00:00"
    # associations are only expanded when they're loaded
    assert "author" not in post
    assert [tag["name"] for tag in post["tags"]] == ["python", "sql"]


def test_unknown_filter_is_ignored(client) -> None:
    response = client.get("/users?password=secret&order=name")
    assert response.status_code == HTTPStatus.OK
    assert [user["name"] for user in response.get_json()["users"]] == ["Alice", "Bob", "Carol"]


def test_has_one_reference(client) -> None:
    users = client.get("/users?include=profile").get_json()["users"]
    assert users[0]["profile_id"] == 1
    assert users[0]["profile"]["bio"] == "writer"
    assert users[1]["profile"] is None


@pytest.mark.parametrize(
    "url",
    ["/posts?limit=abc", "/posts?order=title%20sideways", "/posts?rating=high", "/posts?comments.offset=-2"],
)
def test_malformed_parameters(client, url: str) -> None:
    response = client.get(url)
    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert "errors" in response.get_json()


def test_disabled_actions_are_unroutable(app, client) -> None:
    assert client.delete("/comments/1").status_code == HTTPStatus.METHOD_NOT_ALLOWED
    assert client.post("/comments", json={"body": "x"}).status_code == HTTPStatus.METHOD_NOT_ALLOWED
    assert client.get("/tags/1").status_code == HTTPStatus.NOT_FOUND
    assert client.get("/comments/1/author").status_code == HTTPStatus.NOT_FOUND

    methods = {rule.endpoint: rule.methods for rule in app.url_map.iter_rules()}
    assert "DELETE" not in methods["api.commentsId"]
    assert "api.tagsId" not in methods
    assert "DELETE" in methods["api.postsId"]


def test_nothing_enabled_by_default(app, registry) -> None:
    api = RefineryApi(app, prefix="/v2")
    api.expose(ResourceConfig(Tag))
    assert not [rule for rule in app.url_map.iter_rules() if rule.rule.startswith("/v2")]


def test_create_and_show(client) -> None:
    response = client.post("/posts", json={"post": {"title": "Fresh post", "author_id": 2, "rating": "4"}})

    assert response.status_code == HTTPStatus.CREATED
    created = response.get_json()["post"]
    assert response.headers["Location"].endswith(f"/posts/{created['id']}")

    shown = client.get(f"/posts/{created['id']}").get_json()["post"]
    assert shown == created
    assert shown["title"] == "Fresh post"
    assert shown["rating"] == 4
    assert shown["published"] is False


def test_create_validation(client) -> None:
    response = client.post("/posts", json={"rating": 1})
    assert response.status_code == HTTPStatus.UNPROCESSABLE_ENTITY
    assert response.get_json()["errors"] == {"title": ["can't be blank"], "author_id": ["can't be blank"]}

    response = client.post("/posts", json={"title": "Hi", "author_id": 1, "rating": "many"})
    assert response.status_code == HTTPStatus.UNPROCESSABLE_ENTITY
    assert response.get_json()["errors"] == {"title": ["is too short"], "rating": ["is invalid"]}
    assert DB.session.query(Post).count() == 10


def test_create_with_unknown_attribute(client) -> None:
    response = client.post("/posts", json={"title": "Hello", "author_id": 1, "bogus": True})
    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert "bogus" in response.get_json()["errors"]


def test_create_with_invalid_body(client) -> None:
    response = client.post("/posts", data="[1, 2]", content_type="application/json")
    assert response.status_code == HTTPStatus.BAD_REQUEST


def test_read_only_fields(client) -> None:
    response = client.post("/posts", json={"title": "Dated", "author_id": 1, "created_at": "2020-01-01 00:00:00"})
    assert response.get_json()["post"]["created_at"] == "2024-01-01 12:00:00"


def test_update(client) -> None:
    response = client.patch("/posts/1", json={"title": "Renamed", "id": 99})
    assert response.status_code == HTTPStatus.NO_CONTENT
    post = DB.session.get(Post, 1)
    assert post.title == "Renamed"

    response = client.patch("/posts/1", json={"title": "No"})
    assert response.status_code == HTTPStatus.UNPROCESSABLE_ENTITY
    assert DB.session.get(Post, 1).title == "Renamed"


def test_destroy(client) -> None:
    assert client.delete("/posts/10").status_code == HTTPStatus.NO_CONTENT
    assert DB.session.get(Post, 10) is None
    assert client.delete("/posts/10").status_code == HTTPStatus.NOT_FOUND


def test_not_found(client) -> None:
    for url in ("/posts/999", "/posts/abc", "/users/999/posts"):
        response = client.get(url)
        assert response.status_code == HTTPStatus.NOT_FOUND
        assert "Not Found" in response.get_json()["errors"]


def test_associated_collection(client) -> None:
    response = client.get("/users/1/posts?order=-rating&limit=2&author_id=2")
    assert [post["id"] for post in response.get_json()["posts"]] == [7, 6]

    response = client.get("/users/2/posts?comments.votes=3")
    posts = response.get_json()["posts"]
    assert [post["id"] for post in posts] == [8, 9, 10]
    assert all([comment["votes"] for comment in post["comments"]] == [3] for post in posts)


def test_associated_record(client) -> None:
    assert client.get("/posts/8/author").get_json() == {"author": {"id": 2, "name": "Bob", "email": None}}
    assert client.get("/users/1/profile").get_json()["profile"]["bio"] == "writer"
    assert client.get("/users/3/profile").get_json() == {"profile": None}


def test_remoted_collection(client) -> None:
    response = client.get("/posts/2/top_comments?limit=2")
    assert [comment["votes"] for comment in response.get_json()["top_comments"]] == [3, 2]

    assert client.get("/posts/1/tag_names").get_json() == {"tag_names": ["python", "sql"]}


def test_default_page_limit(app, client) -> None:
    app.config["DEFAULT_PAGE_LIMIT"] = 3
    assert len(client.get("/posts").get_json()["posts"]) == 3
    assert len(client.get("/posts?limit=5").get_json()["posts"]) == 5


def test_server_fault_hides_details(client, monkeypatch: pytest.MonkeyPatch) -> None:
    def broken(*args, **kwargs):
        raise RuntimeError("database password is hunter2")

    monkeypatch.setattr(Post, "tag_names", broken)
    response = client.get("/posts/1/tag_names")
    assert response.status_code == HTTPStatus.INTERNAL_SERVER_ERROR
    assert "hunter2" not in response.get_json()["errors"]


def test_url_prefix(app, registry) -> None:
    api = RefineryApi(app, prefix="/api")
    api.expose(User, actions=["index"], fields=["id", "name"])
    response = app.test_client().get("/api/users?name=Bob")
    assert response.get_json() == {"users": [{"id": 2, "name": "Bob", "email": None}]}


def test_uuid_primary_key(client) -> None:
    response = client.get(f"/shops/{BAKERY_ID}")
    assert response.status_code == HTTPStatus.OK
    assert response.get_json() == {"shop": {"id": str(BAKERY_ID), "name": "Bakery", "opens_at": "09:00:00"}}

    response = client.patch(f"/shops/{FLORIST_ID}", json={"opens_at": "08:30:00"})
    assert response.status_code == HTTPStatus.NO_CONTENT
    assert DB.session.get(Shop, FLORIST_ID).opens_at == datetime.time(8, 30)

    assert client.get("/shops/not-a-uuid").status_code == HTTPStatus.NOT_FOUND


def test_uuid_and_time_filters(client) -> None:
    shops = client.get(f"/shops?id={FLORIST_ID}").get_json()["shops"]
    assert [shop["name"] for shop in shops] == ["Florist"]

    shops = client.get("/shops?opens_at=09:00:00").get_json()["shops"]
    assert [shop["name"] for shop in shops] == ["Bakery"]


def test_statement_errors_hide_the_query(client, monkeypatch: pytest.MonkeyPatch) -> None:
    def broken(*args, **kwargs):
        raise StatementError("bind failed", "SELECT secret FROM posts WHERE id = ?", (1,), ValueError("bad value"))

    monkeypatch.setattr(Post, "tag_names", broken)
    monkeypatch.setattr(refinery.log, "level", logging.WARNING)
    response = client.get("/posts/1/tag_names")

    assert response.status_code == HTTPStatus.BAD_REQUEST
    errors = response.get_json()["errors"]
    assert errors.startswith("Invalid parameter value")
    assert "SQL" not in errors
    assert "SELECT" not in errors


def test_order_by_association_path_is_dropped(client) -> None:
    response = client.get("/posts?order=author.name,-id&limit=3")
    assert response.status_code == HTTPStatus.OK
    assert [post["id"] for post in response.get_json()["posts"]] == [10, 9, 8]


def test_whitelisted_field_missing_from_schema(client, registry) -> None:
    registry.register(Tag, fields={"color"})
    response = client.get("/tags?color=red")
    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert "color" in response.get_json()["errors"]
