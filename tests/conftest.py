import datetime
import uuid
from typing import List

import pytest
from flask import Flask
from sqlalchemy import event
from sqlalchemy.orm import validates

import refinery
from refinery import DB, Predicate, QueryPlan, Refinery, RefineryApi, Remote, ResourceConfig, ValidationError
from refinery import associations, serializers, whitelist

BASE_DATE = datetime.datetime(2024, 1, 1, 12, 0, 0)
BAKERY_ID = uuid.UUID("5b7e4c3a-1f0d-4a59-9a3e-0c8f1d2b6a71")
FLORIST_ID = uuid.UUID("c2d9e0f4-7a16-4b3c-8e25-94f1a6b0d3e8")

post_tags = DB.Table(
    "post_tags",
    DB.Column("post_id", DB.Integer, DB.ForeignKey("posts.id"), primary_key=True),
    DB.Column("tag_id", DB.Integer, DB.ForeignKey("tags.id"), primary_key=True),
)


class User(DB.Model):
    __tablename__ = "users"
    id = DB.Column(DB.Integer, primary_key=True)
    name = DB.Column(DB.String(64), nullable=False)
    email = DB.Column(DB.String(128))
    posts = DB.relationship("Post", back_populates="author")
    profile = DB.relationship("Profile", uselist=False, back_populates="user")


class Profile(DB.Model):
    __tablename__ = "profiles"
    id = DB.Column(DB.Integer, primary_key=True)
    user_id = DB.Column(DB.Integer, DB.ForeignKey("users.id"), nullable=False)
    bio = DB.Column(DB.Text)
    user = DB.relationship("User", back_populates="profile")


class Post(DB.Model):
    __tablename__ = "posts"
    id = DB.Column(DB.Integer, primary_key=True)
    title = DB.Column(DB.String(128), nullable=False)
    body = DB.Column(DB.Text)
    published = DB.Column(DB.Boolean, default=False)
    rating = DB.Column(DB.Integer)
    created_at = DB.Column(DB.DateTime, default=lambda: BASE_DATE)
    author_id = DB.Column(DB.Integer, DB.ForeignKey("users.id"), nullable=False)
    author = DB.relationship("User", back_populates="posts")
    comments = DB.relationship("Comment", back_populates="post", cascade="all, delete-orphan")
    tags = DB.relationship("Tag", secondary=post_tags)

    @validates("title")
    def validate_title(self, key, value):
        if value is not None and len(value.strip()) < 3:
            raise ValidationError("is too short", field=key)
        return value

    def top_comments(self, votes=None):
        """
        remote collection: the comments of the post, best first
        """
        return QueryPlan.for_model(Comment).replace(filters=(Predicate("post_id", (self.id,)),), order=(("votes", "desc"),))

    def tag_names(self):
        return sorted(tag.name for tag in self.tags)


class Comment(DB.Model):
    __tablename__ = "comments"
    id = DB.Column(DB.Integer, primary_key=True)
    body = DB.Column(DB.Text)
    votes = DB.Column(DB.Integer, default=0)
    post_id = DB.Column(DB.Integer, DB.ForeignKey("posts.id"), nullable=False)
    author_id = DB.Column(DB.Integer, DB.ForeignKey("users.id"))
    post = DB.relationship("Post", back_populates="comments")
    author = DB.relationship("User")


class Tag(DB.Model):
    __tablename__ = "tags"
    id = DB.Column(DB.Integer, primary_key=True)
    name = DB.Column(DB.String(32), nullable=False)


class Shop(DB.Model):
    __tablename__ = "shops"
    id = DB.Column(DB.Uuid, primary_key=True, default=uuid.uuid4)
    name = DB.Column(DB.String(64), nullable=False)
    opens_at = DB.Column(DB.Time)


def resource_configs() -> List[ResourceConfig]:
    return [
        ResourceConfig(User, actions=["index", "show", "associated"], associations=["posts", "profile"], fields=["id", "name", "email"]),
        ResourceConfig(
            Post,
            actions="all",
            associations=["author", "comments", "tags"],
            remotes=[Remote("top_comments", model=Comment), Remote("tag_names")],
            read_only=["created_at"],
        ),
        ResourceConfig(Comment, actions=["index", "show"], associations=["author", "post"]),
        # no "show": instances of tags can't be fetched
        ResourceConfig(Tag, actions=["index"]),
        ResourceConfig(Shop, actions=["index", "show", "update"]),
    ]


def seed(session) -> None:
    session.add_all([User(id=1, name="Alice", email="alice@example.com"), User(id=2, name="Bob"), User(id=3, name="Carol")])
    session.add(Profile(id=1, user_id=1, bio="writer"))
    python, sql = Tag(id=1, name="python"), Tag(id=2, name="sql")
    session.add_all([python, sql])
    session.add_all([Shop(id=BAKERY_ID, name="Bakery", opens_at=datetime.time(9)), Shop(id=FLORIST_ID, name="Florist", opens_at=datetime.time(10, 30))])
    for post_id in range(1, 11):
        # posts 1-7 are written by Alice, 8-10 by Bob
        post = Post(
            id=post_id,
            title=f"{'Alice' if post_id <= 7 else 'Bob'} post {post_id}",
            author_id=1 if post_id <= 7 else 2,
            created_at=BASE_DATE + datetime.timedelta(days=post_id),
            published=post_id % 2 == 0,
            rating=post_id,
        )
        if post_id == 1:
            post.tags = [python, sql]
        elif post_id == 2:
            post.tags = [python]
        elif post_id == 8:
            post.tags = [sql]
        session.add(post)
        for number in range(1, 4):
            session.add(
                Comment(
                    id=(post_id - 1) * 3 + number,
                    post_id=post_id,
                    body=f"comment {number} on {post_id}",
                    votes=number,
                    author_id=2 if number == 1 else 3,
                )
            )
    session.commit()


@pytest.fixture(autouse=True)
def registry(monkeypatch: pytest.MonkeyPatch) -> whitelist.WhitelistRegistry:
    """
    every test starts with empty registries
    """
    fresh = whitelist.WhitelistRegistry()
    monkeypatch.setattr(whitelist, "registry", fresh)
    monkeypatch.setattr(associations, "_remotes", {})
    monkeypatch.setattr(serializers, "_attributes", {})
    return fresh


@pytest.fixture
def whitelisted(registry: whitelist.WhitelistRegistry) -> whitelist.WhitelistRegistry:
    for config in resource_configs():
        registry.register(config.model, config.fields, config.associations, config.remote_names)
        for remote in config.remotes:
            associations.register_remote(config.model, remote)
    return registry


@pytest.fixture
def app():
    app = Flask("refinery-test")
    app.config["SQLALCHEMY_DATABASE_URI"] = "sqlite://"
    app.config["TESTING"] = True
    DB.init_app(app)
    Refinery(app, app_db=DB)
    with app.app_context():
        DB.create_all()
        seed(DB.session)
        yield app
        DB.session.remove()
        DB.drop_all()


@pytest.fixture
def api(app, registry):
    api = RefineryApi(app)
    api.expose(*resource_configs())
    return api


@pytest.fixture
def client(app, api):
    return app.test_client()


@pytest.fixture
def session(app):
    return DB.session


@pytest.fixture
def queries(app) -> List[str]:
    """
    statements executed while the test runs
    """
    statements: List[str] = []

    def count(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    event.listen(DB.engine, "before_cursor_execute", count)
    yield statements
    event.remove(DB.engine, "before_cursor_execute", count)


@pytest.fixture
def log_messages(monkeypatch: pytest.MonkeyPatch) -> List[str]:
    messages: List[str] = []
    monkeypatch.setattr(refinery.log, "debug", lambda msg, *args, **kwargs: messages.append(msg))
    return messages
