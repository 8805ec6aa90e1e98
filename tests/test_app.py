import json
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from rssagg.app import create_app, main, respond_with_error, respond_with_json
from rssagg.database import connect


@pytest.fixture
def queries():
    q = connect(":memory:")
    yield q
    q.close()


@pytest.fixture
def client(queries):
    return create_app(queries).test_client()


def _make_user(client, name="alice"):
    resp = client.post("/v1/users", data=json.dumps({"name": name}))
    assert resp.status_code == 201
    return resp.get_json()


def _auth(user):
    return {"Authorization": f"ApiKey {user['api_key']}"}


def _make_feed(client, user, url="https://example.com/feed.xml", name="Example"):
    resp = client.post(
        "/v1/feeds", data=json.dumps({"name": name, "url": url}), headers=_auth(user)
    )
    assert resp.status_code == 201
    return resp.get_json()


def test_respond_with_json_empty_object():
    resp = respond_with_json(200, {})
    assert resp.status_code == 200
    assert resp.get_data(as_text=True) == "{}"
    assert resp.headers["Content-Type"] == "application/json"


def test_respond_with_json_escapes_html_characters():
    resp = respond_with_json(200, {"a": "<"})
    assert resp.get_data(as_text=True) == '{"a":"\\u003c"}'
    assert json.loads(resp.get_data(as_text=True)) == {"a": "<"}


def test_respond_with_json_unencodable_payload_gives_500():
    resp = respond_with_json(200, {"value": object()})
    assert resp.status_code == 500
    assert resp.get_data() == b""


def test_respond_with_error_body():
    resp = respond_with_error(503, "down")
    assert resp.status_code == 503
    assert json.loads(resp.get_data(as_text=True)) == {"error": "down"}


def test_healthz(client):
    resp = client.get("/v1/healthz")
    assert resp.status_code == 200
    assert resp.get_json() == {}


def test_err_endpoint(client):
    resp = client.get("/v1/err")
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Something went wrong"}


def test_create_and_get_user(client):
    created = _make_user(client, "alice")
    assert created["name"] == "alice"
    assert len(created["api_key"]) == 64
    uuid.UUID(created["id"])

    resp = client.get("/v1/users", headers=_auth(created))
    assert resp.status_code == 200
    assert resp.get_json() == created


def test_create_user_ignores_trailing_data_and_folds_case(client):
    resp = client.post("/v1/users", data='{"NAME": "bob"} trailing')
    assert resp.status_code == 201
    assert resp.get_json()["name"] == "bob"


@pytest.mark.parametrize("body", ["", "{not json", "[1]", '{"name": 5}'])
def test_create_user_bad_json(client, body):
    resp = client.post("/v1/users", data=body)
    assert resp.status_code == 400
    assert resp.get_json()["error"].startswith("Error parsing JSON: ")


def test_get_user_without_auth(client):
    resp = client.get("/v1/users")
    assert resp.status_code == 403
    assert resp.get_json() == {"error": "Auth error: no authentication info found"}


def test_get_user_malformed_header(client):
    resp = client.get("/v1/users", headers={"Authorization": "ApiKey"})
    assert resp.status_code == 403
    assert resp.get_json() == {"error": "Auth error: malformed auth header"}


def test_get_user_wrong_scheme(client):
    resp = client.get("/v1/users", headers={"Authorization": "Bearer token"})
    assert resp.status_code == 403
    assert resp.get_json() == {
        "error": "Auth error: malformed first part of the auth header"
    }


def test_get_user_unknown_key(client):
    resp = client.get("/v1/users", headers={"Authorization": "ApiKey placeholder"})
    assert resp.status_code == 400
    assert resp.get_json()["error"].startswith("Couldn't get user: ")


def test_create_and_list_feeds(client):
    user = _make_user(client)
    feed = _make_feed(client, user)
    assert feed["user_id"] == user["id"]
    assert feed["url"] == "https://example.com/feed.xml"

    resp = client.get("/v1/feeds")
    assert resp.status_code == 201
    assert resp.get_json() == [feed]


def test_list_feeds_empty(client):
    resp = client.get("/v1/feeds")
    assert resp.status_code == 201
    assert resp.get_json() == []


def test_duplicate_feed_url_rejected(client):
    user = _make_user(client)
    _make_feed(client, user)
    resp = client.post(
        "/v1/feeds",
        data=json.dumps({"name": "Again", "url": "https://example.com/feed.xml"}),
        headers=_auth(user),
    )
    assert resp.status_code == 400
    assert resp.get_json()["error"].startswith("Couldn't create feed: ")


def test_create_feed_requires_auth(client):
    resp = client.post("/v1/feeds", data=json.dumps({"name": "x", "url": "y"}))
    assert resp.status_code == 403


def test_feed_follow_round_trip(client):
    user = _make_user(client)
    feed = _make_feed(client, user)

    resp = client.post(
        "/v1/feed_follows", data=json.dumps({"feed_id": feed["id"]}), headers=_auth(user)
    )
    assert resp.status_code == 201
    follow = resp.get_json()
    assert follow["feed_id"] == feed["id"]
    assert follow["user_id"] == user["id"]

    listed = client.get("/v1/feed_follows", headers=_auth(user))
    assert listed.status_code == 201
    assert listed.get_json() == [follow]

    deleted = client.delete(f"/v1/feed_follows/{follow['id']}", headers=_auth(user))
    assert deleted.status_code == 200
    assert deleted.get_json() == {}
    assert client.get("/v1/feed_follows", headers=_auth(user)).get_json() == []


def test_delete_other_users_follow_keeps_it(client):
    owner = _make_user(client, "owner")
    other = _make_user(client, "other")
    feed = _make_feed(client, owner)
    follow = client.post(
        "/v1/feed_follows", data=json.dumps({"feed_id": feed["id"]}), headers=_auth(owner)
    ).get_json()

    resp = client.delete(f"/v1/feed_follows/{follow['id']}", headers=_auth(other))
    assert resp.status_code == 200
    assert client.get("/v1/feed_follows", headers=_auth(owner)).get_json() == [follow]


def test_follow_unknown_feed(client):
    user = _make_user(client)
    resp = client.post(
        "/v1/feed_follows", data=json.dumps({"feed_id": str(uuid.uuid4())}), headers=_auth(user)
    )
    assert resp.status_code == 400
    assert resp.get_json()["error"].startswith("Couldn't create feed follow: ")


def test_follow_with_invalid_uuid(client):
    user = _make_user(client)
    resp = client.post(
        "/v1/feed_follows", data=json.dumps({"feed_id": "nope"}), headers=_auth(user)
    )
    assert resp.status_code == 400
    assert resp.get_json()["error"].startswith("Error parsing JSON: ")


def test_delete_follow_bad_id(client):
    user = _make_user(client)
    resp = client.delete("/v1/feed_follows/not-a-uuid", headers=_auth(user))
    assert resp.status_code == 400
    assert resp.get_json()["error"].startswith("Couldn't parse feed follow id: ")


def test_posts_for_user_newest_first_limited(client, queries):
    user = _make_user(client)
    feed = _make_feed(client, user)
    client.post("/v1/feed_follows", data=json.dumps({"feed_id": feed["id"]}), headers=_auth(user))

    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    now = datetime.now(timezone.utc)
    for n in range(12):
        queries.create_post(
            uuid.uuid4(), now, now, f"post {n}", None,
            base + timedelta(days=n), f"https://example.com/{n}", uuid.UUID(feed["id"]),
        )

    resp = client.get("/v1/posts", headers=_auth(user))
    assert resp.status_code == 200
    titles = [post["title"] for post in resp.get_json()]
    assert titles == [f"post {n}" for n in range(11, 1, -1)]
    assert all(post["description"] is None for post in resp.get_json())


def test_posts_only_from_followed_feeds(client, queries):
    user = _make_user(client)
    feed = _make_feed(client, user)
    now = datetime.now(timezone.utc)
    queries.create_post(
        uuid.uuid4(), now, now, "unfollowed", "text", now,
        "https://example.com/post", uuid.UUID(feed["id"]),
    )
    resp = client.get("/v1/posts", headers=_auth(user))
    assert resp.status_code == 200
    assert resp.get_json() == []


def test_cors_actual_request(client):
    resp = client.get("/v1/healthz", headers={"Origin": "http://example.com"})
    assert resp.headers["Access-Control-Allow-Origin"] == "http://example.com"
    assert resp.headers["Access-Control-Expose-Headers"] == "Link"


def test_cors_rejects_other_schemes(client):
    resp = client.get("/v1/healthz", headers={"Origin": "ftp://example.com"})
    assert resp.status_code == 200
    assert "Access-Control-Allow-Origin" not in resp.headers


def test_cors_preflight(client):
    resp = client.options(
        "/v1/users",
        headers={
            "Origin": "https://example.com",
            "Access-Control-Request-Method": "post",
            "Access-Control-Request-Headers": "content-type",
        },
    )
    assert resp.status_code == 200
    assert resp.headers["Access-Control-Allow-Origin"] == "https://example.com"
    assert resp.headers["Access-Control-Allow-Methods"] == "POST"
    assert resp.headers["Access-Control-Allow-Headers"] == "Content-Type"
    assert resp.headers["Access-Control-Max-Age"] == "300"


def test_main_requires_port(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("PORT", raising=False)
    with pytest.raises(SystemExit) as excinfo:
        main([])
    assert str(excinfo.value) == "PORT is not found in the environment"


def test_main_requires_db_url(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.delenv("DB_URL", raising=False)
    with pytest.raises(SystemExit) as excinfo:
        main([])
    assert str(excinfo.value) == "DB_URL is not found in the environment"