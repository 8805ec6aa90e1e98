"""HTTP API serving users, feeds, feed follows and collected posts."""

from __future__ import annotations

import argparse
import json
import logging
import os
import re
import threading
import uuid
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Any, Callable, Dict, Optional

from dotenv import load_dotenv
from flask import Blueprint, Flask, Response, request

from rssagg.auth import AuthError, get_api_key
from rssagg.database import DatabaseError, Queries, User, connect
from rssagg.models import feed_follow_to_json, feed_to_json, post_to_json, user_to_json
from rssagg.scraper import start_scraping

log = logging.getLogger(__name__)

SCRAPE_CONCURRENCY = 10
SCRAPE_INTERVAL = timedelta(minutes=1)
POSTS_PER_PAGE = 10

_ALLOWED_ORIGIN = re.compile(r"https?://.*", re.DOTALL)
_ALLOWED_METHODS = frozenset({"GET", "POST", "PUT", "DELETE", "OPTIONS"})
_EXPOSED_HEADERS = "Link"
_MAX_AGE = 300

_JSON_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}
_JSON_ESCAPE_PATTERN = re.compile("[<>&\u2028\u2029]")


def respond_with_json(code: int, payload: Any) -> Response:
    """Build a JSON response; an unencodable payload yields an empty 500."""
    try:
        body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError):
        log.error("Failed to marshal JSON response: %r", payload)
        response = Response(b"", status=500)
        response.headers.pop("Content-Type", None)
        return response
    body = _JSON_ESCAPE_PATTERN.sub(lambda m: _JSON_ESCAPES[m.group(0)], body)
    return Response(body, status=code, content_type="application/json")


def respond_with_error(code: int, msg: str) -> Response:
    """Build a JSON ``{"error": msg}`` response, logging server errors."""
    if code > 499:
        log.error("Responding with 5xx error: %s", msg)
    return respond_with_json(code, {"error": msg})


# request bodies


def _decode_body() -> Dict[str, Any]:
    text = request.get_data(as_text=True).lstrip()
    if not text:
        raise ValueError("EOF")
    try:
        value, _ = json.JSONDecoder().raw_decode(text)
    except json.JSONDecodeError as exc:
        raise ValueError(str(exc)) from exc
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"cannot unmarshal {type(value).__name__} into parameters")
    return value


def _lookup(params: Dict[str, Any], key: str) -> Any:
    if key in params:
        return params[key]
    folded = key.casefold()
    return next((v for k, v in params.items() if k.casefold() == folded), None)


def _string_field(params: Dict[str, Any], key: str) -> str:
    value = _lookup(params, key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(
            f"cannot unmarshal {type(value).__name__} into field {key} of type string"
        )
    return value


def _uuid_field(params: Dict[str, Any], key: str) -> uuid.UUID:
    value = _lookup(params, key)
    if value is None:
        return uuid.UUID(int=0)
    if not isinstance(value, str):
        raise ValueError(
            f"cannot unmarshal {type(value).__name__} into field {key} of type uuid"
        )
    try:
        return uuid.UUID(value)
    except ValueError as exc:
        raise ValueError(f"invalid UUID {value!r}") from exc


def _now() -> datetime:
    return datetime.now(timezone.utc)


# cross-origin handling


def _origin_allowed(origin: str) -> bool:
    return bool(_ALLOWED_ORIGIN.fullmatch(origin.lower()))


def _canonical_header(name: str) -> str:
    return "-".join(part.capitalize() for part in name.strip().split("-"))


def _add_vary(response: Response, *names: str) -> None:
    for name in names:
        response.headers.add("Vary", name)


def _preflight() -> Response:
    response = Response(b"", status=200)
    response.headers.pop("Content-Type", None)
    _add_vary(
        response, "Origin", "Access-Control-Request-Method", "Access-Control-Request-Headers"
    )
    origin = request.headers.get("Origin", "")
    if not origin or not _origin_allowed(origin):
        return response
    method = request.headers.get("Access-Control-Request-Method", "").upper()
    if method not in _ALLOWED_METHODS:
        return response
    requested = [
        _canonical_header(h)
        for h in request.headers.get("Access-Control-Request-Headers", "").split(",")
        if h.strip()
    ]
    response.headers["Access-Control-Allow-Origin"] = origin
    response.headers["Access-Control-Allow-Methods"] = method
    if requested:
        response.headers["Access-Control-Allow-Headers"] = ", ".join(requested)
    response.headers["Access-Control-Max-Age"] = str(_MAX_AGE)
    return response


def _install_cors(app: Flask) -> None:
    @app.before_request
    def handle_preflight() -> Optional[Response]:
        if request.method == "OPTIONS" and request.headers.get("Access-Control-Request-Method"):
            return _preflight()
        return None

    @app.after_request
    def add_cors_headers(response: Response) -> Response:
        if request.method == "OPTIONS":
            return response
        _add_vary(response, "Origin")
        origin = request.headers.get("Origin", "")
        if not origin or not _origin_allowed(origin):
            return response
        if request.method.upper() not in _ALLOWED_METHODS:
            return response
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Expose-Headers"] = _EXPOSED_HEADERS
        return response


# application


def create_app(queries: Queries) -> Flask:
    """Build the web application backed by ``queries``."""
    app = Flask(__name__)
    _install_cors(app)
    v1 = Blueprint("v1", __name__, url_prefix="/v1")

    def authenticated(handler: Callable[..., Response]) -> Callable[..., Response]:
        @wraps(handler)
        def wrapper(*args: Any, **kwargs: Any) -> Response:
            try:
                api_key = get_api_key(request.headers)
            except AuthError as exc:
                return respond_with_error(403, f"Auth error: {exc}")
            try:
                user = queries.get_user_by_api_key(api_key)
            except DatabaseError as exc:
                return respond_with_error(400, f"Couldn't get user: {exc}")
            return handler(user, *args, **kwargs)

        return wrapper

    @v1.get("/healthz")
    def readiness() -> Response:
        return respond_with_json(200, {})

    @v1.get("/err")
    def error() -> Response:
        return respond_with_error(400, "Something went wrong")

    @v1.post("/users")
    def create_user() -> Response:
        try:
            params = _decode_body()
            name = _string_field(params, "name")
        except ValueError as exc:
            return respond_with_error(400, f"Error parsing JSON: {exc}")
        now = _now()
        try:
            user = queries.create_user(uuid.uuid4(), now, now, name)
        except DatabaseError as exc:
            return respond_with_error(400, f"Couldn't create user: {exc}")
        return respond_with_json(201, user_to_json(user))

    @v1.get("/users")
    @authenticated
    def get_user(user: User) -> Response:
        return respond_with_json(200, user_to_json(user))

    @v1.post("/feeds")
    @authenticated
    def create_feed(user: User) -> Response:
        try:
            params = _decode_body()
            name = _string_field(params, "name")
            url = _string_field(params, "url")
        except ValueError as exc:
            return respond_with_error(400, f"Error parsing JSON: {exc}")
        now = _now()
        try:
            feed = queries.create_feed(uuid.uuid4(), now, now, name, url, user.id)
        except DatabaseError as exc:
            return respond_with_error(400, f"Couldn't create feed: {exc}")
        return respond_with_json(201, feed_to_json(feed))

    @v1.get("/feeds")
    def get_feeds() -> Response:
        try:
            feeds = queries.get_feeds()
        except DatabaseError as exc:
            return respond_with_error(400, f"Couldn't get feed: {exc}")
        return respond_with_json(201, [feed_to_json(feed) for feed in feeds])

    @v1.get("/posts")
    @authenticated
    def get_posts_for_user(user: User) -> Response:
        try:
            posts = queries.get_posts_for_user(user.id, POSTS_PER_PAGE)
        except DatabaseError as exc:
            return respond_with_error(400, f"Couldn't get posts: {exc}")
        return respond_with_json(200, [post_to_json(post) for post in posts])

    @v1.post("/feed_follows")
    @authenticated
    def create_feed_follow(user: User) -> Response:
        try:
            params = _decode_body()
            feed_id = _uuid_field(params, "feed_id")
        except ValueError as exc:
            return respond_with_error(400, f"Error parsing JSON: {exc}")
        now = _now()
        try:
            follow = queries.create_feed_follow(uuid.uuid4(), now, now, user.id, feed_id)
        except DatabaseError as exc:
            return respond_with_error(400, f"Couldn't create feed follow: {exc}")
        return respond_with_json(201, feed_follow_to_json(follow))

    @v1.get("/feed_follows")
    @authenticated
    def get_feed_follows(user: User) -> Response:
        try:
            follows = queries.get_feed_follows(user.id)
        except DatabaseError as exc:
            return respond_with_error(400, f"Couldn't get feed follows: {exc}")
        return respond_with_json(201, [feed_follow_to_json(f) for f in follows])

    @v1.delete("/feed_follows/<feed_follow_id>")
    @authenticated
    def delete_feed_follow(user: User, feed_follow_id: str) -> Response:
        try:
            follow_id = uuid.UUID(feed_follow_id)
        except ValueError as exc:
            return respond_with_error(400, f"Couldn't parse feed follow id: {exc}")
        try:
            queries.delete_feed_follow(follow_id, user.id)
        except DatabaseError as exc:
            return respond_with_error(400, f"Couldn't delete feed follow: {exc}")
        return respond_with_json(200, {})

    app.register_blueprint(v1)
    return app


def main(argv: Optional[list] = None) -> None:
    """Serve the API on $PORT with the database at $DB_URL, scraping in the background."""
    parser = argparse.ArgumentParser(
        prog="rssagg",
        description="Serve the feed aggregator API. Configured by PORT and DB_URL.",
    )
    parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")

    load_dotenv(".env")

    port = os.environ.get("PORT", "")
    if not port:
        raise SystemExit("PORT is not found in the environment")
    db_url = os.environ.get("DB_URL", "")
    if not db_url:
        raise SystemExit("DB_URL is not found in the environment")
    try:
        port_number = int(port)
    except ValueError:
        raise SystemExit(f"invalid port {port!r}") from None

    try:
        queries = connect(db_url)
    except DatabaseError as exc:
        raise SystemExit(f"Can't connect to the database: {exc}") from exc

    threading.Thread(
        target=start_scraping,
        args=(queries, SCRAPE_CONCURRENCY, SCRAPE_INTERVAL),
        name="scraper",
        daemon=True,
    ).start()

    app = create_app(queries)
    log.info("Server starting on port %s", port)
    try:
        app.run(host="0.0.0.0", port=port_number)
    except OSError as exc:
        raise SystemExit(str(exc)) from exc