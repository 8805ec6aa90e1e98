# rssagg

rssagg collects posts from RSS feeds and serves them through a JSON HTTP API.
Users register, add feeds, follow the feeds they care about, and read the
newest posts from the feeds they follow. A background scraper fetches up to
ten feeds at a time, never-fetched feeds first and then those fetched longest
ago, once a minute.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Running the server

The `rssagg` command reads its settings from the environment, and also from a
`.env` file in the working directory if there is one:

- `PORT`: the port to listen on (required)
- `DB_URL`: the path of the SQLite database file that holds users, feeds,
  follows and posts (required; created if it does not exist)

```
PORT=8080 DB_URL=rssagg.db rssagg
```

The server listens on all interfaces and starts the scraper in a background
thread. If either variable is missing, or `PORT` is not a number, the command
exits with a message.

## API

All routes live under `/v1`. Responses are JSON; errors have the shape
`{"error": "..."}` and come with status 400 (403 for a missing or malformed
`Authorization` header).

Routes marked *auth* need the header:

```
Authorization: ApiKey placeholder
```

where `placeholder` is replaced with the `api_key` returned when the user
was created.

| Method | Path                    | Auth | Status | Description                                  |
|--------|-------------------------|------|--------|----------------------------------------------|
| GET    | `/v1/healthz`           |      | 200    | Readiness check, returns `{}`                |
| GET    | `/v1/err`               |      | 400    | Always answers with an error                 |
| POST   | `/v1/users`             |      | 201    | Create a user: `{"name": "..."}`             |
| GET    | `/v1/users`             | yes  | 200    | The authenticated user                       |
| POST   | `/v1/feeds`             | yes  | 201    | Add a feed: `{"name": "...", "url": "..."}`  |
| GET    | `/v1/feeds`             |      | 201    | All feeds                                    |
| GET    | `/v1/posts`             | yes  | 200    | The ten newest posts from followed feeds     |
| POST   | `/v1/feed_follows`      | yes  | 201    | Follow a feed: `{"feed_id": "..."}`          |
| GET    | `/v1/feed_follows`      | yes  | 201    | The user's feed follows                      |
| DELETE | `/v1/feed_follows/{id}` | yes  | 200    | Stop following, returns `{}`                 |

Feed URLs and post URLs are unique; adding a feed whose URL is already stored
is answered with an error. Times are written in RFC 3339 form in UTC, for
example `2024-01-02T03:04:05.5Z`.

Cross-origin requests from any `http://` or `https://` origin are allowed for
the methods GET, POST, PUT, DELETE and OPTIONS; preflight answers may be cached
for 300 seconds and the `Link` header is exposed.

## Using it as a library

```python
from rssagg.database import connect
from rssagg.app import create_app

queries = connect("rssagg.db")
app = create_app(queries)
```

- `rssagg.database.connect(path)` opens an SQLite database and returns a
  `Queries` object with methods such as `create_user`, `create_feed`,
  `create_feed_follow`, `create_post`, `get_posts_for_user` and
  `get_next_feeds_to_fetch`. `Queries.transaction()` is a context manager that
  commits on success and rolls back on an exception. Failures raise
  `DatabaseError`, or its subclasses `NotFoundError` and `DuplicateKeyError`.
- `rssagg.auth.get_api_key(headers)` returns the key of an
  `Authorization: ApiKey <key>` header or raises `AuthError`.
- `rssagg.models` turns stored records into JSON-ready dictionaries
  (`user_to_json`, `feed_to_json`, `feed_follow_to_json`, `post_to_json`).
- `rssagg.rss.parse_feed(data)` turns an RSS document into an `RSSFeed` with
  its `RSSItem`s, raising `FeedParseError` on malformed XML;
  `rssagg.rss.url_to_feed(url, timeout)` downloads and parses one.
- `rssagg.scraper.scrape_feed(queries, feed, fetch)` marks one feed as fetched
  and stores its new items as posts; `start_scraping(queries, concurrency,
  interval, stop_event, fetch)` repeats that in rounds until `stop_event` is
  set. `parse_pub_date` reads dates such as `Mon, 02 Jan 2006 15:04:05 -0700`;
  an item whose date cannot be read is stored with the date 0001-01-01.

## What it does not do

Storage is SQLite only: `DB_URL` is a file path, not a connection URL for a
database server. There is no way to delete users or feeds through the API, and
the server is Flask's built-in one, not a production server.