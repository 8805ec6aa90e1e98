"""RSS aggregator: a JSON HTTP API over users, feeds, follows and posts in SQLite, with a feed scraper."""

__version__ = "0.1.0"

__all__ = ["__version__"]