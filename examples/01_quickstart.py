#!/usr/bin/env python3
"""Example: Quickstart — db-session-handler

Minimal working example: create the sessions table in a SQLite file, run
two request cycles through the middleware, and carry data between them
with the session cookie.

Usage:
    python examples/01_quickstart.py

Requirements:
    pip install db-session-handler
"""
from __future__ import annotations

import tempfile
from pathlib import Path

import db_session_handler
from db_session_handler import SessionStore


def main() -> None:
    print(f"db-session-handler version: {db_session_handler.__version__}")

    with tempfile.TemporaryDirectory() as tmpdir:
        store = SessionStore(f"sqlite:///{Path(tmpdir) / 'sessions.db'}")
        store.create_schema()
        middleware = store.middleware()

        # Step 1: first request, no cookie yet
        with middleware.request(None) as session:
            session["user"] = "alice"
            session.merge("cart", ["book"])
        cookie = session.response_cookie
        assert cookie is not None
        print(f"New session issued: {cookie.value[:16]}... (max-age {cookie.max_age}s)")

        # Step 2: the client sends the cookie back
        with middleware.request(cookie.value) as session:
            session.merge("cart", ["pen"])
            print(f"Resumed session for {session['user']}: cart={session['cart']}")

        # Step 3: log out
        with middleware.request(cookie.value) as session:
            session.destroy()
        print(f"Logout cookie value={session.response_cookie.value!r}")

        store.dispose()


if __name__ == "__main__":
    main()
