"""
Shared test fixtures for geo-db.

Provides fresh temp databases, a fixed reference instant, and small
taxonomy sets so tests never touch the network.
"""

import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pytest

from builders import CITY, CITY_STATE, NEIGHBORHOOD, STATE
from geo_db.importers.extract import TaxonomySets
from geo_db.store import GeoDatabase
from geo_db.wikidata_time import WikiTime


@pytest.fixture
def taxonomies() -> TaxonomySets:
    """Small class sets standing in for the SPARQL closures."""
    return TaxonomySets(
        human_settlements=frozenset({"Q486972", CITY, CITY_STATE, NEIGHBORHOOD}),
        territorial_entities=frozenset({"Q56061", STATE, CITY_STATE}),
    )


@pytest.fixture
def reference() -> WikiTime:
    """Fixed 'now' so temporal tests do not depend on the wall clock."""
    return WikiTime.from_parts(2024, 6, 15, 12, 0, 0)


# ---------------------------------------------------------------------------
# Database path & instance
# ---------------------------------------------------------------------------

@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Return a path to a not-yet-existing database file."""
    return tmp_path / "test_geo.db"


@pytest.fixture
def database(db_path: Path):
    """Freshly created GeoDatabase, closed after the test."""
    db = GeoDatabase.create(db_path)
    yield db
    db.close()


# ---------------------------------------------------------------------------
# Local HTTP dump server
# ---------------------------------------------------------------------------

@pytest.fixture
def dump_server():
    """
    Serve a byte body over HTTP on localhost.

    Call `serve(body, content_length=None)` to get a URL. A content_length
    larger than the body makes the server close the connection early.
    """
    servers = []

    def serve(body: bytes, content_length=None) -> str:
        class Handler(BaseHTTPRequestHandler):
            def do_GET(self):
                self.send_response(200)
                self.send_header("Content-Type", "application/octet-stream")
                self.send_header("Content-Length", str(content_length or len(body)))
                self.end_headers()
                self.wfile.write(body)
                self.wfile.flush()
                self.close_connection = True

            def log_message(self, format, *args):
                pass

        server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
        threading.Thread(target=server.serve_forever, daemon=True).start()
        servers.append(server)
        return f"http://127.0.0.1:{server.server_address[1]}/latest-all.json.bz2"

    yield serve
    for server in servers:
        server.shutdown()
        server.server_close()
