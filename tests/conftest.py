from collections import Counter
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from static_snapshot.config import AppConfig, DownloadConfig
from static_snapshot.core import StaticSite
from static_snapshot.db import Database
from static_snapshot.downloader import Downloader
from static_snapshot.scheduler import Scheduler

SITE = "https://www.example.com"


class FakeServer:
    """Serves canned responses by URL path and counts requests."""

    def __init__(self):
        self.routes = {}
        self.hits = Counter()
        self.fallback = None

    def add(self, path, body, status=200, headers=None):
        self.routes[path] = [(status, body, headers or {})]

    def add_sequence(self, path, responses):
        self.routes[path] = [(status, body, {}) for status, body in responses]

    def redirect(self, path, location, status=302):
        self.add(path, b"", status=status, headers={"Location": location})

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.hits[path] += 1
        responses = self.routes.get(path)
        if not responses:
            if self.fallback is not None:
                return httpx.Response(200, content=self.fallback)
            return httpx.Response(404)
        status, body, headers = responses[0] if len(responses) == 1 else responses.pop(0)
        return httpx.Response(status, content=body, headers=headers)


class FakeScheduler(Scheduler):
    def __init__(self):
        self.jobs = {}

    def defer(self, job, delay):
        self.jobs.setdefault(job, delay)

    def is_scheduled(self, job):
        return job in self.jobs


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def config(tmp_path):
    return AppConfig(
        site_url=SITE,
        static_dir=str(tmp_path / "static"),
        db_path=str(tmp_path / "snapshot.db"),
        log_dir=str(tmp_path / "logs"),
        archive_dir=str(tmp_path / "exports"),
        download=DownloadConfig(retry_delay=0),
    )


@pytest.fixture
def store(config):
    db = Database(config.db_path)
    yield db
    db.close()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def downloader(config, server, sleeps):
    d = Downloader(config.download, transport=httpx.MockTransport(server.handler), sleep=sleeps.append)
    yield d
    d.close()


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def site(config, store, scheduler, downloader, clock):
    s = StaticSite(config, store, scheduler=scheduler, downloader=downloader, clock=clock)
    yield s
    s.close()
