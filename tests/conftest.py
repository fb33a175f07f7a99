"""Shared fixtures: Flask app, fake map renderer, manual scheduler, in-memory gateway."""
import math

import pytest

from treasuremap.app import create_app
from treasuremap.domain.geometry import METERS_PER_DEGREE_LAT
from treasuremap.extensions import db
from treasuremap.services.persistence_codec import PersistenceError

BRUSSELS = (50.8466, 4.3528)


def offset(center, north_m=0.0, east_m=0.0):
    """Move a (lat, lng) point by a number of meters north and east."""
    lat, lng = center
    meters_per_degree_lng = METERS_PER_DEGREE_LAT * math.cos(math.radians(lat))
    return lat + north_m / METERS_PER_DEGREE_LAT, lng + east_m / meters_per_degree_lng


class RecordingRenderer:
    """Map renderer double that keeps every live primitive and its listeners."""

    def __init__(self):
        self.live = {}
        self.listeners = {}
        self.removed = []
        self._counter = 0

    def render_circle(self, center, radius_meters, style):
        return self._add({"kind": "circle", "center": center, "radius": radius_meters, "style": style})

    def render_polygon(self, rings, style):
        return self._add({"kind": "polygon", "rings": rings, "style": style})

    def remove_handle(self, handle):
        del self.live[handle]
        self.removed.append(handle)

    def on_event(self, handle, event, callback):
        self.listeners[(handle, event)] = callback

    def fire(self, handle, event):
        self.listeners[(handle, event)]()

    def of_kind(self, kind):
        return [h for h, p in self.live.items() if p["kind"] == kind]

    def _add(self, primitive):
        self._counter += 1
        handle = f"h{self._counter}"
        self.live[handle] = primitive
        return handle


class ManualTimer:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Scheduler double; timers only fire when the test calls ``run_pending``."""

    def __init__(self):
        self.timers = []

    def call_later(self, delay, callback):
        timer = ManualTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def active(self):
        return [t for t in self.timers if not t.cancelled]

    def run_pending(self):
        for timer in self.active:
            timer.cancelled = True
            timer.callback()


class InMemoryGateway:
    """MapDataGateway keeping collections in a dict, with switchable failures."""

    def __init__(self, stored=None):
        self.stored = dict(stored or {})
        self.saves = []
        self.fail_load = False
        self.fail_save = False

    def load(self, user_id):
        if self.fail_load:
            raise PersistenceError("backend offline")
        return self.stored.get(user_id)

    def save(self, user_id, collection):
        if self.fail_save:
            raise PersistenceError("backend offline")
        self.saves.append(collection)
        self.stored[user_id] = collection
        return collection["metadata"].get("revision", len(self.saves))


@pytest.fixture
def renderer():
    return RecordingRenderer()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def gateway():
    return InMemoryGateway()


@pytest.fixture
def app(tmp_path):
    app = create_app("testing", overrides={"MAP_DATA_DIR": tmp_path / "mapdata"})
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def app_ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


def auth(username):
    return {"Authorization": f"Bearer {username}"}
