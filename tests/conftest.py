import datetime

import pytest

from config import SyncConfig, resolve_capabilities
from local_store import LocalStore
from notion_sync import SyncRecord


GAME_PROPERTIES = {
    "gameName": {"enabled": True, "notion_field": "Name", "is_page_title": True},
    "coverImage": {"enabled": True},
    "gameIcon": {"enabled": True},
    "releaseDate": {"enabled": True, "notion_field": "Release", "format": "date"},
    "tags": {"enabled": True, "notion_field": "Tags", "tag_language": "english"},
    "storePage": {"enabled": True, "notion_field": "Store page"},
}

NOW = datetime.datetime(2024, 5, 1, 12, 0, 0, tzinfo=datetime.timezone.utc)


class FakeNotion:
    def __init__(self, records=(), fail_pages=(), bot_id="bot-user"):
        self.records = list(records)
        self.fail_pages = set(fail_pages)
        self.bot_id = bot_id
        self.updates = []
        self.queries = []

    def iter_changed_pages(self, after, app_id_property):
        self.queries.append((after, app_id_property))
        return iter(self.records)

    def update_page(self, page_id, payload):
        if page_id in self.fail_pages:
            raise RuntimeError(f"write failed for {page_id}")
        self.updates.append((page_id, payload))

    def get_bot_user_id(self):
        return self.bot_id


class FakeStoreAPI:
    def __init__(self, details=None, reviews=None):
        self.details = details or {}
        self.reviews = reviews or {}
        self.detail_calls = []

    def get_app_details(self, app_id):
        self.detail_calls.append(app_id)
        return self.details.get(app_id, {"name": f"Game {app_id}"})

    def get_app_reviews(self, app_id):
        return self.reviews.get(app_id, {})

    def get_tag_names(self, tag_ids, language="english"):
        return [f"tag-{tag_id}" for tag_id in tag_ids]


class FakeSteamUser:
    def __init__(self, info=None, error=None):
        self.info = info or {}
        self.error = error
        self.calls = []

    def get_app_info(self, app_ids):
        self.calls.append(list(app_ids))
        if self.error:
            raise self.error
        return {app_id: self.info.get(app_id, {"name": f"Session {app_id}"}) for app_id in app_ids}


def make_records(count, start=1, editor="human"):
    return [SyncRecord(page_id=f"page-{i}", app_id=1000 + i, last_edited_by=editor) for i in range(start, start + count)]


@pytest.fixture
def store(tmp_path):
    with LocalStore(str(tmp_path / "backend" / "local.sqlite3")) as s:
        yield s


@pytest.fixture
def make_config():
    def _make(game_properties=None, **overrides):
        game_properties = GAME_PROPERTIES if game_properties is None else game_properties
        values = dict(
            notion_token="secret",
            notion_database_id="db",
            steam_app_id_property="Steam App ID",
            game_properties=game_properties,
        )
        values.update(overrides)
        config = SyncConfig(**values)
        config.capabilities = resolve_capabilities(game_properties, config.always_update)
        return config
    return _make
