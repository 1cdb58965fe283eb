import datetime

import pytest

from game_properties import (
    TAGS_FAILED,
    map_fields,
    parse_release_date,
)
from steam_fetcher import TagResolutionError


def fake_tags(tag_ids, language):
    names = {19: "Action", 492: "Indie", 1625: "Platformer"}
    return [names[t] for t in tag_ids]


def fields(**descriptors):
    return {name: dict(enabled=True, **descriptor) for name, descriptor in descriptors.items()}


@pytest.mark.parametrize(
    "value, expected",
    [
        ("2023", datetime.date(2023, 12, 31)),
        ("March 2023", datetime.date(2023, 3, 1)),
        ("Mar 2023", datetime.date(2023, 3, 1)),
        ("13 Mar, 2023", datetime.date(2023, 3, 13)),
        ("Mar 13, 2023", datetime.date(2023, 3, 13)),
        ("13 March, 2023", datetime.date(2023, 3, 13)),
        ("Coming soon", None),
        ("To be announced", None),
        ("", None),
    ],
)
def test_parse_release_date(value, expected):
    assert parse_release_date(value) == expected


@pytest.mark.parametrize(
    "value, expected",
    [("2023", "2023-12-31"), ("March 2023", "2023-03-01"), ("13 Mar, 2023", "2023-03-13")],
)
def test_release_date_property(value, expected):
    config = fields(releaseDate={"notion_field": "Release", "format": "date"})
    payload = map_fields({"release_date": {"date": value}}, {}, {}, 10, config)
    assert payload.properties == {"Release": {"date": {"start": expected}}}


def test_release_date_coming_soon_is_omitted_even_with_session_timestamp():
    config = fields(releaseDate={"notion_field": "Release", "format": "date"})
    payload = map_fields(
        {"release_date": {"coming_soon": True, "date": "Coming soon"}},
        {"steam_release_date": "1700000000"},
        {},
        10,
        config,
    )
    assert "Release" not in payload.properties


def test_release_date_falls_back_to_session_timestamp_as_utc_datetime():
    config = fields(releaseDate={"notion_field": "Release", "format": "datetime"})
    payload = map_fields({}, {"original_release_date": "1678700000"}, {}, 10, config)
    assert payload.properties["Release"] == {"date": {"start": "2023-03-13T00:00:00+00:00"}}


def test_game_name_prefers_session_and_wraps_title():
    config = fields(gameName={"notion_field": "Name", "is_page_title": True})
    payload = map_fields({"name": "Store Name"}, {"name": "Session Name"}, {}, 10, config)
    assert payload.properties["Name"] == {"title": [{"type": "text", "text": {"content": "Session Name"}}]}


def test_game_name_as_rich_text_falls_back_to_catalog():
    config = fields(gameName={"notion_field": "Title", "is_page_title": False})
    payload = map_fields({"name": "Store Name"}, {}, {}, 10, config)
    assert payload.properties["Title"] == {"rich_text": [{"type": "text", "text": {"content": "Store Name"}}]}


def test_cover_image_precedence():
    config = fields(coverImage={"default_url": "https://example.com/default.jpg"})
    session = {"header_image": {"english": "header.jpg"}}

    catalog_first = map_fields({"header_image": "https://store/cover.jpg"}, session, {}, 10, config)
    assert catalog_first.cover == {"type": "external", "external": {"url": "https://store/cover.jpg"}}

    session_second = map_fields({}, session, {}, 10, config)
    assert session_second.cover["external"]["url"] == "https://cdn.cloudflare.steamstatic.com/steam/apps/10/header.jpg"

    default_last = map_fields({}, {}, {}, 10, config)
    assert default_last.cover["external"]["url"] == "https://example.com/default.jpg"


def test_images_without_data_or_default_are_omitted():
    config = fields(coverImage={}, gameIcon={})
    payload = map_fields({}, {}, {}, 10, config)
    assert payload.cover is None
    assert payload.icon is None


def test_icon_uses_session_hash():
    config = fields(gameIcon={})
    payload = map_fields({}, {"icon": "abc123"}, {}, 10, config)
    assert payload.icon["external"]["url"] == (
        "https://cdn.cloudflare.steamstatic.com/steamcommunity/public/images/apps/10/abc123.jpg"
    )


def test_tags_are_resolved_in_store_order():
    config = fields(tags={"notion_field": "Tags", "tag_language": "english"})
    session = {"store_tags": {"1": 19, "0": 492, "2": 1625}}
    payload = map_fields({}, session, {}, 10, config, resolve_tags=fake_tags)
    assert payload.properties["Tags"] == {
        "multi_select": [{"name": "Indie"}, {"name": "Action"}, {"name": "Platformer"}]
    }


def test_tag_resolution_failure_uses_placeholder():
    def failing(tag_ids, language):
        raise TagResolutionError(f"bad language {language}")

    config = fields(tags={"notion_field": "Tags", "tag_language": "klingon"})
    payload = map_fields({}, {"store_tags": {"0": 19}}, {}, 10, config, resolve_tags=failing)
    assert payload.properties["Tags"] == {"multi_select": [{"name": TAGS_FAILED}]}


def test_missing_tags_are_omitted():
    config = fields(tags={"notion_field": "Tags"})
    payload = map_fields({}, {}, {}, 10, config, resolve_tags=fake_tags)
    assert payload.properties == {}


def test_price_developers_and_publishers():
    config = fields(
        gamePrice={"notion_field": "Price"},
        gameDevelopers={"notion_field": "Developers"},
        gamePublishers={"notion_field": "Publishers"},
    )
    catalog = {
        "price_overview": {"initial": 1999, "final": 999},
        "developers": ["Team Cherry"],
        "publishers": ["Acme, Inc.", "Acme, Inc."],
    }
    payload = map_fields(catalog, {}, {}, 10, config)
    assert payload.properties["Price"] == {"number": 19.99}
    assert payload.properties["Developers"] == {"multi_select": [{"name": "Team Cherry"}]}
    assert payload.properties["Publishers"] == {"multi_select": [{"name": "Acme Inc."}]}


def test_missing_price_is_omitted():
    config = fields(gamePrice={"notion_field": "Price"})
    assert map_fields({"is_free": True}, {}, {}, 10, config).properties == {}


@pytest.mark.parametrize(
    "category, label",
    [("1", "Unsupported"), ("2", "Playable"), ("3", "Verified"), ("0", "Unknown")],
)
def test_steam_deck_compatibility(category, label):
    config = fields(steamDeckCompatibility={"notion_field": "Deck"})
    session = {"steam_deck_compatibility": {"category": category}}
    payload = map_fields({}, session, {}, 10, config)
    assert payload.properties["Deck"] == {"select": {"name": label}}


@pytest.mark.parametrize(
    "fmt, expected",
    [
        ("percentage", {"number": 0.9}),
        ("sentiment", {"select": {"name": "Very Positive"}}),
        ("total", {"number": 100}),
        ("positive_negative", {"rich_text": [{"type": "text", "text": {"content": "90/10"}}]}),
    ],
)
def test_review_score_formats(fmt, expected):
    config = fields(reviewScore={"notion_field": "Reviews", "format": fmt})
    reviews = {"review_score_desc": "Very Positive", "total_positive": 90, "total_negative": 10, "total_reviews": 100}
    payload = map_fields({}, {}, reviews, 10, config)
    assert payload.properties["Reviews"] == expected


def test_review_percentage_prefers_session_value():
    config = fields(reviewScore={"notion_field": "Reviews", "format": "percentage"})
    payload = map_fields({}, {"review_percentage": "97"}, {"total_positive": 1, "total_reviews": 2}, 10, config)
    assert payload.properties["Reviews"] == {"number": 0.97}


def test_disabled_and_unknown_fields_are_omitted():
    config = {
        "gameName": {"enabled": False, "notion_field": "Name"},
        "somethingElse": {"enabled": True, "notion_field": "Other"},
        "storePage": {"enabled": True, "notion_field": "Store"},
    }
    payload = map_fields({}, {"name": "x"}, {}, 10, config)
    assert payload.properties == {"Store": {"url": "https://store.steampowered.com/app/10"}}


def test_empty_catalog_does_not_suppress_session_fields():
    config = fields(
        gameName={"notion_field": "Name", "is_page_title": True},
        gameDescription={"notion_field": "Description"},
    )
    payload = map_fields({}, {"name": "Session Only"}, {}, 10, config)
    assert list(payload.properties) == ["Name"]


def test_mapping_is_idempotent():
    config = fields(
        gameName={"notion_field": "Name", "is_page_title": True},
        releaseDate={"notion_field": "Release", "format": "date"},
        tags={"notion_field": "Tags"},
        coverImage={},
    )
    catalog = {"release_date": {"date": "13 Mar, 2023"}, "header_image": "https://store/cover.jpg"}
    session = {"name": "Game", "store_tags": {"0": 19}}
    first = map_fields(catalog, session, {}, 10, config, resolve_tags=fake_tags)
    second = map_fields(catalog, session, {}, 10, config, resolve_tags=fake_tags)
    assert first == second


def test_zero_session_review_percentage_is_kept():
    config = fields(reviewScore={"notion_field": "Reviews", "format": "percentage"})
    payload = map_fields({}, {"review_percentage": "0"}, {"total_positive": 5, "total_reviews": 10}, 10, config)
    assert payload.properties["Reviews"] == {"number": 0.0}


def test_release_date_falls_back_to_store_asset_mtime():
    config = fields(releaseDate={"notion_field": "Release", "format": "date"})
    payload = map_fields({}, {"store_asset_mtime": "1678700000"}, {}, 10, config)
    assert payload.properties["Release"] == {"date": {"start": "2023-03-13"}}
