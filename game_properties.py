import re
import logging
import datetime
from dataclasses import dataclass, field

from steam_fetcher import TagResolutionError, get_store_page_url

logger = logging.getLogger(__name__)

STEAM_CDN = "https://cdn.cloudflare.steamstatic.com"
TAGS_FAILED = "Retrieving tags failed"

STEAM_DECK_COMPATIBILITY = {
    1: "Unsupported",
    2: "Playable",
    3: "Verified",
}

# Steam 商店日期的几种写法：13 Mar, 2023 / Mar 13, 2023 / 13 March 2023 ...
FULL_DATE_FORMATS = (
    "%d %b, %Y",
    "%d %B, %Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%d %b %Y",
    "%d %B %Y",
    "%Y-%m-%d",
)
MONTH_YEAR_FORMATS = ("%B %Y", "%b %Y", "%b, %Y", "%B, %Y")
YEAR_RE = re.compile(r"^\d{4}$")


@dataclass
class OutputPayload:
    properties: dict = field(default_factory=dict)
    cover: dict = None
    icon: dict = None


@dataclass
class AppSources:
    """一个游戏在一次同步中拿到的全部原始数据"""
    app_id: int
    catalog: dict
    session: dict
    reviews: dict
    resolve_tags: object = None


def external_file(url):
    return {"type": "external", "external": {"url": url}}


def text_value(content, property_type="rich_text"):
    return {property_type: [{"type": "text", "text": {"content": content}}]}


def multi_select_value(names):
    # Notion 的多选选项名不允许包含逗号
    options = []
    for name in names:
        name = str(name).replace(",", "").strip()
        if name and name not in options:
            options.append(name)
    return {"multi_select": [{"name": name} for name in options]}


def parse_release_date(value):
    """
    解析商店返回的发售日期字符串，返回 date 或 None。
    只有年份时取当年 12 月 31 日，只有年月时取当月 1 日，
    "Coming soon" 之类无法解析的返回 None。
    """
    if not value:
        return None
    value = str(value).strip()
    if YEAR_RE.match(value):
        return datetime.date(int(value), 12, 31)
    for fmt in FULL_DATE_FORMATS:
        try:
            return datetime.datetime.strptime(value, fmt).date()
        except ValueError:
            pass
    for fmt in MONTH_YEAR_FORMATS:
        try:
            return datetime.datetime.strptime(value, fmt).date().replace(day=1)
        except ValueError:
            pass
    return None


def format_release_date(day, fmt):
    # 先统一到 UTC 零点，再按需要截断为日期
    start = datetime.datetime(day.year, day.month, day.day, tzinfo=datetime.timezone.utc).isoformat()
    if fmt == "date":
        return start.split("T")[0]
    return start


def map_game_name(descriptor, sources):
    name = sources.session.get("name") or sources.catalog.get("name")
    if not name:
        return None
    property_type = "title" if descriptor.get("is_page_title") else "rich_text"
    return text_value(name, property_type)


def map_release_date(descriptor, sources):
    release = sources.catalog.get("release_date")
    if release:
        day = parse_release_date(release.get("date"))
        if day is None:
            logger.debug(f"AppID {sources.app_id} 的发售日期无法解析：{release.get('date')!r}")
            return None
    else:
        timestamp = (
            sources.session.get("original_release_date")
            or sources.session.get("steam_release_date")
            or sources.session.get("store_asset_mtime")
        )
        if not timestamp:
            return None
        day = datetime.datetime.fromtimestamp(int(timestamp), tz=datetime.timezone.utc).date()
    return {"date": {"start": format_release_date(day, descriptor.get("format", "date"))}}


def _review_percentage(sources):
    percentage = sources.session.get("review_percentage")
    if percentage is not None:
        return int(percentage) / 100
    total = sources.reviews.get("total_reviews")
    if total:
        return round(sources.reviews.get("total_positive", 0) / total, 2)
    return None


def map_review_score(descriptor, sources):
    fmt = descriptor.get("format", "percentage")
    reviews = sources.reviews
    if fmt == "percentage":
        score = _review_percentage(sources)
        return {"number": score} if score is not None else None
    if fmt == "sentiment":
        label = reviews.get("review_score_desc")
        return {"select": {"name": label}} if label else None
    if fmt == "total":
        total = reviews.get("total_reviews")
        return {"number": total} if total is not None else None
    if fmt == "positive_negative":
        if "total_positive" not in reviews and "total_negative" not in reviews:
            return None
        content = f"{reviews.get('total_positive', 0)}/{reviews.get('total_negative', 0)}"
        return text_value(content)
    raise ValueError(f"未知的评测格式：{fmt}")


def map_tags(descriptor, sources):
    store_tags = sources.session.get("store_tags")
    if not store_tags:
        return None
    # PICS 返回的 store_tags 形如 {"0": 492, "1": 19, ...}
    if isinstance(store_tags, dict):
        tag_ids = [store_tags[k] for k in sorted(store_tags, key=int)]
    else:
        tag_ids = list(store_tags)
    try:
        tags = sources.resolve_tags(tag_ids, descriptor.get("tag_language", "english"))
    except TagResolutionError as e:
        logger.warning(f"⚠️  AppID {sources.app_id} 的标签解析失败：{e}")
        tags = [TAGS_FAILED]
    return multi_select_value(tags)


def map_description(descriptor, sources):
    description = sources.catalog.get("short_description")
    return text_value(description) if description else None


def map_store_page(descriptor, sources):
    return {"url": get_store_page_url(sources.app_id)}


def map_price(descriptor, sources):
    price = sources.catalog.get("price_overview")
    if not price or price.get("initial") is None:
        return None
    return {"number": price["initial"] / 100}


def _map_companies(key):
    def mapper(descriptor, sources):
        companies = sources.catalog.get(key)
        return multi_select_value(companies) if companies else None
    return mapper


def map_steam_deck_compatibility(descriptor, sources):
    compatibility = sources.session.get("steam_deck_compatibility")
    if not compatibility or compatibility.get("category") is None:
        return None
    label = STEAM_DECK_COMPATIBILITY.get(int(compatibility["category"]), "Unknown")
    return {"select": {"name": label}}


def cover_image(descriptor, sources):
    url = sources.catalog.get("header_image")
    if not url:
        header = (sources.session.get("header_image") or {}).get("english")
        if header:
            url = f"{STEAM_CDN}/steam/apps/{sources.app_id}/{header}"
    url = url or descriptor.get("default_url")
    return external_file(url) if url else None


def game_icon(descriptor, sources):
    # 商店 API 不提供图标，只能用 SteamUser API 的数据
    icon = sources.session.get("icon")
    if icon:
        url = f"{STEAM_CDN}/steamcommunity/public/images/apps/{sources.app_id}/{icon}.jpg"
    else:
        url = descriptor.get("default_url")
    return external_file(url) if url else None


FIELD_MAPPERS = {
    "gameName": map_game_name,
    "releaseDate": map_release_date,
    "reviewScore": map_review_score,
    "tags": map_tags,
    "gameDescription": map_description,
    "storePage": map_store_page,
    "gamePrice": map_price,
    "gameDevelopers": _map_companies("developers"),
    "gamePublishers": _map_companies("publishers"),
    "steamDeckCompatibility": map_steam_deck_compatibility,
}

# 这两个字段写入页面的封面和图标，而不是属性
IMAGE_MAPPERS = {
    "coverImage": ("cover", cover_image),
    "gameIcon": ("icon", game_icon),
}


def map_fields(catalog_info, session_info, review_info, app_id, game_properties, resolve_tags=None):
    """
    把两个上游 API 的原始数据转换成要写入 Notion 页面的内容。
    未启用或没有数据的字段不会出现在结果中，避免用占位值覆盖手动填写的属性。
    """
    sources = AppSources(
        app_id=int(app_id),
        catalog=catalog_info or {},
        session=session_info or {},
        reviews=review_info or {},
        resolve_tags=resolve_tags,
    )
    payload = OutputPayload()

    for name, descriptor in game_properties.items():
        if not descriptor.get("enabled"):
            continue
        if name in IMAGE_MAPPERS:
            attribute, mapper = IMAGE_MAPPERS[name]
            setattr(payload, attribute, mapper(descriptor, sources))
            continue
        mapper = FIELD_MAPPERS.get(name)
        if mapper is None:
            logger.debug(f"忽略未知字段 '{name}'")
            continue
        value = mapper(descriptor, sources)
        if value is not None:
            payload.properties[descriptor["notion_field"]] = value

    return payload
