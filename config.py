import os
import json
import logging
from dataclasses import dataclass, field

from dotenv import load_dotenv
from jsonschema import Draft7Validator

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "config.default.json"
DEFAULT_LOCAL_DB_FILE = os.path.join("backend", "local_store.sqlite3")

# 需要 Steam 商店 API（appdetails）的字段
STORE_API_FIELDS = (
    "coverImage",
    "gameDescription",
    "gamePrice",
    "gameDevelopers",
    "gamePublishers",
    "releaseDate",
)
# 需要 SteamUser 会话（PICS product info）的字段
STEAM_USER_API_FIELDS = (
    "gameName",
    "tags",
    "gameIcon",
    "reviewScore",
    "steamDeckCompatibility",
)
REVIEWS_API_FIELDS = ("reviewScore",)


class ConfigError(Exception):
    pass


def _field(extra=None, required=("enabled", "notion_field")):
    props = {
        "enabled": {"type": "boolean"},
        "notion_field": {"type": "string", "minLength": 1},
    }
    props.update(extra or {})
    return {
        "type": "object",
        "properties": props,
        "required": list(required),
    }


_IMAGE_FIELD = _field(
    {"default_url": {"type": ["string", "null"]}},
    required=("enabled",),
)

CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "steam_app_id_property": {"type": "string", "minLength": 1},
        "update_interval": {"type": "number", "exclusiveMinimum": 0},
        "rate_limit_interval": {"type": "number", "exclusiveMinimum": 0},
        "batch_limit": {"type": "integer", "minimum": 1},
        "force_reset": {"type": "boolean"},
        "always_update": {"type": "boolean"},
        "steam_user": {
            "type": "object",
            "properties": {"anonymous": {"type": "boolean"}},
        },
        "game_properties": {
            "type": "object",
            "properties": {
                "gameName": _field({"is_page_title": {"type": "boolean"}}),
                "coverImage": _IMAGE_FIELD,
                "gameIcon": _IMAGE_FIELD,
                "releaseDate": _field({"format": {"enum": ["date", "datetime"]}}),
                "reviewScore": _field({
                    "format": {"enum": ["percentage", "sentiment", "total", "positive_negative"]},
                }),
                "tags": _field({"tag_language": {"type": "string"}}),
                "gameDescription": _field(),
                "storePage": _field(),
                "gamePrice": _field(),
                "gameDevelopers": _field(),
                "gamePublishers": _field(),
                "steamDeckCompatibility": _field(),
            },
            "additionalProperties": False,
        },
    },
    "required": ["steam_app_id_property", "game_properties"],
}


@dataclass
class Capabilities:
    store_api_required: bool = False
    steam_user_api_required: bool = False
    reviews_api_required: bool = False
    actor_tracking_required: bool = False


@dataclass
class SyncConfig:
    notion_token: str
    notion_database_id: str
    steam_app_id_property: str
    game_properties: dict
    notion_data_source_id: str = None
    update_interval: float = 60
    rate_limit_interval: float = 30
    batch_limit: int = 50
    force_reset: bool = False
    always_update: bool = False
    anonymous: bool = True
    steam_username: str = None
    steam_password: str = None
    local_db_file: str = DEFAULT_LOCAL_DB_FILE
    capabilities: Capabilities = field(default_factory=Capabilities)

    def enabled_properties(self):
        """返回所有启用且对应 Notion 属性的字段名（封面、图标没有 notion_field）"""
        names = []
        for descriptor in self.game_properties.values():
            if descriptor.get("enabled") and descriptor.get("notion_field"):
                names.append(descriptor["notion_field"])
        return names


def is_enabled(game_properties, name):
    return bool(game_properties.get(name, {}).get("enabled"))


def resolve_capabilities(game_properties, always_update=False):
    """根据启用的字段推断需要调用哪些上游 API"""
    return Capabilities(
        store_api_required=any(is_enabled(game_properties, f) for f in STORE_API_FIELDS),
        steam_user_api_required=any(is_enabled(game_properties, f) for f in STEAM_USER_API_FIELDS),
        reviews_api_required=any(is_enabled(game_properties, f) for f in REVIEWS_API_FIELDS),
        # 只有“总是更新”模式需要区分是用户还是集成自己编辑了页面
        actor_tracking_required=bool(always_update),
    )


def find_config_file(path=None):
    if path:
        if not os.path.exists(path):
            raise ConfigError(f"配置文件不存在：{path}")
        return path
    path = os.getenv("CONFIG_FILE", "config.json")
    if os.path.exists(path):
        return path
    if os.path.exists(DEFAULT_CONFIG_FILE):
        logger.warning(f"⚠️  未找到自定义配置文件 '{path}'，使用默认配置 '{DEFAULT_CONFIG_FILE}'")
        return DEFAULT_CONFIG_FILE
    raise ConfigError(f"未找到配置文件 '{path}' 或 '{DEFAULT_CONFIG_FILE}'")


def validate_config(data):
    errors = sorted(Draft7Validator(CONFIG_SCHEMA).iter_errors(data), key=lambda e: list(e.path))
    if errors:
        details = "; ".join(
            f"{'/'.join(str(p) for p in error.path) or '<root>'}: {error.message}" for error in errors
        )
        raise ConfigError(f"配置文件校验失败：{details}")


def load_config(path=None, env=None):
    """加载 .env 与 JSON 配置文件，校验后返回 SyncConfig"""
    env = os.environ if env is None else env
    config_file = find_config_file(path)
    logger.info(f"加载配置文件 '{config_file}'...")
    try:
        with open(config_file, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigError(f"读取配置文件 '{config_file}' 失败：{e}") from e

    validate_config(data)

    notion_token = env.get("NOTION_TOKEN")
    database_id = env.get("NOTION_DATABASE_ID")
    if not notion_token or not database_id:
        raise ConfigError("缺少环境变量 NOTION_TOKEN 或 NOTION_DATABASE_ID")

    anonymous = data.get("steam_user", {}).get("anonymous", True)
    username = env.get("STEAM_USERNAME")
    password = env.get("STEAM_PASSWORD")
    if not anonymous and not username:
        raise ConfigError("非匿名模式需要设置环境变量 STEAM_USERNAME")

    game_properties = data["game_properties"]
    always_update = data.get("always_update", False)
    return SyncConfig(
        notion_token=notion_token,
        notion_database_id=database_id,
        notion_data_source_id=env.get("NOTION_DATA_SOURCE_ID") or None,
        steam_app_id_property=data["steam_app_id_property"],
        game_properties=game_properties,
        update_interval=data.get("update_interval", 60),
        rate_limit_interval=data.get("rate_limit_interval", 30),
        batch_limit=data.get("batch_limit", 50),
        force_reset=data.get("force_reset", False),
        always_update=always_update,
        anonymous=anonymous,
        steam_username=username,
        steam_password=password,
        local_db_file=env.get("LOCAL_DB_FILE") or DEFAULT_LOCAL_DB_FILE,
        capabilities=resolve_capabilities(game_properties, always_update),
    )
