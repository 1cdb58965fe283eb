import time
import logging
from dataclasses import dataclass

import requests

from config import ConfigError

logger = logging.getLogger(__name__)

NOTION_API_URL = "https://api.notion.com/v1"
NOTION_VERSION = "2025-09-03"
PAGE_SIZE = 100
MAX_RETRIES = 3


class NotionAPIError(Exception):
    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class SyncRecord:
    page_id: str
    app_id: int
    last_edited_by: str


def build_changed_pages_filter(after, app_id_property):
    """编辑时间晚于 after 且 Steam App ID 不为空的页面"""
    return {
        "and": [
            {
                "timestamp": "last_edited_time",
                "last_edited_time": {"after": after},
            },
            {
                "property": app_id_property,
                "number": {"is_not_empty": True},
            },
        ]
    }


class NotionAPI:
    def __init__(self, token, database_id, data_source_id=None, session=None, sleep=time.sleep):
        self.database_id = database_id
        self.data_source_id = data_source_id
        self.session = session or requests.Session()
        self.sleep = sleep
        self.headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Notion-Version": NOTION_VERSION,
        }

    def _request(self, method, path, payload=None):
        url = f"{NOTION_API_URL}/{path}"
        for attempt in range(MAX_RETRIES):
            try:
                response = self.session.request(method, url, headers=self.headers, json=payload, timeout=30)
            except requests.exceptions.SSLError as e:
                if attempt < MAX_RETRIES - 1:
                    wait_time = (attempt + 1) * 2  # 2, 4, 6 秒
                    logger.warning(f"⚠️  SSL 连接错误，{wait_time}秒后重试 ({attempt + 1}/{MAX_RETRIES})...")
                    self.sleep(wait_time)
                    continue
                raise NotionAPIError(f"SSL 错误，已重试 {MAX_RETRIES} 次：{e}") from e

            if response.status_code == 429 and attempt < MAX_RETRIES - 1:
                wait_time = float(response.headers.get("Retry-After") or (attempt + 1) * 2)
                logger.warning(f"⚠️  Notion 请求过于频繁，{wait_time}秒后重试...")
                self.sleep(wait_time)
                continue
            if response.status_code not in (200, 201):
                raise NotionAPIError(
                    f"{method} {path} 失败，状态码: {response.status_code}：{response.text}",
                    status_code=response.status_code,
                )
            return response.json()

    def resolve_data_source_id(self):
        """获取数据库的 data_source_id（新 API 要求）"""
        data = self._request("GET", f"databases/{self.database_id}")
        data_sources = data.get("data_sources", [])

        if self.data_source_id:
            if not any(ds.get("id") == self.data_source_id for ds in data_sources):
                raise ConfigError(
                    f"Notion 数据库中不存在 ID 为 '{self.data_source_id}' 的 data source，"
                    "请检查 NOTION_DATA_SOURCE_ID"
                )
        elif len(data_sources) == 1:
            self.data_source_id = data_sources[0]["id"]
        elif not data_sources:
            raise ConfigError("Notion 数据库没有 data source！")
        else:
            raise ConfigError("Notion 数据库包含多个 data source，请通过 NOTION_DATA_SOURCE_ID 指定要使用的一个")

        logger.info(f"✓ 获取到 data_source_id: {self.data_source_id}")
        return self.data_source_id

    def check_properties_exist(self, property_names):
        if not self.data_source_id:
            self.resolve_data_source_id()
        data = self._request("GET", f"data_sources/{self.data_source_id}")
        existing = data.get("properties", {})
        missing = [name for name in property_names if name not in existing]
        if missing:
            raise ConfigError(f"Notion 数据库中缺少配置文件里指定的属性：{', '.join(missing)}")

    def iter_changed_pages(self, after, app_id_property):
        """逐页查询自 after 之后被编辑过、并且设置了 Steam App ID 的页面"""
        if not self.data_source_id:
            self.resolve_data_source_id()
        query_filter = build_changed_pages_filter(after, app_id_property)
        cursor = None
        while True:
            payload = {"page_size": PAGE_SIZE, "filter": query_filter}
            if cursor:
                payload["start_cursor"] = cursor
            data = self._request("POST", f"data_sources/{self.data_source_id}/query", payload)
            for page in data.get("results", []):
                app_id = page.get("properties", {}).get(app_id_property, {}).get("number")
                if app_id is None:
                    continue
                yield SyncRecord(
                    page_id=page["id"],
                    app_id=int(app_id),
                    last_edited_by=(page.get("last_edited_by") or {}).get("id"),
                )
            cursor = data.get("next_cursor")
            if not data.get("has_more") or not cursor:
                break

    def update_page(self, page_id, payload):
        data = {"properties": payload.properties}
        # 没有封面/图标时不传，保留页面上原有的图片
        if payload.cover is not None:
            data["cover"] = payload.cover
        if payload.icon is not None:
            data["icon"] = payload.icon
        return self._request("PATCH", f"pages/{page_id}", data)

    def get_bot_user_id(self):
        return self._request("GET", "users/me")["id"]
