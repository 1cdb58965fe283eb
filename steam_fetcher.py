import time
import logging

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

STORE_APP_DETAILS_URL = "https://store.steampowered.com/api/appdetails"
STORE_APP_REVIEWS_URL = "https://store.steampowered.com/appreviews/{app_id}"
TAG_LIST_URL = "https://api.steampowered.com/IStoreService/GetTagList/v1/"

MAX_RETRIES = 3

# Steam Web API 支持的语言代码
STEAM_LANGUAGES = frozenset([
    "arabic", "bulgarian", "schinese", "tchinese", "czech", "danish", "dutch",
    "english", "finnish", "french", "german", "greek", "hungarian", "indonesian",
    "italian", "japanese", "koreana", "norwegian", "polish", "portuguese",
    "brazilian", "romanian", "russian", "spanish", "latam", "swedish", "thai",
    "turkish", "ukrainian", "vietnamese",
])


class TagResolutionError(Exception):
    pass


def get_session():
    """创建一个带有重试机制的 requests Session 对象"""
    session = requests.Session()
    retry = Retry(
        total=5,               # 最大重试次数
        backoff_factor=1,      # 重试等待时间会依次为 1, 2, 4, 8, ... 秒
        status_forcelist=[500, 502, 503, 504],
        allowed_methods=["GET", "POST"]
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def get_store_page_url(app_id):
    return f"https://store.steampowered.com/app/{app_id}"


class SteamStoreAPI:
    """
    不需要登录的 Steam 商店接口：appdetails、评测汇总与标签名称。
    单个游戏失败只会让对应字段不可用，不会中断整批同步。
    """

    def __init__(self, session=None, sleep=time.sleep, country_code="us"):
        self.session = session or get_session()
        self.sleep = sleep
        self.country_code = country_code
        self._tag_names = {}

    def _get_json(self, url, params):
        response = self.session.get(url, params=params, timeout=10)
        response.raise_for_status()
        return response.json()

    def _with_retries(self, description, fetch):
        """
        fetch() 返回 (结束, 结果)。网络错误或返回格式不对时按 1、2、3 秒递增等待重试，
        重试用完后返回空字典。
        """
        for attempt in range(MAX_RETRIES + 1):
            try:
                done, result = fetch()
                if done:
                    return result
                reason = "响应中缺少 success 标记"
            except (requests.exceptions.RequestException, ValueError) as e:
                reason = str(e)

            if attempt < MAX_RETRIES:
                wait_time = attempt + 1
                logger.info(f"获取 {description} 失败（{reason}），{wait_time} 秒后重试...")
                self.sleep(wait_time)

        logger.warning(f"⚠️  获取 {description} 失败，已重试 {MAX_RETRIES} 次。部分信息可能仍可通过 SteamUser API 获取。")
        return {}

    def get_app_details(self, app_id):
        """
        返回 appdetails 中的 data 字典。
        success 为 false 表示商店里确实没有这个游戏，返回 None 且不重试；
        重试用尽时返回空字典。
        """
        def fetch():
            data = self._get_json(STORE_APP_DETAILS_URL, {"appids": app_id, "cc": self.country_code})
            if not isinstance(data, dict):
                return False, None
            entry = data.get(str(app_id))
            if not isinstance(entry, dict) or "success" not in entry:
                return False, None
            if not entry["success"]:
                logger.info(f"Steam 商店中不存在 AppID {app_id}")
                return True, None
            return True, entry.get("data") or {}

        return self._with_retries(f"AppID {app_id} 的商店信息", fetch)

    def get_app_reviews(self, app_id):
        """返回评测汇总 query_summary：total_positive / total_negative / total_reviews / review_score_desc"""
        params = {
            "json": 1,
            "language": "all",
            "purchase_type": "all",
            "num_per_page": 0,
        }

        def fetch():
            data = self._get_json(STORE_APP_REVIEWS_URL.format(app_id=app_id), params)
            if not isinstance(data, dict) or data.get("success") != 1:
                return False, None
            return True, data.get("query_summary") or {}

        return self._with_retries(f"AppID {app_id} 的评测信息", fetch)

    def _load_tag_names(self, language):
        if language in self._tag_names:
            return self._tag_names[language]
        try:
            data = self._get_json(TAG_LIST_URL, {"language": language})
        except (requests.exceptions.RequestException, ValueError) as e:
            raise TagResolutionError(f"获取标签列表失败：{e}") from e

        tags = data.get("response", {}).get("tags") if isinstance(data, dict) else None
        if not tags:
            raise TagResolutionError(f"标签列表为空（language={language}）")
        names = {int(tag["tagid"]): tag["name"] for tag in tags}
        self._tag_names[language] = names
        return names

    def get_tag_names(self, tag_ids, language="english"):
        """把标签 ID 解析为名称，保持输入顺序；无法识别的 ID 会被跳过"""
        if language not in STEAM_LANGUAGES:
            raise TagResolutionError(f"无效的标签语言代码：'{language}'")
        names = self._load_tag_names(language)
        result = []
        for tag_id in tag_ids:
            name = names.get(int(tag_id))
            if name:
                result.append(name)
            else:
                logger.debug(f"未知的标签 ID {tag_id}")
        return result
