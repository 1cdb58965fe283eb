import time
import logging
import datetime
from dataclasses import dataclass

from game_properties import map_fields
from local_store import ACTOR_ID, LAST_UPDATED_AT

logger = logging.getLogger(__name__)

# 新的 lastUpdatedAt 比本轮开始时间早一分钟，防止时钟偏差或尚未可见的编辑被漏掉
SAFETY_MARGIN = datetime.timedelta(seconds=60)
NOTION_WRITE_PAUSE = 0.3


def utc_now():
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass
class CycleResult:
    discovered: int = 0
    eligible: int = 0
    processed: int = 0
    errors: int = 0
    hit_rate_limit: bool = False
    watermark_advanced: bool = False


class GameSync:
    """
    轮询 Notion 数据库中新增或修改过 Steam App ID 的页面，补全游戏信息后写回。
    只有整轮没有任何错误且没有触发限流时才推进 lastUpdatedAt，
    失败的页面会在下一轮被重新处理。
    """

    def __init__(self, config, notion, local_store, store_api=None, steam_user=None,
                 sleep=time.sleep, clock=utc_now):
        self.config = config
        self.capabilities = config.capabilities
        self.notion = notion
        self.local_store = local_store
        self.store_api = store_api
        self.steam_user = steam_user
        self.sleep = sleep
        self.clock = clock

    def prepare(self):
        if self.capabilities.actor_tracking_required and self.local_store.get(ACTOR_ID) is None:
            actor_id = self.notion.get_bot_user_id()
            self.local_store.put(ACTOR_ID, actor_id)
            logger.info(f"✓ 已记录集成自身的用户 ID：{actor_id}")

    def discover(self):
        last_updated_at = self.local_store.get(LAST_UPDATED_AT)
        logger.info(f"查找 {last_updated_at} 之后在 Notion 中修改过的游戏...")
        return list(self.notion.iter_changed_pages(last_updated_at, self.config.steam_app_id_property))

    def filter_records(self, records):
        stored = self.local_store.get_many([record.page_id for record in records])
        if not self.config.always_update:
            # 记录的 App ID 与本地一致说明只是普通编辑，不需要重新获取
            return [r for r, app_id in zip(records, stored) if app_id != r.app_id]

        # 总是更新模式：跳过集成自己刚写过、且本地已处理过的页面，避免无限循环
        actor_id = self.local_store.get(ACTOR_ID)
        return [
            r for r, app_id in zip(records, stored)
            if not (r.last_edited_by == actor_id and app_id is not None)
        ]

    def apply_rate_limit(self, records):
        limit = self.config.batch_limit
        store_bound = self.capabilities.store_api_required or self.capabilities.reviews_api_required
        if len(records) > limit and store_bound:
            logger.info(
                f"共有 {len(records)} 个游戏需要更新，本轮只处理前 {limit} 个，"
                f"剩余的将在 {self.config.rate_limit_interval} 秒后处理"
            )
            return records[:limit], True
        return records, False

    def fetch_session_info(self, records):
        if not self.capabilities.steam_user_api_required:
            return {}
        app_ids = sorted({record.app_id for record in records})
        return self.steam_user.get_app_info(app_ids)

    def process_record(self, record, session_info):
        logger.info(f"处理游戏 AppID {record.app_id}（页面 {record.page_id}）")
        catalog_info = {}
        if self.capabilities.store_api_required:
            catalog_info = self.store_api.get_app_details(record.app_id)
        review_info = {}
        if self.capabilities.reviews_api_required:
            review_info = self.store_api.get_app_reviews(record.app_id)

        resolve_tags = self.store_api.get_tag_names if self.store_api else None
        payload = map_fields(
            catalog_info,
            session_info.get(record.app_id),
            review_info,
            record.app_id,
            self.config.game_properties,
            resolve_tags=resolve_tags,
        )
        self.notion.update_page(record.page_id, payload)
        # 写入 Notion 成功后才记录到本地，出错时下一轮会重试
        self.local_store.put(record.page_id, record.app_id)

    def run_cycle(self):
        started_at = self.clock()
        result = CycleResult()

        records = self.discover()
        result.discovered = len(records)
        records = self.filter_records(records)
        records, result.hit_rate_limit = self.apply_rate_limit(records)
        result.eligible = len(records)

        if records:
            try:
                session_info = self.fetch_session_info(records)
            except Exception:
                logger.exception("❌ 从 SteamUser API 获取游戏信息失败，本轮跳过")
                session_info = None
                result.errors += 1

            if session_info is not None:
                for record in records:
                    try:
                        self.process_record(record, session_info)
                        result.processed += 1
                    except Exception:
                        logger.exception(f"❌ 更新页面 {record.page_id}（AppID {record.app_id}）失败")
                        result.errors += 1
                    self.sleep(NOTION_WRITE_PAUSE)

        if not result.errors and not result.hit_rate_limit:
            watermark = (started_at - SAFETY_MARGIN).isoformat()
            self.local_store.put(LAST_UPDATED_AT, watermark)
            result.watermark_advanced = True

        logger.info(
            f"本轮同步完成：发现 {result.discovered} 个，需要更新 {result.eligible} 个，"
            f"成功 {result.processed} 个，失败 {result.errors} 个"
            + ("（已触发限流）" if result.hit_rate_limit else "")
        )
        return result

    def next_interval(self, result):
        if result.hit_rate_limit:
            return self.config.rate_limit_interval
        return self.config.update_interval

    def run_forever(self):
        self.prepare()
        while True:
            try:
                result = self.run_cycle()
                interval = self.next_interval(result)
            except Exception:
                logger.exception("❌ 查询 Notion 数据库失败")
                interval = self.config.update_interval
            logger.info(f"{interval} 秒后再次检查。\n")
            self.sleep(interval)
