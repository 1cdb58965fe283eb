# SteamClient 基于 gevent，需要在导入 requests 之前打补丁
from steam import monkey
monkey.patch_minimal()

import os
import sys
import logging
import argparse

import gevent

from config import ConfigError, load_config
from game_sync import GameSync
from local_store import LocalStore, LocalStoreLockedError
from notion_sync import NotionAPI
from steam_fetcher import SteamStoreAPI
from steam_session import SteamAuthError, SteamUserSession

logger = logging.getLogger("steam_notion_sync")


def setup_logging():
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="把 Steam 游戏信息同步到 Notion 数据库")
    parser.add_argument("--config", help="JSON 配置文件路径（默认 config.json）")
    parser.add_argument("--once", action="store_true", help="只运行一轮同步后退出")
    return parser.parse_args(argv)


def main(argv=None):
    setup_logging()
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error(f"❌ {e}")
        return 1

    try:
        local_store = LocalStore(config.local_db_file)
    except LocalStoreLockedError as e:
        logger.error(f"❌ {e}")
        return 1

    with local_store:
        if config.force_reset:
            local_store.reset(sleep=gevent.sleep)

        notion = NotionAPI(config.notion_token, config.notion_database_id, config.notion_data_source_id)
        try:
            notion.check_properties_exist(config.enabled_properties() + [config.steam_app_id_property])
        except ConfigError as e:
            logger.error(f"❌ {e}")
            return 1

        steam_user = None
        if config.capabilities.steam_user_api_required:
            steam_user = SteamUserSession(
                local_store,
                username=config.steam_username,
                password=config.steam_password,
                anonymous=config.anonymous,
            )
            try:
                steam_user.login(interactive=True)
            except SteamAuthError as e:
                logger.error(f"❌ {e}")
                return 1

        sync = GameSync(
            config,
            notion,
            local_store,
            store_api=SteamStoreAPI(sleep=gevent.sleep),
            steam_user=steam_user,
            sleep=gevent.sleep,
        )
        try:
            if args.once:
                sync.prepare()
                result = sync.run_cycle()
                return 0 if not result.errors else 2
            sync.run_forever()
        except KeyboardInterrupt:
            logger.info("已停止同步")
        finally:
            if steam_user:
                steam_user.logout()
    return 0


if __name__ == "__main__":
    sys.exit(main())
