import os
import json
import time
import sqlite3
import logging
import datetime

logger = logging.getLogger(__name__)

LAST_UPDATED_AT = "lastUpdatedAt"
ACTOR_ID = "actorId"
SESSION_TOKEN = "sessionToken"
RESERVED_KEYS = (LAST_UPDATED_AT, ACTOR_ID, SESSION_TOKEN)

EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc).isoformat()
RESET_DELAY_SECONDS = 10


class LocalStoreLockedError(Exception):
    pass


class LocalStore:
    """
    本地键值存储，记录每个 Notion 页面最后处理过的 Steam App ID，
    以及同步元数据（lastUpdatedAt / actorId / sessionToken）。
    连接以独占模式打开，第二个实例打开同一个文件会直接失败。
    """

    def __init__(self, path):
        self.path = path
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        # timeout=0：拿不到锁立即失败，而不是等待
        self._conn = sqlite3.connect(path, timeout=0, isolation_level=None)
        try:
            self._conn.execute("PRAGMA locking_mode=EXCLUSIVE")
            self._conn.execute("BEGIN EXCLUSIVE")
            self._conn.execute("CREATE TABLE IF NOT EXISTS kv (key TEXT PRIMARY KEY, value TEXT NOT NULL)")
            self._conn.execute("COMMIT")
        except sqlite3.OperationalError as e:
            self._conn.close()
            if "locked" in str(e):
                raise LocalStoreLockedError(
                    f"本地数据库 '{path}' 已被占用，可能有另一个实例正在运行"
                ) from e
            raise

        if self.get(LAST_UPDATED_AT) is None:
            self.put(LAST_UPDATED_AT, EPOCH)
            logger.info("✓ 本地数据库初始化完成")

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def __contains__(self, key):
        row = self._conn.execute("SELECT 1 FROM kv WHERE key = ?", (str(key),)).fetchone()
        return row is not None

    def __getitem__(self, key):
        row = self._conn.execute("SELECT value FROM kv WHERE key = ?", (str(key),)).fetchone()
        if row is None:
            raise KeyError(key)
        return json.loads(row[0])

    def get(self, key, default=None):
        try:
            return self[key]
        except KeyError:
            return default

    def get_many(self, keys):
        """按 keys 的顺序返回值，不存在的位置为 None"""
        keys = [str(k) for k in keys]
        found = {}
        # SQLite 默认最多 999 个绑定参数
        for start in range(0, len(keys), 500):
            chunk = keys[start:start + 500]
            placeholders = ",".join("?" * len(chunk))
            rows = self._conn.execute(
                f"SELECT key, value FROM kv WHERE key IN ({placeholders})", chunk
            ).fetchall()
            found.update((k, json.loads(v)) for k, v in rows)
        return [found.get(k) for k in keys]

    def put(self, key, value):
        self._conn.execute(
            "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
            (str(key), json.dumps(value)),
        )

    def clear(self):
        self._conn.execute("DELETE FROM kv")

    def reset(self, delay=RESET_DELAY_SECONDS, sleep=time.sleep):
        """清空整个本地数据库；不可恢复，所以先等待 delay 秒给操作者中止的机会"""
        delay = max(delay, RESET_DELAY_SECONDS)
        logger.warning(
            f"⚠️  配置了 force_reset，{delay} 秒后将清空本地数据库 '{self.path}'，"
            "所有已处理的页面都会被重新同步。按 Ctrl+C 中止！"
        )
        sleep(delay)
        self.clear()
        self.put(LAST_UPDATED_AT, EPOCH)
        logger.info("✓ 本地数据库已重置")

    def close(self):
        self._conn.close()
