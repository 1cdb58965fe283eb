import json
import time
import base64
import logging

from steam.enums import EResult

from local_store import SESSION_TOKEN

logger = logging.getLogger(__name__)

PRODUCT_INFO_TIMEOUT = 30
LOGIN_KEY_TIMEOUT = 10


class SteamAuthError(Exception):
    pass


def decode_token_expiry(token):
    """从 JWT 形式的令牌中读出 exp（Unix 时间戳）；不是 JWT 时返回 None"""
    parts = token.split(".")
    if len(parts) != 3:
        return None
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload))
    except ValueError:
        return None
    exp = claims.get("exp") if isinstance(claims, dict) else None
    return int(exp) if exp is not None else None


def session_token_expired(token, now=None):
    if not token:
        return True
    expiry = decode_token_expiry(token)
    if expiry is None:
        # 不透明的 login key 看不出过期时间，交给 Steam 判断
        return False
    now = time.time() if now is None else now
    return expiry <= now


def create_steam_client():
    from steam.client import SteamClient
    return SteamClient()


class SteamUserSession:
    """
    通过 Steam CM 协议批量获取游戏信息（名称、图标、标签、评测百分比、Steam Deck 兼容性等）。
    登录成功后拿到的新令牌会立即写入本地数据库，避免下次启动时重新输入账号密码。
    """

    def __init__(self, local_store, username=None, password=None, anonymous=True, client=None):
        self.local_store = local_store
        self.username = username
        self.password = password
        self.anonymous = anonymous
        self.client = client or create_steam_client()

    @property
    def logged_on(self):
        return bool(self.client.logged_on)

    def login(self, interactive=False):
        """
        interactive=True 时令牌无效会退回到账号密码登录（可能需要输入验证码），
        只应在启动时使用；运行中重新登录只尝试匿名或令牌登录。
        """
        if self.anonymous:
            logger.info("以匿名方式登录 Steam...")
            result = self.client.anonymous_login()
        else:
            result = self._login_with_token()
            if result != EResult.OK and interactive:
                logger.info("使用账号密码登录 Steam（可能需要输入 Steam Guard 验证码）...")
                result = self.client.cli_login(self.username, self.password)

        if result != EResult.OK:
            raise SteamAuthError(f"Steam 登录失败：{result!r}")

        logger.info("✓ 已登录 Steam")
        if not self.anonymous:
            self._store_new_token()

    def _login_with_token(self):
        token = self.local_store.get(SESSION_TOKEN)
        if not token:
            return None
        if session_token_expired(token):
            logger.info("本地保存的 Steam 令牌已过期")
            return None
        logger.info("使用本地保存的令牌登录 Steam...")
        result = self.client.login(self.username, login_key=token)
        if result != EResult.OK:
            logger.warning(f"⚠️  令牌登录失败：{result!r}")
        return result

    def _store_new_token(self):
        if not self.client.login_key:
            self.client.wait_event(self.client.EVENT_NEW_LOGIN_KEY, timeout=LOGIN_KEY_TIMEOUT)
        token = self.client.login_key
        if token and token != self.local_store.get(SESSION_TOKEN):
            self.local_store.put(SESSION_TOKEN, token)
            logger.info("✓ 已保存新的 Steam 令牌")

    def get_app_info(self, app_ids):
        """一次请求获取一批游戏的 common 信息，返回 {app_id: common}"""
        if not app_ids:
            return {}
        if not self.logged_on:
            self.login()

        logger.info(f"从 SteamUser API 获取 {len(app_ids)} 个游戏的信息...")
        # auto_access_tokens 对部分需要访问令牌的游戏是必须的
        response = self.client.get_product_info(
            apps=[int(app_id) for app_id in app_ids],
            auto_access_tokens=True,
            timeout=PRODUCT_INFO_TIMEOUT,
        )
        if response is None:
            raise SteamAuthError("SteamUser API 请求超时或会话已断开")

        result = {}
        for app_id, app_info in response.get("apps", {}).items():
            result[int(app_id)] = app_info.get("common", {})
        return result

    def logout(self):
        if self.logged_on:
            self.client.logout()
