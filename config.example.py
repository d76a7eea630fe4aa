"""
配置示例（不包含敏感信息）

用法：复制为 config.py 并按需修改，或优先通过环境变量覆盖。
生产环境推荐仅使用环境变量（例如 Docker 或部署平台的 Secret 管理）。
"""

import os

# ============= 应用信息 =============
# 示例：export APP_NAME="Friday Pitch Night"
APP_NAME = os.getenv("APP_NAME", "PitchNight")

# ============= 存储设置 =============
# SQLite 数据库文件位置
DB_PATH = os.getenv("DB_PATH", "data/pitchnight.db")

# ============= 安全设置 =============
# 登录密钥：外部认证服务签发用户 Cookie 时使用，务必改成强随机值。
# 示例：export LOGIN_KEY="$(python -c 'import secrets;print(secrets.token_urlsafe(32))')"
LOGIN_KEY = os.getenv("LOGIN_KEY", "change-me")
# 示例：export SESSION_SECRET="$(python -c 'import secrets;print(secrets.token_urlsafe(48))')"
SESSION_SECRET = os.getenv("SESSION_SECRET", "please-set-session-secret")
# Cookie 名称（一般无需修改）
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "pitchnight_user")

# ============= 投票设置 =============
# 匿名投票会话在多少分钟内有活动即视为"在线"
ACTIVE_WINDOW_MINUTES = int(os.getenv("ACTIVE_WINDOW_MINUTES", "5"))
# 匿名投票会话码长度
SESSION_CODE_LENGTH = int(os.getenv("SESSION_CODE_LENGTH", "10"))

# ============= 日志设置 =============
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
# 留空则只输出到控制台
LOG_FILE = os.getenv("LOG_FILE", "logs/system.log")
