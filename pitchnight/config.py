"""
运行配置

优先读取项目根目录下的 config.py（由 config.example.py 复制而来），
不存在时退回到环境变量。
"""
import os

try:
    from config import (
        ACTIVE_WINDOW_MINUTES,
        APP_NAME,
        DB_PATH,
        LOG_FILE,
        LOG_LEVEL,
        LOGIN_KEY,
        SESSION_CODE_LENGTH,
        SESSION_COOKIE_NAME,
        SESSION_SECRET,
    )
except ImportError:
    # 允许无 config.py 情况，退回到环境变量
    APP_NAME = os.getenv("APP_NAME", "PitchNight")
    DB_PATH = os.getenv("DB_PATH", "data/pitchnight.db")
    LOGIN_KEY = os.getenv("LOGIN_KEY", "change-me")
    SESSION_SECRET = os.getenv("SESSION_SECRET", "please-set-session-secret")
    SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "pitchnight_user")
    ACTIVE_WINDOW_MINUTES = int(os.getenv("ACTIVE_WINDOW_MINUTES", "5"))
    SESSION_CODE_LENGTH = int(os.getenv("SESSION_CODE_LENGTH", "10"))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE = os.getenv("LOG_FILE", "")

MIN_STARS = 1
MAX_STARS = 5
