"""
工具函数模块
提供日志、审计与通用的辅助功能
"""
import asyncio
import logging
import secrets
import string
from functools import wraps
from pathlib import Path
from typing import Callable, Optional

from .config import LOG_FILE, LOG_LEVEL
from .errors import PitchNightError

# 配置日志
_handlers = [logging.StreamHandler()]
if LOG_FILE:
    Path(LOG_FILE).parent.mkdir(parents=True, exist_ok=True)
    _handlers.append(logging.FileHandler(LOG_FILE))

logging.basicConfig(
    level=LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=_handlers,
)
logger = logging.getLogger("pitchnight")

SESSION_CODE_ALPHABET = string.ascii_letters + string.digits + "_-"
JOIN_CODE_ALPHABET = string.ascii_uppercase + string.digits


def log_operation(operation_type: str):
    """
    操作日志装饰器

    记录重要操作到日志；预期内的业务错误记为 warning，其余记为 error。
    """
    def decorator(func: Callable):
        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            logger.info(f"[{operation_type}] 开始执行: {func.__name__}")
            try:
                result = await func(*args, **kwargs)
            except PitchNightError as e:
                logger.warning(f"[{operation_type}] 已拒绝: {func.__name__} - {e.message}")
                raise
            except Exception as e:
                logger.error(f"[{operation_type}] 执行失败: {func.__name__} - {str(e)}")
                raise
            logger.info(f"[{operation_type}] 执行成功: {func.__name__}")
            return result

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            logger.info(f"[{operation_type}] 开始执行: {func.__name__}")
            try:
                result = func(*args, **kwargs)
            except PitchNightError as e:
                logger.warning(f"[{operation_type}] 已拒绝: {func.__name__} - {e.message}")
                raise
            except Exception as e:
                logger.error(f"[{operation_type}] 执行失败: {func.__name__} - {str(e)}")
                raise
            logger.info(f"[{operation_type}] 执行成功: {func.__name__}")
            return result

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper
    return decorator


def generate_code(length: int, alphabet: str = SESSION_CODE_ALPHABET) -> str:
    """生成随机短码（投票会话码、活动加入码）"""
    return "".join(secrets.choice(alphabet) for _ in range(length))


def clean_name(name: str, max_length: int = 50) -> str:
    """
    清理名称（去除首尾空白与危险字符）
    """
    if not name:
        return ""
    dangerous_chars = ['<', '>', '"', "'", ';', '--', '/*', '*/']
    cleaned = name.strip()
    for char in dangerous_chars:
        cleaned = cleaned.replace(char, '')
    return cleaned.strip()[:max_length]


class AuditLogger:
    """
    审计日志记录器
    """
    @staticmethod
    def log_vote_submission(event_id: int, group_id: int, voter: str, rating_count: int):
        """记录投票提交"""
        logger.info(
            f"[AUDIT] 投票提交 - 活动: {event_id}, 组: {group_id}, 投票者: {voter}, 评分数: {rating_count}"
        )

    @staticmethod
    def log_host_action(action: str, event_id: int, actor_id: Optional[str], detail: str = ""):
        """记录主持人操作"""
        logger.warning(f"[AUDIT] 主持人操作 - 动作: {action}, 活动: {event_id}, 操作者: {actor_id} {detail}".rstrip())

    @staticmethod
    def log_session_created(event_id: int, session_code: str):
        """记录匿名投票会话创建"""
        logger.info(f"[AUDIT] 新投票会话 - 活动: {event_id}, 会话码: {session_code}")
