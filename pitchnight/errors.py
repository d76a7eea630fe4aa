"""
业务错误类型

每个错误只影响当前这一次操作，不会留下部分写入。
HTTP 层按 status_code 转换为 JSON 响应。
"""


class PitchNightError(Exception):
    """可预期、可展示给用户的错误基类"""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PitchNightError):
    """输入不合法（如星级不在 1-5 之间）"""
    status_code = 400


class TimerStateError(ValidationError):
    """当前计时器状态下不允许的操作"""
    status_code = 409


class UnauthenticatedError(PitchNightError):
    """既没有登录用户也没有投票会话"""
    status_code = 401


class AuthorizationError(PitchNightError):
    """仅主持人可执行的操作"""
    status_code = 403


class NotFoundError(PitchNightError):
    status_code = 404


class InvalidSessionError(PitchNightError):
    """会话码不存在或属于其它活动"""
    status_code = 400
