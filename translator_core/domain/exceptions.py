"""统一业务异常模型。

所有跨模块抛出的业务级错误都继承自 BusinessError，
coordinator 负责把它们转换为终止型 error 事件，
消费端据此给用户展示可读的提示。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "MISSING_API_KEY"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 request_id、provider 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ConfigError(BusinessError):
    """配置缺失，例如 provider 需要 API key 但未设置。"""


class UpstreamHttpError(BusinessError):
    """上游接口返回非 2xx 状态码。"""


class UpstreamNetworkError(BusinessError):
    """网络层错误，例如连接失败、读取中断等。"""


class FrameParseError(BusinessError):
    """单行流式数据无法解析，只记录日志，不终止流。"""


class DetectionError(BusinessError):
    """语言检测失败，调用方回退到 "auto"。"""


class DuplicateRequestId(BusinessError):
    """同一个 request id 被重复登记，属于编程错误。"""


class ContextInvalidatedError(BusinessError):
    """消息总线已关闭（宿主运行时失效）。"""


class TranslationFailed(BusinessError):
    """消费端收到终止 error 事件时抛出。"""
