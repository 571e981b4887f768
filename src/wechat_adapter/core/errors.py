"""适配器异常类型"""

from typing import Optional


class WeChatAdapterError(Exception):
    """适配器所有异常的基类"""


class AuthenticationError(WeChatAdapterError):
    """签名校验失败，请求体不得被处理"""


class DecryptionError(WeChatAdapterError):
    """安全模式消息解密失败（密钥错误、填充非法、AppID 不符或被篡改）"""


class ConfigurationError(WeChatAdapterError):
    """配置缺失或非法，例如主动模式下未提供后台任务队列"""


class DeliveryError(WeChatAdapterError):
    """向微信推送消息失败"""


class WeChatApiError(DeliveryError):
    """微信接口返回非 0 errcode"""

    def __init__(self, errcode: int, errmsg: str, path: Optional[str] = None):
        self.errcode = errcode
        self.errmsg = errmsg
        self.path = path
        super().__init__(f"微信接口错误 {errcode}: {errmsg}" + (f" ({path})" if path else ""))
