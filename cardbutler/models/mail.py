"""
邮件数据模型 - IMAP 拉取结果与解码结果
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class RawMessage:
    """IMAP 拉取的原始邮件"""
    seq: int                  # 邮箱序号
    uid: str                  # IMAP UID（去重键）
    sender: str               # 发件人地址
    subject: str              # 主题（已解码）
    raw: bytes = b""          # 完整 RFC 822 内容


@dataclass(frozen=True)
class DecodedMessage:
    """解码后的邮件正文"""
    uid: str
    sender: str
    subject: str
    text: str = ""
    format: str = ""          # text/html/pdf，未识别正文时为空


class SourceFormat:
    """账单来源格式常量"""
    TEXT = "text"
    HTML = "html"
    PDF = "pdf"


@dataclass(frozen=True)
class MailCredentials:
    """邮箱拉取配置，secret 为授权码（非登录密码）"""
    email: str
    secret: str
    imap_host: str = "imap.qq.com:993"
    id: int = 1

    def public_view(self) -> dict:
        """对外展示时不包含授权码"""
        return {'id': self.id, 'email': self.email, 'imapHost': self.imap_host}

    def __repr__(self) -> str:
        return f"MailCredentials(email={self.email!r}, imap_host={self.imap_host!r})"
