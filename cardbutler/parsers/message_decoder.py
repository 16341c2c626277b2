"""
邮件解码器
解析 MIME 结构，把纯文本与 HTML 正文转换为可供字段提取的文本
"""

import base64
import binascii
import email
import email.errors
import email.policy
import logging
import re
from email.message import Message
from typing import List, Optional

from cardbutler.adapters.base import MessageParseError
from cardbutler.models.mail import RawMessage, DecodedMessage, SourceFormat

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r'<[^>]+>')
_SPACE_RE = re.compile(r'\s+')
_LINE_BREAK_RE = re.compile(rb'[\r\n]')

# 只处理账单邮件中常见的几个实体
_HTML_ENTITIES = (
    ('&nbsp;', ' '),
    ('&amp;', '&'),
    ('&lt;', '<'),
    ('&gt;', '>'),
    ('&yen;', '¥'),
)


def strip_html(html: str) -> str:
    """简单去除 HTML 标签，压缩空白"""
    text = _TAG_RE.sub(' ', html)
    for entity, char in _HTML_ENTITIES:
        text = text.replace(entity, char)
    return _SPACE_RE.sub(' ', text).strip()


def decode_base64_block(data: bytes) -> Optional[str]:
    """
    若整个正文是一段 base64 且解码后是合法 UTF-8，返回解码文本

    Returns:
        解码后的文本；不是 base64 块时返回 None
    """
    compact = _LINE_BREAK_RE.sub(b'', data.strip())
    if not compact:
        return None
    try:
        decoded = base64.b64decode(compact, validate=True)
        return decoded.decode('utf-8')
    except (binascii.Error, ValueError):
        return None


def decode_body(data: bytes, charset: Optional[str] = None) -> str:
    """把正文字节转换为文本，优先识别整体 base64 编码"""
    text = decode_base64_block(data)
    if text is not None:
        return text
    try:
        return data.decode(charset or 'utf-8', errors='replace')
    except LookupError:
        logger.debug("未知字符集 %s，按 UTF-8 解码", charset)
        return data.decode('utf-8', errors='replace')


class MessageDecoder:
    """
    邮件解码器

    text/plain 与 text/html 的文本都会拼接参与字段提取；
    格式标签以纯文本优先，PDF 附件只标记格式不提取文字。
    """

    def decode(self, raw: RawMessage) -> DecodedMessage:
        """
        解码一封邮件

        MIME 结构无法解析时返回空正文，保留信封中的发件人与主题，
        让后续匹配仍能利用主题中的线索。
        """
        try:
            text, fmt = self._decode_parts(raw)
        except MessageParseError as e:
            logger.warning("[!] 解析邮件(%s)失败: %s", raw.uid, e)
            text, fmt = "", ""

        return DecodedMessage(
            uid=raw.uid,
            sender=raw.sender,
            subject=raw.subject,
            text=text,
            format=fmt,
        )

    def _decode_parts(self, raw: RawMessage):
        try:
            msg = email.message_from_bytes(raw.raw, policy=email.policy.default)
            if msg.defects:
                logger.debug("邮件(%s) MIME 缺陷: %s", raw.uid, msg.defects)

            texts: List[str] = []
            fmt = ""
            for part in msg.walk():
                if part.is_multipart():
                    continue
                content_type = part.get_content_type()

                if content_type == "text/plain":
                    texts.append(decode_body(self._payload(part), part.get_content_charset()))
                    fmt = SourceFormat.TEXT
                elif content_type == "text/html":
                    html = decode_body(self._payload(part), part.get_content_charset())
                    texts.append(strip_html(html))
                    if not fmt:
                        fmt = SourceFormat.HTML
                elif content_type == "application/pdf":
                    # 不做 OCR
                    logger.info("[i] 邮件(%s)包含PDF附件，跳过", raw.uid)
                    fmt = SourceFormat.PDF
                # 图片等其他类型忽略
        except (email.errors.MessageError, AttributeError, ValueError, TypeError,
                LookupError, IndexError) as e:
            raise MessageParseError(f"MIME 解析失败: {e}", raw_data=raw.raw[:200])

        return "\n".join(texts), fmt

    @staticmethod
    def _payload(part: Message) -> bytes:
        payload = part.get_payload(decode=True)
        if payload is None:
            return b''
        if isinstance(payload, str):
            return payload.encode('utf-8', errors='replace')
        return payload


def decode_message(raw: RawMessage) -> DecodedMessage:
    """便捷函数：解码一封邮件"""
    return MessageDecoder().decode(raw)
