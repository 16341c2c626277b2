"""
IMAP 邮箱会话
通过 TLS 连接邮箱，只读打开收件箱并拉取最近的邮件
"""

import email.errors
import email.policy
import imaplib
import logging
import re
import ssl
from email.parser import BytesHeaderParser
from email.utils import parseaddr
from typing import Any, Callable, List, Optional, Tuple

from cardbutler.adapters.base import (
    MailSource, MailConnectionError, MailAuthenticationError
)
from cardbutler.models.mail import RawMessage

logger = logging.getLogger(__name__)

_SEQ_RE = re.compile(rb'^(\d+)\s+\(')
_UID_RE = re.compile(rb'UID\s+(\d+)')
_RAW_FROM_RE = re.compile(r'^From:[ \t]*(.*)$', re.IGNORECASE | re.MULTILINE)
_RAW_SUBJECT_RE = re.compile(r'^Subject:[ \t]*(.*)$', re.IGNORECASE | re.MULTILINE)


class IMAPMailSession(MailSource):
    """
    IMAP 邮箱会话

    一个实例对应一次会话：首次使用时连接并登录，close() 时登出。
    配合 with 语句使用，保证任何提前退出都会释放连接。
    """

    DEFAULT_HOST = "imap.qq.com:993"
    DEFAULT_PORT = 993

    def __init__(
        self,
        username: str,
        secret: str,
        host: str = DEFAULT_HOST,
        timeout: float = 30,
        imap_factory: Optional[Callable[..., Any]] = None,
    ):
        self._username = username
        self._secret = secret
        self._server, self._port = self.parse_host(host or self.DEFAULT_HOST)
        self._timeout = timeout
        self._imap_factory = imap_factory or imaplib.IMAP4_SSL
        self._conn: Optional[Any] = None

    @property
    def source_name(self) -> str:
        return f"IMAP({self._server}:{self._port})"

    @classmethod
    def parse_host(cls, host: str) -> Tuple[str, int]:
        """解析 host[:port]，端口缺省为 993"""
        server, _, port = host.strip().partition(':')
        if not port:
            return server, cls.DEFAULT_PORT
        try:
            return server, int(port)
        except ValueError:
            raise MailConnectionError(f"IMAP 服务器地址无效: {host}", details={'host': host})

    def _ensure_connected(self) -> Any:
        """建立 IMAP 连接并登录"""
        if self._conn is not None:
            return self._conn

        try:
            context = ssl.create_default_context()
            logger.info("[→] 连接 IMAP 服务器: %s:%s", self._server, self._port)
            conn = self._imap_factory(
                self._server, self._port, ssl_context=context, timeout=self._timeout
            )
        except (OSError, imaplib.IMAP4.error) as e:
            raise MailConnectionError(f"IMAP连接失败: {e}", details={'error': str(e)})

        # 先记下连接，登录失败时 close() 仍会登出
        self._conn = conn

        try:
            logger.info("[→] 登录邮箱: %s", self._username)
            status, response = conn.login(self._username, self._secret)
        except imaplib.IMAP4.error as e:
            raise MailAuthenticationError(f"IMAP登录失败: {e}", details={'error': str(e)})
        except OSError as e:
            raise MailConnectionError(f"IMAP连接中断: {e}", details={'error': str(e)})

        if status != 'OK':
            raise MailAuthenticationError(
                f"IMAP登录失败: {response}",
                details={'status': status, 'response': str(response)}
            )

        logger.info("[✓] IMAP 登录成功")
        return conn

    def check_login(self) -> None:
        self._ensure_connected()

    def fetch_recent(self, limit: int = 100) -> List[RawMessage]:
        """
        拉取收件箱最近 limit 封邮件

        使用 BODY.PEEK[]，不会改变邮件的已读状态。
        """
        conn = self._ensure_connected()

        try:
            status, data = conn.select('INBOX', readonly=True)
            if status != 'OK':
                raise MailConnectionError(f"选择收件箱失败: {data}")

            count = int(data[0] or 0) if data else 0
            if count == 0:
                logger.info("[i] 收件箱为空")
                return []

            start = max(1, count - limit + 1)
            status, data = conn.fetch(f"{start}:{count}", "(UID BODY.PEEK[])")
            if status != 'OK':
                raise MailConnectionError(f"拉取邮件失败: {data}")
        except (OSError, imaplib.IMAP4.error) as e:
            raise MailConnectionError(f"拉取邮件失败: {e}", details={'error': str(e)})

        messages = self._parse_fetch_response(data)
        logger.info("[✓] 拉取 %d 封邮件（序号 %d-%d）", len(messages), start, count)
        return messages

    def _parse_fetch_response(self, data: List[Any]) -> List[RawMessage]:
        """
        解析 imaplib 的 FETCH 响应

        每封邮件是 (b'<seq> (UID <uid> BODY[] {n}', 内容)，
        部分服务器把 UID 放在内容之后的 b' UID <uid>)' 中。
        """
        entries: List[List[Any]] = []
        for item in data or []:
            if isinstance(item, tuple) and len(item) >= 2:
                meta, payload = item[0], item[1]
                seq_match = _SEQ_RE.match(meta or b'')
                uid_match = _UID_RE.search(meta or b'')
                entries.append([
                    int(seq_match.group(1)) if seq_match else 0,
                    uid_match.group(1).decode() if uid_match else None,
                    payload or b'',
                ])
            elif isinstance(item, bytes) and entries and entries[-1][1] is None:
                uid_match = _UID_RE.search(item)
                if uid_match:
                    entries[-1][1] = uid_match.group(1).decode()

        messages = []
        for seq, uid, payload in entries:
            if uid is None:
                logger.warning("[!] 邮件(序号 %s)缺少 UID，已忽略", seq)
                continue
            sender, subject = self._read_envelope(payload)
            messages.append(RawMessage(seq=seq, uid=uid, sender=sender, subject=subject, raw=payload))
        return messages

    def _read_envelope(self, payload: bytes) -> Tuple[str, str]:
        """从邮件头读取发件人地址与主题，解析失败时退回原始头文本"""
        try:
            headers = BytesHeaderParser(policy=email.policy.default).parsebytes(payload)
            sender = parseaddr(str(headers.get('From', '')))[1]
            subject = str(headers.get('Subject', '') or '')
        except (email.errors.MessageError, AttributeError, ValueError,
                TypeError, IndexError, LookupError) as e:
            logger.warning("[!] 邮件头解析失败，使用原始头: %s", e)
            return self._read_raw_envelope(payload)
        return sender.strip(), subject.strip()

    @staticmethod
    def _read_raw_envelope(payload: bytes) -> Tuple[str, str]:
        head = payload.split(b'\r\n\r\n', 1)[0].split(b'\n\n', 1)[0]
        text = head.decode('utf-8', errors='replace')
        sender_match = _RAW_FROM_RE.search(text)
        subject_match = _RAW_SUBJECT_RE.search(text)
        sender = sender_match.group(1).strip() if sender_match else ''
        address = parseaddr(sender)[1] or sender
        return address.strip(), subject_match.group(1).strip() if subject_match else ''

    def close(self) -> None:
        """登出，失败只记录日志"""
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        try:
            conn.logout()
        except (OSError, imaplib.IMAP4.error) as e:
            logger.debug("IMAP 登出失败: %s", e)
