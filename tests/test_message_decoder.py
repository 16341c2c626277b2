import base64

from cardbutler.models.mail import RawMessage, SourceFormat
from cardbutler.parsers.message_decoder import (
    MessageDecoder,
    decode_base64_block,
    decode_message,
    strip_html,
)

from conftest import raw_message


def test_plain_text_message():
    decoded = decode_message(raw_message("1001", "招商银行信用卡电子账单", "本期应还款额：¥1,234.56"))

    assert decoded.uid == "1001"
    assert decoded.subject == "招商银行信用卡电子账单"
    assert decoded.format == SourceFormat.TEXT
    assert "本期应还款额：¥1,234.56" in decoded.text


def test_html_message_is_stripped():
    html = "<html><body><p>本期应还款额&nbsp;<b>&yen;88.00</b></p></body></html>"
    decoded = decode_message(raw_message("1002", "账单", html=html))

    assert decoded.format == SourceFormat.HTML
    assert "<" not in decoded.text
    assert "本期应还款额 ¥88.00" in decoded.text


def test_plain_text_label_wins_over_html():
    decoded = decode_message(raw_message("1003", "账单", "纯文本正文", html="<p>网页正文</p>"))

    assert decoded.format == SourceFormat.TEXT
    assert "纯文本正文" in decoded.text
    assert "网页正文" in decoded.text


def test_pdf_attachment_only_marks_format():
    decoded = decode_message(raw_message("1004", "电子账单", pdf=b"%PDF-1.4 fake"))

    assert decoded.format == SourceFormat.PDF
    assert decoded.text.strip() == ""


def test_whole_body_base64_is_decoded():
    encoded = base64.b64encode("本期应还款额：66.00".encode('utf-8')).decode('ascii')
    raw = (
        "From: bill@cmbchina.com\r\n"
        "Subject: test\r\n"
        "Content-Type: text/plain; charset=utf-8\r\n"
        "\r\n"
        f"{encoded[:20]}\r\n{encoded[20:]}\r\n"
    ).encode('ascii')

    decoded = MessageDecoder().decode(
        RawMessage(seq=1, uid="1005", sender="bill@cmbchina.com", subject="test", raw=raw)
    )

    assert decoded.text == "本期应还款额：66.00"


def test_decode_base64_block_rejects_plain_text():
    assert decode_base64_block("本期应还款额".encode('utf-8')) is None
    assert decode_base64_block(b"") is None


def test_garbage_bytes_do_not_raise():
    decoded = decode_message(
        RawMessage(seq=1, uid="1006", sender="x@y.com", subject="主题", raw=b"\xff\xfe\x00garbage")
    )

    assert decoded.subject == "主题"
    assert decoded.format in ("", SourceFormat.TEXT)


def test_strip_html_collapses_whitespace():
    assert strip_html("<div>a</div>\n\n<div>b&amp;c</div>") == "a b&c"
