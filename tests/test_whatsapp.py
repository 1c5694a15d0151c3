from unittest.mock import patch, MagicMock

import pytest
import requests
from tenacity import wait_none

from valentina import whatsapp
from valentina.exceptions import ExternalApiError


def _ok(json_body=None):
    response = MagicMock()
    response.json.return_value = json_body or {}
    response.raise_for_status.return_value = None
    return response


@pytest.mark.parametrize("mimetype, expected", [
    ("audio/webm;codecs=opus", ("audio", "audio/ogg", "audio.ogg")),
    ("video/webm", ("audio", "audio/ogg", "audio.ogg")),
    ("audio/mpeg", ("audio", "audio/ogg", "audio.ogg")),
    ("image/png", ("image", "image/png", "f.bin")),
    ("video/mp4", ("video", "video/mp4", "f.bin")),
    ("application/pdf", ("document", "application/pdf", "f.bin")),
])
def test_resolve_media_type(mimetype, expected):
    assert whatsapp.resolve_media_type(mimetype, "f.bin") == expected


def test_message_payloads():
    assert whatsapp.build_message_payload("57", "hola") == {
        "messaging_product": "whatsapp", "to": "57", "type": "text", "text": {"body": "hola"},
    }
    assert whatsapp.build_message_payload("57", {"id": "M1"}, "document")["document"] == {
        "id": "M1", "filename": "Archivo.pdf",
    }
    assert whatsapp.build_message_payload("57", {"id": "M2"}, "audio")["audio"] == {"id": "M2"}
    assert whatsapp.build_message_payload("57", "https://x/y.jpg", "image")["image"] == {"link": "https://x/y.jpg"}


def test_upload_media_sends_voice_note_as_ogg(ctx):
    with patch("valentina.whatsapp.requests.post", return_value=_ok({"id": "MEDIA9"})) as post:
        media_id = whatsapp.upload_media(b"voice", "audio/webm", "grabacion.webm")

    assert media_id == "MEDIA9"
    url = post.call_args.args[0]
    kwargs = post.call_args.kwargs
    assert url == "https://graph.facebook.com/v21.0/1098765/media"
    assert kwargs["headers"] == {"Authorization": "Bearer meta-test-token"}
    assert kwargs["files"] == {"file": ("audio.ogg", b"voice", "audio/ogg")}
    assert kwargs["data"] == {"type": "audio", "messaging_product": "whatsapp"}


def test_upload_media_failure_returns_none(ctx):
    with patch("valentina.whatsapp.requests.post", side_effect=requests.exceptions.ConnectionError("down")):
        assert whatsapp.upload_media(b"x", "image/png", "a.png") is None


def test_send_message(ctx):
    with patch("valentina.whatsapp.requests.post", return_value=_ok()) as post:
        assert whatsapp.send_message("573001", "hola") is True
    assert post.call_args.args[0] == "https://graph.facebook.com/v21.0/1098765/messages"
    assert post.call_args.kwargs["json"]["text"] == {"body": "hola"}


def test_send_message_http_error(ctx):
    response = MagicMock()
    response.raise_for_status.side_effect = requests.exceptions.HTTPError("400", response=MagicMock())
    with patch("valentina.whatsapp.requests.post", return_value=response):
        assert whatsapp.send_message("573001", "hola") is False


def test_get_media_info(ctx):
    info = {"url": "https://lookaside.example/m", "mime_type": "image/jpeg", "id": "M1"}
    with patch("valentina.whatsapp.requests.get", return_value=_ok(info)) as get:
        assert whatsapp.get_media_info("M1") == info
    assert get.call_args.args[0] == "https://graph.facebook.com/v21.0/M1"


def test_get_media_info_http_error(ctx):
    response = MagicMock()
    response.raise_for_status.side_effect = requests.exceptions.HTTPError("404", response=MagicMock())
    with patch("valentina.whatsapp.requests.get", return_value=response):
        with pytest.raises(ExternalApiError):
            whatsapp.get_media_info("missing")


def test_get_media_info_retries_timeouts(ctx):
    info = {"url": "https://lookaside.example/m", "mime_type": "audio/ogg"}
    fast = whatsapp._fetch_media_info.retry_with(wait=wait_none())
    with patch("valentina.whatsapp._fetch_media_info", fast), \
            patch("valentina.whatsapp.requests.get",
                  side_effect=[requests.exceptions.Timeout("slow"), _ok(info)]) as get:
        assert whatsapp.get_media_info("M7") == info
    assert get.call_count == 2


def test_get_media_info_gives_up_after_three_attempts(ctx):
    fast = whatsapp._fetch_media_info.retry_with(wait=wait_none())
    with patch("valentina.whatsapp._fetch_media_info", fast), \
            patch("valentina.whatsapp.requests.get",
                  side_effect=requests.exceptions.ConnectionError("down")) as get:
        with pytest.raises(ExternalApiError):
            whatsapp.get_media_info("M8")
    assert get.call_count == 3
