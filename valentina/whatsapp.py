"""
Client for the WhatsApp Cloud API (Meta Graph).
"""
import logging
import requests
from flask import current_app
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential
from valentina.exceptions import ExternalApiError

app_logger = logging.getLogger('app')
error_logger = logging.getLogger('error')

GRAPH_BASE_URL = "https://graph.facebook.com"
DOCUMENT_FILENAME = "Archivo.pdf"


def _graph_url(path):
    return f"{GRAPH_BASE_URL}/{current_app.config['GRAPH_API_VERSION']}/{path}"


def _auth_headers():
    return {"Authorization": f"Bearer {current_app.config['META_TOKEN']}"}


def _error_detail(error):
    response = getattr(error, "response", None)
    if response is not None:
        try:
            return response.json()
        except ValueError:
            return response.text
    return str(error)


def resolve_media_type(mimetype, filename):
    """
    Maps an upload's mimetype to the WhatsApp media type. Voice notes recorded
    in the browser (webm/ogg) are sent as audio/ogg, which WhatsApp requires.
    Returns ``(media_type, mimetype, filename)``.
    """
    mimetype = mimetype or "application/octet-stream"
    if "audio" in mimetype or "webm" in mimetype or "ogg" in mimetype:
        return "audio", "audio/ogg", "audio.ogg"
    if "image" in mimetype:
        return "image", mimetype, filename
    if "video" in mimetype:
        return "video", mimetype, filename
    return "document", mimetype, filename


def upload_media(data: bytes, mimetype: str, filename: str) -> str | None:
    """Uploads a file to Meta and returns its media id, or None on failure."""
    media_type, final_mime, final_name = resolve_media_type(mimetype, filename)
    if media_type == "audio":
        app_logger.info(f"Uploading audio as {final_mime}")
    try:
        response = requests.post(
            _graph_url(f"{current_app.config['PHONE_NUMBER_ID']}/media"),
            headers=_auth_headers(),
            files={"file": (final_name, data, final_mime)},
            data={"type": media_type, "messaging_product": "whatsapp"},
            timeout=current_app.config["GRAPH_API_TIMEOUT"],
        )
        response.raise_for_status()
        return response.json().get("id")
    except requests.exceptions.RequestException as e:
        error_logger.error(f"Meta upload error: {_error_detail(e)}")
        return None


def build_message_payload(to, content, kind="text"):
    payload = {"messaging_product": "whatsapp", "to": to, "type": kind}
    if kind == "text":
        payload["text"] = {"body": content}
    elif isinstance(content, dict) and content.get("id"):
        # Media already uploaded to Meta
        media = {"id": content["id"]}
        if kind == "document":
            media["filename"] = DOCUMENT_FILENAME
        payload[kind] = media
    elif kind in ("image", "document"):
        payload[kind] = {"link": content}
    return payload


def send_message(to, content, kind="text") -> bool:
    """Sends a text or media message. Returns True when Meta accepted it."""
    try:
        response = requests.post(
            _graph_url(f"{current_app.config['PHONE_NUMBER_ID']}/messages"),
            json=build_message_payload(to, content, kind),
            headers=_auth_headers(),
            timeout=current_app.config["GRAPH_API_TIMEOUT"],
        )
        response.raise_for_status()
        return True
    except requests.exceptions.RequestException as e:
        error_logger.error(f"WhatsApp send error to {to}: {_error_detail(e)}")
        return False


@retry(
    retry=retry_if_exception_type((requests.exceptions.ConnectionError, requests.exceptions.Timeout)),
    wait=wait_exponential(multiplier=1, min=1, max=5),
    stop=stop_after_attempt(3),
    reraise=True
)
def _fetch_media_info(media_id):
    response = requests.get(
        _graph_url(media_id),
        headers=_auth_headers(),
        timeout=current_app.config["GRAPH_API_TIMEOUT"],
    )
    response.raise_for_status()
    return response.json()


def get_media_info(media_id) -> dict:
    """Looks up a media id; the result carries a short-lived download ``url`` and ``mime_type``."""
    try:
        return _fetch_media_info(media_id)
    except requests.exceptions.RequestException as e:
        error_logger.error(f"Media lookup failed for {media_id}: {_error_detail(e)}")
        raise ExternalApiError("Could not resolve media from Meta.") from e


def open_media_stream(url):
    """Opens an authorized streaming download of a media URL."""
    try:
        response = requests.get(
            url,
            headers=_auth_headers(),
            stream=True,
            timeout=current_app.config["GRAPH_API_TIMEOUT"],
        )
        response.raise_for_status()
        return response
    except requests.exceptions.RequestException as e:
        error_logger.error(f"Media download failed: {_error_detail(e)}")
        raise ExternalApiError("Could not download media from Meta.") from e
