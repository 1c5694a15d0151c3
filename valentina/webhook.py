import logging
from flask import Blueprint, request, current_app

from valentina.celery_worker import process_incoming_message_task

app_logger = logging.getLogger('app')
error_logger = logging.getLogger('error')
security_logger = logging.getLogger('security')

webhook_bp = Blueprint('webhook', __name__)


@webhook_bp.route("/webhook", methods=["GET"])
def verify_webhook():
    """Meta's subscription handshake: echo the challenge when the token matches."""
    if request.args.get('hub.verify_token') == current_app.config['WEBHOOK_VERIFY_TOKEN']:
        return request.args.get('hub.challenge', ''), 200
    security_logger.warning(f"Webhook verification rejected from {request.remote_addr}")
    return "Forbidden", 403


@webhook_bp.route("/webhook", methods=["POST"])
def receive_webhook():
    """Acknowledges Meta right away; the message is handled in the background."""
    payload = request.get_json(silent=True) or {}
    try:
        process_incoming_message_task.delay(payload)
    except Exception as e:
        error_logger.error(f"Could not enqueue webhook payload: {e}", exc_info=True)
    return "", 200
