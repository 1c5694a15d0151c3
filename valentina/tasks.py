import logging
from valentina import assistant, whatsapp
from valentina.models import db, ContactMetadata

app_logger = logging.getLogger('app')
error_logger = logging.getLogger('error')

# WhatsApp message type -> (history tag, description shown to the assistant)
MEDIA_TYPES = {
    "image": ("IMAGE", "📷 FOTO RECIBIDA"),
    "video": ("VIDEO", "🎥 VIDEO RECIBIDO"),
    "document": ("DOC", "📄 DOCUMENTO RECIBIDO"),
    "audio": ("AUDIO", "🎤 AUDIO RECIBIDO"),
}


def _first(items):
    return items[0] if isinstance(items, list) and items else None


def extract_change_value(payload):
    """Returns ``entry[0].changes[0].value`` of a webhook payload, or None."""
    entry = _first((payload or {}).get("entry"))
    change = _first((entry or {}).get("changes"))
    return (change or {}).get("value")


def remember_contact(contact):
    """Stores the WhatsApp profile name unless an operator named the contact by hand."""
    phone = contact.get("wa_id")
    name = (contact.get("profile") or {}).get("name")
    if not phone:
        return
    try:
        meta = db.session.get(ContactMetadata, phone)
        if meta is None:
            db.session.add(ContactMetadata(phone=phone, contact_name=name))
        elif not meta.added_manual and name:
            meta.contact_name = name
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def describe_message(msg):
    """
    Returns ``(stored_text, media_description)`` for an incoming message.
    Media is stored as a ``[MEDIA:<TYPE>:<id>]`` tag.
    """
    msg_type = msg.get("type")
    if msg_type == "text":
        return (msg.get("text") or {}).get("body", ""), ""
    if msg_type in MEDIA_TYPES:
        tag, description = MEDIA_TYPES[msg_type]
        media_id = (msg.get(msg_type) or {}).get("id")
        return f"[MEDIA:{tag}:{media_id}]", description
    return "", ""


def process_webhook_payload(payload):
    """Handles one Meta webhook delivery: contact names, the incoming message, the reply."""
    try:
        value = extract_change_value(payload)
        if not value:
            return None

        contact = _first(value.get("contacts"))
        if contact:
            remember_contact(contact)

        msg = _first(value.get("messages"))
        if not msg:
            return None

        sender = msg.get("from")
        user_msg, media_desc = describe_message(msg)
        assistant_input = f"(El usuario envió: {media_desc})" if media_desc else user_msg
        app_logger.info(f"Incoming {msg.get('type')} message from {sender}")

        reply = assistant.process_message(assistant_input, sender, user_msg)
        if reply:
            whatsapp.send_message(sender, reply)
        return reply
    except Exception as e:
        db.session.rollback()
        error_logger.error(f"Webhook processing error: {e}", exc_info=True)
        return None
