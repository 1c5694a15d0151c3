import base64
import json
import logging
from flask import Blueprint, request, jsonify, Response, stream_with_context
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from valentina import assistant, knowledge, utils, whatsapp
from valentina.auth import login_required
from valentina.exceptions import ApiError, ExternalApiError
from valentina.models import (
    db, utc_timestamp, ChatHistory, Lead, ContactMetadata, BotStatus,
    InventoryItem, Shortcut, GlobalTag,
)
from valentina.schemas import (
    TagSchema, ShortcutSchema, IdSchema, IndexSchema, PhoneSchema, ContactSchema,
    SendMessageSchema, UploadSendSchema, ChatActionSchema, ToggleBotSchema,
    RuleSchema, LeadUpdateSchema, SandboxSchema,
)

# Get logger instances
app_logger = logging.getLogger('app')
error_logger = logging.getLogger('error')

api_bp = Blueprint('api', __name__)


def _json_body():
    return request.get_json(silent=True) or {}


def _uploaded_file():
    upload = request.files.get('file')
    if upload is None or not upload.filename:
        return None
    return upload


def _get_or_create_metadata(phone):
    meta = db.session.get(ContactMetadata, phone)
    if meta is None:
        meta = ContactMetadata(phone=phone)
        db.session.add(meta)
    return meta


def _commit():
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


@api_bp.route("/health", methods=["GET"])
def health_check():
    """Health check endpoint for Docker."""
    return jsonify({"status": "healthy"}), 200


# --- Read endpoints ---

@api_bp.route("/data/<data_type>", methods=["GET"])
@login_required
def get_data(data_type):
    """Returns one dashboard collection; unknown types give an empty list."""
    try:
        if data_type == 'leads':
            leads = db.session.execute(select(Lead).order_by(Lead.id.desc())).scalars()
            return jsonify([lead.to_dict() for lead in leads])
        if data_type == 'config':
            return jsonify({
                "website_data": utils.get_cfg('website_data', ""),
                "tech_rules": utils.get_cfg('tech_rules', []),
                "biz_profile": utils.get_cfg('biz_profile', {}),
            })
        if data_type == 'tags':
            return jsonify([t.to_dict() for t in db.session.execute(select(GlobalTag)).scalars()])
        if data_type == 'shortcuts':
            return jsonify([s.to_dict() for s in db.session.execute(select(Shortcut)).scalars()])
        if data_type == 'knowledge':
            items = db.session.execute(select(InventoryItem).order_by(InventoryItem.id)).scalars()
            return jsonify([i.to_dict() for i in items])
        if data_type == 'history':
            grouped = {}
            for row in db.session.execute(select(ChatHistory).order_by(ChatHistory.id)).scalars():
                grouped.setdefault(row.phone, []).append(row.to_dict())
            return jsonify(grouped)
        return jsonify([])
    except Exception as e:
        error_logger.error(f"Error in /data/{data_type}: {e}", exc_info=True)
        raise ApiError("An internal error occurred while fetching data.", 500)


@api_bp.route("/chats-full", methods=["GET"])
@login_required
def chats_full():
    """Every known chat with its last message, bot switch, labels and photo, newest first."""
    metadata = {m.phone: m for m in db.session.execute(select(ContactMetadata)).scalars()}
    statuses = {s.phone: s.active for s in db.session.execute(select(BotStatus)).scalars()}
    history_phones = db.session.execute(select(ChatHistory.phone).distinct()).scalars().all()

    phones = list(dict.fromkeys(list(history_phones) + list(metadata)))
    now = utc_timestamp()
    chats = []
    for phone in phones:
        last = db.session.execute(
            select(ChatHistory).filter_by(phone=phone).order_by(ChatHistory.id.desc()).limit(1)
        ).scalar_one_or_none()
        meta = metadata.get(phone)
        chats.append({
            "id": phone,
            "name": (meta.contact_name if meta else None) or phone,
            "lastMessage": {"text": last.text, "time": last.time} if last else {"text": "Nuevo", "time": now},
            "botActive": bool(statuses.get(phone, True)),
            "pinned": bool(meta.pinned) if meta else False,
            "labels": meta.label_list if meta else [],
            "photoUrl": (meta.photo_url if meta else None) or None,
            "timestamp": last.time if last else now,
        })
    chats.sort(key=lambda c: c["timestamp"], reverse=True)
    return jsonify(chats)


# --- Tags & shortcuts ---

@api_bp.route("/tags/add", methods=["POST"])
@login_required
def add_tag():
    data = TagSchema().load(_json_body())
    try:
        db.session.add(GlobalTag(name=data['name'], color=data['color']))
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ApiError("Error", 400)
    return jsonify({"success": True})


@api_bp.route("/tags/delete", methods=["POST"])
@login_required
def delete_tag():
    data = IdSchema().load(_json_body())
    tag = db.session.get(GlobalTag, data['id'])
    if tag:
        db.session.delete(tag)
        _commit()
    return jsonify({"success": True})


@api_bp.route("/shortcuts/add", methods=["POST"])
@login_required
def add_shortcut():
    data = ShortcutSchema().load(_json_body())
    try:
        db.session.add(Shortcut(keyword=data['keyword'], text=data['text']))
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ApiError("Existe", 400)
    return jsonify({"success": True})


@api_bp.route("/shortcuts/delete", methods=["POST"])
@login_required
def delete_shortcut():
    data = IdSchema().load(_json_body())
    shortcut = db.session.get(Shortcut, data['id'])
    if shortcut:
        db.session.delete(shortcut)
        _commit()
    return jsonify({"success": True})


# --- Contacts ---

@api_bp.route("/contacts/upload-photo", methods=["POST"])
@login_required
def upload_contact_photo():
    """Stores a profile photo as a data URL on the contact."""
    upload = _uploaded_file()
    if upload is None:
        raise ApiError("No file", 400)
    data = PhoneSchema().load(request.form.to_dict())

    encoded = base64.b64encode(upload.read()).decode("ascii")
    meta = _get_or_create_metadata(data['phone'])
    meta.photo_url = f"data:{upload.mimetype};base64,{encoded}"
    _commit()
    app_logger.info(f"Profile photo saved for {data['phone']}")
    return jsonify({"success": True})


@api_bp.route("/contacts/add", methods=["POST"])
@login_required
def add_contact():
    data = ContactSchema().load(_json_body())
    meta = _get_or_create_metadata(data['phone'])
    meta.contact_name = data['name']
    meta.added_manual = True
    _commit()
    return jsonify({"success": True, "phone": data['phone']})


# --- Chat actions ---

@api_bp.route("/chat/upload-send", methods=["POST"])
@login_required
def upload_and_send():
    """Uploads a file to Meta and sends it to the chat by media id."""
    upload = _uploaded_file()
    if upload is None:
        raise ApiError("No file", 400)
    data = UploadSendSchema().load(request.form.to_dict())

    try:
        media_id = whatsapp.upload_media(upload.read(), upload.mimetype, upload.filename)
        if not media_id:
            raise ApiError("Error Meta", 500)

        whatsapp.send_message(data['phone'], {"id": media_id}, data['type'])
        assistant.add_history(data['phone'], 'manual', f"[MEDIA:{data['type'].upper()}:{media_id}]")
        return jsonify({"success": True})
    except ApiError:
        raise
    except Exception as e:
        error_logger.error(f"Error in /chat/upload-send: {e}", exc_info=True)
        raise ApiError(str(e), 500)


@api_bp.route("/chat/send", methods=["POST"])
@login_required
def send_text():
    data = SendMessageSchema().load(_json_body())
    if not whatsapp.send_message(data['phone'], data['message']):
        raise ApiError("Error enviando", 500)
    assistant.add_history(data['phone'], 'manual', data['message'])
    return jsonify({"success": True})


@api_bp.route("/chat/action", methods=["POST"])
@login_required
def chat_action():
    data = ChatActionSchema().load(_json_body())
    phone = data['phone']
    if data['action'] == 'set_labels':
        meta = _get_or_create_metadata(phone)
        meta.labels = json.dumps(data['value'] or [], ensure_ascii=False)
        _commit()
    elif data['action'] == 'delete':
        ChatHistory.query.filter_by(phone=phone).delete()
        ContactMetadata.query.filter_by(phone=phone).delete()
        _commit()
        app_logger.info(f"Chat {phone} deleted from dashboard.")
    return jsonify({"success": True})


@api_bp.route("/chat/toggle-bot", methods=["POST"])
@login_required
def toggle_bot():
    data = ToggleBotSchema().load(_json_body())
    app_logger.info(f"Toggle bot: {data['phone']} -> {data['active']}")
    db.session.merge(BotStatus(phone=data['phone'], active=data['active']))
    _commit()
    return jsonify({"success": True})


# --- Business configuration ---

@api_bp.route("/config/biz/save", methods=["POST"])
@login_required
def save_business_profile():
    profile = _json_body()
    if not isinstance(profile, dict):
        raise ApiError("Business profile must be a JSON object", 400)
    utils.set_cfg('biz_profile', profile)
    utils.set_cfg('website_data', profile.get('website_data'))
    return jsonify({"success": True})


@api_bp.route("/config/rules/add", methods=["POST"])
@login_required
def add_rule():
    data = RuleSchema().load(_json_body())
    rules = utils.get_cfg('tech_rules', [])
    rules.append(data['rule'])
    utils.set_cfg('tech_rules', rules)
    return jsonify({"rules": rules})


@api_bp.route("/config/rules/delete", methods=["POST"])
@login_required
def delete_rule():
    data = IndexSchema().load(_json_body())
    rules = utils.get_cfg('tech_rules', [])
    if 0 <= data['index'] < len(rules):
        rules.pop(data['index'])
        utils.set_cfg('tech_rules', rules)
    return jsonify({"rules": rules})


# --- Leads ---

@api_bp.route("/leads/update", methods=["POST"])
@login_required
def update_lead():
    data = LeadUpdateSchema().load(_json_body())
    attr = Lead.WIRE_FIELDS.get(data['field'])
    if attr is None:
        raise ApiError(f"Unknown lead field: {data['field']}", 400)
    lead = db.session.get(Lead, data['id'])
    if lead:
        setattr(lead, attr, data['value'])
        _commit()
    return jsonify({"success": True})


@api_bp.route("/leads/delete", methods=["POST"])
@login_required
def delete_lead():
    data = IdSchema().load(_json_body())
    lead = db.session.get(Lead, data['id'])
    if lead:
        db.session.delete(lead)
        _commit()
    return jsonify({"success": True})


# --- Inventory ---

@api_bp.route("/knowledge/csv", methods=["POST"])
@login_required
def upload_inventory_csv():
    """Imports inventory rows from an uploaded CSV (header row required)."""
    upload = _uploaded_file()
    if upload is None:
        raise ApiError("CSV Error", 400)
    try:
        inserted = knowledge.import_inventory_csv(upload.stream)
    except ValueError as e:
        error_logger.error(f"Inventory CSV rejected: {e}")
        raise ApiError("CSV Error", 400)
    return jsonify({"success": True, "inserted": inserted})


@api_bp.route("/knowledge/delete", methods=["POST"])
@login_required
def delete_inventory_item():
    data = IndexSchema().load(_json_body())
    knowledge.delete_inventory_item(data['index'])
    return jsonify({"success": True})


# --- Sandbox ---

@api_bp.route("/test-ai", methods=["POST"])
@login_required
def test_ai():
    """Sends a raw message to the model so operators can check it responds."""
    data = SandboxSchema().load(_json_body())
    prompt = f'ERES VALENTINA (Modo Test). USER: "{data["message"]}"'
    try:
        answer = utils.get_model_response("", prompt)
    except (ExternalApiError, ValueError) as e:
        error_logger.error(f"Sandbox model call failed: {e}")
        raise ApiError(str(e), 503)
    return jsonify({"response": answer, "logic_log": prompt})


# --- Media ---

@api_bp.route("/media-proxy/<media_id>", methods=["GET"])
@login_required
def media_proxy(media_id):
    """Streams WhatsApp media to the browser, which cannot send Meta's bearer token itself."""
    try:
        info = whatsapp.get_media_info(media_id)
        upstream = whatsapp.open_media_stream(info['url'])
    except (ExternalApiError, KeyError) as e:
        error_logger.error(f"Media proxy failed for {media_id}: {e}")
        return Response("Error Media", status=500, mimetype="text/plain")

    def relay():
        try:
            yield from upstream.iter_content(chunk_size=8192)
        finally:
            upstream.close()

    response = Response(
        stream_with_context(relay()),
        content_type=info.get('mime_type') or upstream.headers.get('Content-Type'),
    )
    # Covers clients that disconnect before the first chunk is read
    response.call_on_close(upstream.close)
    return response
