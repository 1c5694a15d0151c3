"""
Valentina: the sales assistant that answers WhatsApp customers.

Her job is to qualify prospects (name, city, interest) rather than close
sales. When the model learns new customer data it appends a JSON block to
its reply; that block is stripped from the visible text and stored as a lead.
"""
import json
import logging
import re
from flask import current_app
from sqlalchemy import select

from valentina import knowledge, utils
from valentina.exceptions import ExternalApiError
from valentina.models import db, ChatHistory, Lead, BotStatus

app_logger = logging.getLogger('app')
error_logger = logging.getLogger('error')

DEFAULT_BUSINESS_NAME = "Importadora Casa Colombia (ICC)"
DEFAULT_LEAD_NAME = "Cliente"
FALLBACK_REPLY = "Disculpa, dame un momento, estoy validando la información."

FENCED_BLOCK_RE = re.compile(r"```json([\s\S]*?)```", re.IGNORECASE)


def add_history(phone, role, text):
    entry = ChatHistory(phone=phone, role=role, text=text)
    try:
        db.session.add(entry)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return entry


def get_recent_history(phone, limit):
    """Last ``limit`` messages of a chat, oldest first."""
    rows = db.session.execute(
        select(ChatHistory).filter_by(phone=phone).order_by(ChatHistory.id.desc()).limit(limit)
    ).scalars().all()
    rows.reverse()
    return [{"role": r.role, "text": r.text} for r in rows]


def is_bot_active(phone):
    status = db.session.get(BotStatus, phone)
    return status is None or bool(status.active)


def get_system_prompt(biz_profile, website_data, stock, tech_rules):
    """Builds the assistant's instructions for one turn."""
    return f"""
    Eres Valentina, IA de {biz_profile.get('name') or DEFAULT_BUSINESS_NAME}.

    [DATOS NEGOCIO]
    - Horario: {biz_profile.get('hours') or 'No definido'}
    - Web/Info: {website_data}

    [OBJETIVO]
    Filtrar al cliente obteniendo: Nombre, Ciudad e Interés (Repuesto/Máquina).
    NO cierres ventas, solo perfila.

    [TONO]
    Formal, "usted", corto y conciso. Una sola pregunta a la vez.

    [INVENTARIO REF]: {json.dumps(stock, ensure_ascii=False)}
    [REGLAS TÉCNICAS]: {". ".join(tech_rules)}

    [DETECTAR DATOS]
    Si el cliente da datos nuevos, añade este JSON al final de tu respuesta:
    ```json
    {{"es_lead":true,"nombre":"...","ciudad":"...","interes":"...","correo":"...","etiqueta":"Cotización"}}
    ```
    """


def get_user_prompt_content(chat_history, message):
    return f"CHAT PREVIO:\n{json.dumps(chat_history, ensure_ascii=False)}\nUSUARIO:{message}"


def _find_trailing_object(text):
    """Returns ``(start, obj)`` for the JSON object that closes ``text``, or None."""
    decoder = json.JSONDecoder()
    pos = text.rfind("{")
    while pos != -1:
        try:
            obj, end = decoder.raw_decode(text, pos)
        except ValueError:
            obj, end = None, -1
        if end == len(text) and isinstance(obj, dict):
            return pos, obj
        pos = text.rfind("{", 0, pos)
    return None


def extract_lead_data(full_text):
    """
    Splits a model reply into ``(visible_text, lead_info)``. ``lead_info`` is
    None when the reply carries no parsable JSON block.

    A fenced ```json block wins, and is hidden even when it does not parse.
    Otherwise a JSON object that ends the reply is taken.
    """
    match = FENCED_BLOCK_RE.search(full_text)
    if match:
        visible = (full_text[:match.start()] + full_text[match.end():]).strip()
        try:
            info = json.loads(match.group(1).strip())
        except ValueError:
            return visible, None
        return visible, info if isinstance(info, dict) else None

    text = full_text.rstrip()
    found = _find_trailing_object(text)
    if found is None:
        return full_text.strip(), None
    start, info = found
    return text[:start].strip(), info


def _as_text(value):
    """Lead columns are text; models sometimes answer with lists or objects."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return ", ".join(_as_text(v) or "" for v in value)
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _clean_lead_name(name):
    name = _as_text(name)
    if not name or name.strip().lower() == "null":
        return DEFAULT_LEAD_NAME
    return name


def save_lead(phone, info):
    lead = Lead(
        phone=phone,
        name=_clean_lead_name(info.get("nombre")),
        interest=_as_text(info.get("interes")),
        tag=_as_text(info.get("etiqueta")),
        city=_as_text(info.get("ciudad")),
        email=_as_text(info.get("correo")),
    )
    try:
        db.session.add(lead)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    app_logger.info(f"Lead stored for {phone}: {lead.name} ({lead.tag})")
    return lead


def process_message(message, phone, stored_text=None):
    """
    Runs one assistant turn for ``phone``. Returns the reply to send, or None
    when a human operator has switched the bot off for this chat.
    """
    add_history(phone, 'user', stored_text or message)

    if not is_bot_active(phone):
        app_logger.info(f"Bot disabled for {phone}; message stored without reply.")
        return None

    website_data = utils.get_cfg('website_data', "")
    biz_profile = utils.get_cfg('biz_profile', {}) or {}
    tech_rules = utils.get_cfg('tech_rules', []) or []
    stock = knowledge.search_catalog(message, limit=current_app.config.get('CATALOG_MATCH_LIMIT', 5))
    chat_history = get_recent_history(phone, current_app.config.get('CHAT_HISTORY_LIMIT', 15))

    system_prompt = get_system_prompt(biz_profile, website_data, stock, tech_rules)
    user_prompt = get_user_prompt_content(chat_history, message)

    try:
        full_text = utils.get_model_response(system_prompt, user_prompt)
    except (ExternalApiError, ValueError) as e:
        error_logger.error(f"Assistant reply failed for {phone}: {e}")
        return FALLBACK_REPLY

    visible_text, info = extract_lead_data(full_text or "")
    if info and info.get("es_lead"):
        try:
            save_lead(phone, info)
        except Exception as e:
            # The customer still gets the reply when the lead cannot be stored
            error_logger.error(f"Could not store lead for {phone}: {e}", exc_info=True)

    add_history(phone, 'bot', visible_text)
    return visible_text
