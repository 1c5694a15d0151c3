from unittest.mock import patch

from valentina import assistant, utils
from valentina.exceptions import ExternalApiError
from valentina.models import db, ChatHistory, Lead, BotStatus, InventoryItem

REPLY_WITH_LEAD = (
    "Con gusto, Sr. Pérez. ¿En qué ciudad se encuentra?\n"
    "```json\n"
    '{"es_lead": true, "nombre": "Carlos Pérez", "ciudad": "Cali", "interes": "Repuesto", '
    '"correo": "carlos@example.com", "etiqueta": "Cotización"}\n'
    "```"
)


def test_extract_fenced_block():
    visible, info = assistant.extract_lead_data(REPLY_WITH_LEAD)
    assert visible == "Con gusto, Sr. Pérez. ¿En qué ciudad se encuentra?"
    assert info["ciudad"] == "Cali"
    assert info["es_lead"] is True


def test_extract_trailing_object():
    visible, info = assistant.extract_lead_data('Gracias. {"es_lead": true, "nombre": "Ana"}')
    assert visible == "Gracias."
    assert info == {"es_lead": True, "nombre": "Ana"}


def test_extract_without_block():
    assert assistant.extract_lead_data("  ¿Me indica su ciudad? ") == ("¿Me indica su ciudad?", None)


def test_extract_invalid_json_still_hides_block():
    visible, info = assistant.extract_lead_data("Listo ```json {no es json} ```")
    assert visible == "Listo"
    assert info is None


def test_process_message_replies_and_stores_lead(ctx):
    utils.set_cfg('biz_profile', {"name": "Casa Colombia", "hours": "L-V 8-5"})
    utils.set_cfg('tech_rules', ["No dar precios", "Pedir ciudad"])
    db.session.add(InventoryItem(searchable="Repuesto bomba Pedrollo", raw_data='{"codigo": "B-1"}'))
    db.session.commit()

    with patch("valentina.utils.get_model_response", return_value=REPLY_WITH_LEAD) as model:
        reply = assistant.process_message("Necesito un repuesto para bomba", "573001")

    assert reply == "Con gusto, Sr. Pérez. ¿En qué ciudad se encuentra?"

    system_prompt, user_prompt = model.call_args.args
    assert "Eres Valentina, IA de Casa Colombia." in system_prompt
    assert "L-V 8-5" in system_prompt
    assert "No dar precios. Pedir ciudad" in system_prompt
    assert '"codigo": "B-1"' in system_prompt
    assert user_prompt.endswith("USUARIO:Necesito un repuesto para bomba")
    assert "Necesito un repuesto para bomba" in user_prompt.split("USUARIO:")[0]

    history = ChatHistory.query.filter_by(phone="573001").order_by(ChatHistory.id).all()
    assert [(h.role, h.text) for h in history] == [
        ("user", "Necesito un repuesto para bomba"),
        ("bot", reply),
    ]

    lead = Lead.query.one()
    assert (lead.phone, lead.name, lead.city, lead.email, lead.tag) == (
        "573001", "Carlos Pérez", "Cali", "carlos@example.com", "Cotización"
    )


def test_process_message_defaults(ctx):
    with patch("valentina.utils.get_model_response", return_value="Bienvenido") as model:
        assistant.process_message("hola", "573002")
    system_prompt = model.call_args.args[0]
    assert "Importadora Casa Colombia (ICC)" in system_prompt
    assert "Horario: No definido" in system_prompt


def test_lead_name_defaults_to_cliente(ctx):
    reply = 'Perfecto. {"es_lead": true, "nombre": "null", "interes": "Máquina"}'
    with patch("valentina.utils.get_model_response", return_value=reply):
        assistant.process_message("quiero una máquina", "573003")
    assert Lead.query.one().name == "Cliente"


def test_non_lead_block_is_not_stored(ctx):
    reply = 'Entendido. {"es_lead": false, "nombre": "Ana"}'
    with patch("valentina.utils.get_model_response", return_value=reply):
        assert assistant.process_message("hola", "573004") == "Entendido."
    assert Lead.query.count() == 0


def test_disabled_bot_only_records_message(ctx):
    db.session.add(BotStatus(phone="573005", active=False))
    db.session.commit()

    with patch("valentina.utils.get_model_response") as model:
        assert assistant.process_message("(El usuario envió: 📷 FOTO RECIBIDA)", "573005", "[MEDIA:IMAGE:9]") is None

    model.assert_not_called()
    assert [h.text for h in ChatHistory.query.all()] == ["[MEDIA:IMAGE:9]"]


def test_ai_failure_returns_fallback_without_storing_it(ctx):
    with patch("valentina.utils.get_model_response", side_effect=ExternalApiError("down")):
        reply = assistant.process_message("hola", "573006")
    assert reply == assistant.FALLBACK_REPLY
    assert [h.role for h in ChatHistory.query.all()] == ["user"]


def test_history_window_is_chronological(ctx):
    for i in range(20):
        assistant.add_history("573007", "user", f"m{i}")
    window = assistant.get_recent_history("573007", 15)
    assert len(window) == 15
    assert window[0]["text"] == "m5"
    assert window[-1]["text"] == "m19"


def test_unknown_provider(ctx):
    import pytest
    with pytest.raises(ValueError):
        utils.get_model_response("", "hola", model_provider="llama")


def test_openai_without_key_is_an_external_error(ctx):
    import pytest
    ctx.config["OPENAI_API_KEY"] = None
    with pytest.raises(ExternalApiError):
        utils.get_model_response("", "hola", model_provider="openai")


def test_extract_keeps_braces_in_visible_text():
    reply = 'El modelo {X-200} esta disponible. {"es_lead": true, "nombre": "Ana"}'
    visible, info = assistant.extract_lead_data(reply)
    assert visible == "El modelo {X-200} esta disponible."
    assert info == {"es_lead": True, "nombre": "Ana"}


def test_extract_ignores_braces_that_do_not_end_the_reply():
    reply = 'Tenemos {"ref": "A-1"} en bodega, ¿le interesa?'
    assert assistant.extract_lead_data(reply) == (reply, None)


def test_list_valued_lead_fields_are_stored_as_text(ctx):
    reply = (
        "Anotado. "
        '{"es_lead": true, "nombre": ["Ana", "Gómez"], "interes": ["Repuesto", "Máquina"], '
        '"ciudad": {"nombre": "Cali"}, "etiqueta": 3}'
    )
    with patch("valentina.utils.get_model_response", return_value=reply):
        assert assistant.process_message("quiero repuesto y máquina", "573008") == "Anotado."

    lead = Lead.query.one()
    assert lead.name == "Ana, Gómez"
    assert lead.interest == "Repuesto, Máquina"
    assert lead.city == '{"nombre": "Cali"}'
    assert lead.tag == "3"
    assert [h.role for h in ChatHistory.query.all()] == ["user", "bot"]


def test_reply_survives_lead_storage_failure(ctx):
    with patch("valentina.utils.get_model_response", return_value=REPLY_WITH_LEAD), \
            patch("valentina.assistant.save_lead", side_effect=RuntimeError("disk full")):
        reply = assistant.process_message("Necesito un repuesto", "573009")

    assert reply == "Con gusto, Sr. Pérez. ¿En qué ciudad se encuentra?"
    history = ChatHistory.query.filter_by(phone="573009").order_by(ChatHistory.id).all()
    assert [(h.role, h.text) for h in history][-1] == ("bot", reply)
    assert Lead.query.count() == 0
