import json
import logging
import google.generativeai as genai
from flask import current_app
from openai import OpenAI
from valentina.exceptions import ExternalApiError
from valentina.models import db, ConfigEntry

app_logger = logging.getLogger('app')
error_logger = logging.getLogger('error')


def configure_genai():
    """Configures the Google AI API key from the app config."""
    api_key = current_app.config.get("GEMINI_API_KEY")
    if not api_key:
        app_logger.warning("GEMINI_API_KEY is not set; Gemini replies will fail until it is configured.")
        return False
    genai.configure(api_key=api_key)
    return True


# --- Settings stored in the config table ---

def get_cfg(key, default=None):
    """Returns the JSON-decoded value stored under key, or default."""
    entry = db.session.get(ConfigEntry, key)
    if entry is None or entry.value is None:
        return default
    try:
        return json.loads(entry.value)
    except ValueError:
        error_logger.error(f"Config entry '{key}' holds invalid JSON; using default.")
        return default


def set_cfg(key, value):
    """Stores value (JSON-encoded) under key, replacing any previous value."""
    try:
        db.session.merge(ConfigEntry(key=key, value=json.dumps(value, ensure_ascii=False)))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


# --- LLM providers ---

def _get_gemini_response(system_prompt: str, user_prompt: str) -> str:
    """Gets a response from the Google Gemini model."""
    try:
        model_name = current_app.config["GEMINI_MODEL_NAME"]
        model = genai.GenerativeModel(model_name)
        full_prompt = f"{system_prompt}\n\n{user_prompt}" if system_prompt else user_prompt
        response = model.generate_content(full_prompt)
        return response.text
    except Exception as e:
        error_logger.error(f"Error getting response from GenAI: {e}", exc_info=True)
        raise ExternalApiError("The Gemini service failed.") from e


def _get_openai_compatible_response(system_prompt: str, user_prompt: str, api_key: str, base_url: str | None, model_name: str) -> str:
    """Gets a response from an OpenAI-compatible API."""
    try:
        client = OpenAI(api_key=api_key, base_url=base_url)
        messages = [{"role": "user", "content": user_prompt}]
        if system_prompt:
            messages.insert(0, {"role": "system", "content": system_prompt})
        response = client.chat.completions.create(model=model_name, messages=messages)
        return response.choices[0].message.content
    except Exception as e:
        error_logger.error(f"Error getting response from OpenAI-compatible API ({model_name}): {e}", exc_info=True)
        raise ExternalApiError(f"The {model_name} service failed.") from e


def get_model_response(system_prompt: str, user_prompt: str, model_provider: str | None = None) -> str:
    """
    Routes the prompt to the configured LLM provider and returns its reply.
    """
    model_provider = model_provider or current_app.config.get("LLM_PROVIDER", "gemini")

    if model_provider == "gemini":
        return _get_gemini_response(system_prompt, user_prompt)

    elif model_provider == "openai":
        api_key = current_app.config["OPENAI_API_KEY"]
        if not api_key:
            raise ExternalApiError("OpenAI API key is not configured.")
        return _get_openai_compatible_response(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            api_key=api_key,
            base_url=None,
            model_name=current_app.config["OPENAI_MODEL_NAME"]
        )

    elif model_provider == "deepseek":
        api_key = current_app.config["DEEPSEEK_API_KEY"]
        if not api_key:
            raise ExternalApiError("DeepSeek API key is not configured.")
        return _get_openai_compatible_response(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            api_key=api_key,
            base_url=current_app.config["DEEPSEEK_BASE_URL"],
            model_name=current_app.config["DEEPSEEK_MODEL_NAME"]
        )

    else:
        raise ValueError(f"Unknown model provider: {model_provider}")
