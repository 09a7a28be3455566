"""
config.py

Handles loading and saving of application configuration settings from a JSON file.

Missing keys are filled in from the defaults below and written back, so new
settings can be added in later versions without breaking existing
installations. The Gemini API key is the one setting that may also come from
the process environment; it is looked up at call time, never cached.
"""

import json
import os
import logging

# Define the name of the configuration file
CONFIG_FILE = "config.json"

API_KEY_ENV_VARS = ("API_KEY", "GEMINI_API_KEY")

DEFAULT_CONFIG = {
    "GEMINI_API_KEY": "",
    "TEXT_MODEL": "gemini-2.5-flash",
    "IMAGE_MODEL": "gemini-2.5-flash-image",
    "IMAGE_MODEL_HIGH_RES": "gemini-3-pro-image-preview",
    "TTS_MODEL": "gemini-2.5-flash-preview-tts",
    "TTS_VOICE": "Kore",
    "IMAGE_SIZE": "1K",
    "IMAGE_ASPECT_RATIO": "16:9",
    "GENERATE_AUDIO": True,
    "SAMPLE_RATE": 24000,
    "REQUEST_TIMEOUT": 120,
}


def load_config(path=CONFIG_FILE):
    """
    Loads configuration from config.json.

    If the file doesn't exist or is corrupted, it creates a new configuration
    with default values.

    Returns:
        dict: A dictionary containing the application's configuration settings.
    """
    if os.path.exists(path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                config_data = json.load(f)
        except json.JSONDecodeError:
            logging.error("Configuration file '%s' is corrupted. Loading default config.", path)
            config_data = {}
    else:
        config_data = {}

    config_updated = False
    for key, value in DEFAULT_CONFIG.items():
        if key not in config_data:
            config_data[key] = value
            config_updated = True

    if config_updated:
        logging.info("Configuration updated with new default values. Saving.")
        save_config(config_data, path)

    return config_data


def save_config(config_data, path=CONFIG_FILE):
    """
    Saves the provided configuration dictionary to the config.json file.
    """
    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(config_data, f, indent=4, ensure_ascii=False)
        logging.info("Configuration saved successfully to '%s'.", path)
    except OSError as e:
        logging.error("Failed to save configuration file: %s", e)


def get_api_key(config_data=None):
    """Returns the Gemini API key from the environment, then config.json, or None."""
    for name in API_KEY_ENV_VARS:
        value = os.environ.get(name, "").strip()
        if value:
            return value
    if config_data:
        value = (config_data.get("GEMINI_API_KEY") or "").strip()
        if value:
            return value
    return None
