"""
Centralized configuration for PromptForge.

Loads environment variables from .env and provides validated paths, default
model choices and provider credential lookup. Credentials are resolved here,
at the configuration boundary, and handed to the library explicitly through
ModelConfig.api_key.
"""

import os
from pathlib import Path
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


# -- Paths -------------------------------------------------------------------


STATE_DIR = Path(os.getenv("PROMPTFORGE_STATE_DIR", str(Path.home() / ".promptforge")))
LOG_DIR = STATE_DIR / "logs"
REPORT_DIR = Path(os.getenv("PROMPTFORGE_REPORT_DIR", str(STATE_DIR / "reports")))

# -- Settings -----------------------------------------------------------------

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
DEBUG = os.getenv("DEBUG", "false").lower() in ("true", "1", "yes")

DEFAULT_PROVIDER = os.getenv("PROMPTFORGE_PROVIDER", "openai")
DEFAULT_MODEL = os.getenv("PROMPTFORGE_MODEL", "gpt-4o")
DEFAULT_JUDGE_PROVIDER = os.getenv("PROMPTFORGE_JUDGE_PROVIDER", DEFAULT_PROVIDER)
DEFAULT_JUDGE_MODEL = os.getenv("PROMPTFORGE_JUDGE_MODEL", DEFAULT_MODEL)

# -- Credentials --------------------------------------------------------------

# Checked in order; the first variable that is set wins.
API_KEY_ENV_VARS: Dict[str, Tuple[str, ...]] = {
    "openai": ("OPENAI_API_KEY",),
    "anthropic": ("ANTHROPIC_API_KEY",),
    "groq": ("GROQ_API_KEY",),
    "google": ("GOOGLE_API_KEY", "GEMINI_API_KEY"),
    "gemini": ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    "ollama": (),
}


def get_api_key(provider_name: str) -> Optional[str]:
    """Return the API key for a provider from the environment, if any."""
    for var_name in API_KEY_ENV_VARS.get(provider_name.lower(), ()):
        value = os.getenv(var_name)
        if value:
            return value
    return None

