"""Runtime configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import FrozenSet

PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))

SERVICE_NAME = "quote-pdf"
SERVICE_VERSION = "2.1.0"


def env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value >= minimum else default


def env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


HOST = env_str("QUOTE_HOST", "0.0.0.0")
PORT = env_int("QUOTE_PORT", env_int("PORT", 3000))

MAX_BODY_BYTES = env_int("QUOTE_MAX_BODY_BYTES", 10 * 1024 * 1024, minimum=1024)

TEMPLATE_PATH = env_str(
    "QUOTE_TEMPLATE_PATH",
    os.path.join(PACKAGE_DIR, "templates", "template.html"),
)

CHROMIUM_PATH = env_str(
    "QUOTE_CHROMIUM_PATH",
    env_str("PUPPETEER_EXECUTABLE_PATH", "/usr/bin/chromium"),
)
LAUNCH_TIMEOUT_MS = env_int("QUOTE_LAUNCH_TIMEOUT_MS", 60000, minimum=1000)
CONTENT_TIMEOUT_MS = env_int("QUOTE_CONTENT_TIMEOUT_MS", 30000, minimum=1000)

MAX_CONCURRENT_RENDERS = env_int("QUOTE_MAX_CONCURRENT_RENDERS", 2, minimum=1)
RENDER_QUEUE_TIMEOUT_MS = env_int("QUOTE_RENDER_QUEUE_TIMEOUT_MS", 120000, minimum=0)

FILENAME_PREFIX = env_str("QUOTE_FILENAME_PREFIX", "guide-pose")
LOG_LEVEL = env_str("QUOTE_LOG_LEVEL", "INFO").upper()


@dataclass(frozen=True)
class DerivationDefaults:
    """Fallback values and business constants used when deriving a quote."""

    strip_width: float = 4.0
    strip_length: float = 10.0
    strip_quantity: int = 1

    product_name: str = "Gazon Synthétique Verdeko"
    client_name: str = "Client"
    shape: str = "Rectangle"
    orientation: str = "horizontal"
    soil_type: str = "terre"

    soft_ground_keywords: FrozenSet[str] = frozenset(
        {"terre", "sable", "meuble", "gazon", "pelouse", "earth", "dirt", "sand", "loose", "lawn", "turf"}
    )
    affirmative_answers: FrozenSet[str] = frozenset({"oui", "yes"})

    # Accessories
    geotextile_waste_factor: float = 1.15
    geotextile_roll_m2: float = 25.0
    tape_ml_per_junction: int = 8
    cleaner_coverage_m2: float = 50.0
    nail_boxes: int = 1

    discount_threshold: float = 0.01


DEFAULTS = DerivationDefaults()
