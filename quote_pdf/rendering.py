"""Quote HTML assembly and PDF rendering."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from html import escape
from typing import Any, Dict, Optional, Tuple

from .assembler import assemble
from .config import (
    CHROMIUM_PATH,
    CONTENT_TIMEOUT_MS,
    DEFAULTS,
    FILENAME_PREFIX,
    LAUNCH_TIMEOUT_MS,
    SERVICE_VERSION,
    TEMPLATE_PATH,
    DerivationDefaults,
)
from .derivation import QuoteFigures, build_fields, build_flags, compute_figures
from .errors import DependencyError, RenderError, TemplateNotFoundError
from .formatting import sanitize_filename

CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-first-run",
    "--disable-extensions",
    "--disable-background-networking",
    "--disable-default-apps",
    "--disable-sync",
    "--disable-translate",
    "--hide-scrollbars",
    "--mute-audio",
    "--font-render-hinting=none",
]

# A4 landscape at 96 dpi
VIEWPORT = {"width": 1122, "height": 793}
PDF_OPTIONS: Dict[str, Any] = {
    "format": "A4",
    "landscape": True,
    "print_background": True,
    "margin": {"top": "0", "right": "0", "bottom": "0", "left": "0"},
    "prefer_css_page_size": False,
}

# Portrait A4 with a plain margin for the service self-check page
SELF_CHECK_PDF_OPTIONS: Dict[str, Any] = {
    "format": "A4",
    "print_background": True,
    "margin": {"top": "20mm", "right": "20mm", "bottom": "20mm", "left": "20mm"},
}


@dataclass(frozen=True)
class RenderedQuote:
    pdf: bytes
    filename: str
    client_name: str


@lru_cache(maxsize=8)
def load_template(path: str = TEMPLATE_PATH) -> str:
    if not os.path.isfile(path):
        raise TemplateNotFoundError(path)
    with open(path, encoding="utf-8") as handle:
        return handle.read()


def document_filename(figures: QuoteFigures, prefix: str = FILENAME_PREFIX) -> str:
    return f"{prefix}-{sanitize_filename(figures.full_name)}.pdf"


def build_document(
    data: Any,
    template: str,
    defaults: DerivationDefaults = DEFAULTS,
) -> Tuple[str, QuoteFigures]:
    figures = compute_figures(data, defaults)
    html = assemble(template, build_fields(figures), build_flags(figures))
    return html, figures


def load_sync_playwright():
    try:
        from playwright.sync_api import sync_playwright
    except ModuleNotFoundError as exc:
        if exc.name and exc.name.startswith("playwright"):
            raise DependencyError(
                "Missing dependency 'playwright'. Install it with 'pip install playwright' "
                "and fetch a browser with 'playwright install chromium'."
            ) from exc
        raise
    return sync_playwright


def launch_options(executable_path: Optional[str] = CHROMIUM_PATH) -> Dict[str, Any]:
    options: Dict[str, Any] = {
        "headless": True,
        "args": list(CHROMIUM_ARGS),
        "timeout": LAUNCH_TIMEOUT_MS,
    }
    # Fall back to Playwright's bundled Chromium when the system one is absent.
    if executable_path and os.path.exists(executable_path):
        options["executable_path"] = executable_path
    return options


def render_pdf(
    html: str,
    pdf_options: Optional[Dict[str, Any]] = None,
    viewport: Optional[Dict[str, int]] = None,
) -> bytes:
    """Print ``html`` to PDF with a headless Chromium.

    Defaults to the A4 landscape page the quote template is laid out for.
    """
    sync_playwright = load_sync_playwright()
    from playwright.sync_api import Error as PlaywrightError

    try:
        with sync_playwright() as playwright:
            browser = playwright.chromium.launch(**launch_options())
            try:
                page = browser.new_page(viewport=viewport or VIEWPORT, device_scale_factor=1)
                page.set_content(html, wait_until="domcontentloaded", timeout=CONTENT_TIMEOUT_MS)
                return page.pdf(**(pdf_options or PDF_OPTIONS))
            finally:
                browser.close()
    except PlaywrightError as exc:
        raise RenderError(str(exc)) from exc


def render_quote(
    data: Any,
    template_path: str = TEMPLATE_PATH,
    defaults: DerivationDefaults = DEFAULTS,
) -> RenderedQuote:
    html, figures = build_document(data, load_template(template_path), defaults)
    return RenderedQuote(
        pdf=render_pdf(html),
        filename=document_filename(figures),
        client_name=figures.full_name,
    )


SELF_CHECK_HTML = """<!DOCTYPE html>
<html lang="fr">
<head>
<meta charset="utf-8">
<style>
  body {{ font-family: Arial, sans-serif; color: #333; text-align: center; padding-top: 80px; }}
  h1 {{ color: #4f934f; font-size: 28pt; margin-bottom: 24px; }}
  p {{ margin: 6px 0; }}
  .meta {{ font-size: 10pt; color: #666; margin-top: 24px; }}
</style>
</head>
<body>
  <h1>Quote PDF Service</h1>
  <p>Le service fonctionne correctement !</p>
  <p>Date : {date}</p>
  <div class="meta">
    <p>Version {version}</p>
    <p>Template : {template_state}</p>
  </div>
</body>
</html>
"""


def self_check_html(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return SELF_CHECK_HTML.format(
        date=escape(now.strftime("%d/%m/%Y %H:%M:%S")),
        version=escape(SERVICE_VERSION),
        template_state="ok" if os.path.isfile(TEMPLATE_PATH) else "introuvable",
    )


def render_test_pdf(now: Optional[datetime] = None) -> bytes:
    """Print the self-check page through the same Chromium path as quotes."""
    return render_pdf(self_check_html(now), SELF_CHECK_PDF_OPTIONS)
