"""Public package API for quote PDF generation."""

from __future__ import annotations

from typing import Any

from .assembler import assemble
from .derivation import derive


def render_quote_pdf(data: Any) -> bytes:
    from .rendering import render_quote as _render_quote

    return _render_quote(data).pdf


def run(host: str = "0.0.0.0", port: int = 3000) -> None:
    from .server import run as _run

    _run(host, port)


__all__ = ["assemble", "derive", "render_quote_pdf", "run"]
