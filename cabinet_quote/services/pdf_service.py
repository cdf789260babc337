from __future__ import annotations
import logging
import os
import re
from pathlib import Path
from shutil import which
from typing import Optional

import pdfkit
from jinja2 import Environment, FileSystemLoader, select_autoescape

from cabinet_quote.models.quote import Quote
from cabinet_quote.models.settings import QuoteSettings
from cabinet_quote.services.presentation import (
    QuoteContext,
    QuoteView,
    format_currency,
    format_percent,
    render_quote,
)
from cabinet_quote.services.quote_service import QuoteService

log = logging.getLogger(__name__)

# --- base paths ---
ROOT_DIR = Path(__file__).resolve().parents[2]
TEMPLATES_DIR = ROOT_DIR / "templates" / "pdf"
EXPORTS_DIR = ROOT_DIR / "exports" / "quotes"

WKHTMLTOPDF_CANDIDATES = [
    "/usr/local/bin/wkhtmltopdf",
    "/usr/bin/wkhtmltopdf",
    r"C:\Program Files\wkhtmltopdf\bin\wkhtmltopdf.exe",
    r"C:\Program Files (x86)\wkhtmltopdf\bin\wkhtmltopdf.exe",
]


def _slug(text: str) -> str:
    text = (text or "").strip()
    text = re.sub(r'[\\/:*?"<>|\n\r\t]', "_", text)
    return re.sub(r"\s+", " ", text) or "quote"


def _clean_path(p: str) -> str:
    """Strip quotes and a stray 'C\\:' escape, then normalise."""
    if not p:
        return ""
    p = p.strip().strip('"').strip("'")
    p = p.replace("\\:", ":")
    return os.path.normpath(p)


def find_wkhtmltopdf(settings: Optional[QuoteSettings] = None) -> Optional[str]:
    """
    Locate the wkhtmltopdf binary:
    - WKHTMLTOPDF_PATH environment variable
    - settings.json -> pdf.wkhtmltopdf_path
    - well-known install paths
    - PATH
    """
    env_val = os.environ.get("WKHTMLTOPDF_PATH")
    if env_val:
        path = _clean_path(env_val)
        if Path(path).is_file():
            return path

    if settings and settings.pdf.wkhtmltopdf_path:
        path = _clean_path(settings.pdf.wkhtmltopdf_path)
        if Path(path).is_file():
            return path

    for c in WKHTMLTOPDF_CANDIDATES:
        if Path(c).is_file():
            return c

    found = which("wkhtmltopdf")
    return _clean_path(found) if found else None


def _render_pdf_with_weasyprint(html: str, out_path: Path, base_url: Optional[str]) -> None:
    """WeasyPrint fallback when wkhtmltopdf is missing or fails."""
    try:
        from weasyprint import CSS, HTML
    except ImportError as e:
        raise RuntimeError(
            "wkhtmltopdf not found and WeasyPrint is not installed. "
            "Install WeasyPrint (pip install weasyprint) or set WKHTMLTOPDF_PATH."
        ) from e

    css_file = TEMPLATES_DIR / "stylesheet.css"
    styles = [CSS(filename=str(css_file))] if css_file.exists() else None
    HTML(string=html, base_url=base_url).write_pdf(str(out_path), stylesheets=styles)


class QuotePdfService:
    """Renders either view of a stored quote to HTML and PDF."""

    def __init__(self, quotes: QuoteService, templates_dir: Optional[Path] = None):
        self.quotes = quotes
        self.templates_dir = Path(templates_dir) if templates_dir else TEMPLATES_DIR
        self.env = Environment(
            loader=FileSystemLoader(str(self.templates_dir)),
            autoescape=select_autoescape(["html", "xml"]),
        )
        self.env.filters["currency"] = format_currency
        self.env.filters["percent"] = format_percent

    # ----------- context ----------
    def build_context(self, quote: Quote, settings: Optional[QuoteSettings] = None) -> QuoteContext:
        settings = settings or self.quotes.settings.load()
        customer = self.quotes.customers.get_by_id(quote.customer_id)
        collection = self.quotes.catalog.get_collection(quote.collection_id)
        style = self.quotes.catalog.get_style(quote.style_id)
        ctx = QuoteContext(
            collection_name=collection.name if collection else "",
            style_name=style.name if style else "",
            company=settings.company,
        )
        if customer:
            ctx.customer_name = customer.full_name
            ctx.customer_email = str(customer.email)
            ctx.customer_phone = customer.phone
            ctx.customer_address = customer.address
            ctx.customer_city_line = customer.city_line
        return ctx

    # ----------- HTML ----------
    def render_model(self, model: QuoteView) -> str:
        tpl = self.env.get_template(f"quote_{model.view}.html")
        return tpl.render(quote=model, ctx=model.context)

    def render_html(self, quote_id: str, view: str, settings: Optional[QuoteSettings] = None) -> str:
        return self._render_quote_html(self.quotes.require_quote(quote_id), view, settings)

    def _render_quote_html(self, quote: Quote, view: str, settings: Optional[QuoteSettings] = None) -> str:
        settings = settings or self.quotes.settings.load()
        model = render_quote(quote, view, self.build_context(quote, settings), now=self.quotes.now())
        return self.render_model(model)

    # ----------- PDF ----------
    def export_quote_pdf(self, quote_id: str, view: str = "installer", out_dir: Optional[str | Path] = None) -> str:
        """
        Writes <quote_number>-<view>.pdf and returns its path.
        wkhtmltopdf (pdfkit) first, WeasyPrint as fallback.
        """
        settings = self.quotes.settings.load()
        quote = self.quotes.require_quote(quote_id)
        html = self._render_quote_html(quote, view, settings)

        exports_dir = Path(out_dir) if out_dir else EXPORTS_DIR
        exports_dir.mkdir(parents=True, exist_ok=True)
        out_path = exports_dir / f"{_slug(quote.quote_number or quote.id)}-{view}.pdf"
        base_url = str(self.templates_dir.resolve())

        wkhtml = find_wkhtmltopdf(settings)
        if wkhtml:
            try:
                config = pdfkit.configuration(wkhtmltopdf=wkhtml)
                options = {"enable-local-file-access": None, "quiet": "", "encoding": "UTF-8"}
                css_path = self.templates_dir / "stylesheet.css"
                pdfkit.from_string(
                    html, str(out_path), options=options, configuration=config,
                    css=str(css_path.resolve()) if css_path.exists() else None,
                )
                return str(out_path)
            except (IOError, OSError) as e:
                log.warning("wkhtmltopdf failed (%s), falling back to WeasyPrint", e)

        _render_pdf_with_weasyprint(html, out_path, base_url=base_url)
        return str(out_path)
