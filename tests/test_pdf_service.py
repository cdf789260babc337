from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import pytest

from cabinet_quote.errors import NotFoundError, ValidationError
from cabinet_quote.models.quote import FixedPrice, PricingParameters
from cabinet_quote.services import pdf_service
from cabinet_quote.services.pdf_service import QuotePdfService


@pytest.fixture
def pdfs(quotes):
    return QuotePdfService(quotes)


def test_client_html_hides_costs(make_quote, pdfs):
    q = make_quote(notes="Island included")
    html = pdfs.render_html(q.id, "client")

    assert "CABINET QUOTE" in html
    assert "Q-2026-0001" in html
    assert "Dana Reyes" in html
    assert "Shaker Classic" in html and "Shaker White" in html
    assert "$1,975.00" in html  # retail value
    assert "$325.00" in html  # saving
    assert "$1,650.00" in html
    assert "$1,794.38" in html
    assert "8.75%" in html
    assert "Island included" in html
    # wholesale, unit cost, profit, installation
    for hidden in ("$1,000.00", "$250.00", "$650.00", "$200.00", "Your Cost", "PROFIT"):
        assert hidden not in html


def test_installer_html_full_breakdown(make_quote, pdfs):
    q = make_quote()
    html = pdfs.render_html(q.id, "installer")

    assert "QUOTE - INTERNAL" in html
    assert "$1,000.00" in html
    assert "$1,400.00" in html
    assert "Markup 40%" in html
    assert "PROFIT:" in html and "$650.00" in html
    assert "BELOW COST" not in html


def test_installer_html_below_cost_banner(make_quote, pdfs):
    q = make_quote(params=PricingParameters(method=FixedPrice(amount=Decimal("800"))))
    html = pdfs.render_html(q.id, "installer")

    assert "BELOW COST" in html
    assert "LOSS:" in html
    assert "-$200.00" in html


def test_render_html_errors(make_quote, pdfs):
    with pytest.raises(NotFoundError):
        pdfs.render_html("missing", "client")
    with pytest.raises(ValidationError):
        pdfs.render_html(make_quote().id, "draft")


def test_export_uses_wkhtmltopdf(make_quote, pdfs, tmp_path, monkeypatch):
    q = make_quote()
    calls = {}

    def fake_from_string(html, out_path, **kwargs):
        calls["html"] = html
        Path(out_path).write_bytes(b"%PDF-1.4 fake")

    monkeypatch.setattr(pdf_service, "find_wkhtmltopdf", lambda settings=None: "/opt/wkhtmltopdf")
    monkeypatch.setattr(pdf_service.pdfkit, "configuration", lambda **kwargs: object())
    monkeypatch.setattr(pdf_service.pdfkit, "from_string", fake_from_string)

    path = pdfs.export_quote_pdf(q.id, "client", out_dir=tmp_path / "out")

    assert Path(path).name == "Q-2026-0001-client.pdf"
    assert Path(path).read_bytes().startswith(b"%PDF")
    assert "CABINET QUOTE" in calls["html"]


def test_export_falls_back_to_weasyprint(make_quote, pdfs, tmp_path, monkeypatch):
    q = make_quote()
    used = []

    def broken(*args, **kwargs):
        raise OSError("wkhtmltopdf exited with code 1")

    def fake_weasy(html, out_path, base_url):
        used.append(base_url)
        Path(out_path).write_bytes(b"%PDF-1.7 weasy")

    monkeypatch.setattr(pdf_service, "find_wkhtmltopdf", lambda settings=None: "/opt/wkhtmltopdf")
    monkeypatch.setattr(pdf_service.pdfkit, "configuration", lambda **kwargs: object())
    monkeypatch.setattr(pdf_service.pdfkit, "from_string", broken)
    monkeypatch.setattr(pdf_service, "_render_pdf_with_weasyprint", fake_weasy)

    path = pdfs.export_quote_pdf(q.id, "installer", out_dir=tmp_path)

    assert Path(path).name == "Q-2026-0001-installer.pdf"
    assert used and used[0].endswith("pdf")


def test_find_wkhtmltopdf_prefers_env(tmp_path, monkeypatch):
    exe = tmp_path / "wkhtmltopdf"
    exe.write_text("")
    monkeypatch.setenv("WKHTMLTOPDF_PATH", f'"{exe}"')

    assert pdf_service.find_wkhtmltopdf() == str(exe)


def test_export_loads_the_quote_once(make_quote, pdfs, quotes, tmp_path, monkeypatch):
    q = make_quote()
    loads = []
    real_require = quotes.require_quote

    def counting_require(quote_id):
        loads.append(quote_id)
        return real_require(quote_id)

    monkeypatch.setattr(quotes, "require_quote", counting_require)
    monkeypatch.setattr(pdf_service, "find_wkhtmltopdf", lambda settings=None: None)
    monkeypatch.setattr(
        pdf_service, "_render_pdf_with_weasyprint",
        lambda html, out_path, base_url: Path(out_path).write_bytes(b"%PDF-1.7"),
    )

    pdfs.export_quote_pdf(q.id, "client", out_dir=tmp_path)

    assert loads == [q.id]


def test_render_uses_the_service_clock(make_quote, pdfs, clock):
    q = make_quote()
    clock.advance(days=45)
    assert "(expired)" in pdfs.render_html(q.id, "client")
