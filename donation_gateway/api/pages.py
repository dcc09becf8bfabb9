"""Minimal HTML pages served to donors."""

import html
from typing import Optional

from donation_gateway.engine.dispatcher import PageOutcome, ResultPage
from donation_gateway.gateways.base import CheckoutForm

_LAYOUT = """<!DOCTYPE html>
<html lang="zh-Hant">
<head><meta charset="utf-8"><title>{title}</title></head>
<body>
{body}
</body>
</html>
"""

_TITLES = {
    PageOutcome.PAID: "捐獻完成",
    PageOutcome.AWAITING_PAYMENT: "等待繳費",
    PageOutcome.FAILED: "付款未完成",
    PageOutcome.NOT_FOUND: "找不到捐獻記錄",
}


def render_checkout(form: CheckoutForm) -> str:
    """Gateway form that submits itself on load."""
    body = (
        "<p>正在前往付款頁面，請稍候…</p>\n"
        f"{form.render_html()}\n"
        f"<script>document.getElementById(\"{form.form_id}\").submit();</script>"
    )
    return _LAYOUT.format(title="前往付款", body=body)


def render_result(page: ResultPage, site_url: Optional[str] = None) -> str:
    title = _TITLES[page.outcome]
    parts = [f"<h1>{html.escape(title)}</h1>", f"<p>{html.escape(page.message)}</p>"]

    if page.trade_no:
        parts.append(f"<p>訂單編號: {html.escape(page.trade_no)}</p>")
    if page.donation is not None and page.outcome is not PageOutcome.NOT_FOUND:
        parts.append(f"<p>金額: NT$ {int(page.donation.amount)}</p>")
    if page.payment_info:
        parts.append(f"<p>{html.escape(page.payment_info)}</p>")
        if page.donation is not None and page.donation.payment_expire_date:
            expire = page.donation.payment_expire_date.strftime("%Y/%m/%d %H:%M")
            parts.append(f"<p>繳費期限: {expire}</p>")
    if site_url:
        parts.append(f'<p><a href="{html.escape(site_url)}">返回首頁</a></p>')

    return _LAYOUT.format(title=html.escape(title), body="\n".join(parts))
