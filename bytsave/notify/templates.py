# bytsave/notify/templates.py

"""Subject and body text for price-drop emails."""

import html
from dataclasses import dataclass
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from bytsave.config.settings import Settings
from bytsave.notify.base import AlertMessage


@dataclass(frozen=True)
class RenderedEmail:
    """A ready-to-send email."""

    subject: str
    text: str
    html: str


def add_affiliate_tag(url: str, tag: str) -> str:
    """Set the Amazon ``tag`` query parameter on *url*."""
    if not url or not tag:
        return url
    parsed = urlparse(url)
    params = parse_qs(parsed.query, keep_blank_values=True)
    params["tag"] = [tag]
    return urlunparse((
        parsed.scheme,
        parsed.netloc,
        parsed.path,
        parsed.params,
        urlencode(params, doseq=True),
        parsed.fragment,
    ))


def _money(amount: object, currency: str) -> str:
    symbol = "$" if currency == "USD" else f"{currency} "
    return f"{symbol}{amount:,.2f}" if amount is not None else "N/A"


def render_price_drop(
    message: AlertMessage,
    affiliate_tag: str | None = None,
) -> RenderedEmail:
    """Build the price-drop email for *message*."""
    tag = Settings.AFFILIATE_TAG if affiliate_tag is None else affiliate_tag
    link = add_affiliate_tag(message.product_url, tag)
    new_price = _money(message.new_price, message.currency)
    old_price = _money(message.old_price, message.currency)
    condition = message.condition or "to a price you asked us to watch for"

    subject = f"Price Drop Alert: {message.product_title} now {new_price}"

    lines = [
        "Good news! A product you're tracking has dropped "
        f"{condition}.",
        "",
        message.product_title,
        f"Now: {new_price}",
    ]
    delta = message.price_delta
    if delta is not None and delta > 0:
        lines.append(
            f"Was: {old_price} (save {_money(delta, message.currency)})"
        )
    lines += ["", f"Buy now: {link}"]
    text = "\n".join(lines)

    esc = html.escape
    image = (
        f'<img src="{esc(message.image_url)}" alt="" width="80">'
        if message.image_url
        else ""
    )
    was = (
        f" <s>{esc(old_price)}</s>"
        if delta is not None and delta > 0
        else ""
    )
    body = (
        "<div>"
        "<h2>BytSave Price Alert</h2>"
        f"<p>Good news! A product you're tracking has dropped "
        f"{esc(condition)}.</p>"
        f"{image}"
        f"<h3>{esc(message.product_title)}</h3>"
        f"<p><b>{esc(new_price)}</b>{was}</p>"
        f'<p><a href="{esc(link)}">Buy Now on Amazon</a></p>'
        "</div>"
    )
    return RenderedEmail(subject=subject, text=text, html=body)
