"""
Email Archive Template
======================

Renders an email forwarded by the Outlook add-in as a standalone HTML page
for storage in OneDrive.

Placeholders use {{placeholder_name}} syntax. Header values are HTML-escaped;
the body is the sender's own HTML and is inserted as-is.
"""

from __future__ import annotations

import re
from html import escape

EMAIL_ARCHIVE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8" />
<meta name="viewport" content="width=device-width, initial-scale=1.0" />
<title>{{subject}}</title>
<style>
  body { font-family: 'Segoe UI', system-ui, -apple-system, sans-serif; background-color: #f5f7fa; color: #1a1a1a; margin: 0; line-height: 1.5; }
  .container { max-width: 800px; margin: 40px auto; background: #ffffff; border: 1px solid #e1e5eb; border-radius: 12px; padding: 40px; }
  .header { padding-bottom: 16px; margin-bottom: 24px; border-bottom: 1px solid #eaeff5; }
  .header h2 { font-size: 28px; font-weight: 600; margin: 0 0 8px 0; }
  .meta { font-size: 14px; color: #4a5568; margin: 2px 0; }
  .meta strong { color: #1a1a1a; }
  .attachments { margin-top: 32px; padding-top: 16px; border-top: 1px solid #eaeff5; }
  .attachments a { display: block; color: #0f6cbd; }
</style>
</head>
<body>
<div class="container">
  <div class="header">
    <h2>{{subject}}</h2>
    <p class="meta"><strong>From:</strong> {{from}}</p>
    <p class="meta"><strong>To:</strong> {{to}}</p>
    {{cc_line}}
    <p class="meta"><strong>Date:</strong> {{date}}</p>
  </div>
  <div class="body">{{body}}</div>
  {{attachments}}
</div>
</body>
</html>
"""


_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


def _fill(template: str, values: dict[str, str]) -> str:
    # single pass: substituted values are never re-scanned for placeholders
    return _PLACEHOLDER.sub(lambda match: values.get(match.group(1), match.group(0)), template)


def render_outlook_email(
    *,
    subject: str | None,
    sender: str,
    to_recipients: list[str],
    cc_recipients: list[str],
    date: str,
    body_html: str,
    attachment_urls: list[str],
) -> str:
    """Render the archive page for one email."""
    cc_line = ""
    if cc_recipients:
        cc_line = f'<p class="meta"><strong>Cc:</strong> {escape(", ".join(cc_recipients))}</p>'

    attachments = ""
    if attachment_urls:
        links = "\n".join(
            f'    <a href="{escape(url, quote=True)}">{escape(url.rsplit("/", 1)[-1] or url)}</a>'
            for url in attachment_urls
        )
        attachments = f'<div class="attachments">\n    <h3>Attachments</h3>\n{links}\n  </div>'

    return _fill(
        EMAIL_ARCHIVE_TEMPLATE,
        {
            "subject": escape(subject or "(No subject)"),
            "from": escape(sender),
            "to": escape(", ".join(to_recipients)),
            "cc_line": cc_line,
            "date": escape(date),
            "body": body_html,
            "attachments": attachments,
        },
    )


__all__ = ["render_outlook_email", "EMAIL_ARCHIVE_TEMPLATE"]
