"""
Tests for the OneDrive email archive page (utils/email_template.py).
"""

from utils.email_template import render_outlook_email


def render(**overrides):
    values = {
        "subject": "Quarterly report",
        "sender": "bob@contoso.com",
        "to_recipients": ["alice@contoso.com"],
        "cc_recipients": [],
        "date": "2026-10-01",
        "body_html": "<p>Hello</p>",
        "attachment_urls": [],
    }
    values.update(overrides)
    return render_outlook_email(**values)


class TestRenderOutlookEmail:
    def test_headers_are_escaped(self):
        html = render(subject="<script>alert(1)</script>", sender="Bob <bob@contoso.com>")
        assert "<script>" not in html
        assert "&lt;script&gt;" in html
        assert "Bob &lt;bob@contoso.com&gt;" in html

    def test_body_is_inserted_verbatim(self):
        assert "<p>Hello <b>there</b></p>" in render(body_html="<p>Hello <b>there</b></p>")

    def test_placeholders_in_values_are_not_expanded(self):
        html = render(subject="{{to}}", body_html="<p>{{subject}}</p>")
        assert "<p>{{subject}}</p>" in html
        assert "<h2>{{to}}</h2>" in html

    def test_cc_line_only_when_present(self):
        assert "Cc:" not in render()
        assert "carol@contoso.com, dan@contoso.com" in render(
            cc_recipients=["carol@contoso.com", "dan@contoso.com"]
        )

    def test_attachment_links(self):
        html = render(attachment_urls=["https://onedrive.example/files/invoice.pdf"])
        assert '<a href="https://onedrive.example/files/invoice.pdf">invoice.pdf</a>' in html

    def test_missing_subject(self):
        assert "<title>(No subject)</title>" in render(subject=None)
