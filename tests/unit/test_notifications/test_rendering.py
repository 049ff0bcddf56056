"""Unit tests for email rendering."""

from __future__ import annotations

from notify_service.features.notifications.models import Notification, NotificationTemplate
from notify_service.features.notifications.rendering import (
    EmailRenderer,
    strip_html,
    substitute_variables,
)


def _notification(**overrides) -> Notification:
    values = {
        "tenant_id": "gym-1",
        "user_id": "user-1",
        "type": "membership_expiring",
        "category": "retention",
        "priority": "normal",
        "title": "Your membership expires soon",
        "message": "Renew before Friday.\nYour coach misses you.",
        "action_url": "https://app.example.com/renew",
        "action_label": None,
        "template_variables": {"name": "Sam", "days": 3},
    }
    values.update(overrides)
    return Notification(**values)


def test_substitute_variables_keeps_unknown_placeholders() -> None:
    result = substitute_variables("Hi {{name}}, {{missing}} left", {"name": "Sam"})

    assert result == "Hi Sam, {{missing}} left"


def test_substitute_variables_without_values() -> None:
    assert substitute_variables("Hi {{name}}", None) == "Hi {{name}}"


def test_substitute_variables_escapes_values() -> None:
    result = substitute_variables("<p>Hi {{name}}</p>", {"name": "<script>alert(1)</script>"})

    assert result == "<p>Hi &lt;script&gt;alert(1)&lt;/script&gt;</p>"


def test_strip_html_collapses_indentation() -> None:
    assert strip_html("<p>Hello</p>\n    <b>world</b>") == "Hello\nworld"


class TestEmailRenderer:
    """Test subject and body selection."""

    def test_default_layout_escapes_and_keeps_line_breaks(self) -> None:
        renderer = EmailRenderer(sender_name="Iron Gym")
        notification = _notification(title="<script>alert(1)</script>")

        rendered = renderer.render(notification)

        assert rendered.subject == "<script>alert(1)</script>"
        assert "<script>" not in rendered.html
        assert "&lt;script&gt;" in rendered.html
        assert "Renew before Friday.<br>Your coach misses you." in rendered.html
        assert "View Details" in rendered.html
        assert "https://app.example.com/renew" in rendered.html
        assert "Iron Gym" in rendered.html

    def test_no_action_button_without_url(self) -> None:
        rendered = EmailRenderer().render(_notification(action_url=None))

        assert "View Details" not in rendered.html

    def test_active_template_body_is_used(self) -> None:
        template = NotificationTemplate(
            template_id="membership_expiring_v1",
            name="Membership expiring",
            type="membership_expiring",
            channel="email",
            title="Expiring",
            body="<p>Hi {{name}}, {{days}} days left. {{unknown}}</p>",
            variables=["name", "days"],
            is_active=True,
        )

        rendered = EmailRenderer().render(_notification(), template)

        assert rendered.html == "<p>Hi Sam, 3 days left. {{unknown}}</p>"
        assert rendered.subject == "Your membership expires soon"

    def test_inactive_template_falls_back_to_layout(self) -> None:
        template = NotificationTemplate(
            template_id="old",
            name="Old",
            type="membership_expiring",
            channel="email",
            title="Old",
            body="<p>old body</p>",
            variables=[],
            is_active=False,
        )

        rendered = EmailRenderer().render(_notification(), template)

        assert "old body" not in rendered.html
        assert "Your membership expires soon" in rendered.html

    def test_text_body_is_plain_message(self) -> None:
        rendered = EmailRenderer().render(_notification(message="<b>Renew</b> today"))

        assert rendered.text == "Renew today"

    def test_template_variables_cannot_inject_markup(self) -> None:
        template = NotificationTemplate(
            template_id="welcome_v1",
            name="Welcome",
            type="membership_expiring",
            channel="email",
            title="Welcome",
            body='<p>Hi {{name}}</p><a href="{{link}}">Open</a>',
            variables=["name", "link"],
            is_active=True,
        )
        notification = _notification(
            template_variables={"name": "<img src=x onerror=alert(1)>", "link": '" onclick="steal()'},
        )

        rendered = EmailRenderer().render(notification, template)

        assert "<img" not in rendered.html
        assert "&lt;img src=x onerror=alert(1)&gt;" in rendered.html
        assert 'href="&#34; onclick=&#34;steal()"' in rendered.html
