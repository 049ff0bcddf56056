"""Email content rendering.

Stored templates use plain ``{{variable}}`` placeholders filled with escaped
values; unknown variables are left verbatim so a missing value is visible
rather than silently empty.
Without a template, a fixed HTML layout is rendered through a sandboxed
Jinja2 environment with autoescaping.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from jinja2 import select_autoescape
from jinja2.sandbox import SandboxedEnvironment
from markupsafe import escape

if TYPE_CHECKING:
    from notify_service.features.notifications.models import Notification, NotificationTemplate

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")
_TAG = re.compile(r"<[^>]*>")
_NEWLINE_INDENT = re.compile(r"\n\s+")

DEFAULT_ACTION_LABEL = "View Details"

DEFAULT_EMAIL_LAYOUT = """\
<html>
<body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="background: #f8f9fa; padding: 20px; border-radius: 8px; margin-bottom: 20px;">
    <h2 style="color: #333; margin: 0 0 10px 0;">{{ title }}</h2>
    <p style="color: #666; margin: 0;">From {{ sender_name }}</p>
  </div>
  <div style="line-height: 1.6; color: #333;">
    {% for line in lines %}{{ line }}{% if not loop.last %}<br>{% endif %}{% endfor %}
  </div>
  {% if action_url %}
  <div style="margin: 30px 0; text-align: center;">
    <a href="{{ action_url }}"
       style="background: #007bff; color: white; padding: 12px 24px; text-decoration: none; border-radius: 4px; display: inline-block;">
      {{ action_label }}
    </a>
  </div>
  {% endif %}
  <div style="margin-top: 30px; padding-top: 20px; border-top: 1px solid #eee; font-size: 12px; color: #999; text-align: center;">
    <p>This email was sent by {{ sender_name }}.</p>
    <p>To manage your notification preferences, visit your account settings.</p>
  </div>
</body>
</html>
"""


@dataclass(frozen=True, slots=True)
class RenderedEmail:
    subject: str
    html: str
    text: str


def substitute_variables(template: str, variables: dict[str, Any] | None) -> str:
    """Replace ``{{key}}`` placeholders with HTML-escaped values.

    Unknown keys are kept as written. Values are escaped because templates
    are HTML bodies and variables come from producers.

    Example:
        substitute_variables("Hi {{name}}, {{missing}}", {"name": "Sam"})
        # "Hi Sam, {{missing}}"
    """
    values = variables or {}

    def _replace(match: re.Match[str]) -> str:
        value = values.get(match.group(1))
        return match.group(0) if value is None else str(escape(value))

    return _PLACEHOLDER.sub(_replace, template)


def strip_html(html: str) -> str:
    """Plain-text fallback: drop tags and collapse indentation after newlines."""
    return _NEWLINE_INDENT.sub("\n", _TAG.sub("", html)).strip()


class EmailRenderer:
    """Build subject, HTML and text bodies for a notification."""

    def __init__(self, sender_name: str = "Notifications") -> None:
        self._sender_name = sender_name
        self._env = SandboxedEnvironment(
            autoescape=select_autoescape(default_for_string=True),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self._layout = self._env.from_string(DEFAULT_EMAIL_LAYOUT)

    def render_default_html(self, notification: Notification) -> str:
        return self._layout.render(
            title=notification.title,
            lines=notification.message.split("\n"),
            action_url=notification.action_url,
            action_label=notification.action_label or DEFAULT_ACTION_LABEL,
            sender_name=self._sender_name,
        )

    def render(
        self,
        notification: Notification,
        template: NotificationTemplate | None = None,
    ) -> RenderedEmail:
        """Render the email for a notification.

        Args:
            notification: Notification being delivered
            template: Active stored template, when ``template_id`` resolved one

        Returns:
            RenderedEmail with subject = title, HTML from the template or the
            default layout, and text stripped from the message.
        """
        if template is not None and template.is_active:
            html = substitute_variables(template.body, notification.template_variables)
        else:
            html = self.render_default_html(notification)
        return RenderedEmail(
            subject=notification.title,
            html=html,
            text=strip_html(notification.message),
        )
