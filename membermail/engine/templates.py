"""Email template resolution, override storage and token substitution.

Templates are HTML files named `email-<slug>.html`. An override stored in the
configured override directory wins over the built-in copy shipped in
`membermail/templates/emails`. Placeholders look like `{{token}}` (inner
whitespace allowed) and are replaced in a single pass with HTML-escaped
values; anything left unresolved is removed.
"""

import html
import logging
import os
import re
from typing import Any, Dict, Optional

import bleach
from bleach.css_sanitizer import CSSSanitizer

from membermail.errors import StorageUnavailable, UnknownTemplate, WriteFailure
from membermail.models.log_entry import LogType

logger = logging.getLogger(__name__)

BUILTIN_TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "templates", "emails")

TEMPLATE_PREFIX = "email-"

# Registered templates: slug -> label
TEMPLATE_CATALOG: Dict[str, str] = {
    "welcome-verify": "Welcome / verify email",
    "verify-reminder": "Verification reminder",
    "plan-reminder": "Plan ending reminder",
    "plan-expired": "Plan expired",
    "comeback": "Come back offer",
}

_SLUG_RE = re.compile(r"[^a-z0-9_\-]")
_PLACEHOLDER_RE = re.compile(r"\{\{([^{}]*)\}\}")

# Tags and attributes kept when an override is saved.
EMAIL_SAFE_TAGS = [
    "p", "br", "strong", "b", "em", "i", "u", "s", "small", "sup", "sub",
    "h1", "h2", "h3", "h4", "h5", "h6",
    "ul", "ol", "li",
    "a", "img",
    "table", "thead", "tbody", "tfoot", "tr", "td", "th", "caption",
    "div", "span", "section", "header", "footer",
    "hr", "blockquote", "pre", "code",
    "center", "font",
]

EMAIL_SAFE_ATTRIBUTES = {
    "*": ["class", "id", "style", "title", "dir", "lang"],
    "a": ["href", "title", "rel", "target"],
    "img": ["src", "alt", "width", "height", "border", "align", "title"],
    "table": ["border", "cellpadding", "cellspacing", "width", "align", "bgcolor", "role"],
    "td": ["colspan", "rowspan", "width", "height", "align", "valign", "bgcolor"],
    "th": ["colspan", "rowspan", "width", "height", "align", "valign", "bgcolor"],
    "tr": ["align", "valign", "bgcolor"],
    "div": ["align"],
    "p": ["align"],
    "font": ["color", "face", "size"],
}

EMAIL_SAFE_CSS = [
    "color", "background-color", "background",
    "font-family", "font-size", "font-weight", "font-style",
    "text-align", "text-decoration", "text-transform",
    "margin", "margin-top", "margin-bottom", "margin-left", "margin-right",
    "padding", "padding-top", "padding-bottom", "padding-left", "padding-right",
    "border", "border-top", "border-bottom", "border-left", "border-right",
    "border-color", "border-style", "border-width", "border-radius",
    "width", "height", "max-width", "min-width",
    "display", "line-height", "vertical-align",
]


def normalize_slug(slug: Any) -> str:
    """Sanitize a slug and strip the legacy `email-` prefix."""
    key = _SLUG_RE.sub("", str(slug or "").strip().lower())
    if key.startswith(TEMPLATE_PREFIX):
        key = key[len(TEMPLATE_PREFIX):]
    return key


def template_filename(slug: str) -> str:
    return f"{TEMPLATE_PREFIX}{normalize_slug(slug)}.html"


def _is_scalar(value: Any) -> bool:
    return isinstance(value, (str, int, float)) and not isinstance(value, bool)


class TemplateStore:
    """Resolves, renders and customizes email templates."""

    def __init__(
        self,
        settings,
        event_log=None,
        override_dir: Optional[str] = None,
        builtin_dir: str = BUILTIN_TEMPLATE_DIR,
        catalog: Optional[Dict[str, str]] = None,
    ):
        self.settings = settings
        self.event_log = event_log
        self.override_dir = override_dir if override_dir is not None else settings.template_override_dir
        self.builtin_dir = builtin_dir
        self.catalog = dict(catalog if catalog is not None else TEMPLATE_CATALOG)
        self.cleaner = bleach.Cleaner(
            tags=EMAIL_SAFE_TAGS,
            attributes=EMAIL_SAFE_ATTRIBUTES,
            css_sanitizer=CSSSanitizer(allowed_css_properties=EMAIL_SAFE_CSS),
            strip=True,
            strip_comments=True,
        )

    def registered_templates(self) -> Dict[str, str]:
        return dict(self.catalog)

    def _override_path(self, slug: str) -> Optional[str]:
        if not self.override_dir:
            return None
        return os.path.join(self.override_dir, template_filename(slug))

    def _builtin_path(self, slug: str) -> str:
        return os.path.join(self.builtin_dir, template_filename(slug))

    def has_override(self, slug: str) -> bool:
        path = self._override_path(normalize_slug(slug))
        return bool(path) and os.path.isfile(path)

    def get_template_content(self, slug: str) -> str:
        """Return raw template HTML: override first, then built-in, else ''."""
        slug = normalize_slug(slug)
        if not slug:
            return ""
        for path in (self._override_path(slug), self._builtin_path(slug)):
            if path and os.path.isfile(path):
                try:
                    with open(path, "r", encoding="utf-8") as handle:
                        return handle.read()
                except OSError as e:
                    logger.warning(f"Could not read template {path}: {type(e).__name__}: {str(e)}")
        return ""

    def default_context(self) -> Dict[str, Any]:
        return {
            "site_name": self.settings.site_name,
            "site_tagline": self.settings.site_tagline,
            "site_url": self.settings.home_url(),
            "support_email": self.settings.support_email,
            "unsubscribe_url": "",
        }

    def render(self, slug: str, context: Optional[Dict[str, Any]] = None) -> str:
        """Render a template with the given placeholder values.

        Caller values override defaults key by key, even when empty; empty or
        non-scalar values are never substituted, so their placeholders are
        removed like unknown ones.

        Returns:
            Rendered HTML, or '' when the template does not exist
        """
        content = self.get_template_content(slug)
        if not content:
            return ""

        merged = self.default_context()
        merged.update(context or {})
        replacements = {
            str(key).strip(): html.escape(str(value), quote=True)
            for key, value in merged.items()
            if _is_scalar(value) and str(value) != ""
        }

        def _substitute(match) -> str:
            return replacements.get(match.group(1).strip(), "")

        return _PLACEHOLDER_RE.sub(_substitute, content)

    def save_override(self, slug: str, content: str) -> str:
        """Sanitize and store an override for a registered template.

        Returns:
            Path of the written override file

        Raises:
            UnknownTemplate: slug is not registered
            StorageUnavailable: no override directory is configured
            WriteFailure: the file could not be written
        """
        key = normalize_slug(slug)
        if key not in self.catalog:
            raise UnknownTemplate(str(slug))
        path = self._override_path(key)
        if not path:
            raise StorageUnavailable("Template override directory is not configured")

        clean = self.cleaner.clean(content or "")
        try:
            os.makedirs(self.override_dir, exist_ok=True)
            with open(path, "w", encoding="utf-8") as handle:
                handle.write(clean)
        except OSError as e:
            logger.error(f"Failed to write template override {path}: {type(e).__name__}: {str(e)}")
            raise WriteFailure(f"Could not write template {key}") from e

        if self.event_log is not None:
            self.event_log.add(f'Template "{key}" saved.', LogType.TEMPLATE, {"template": key})
        return path

    def delete_override(self, slug: str) -> bool:
        """Remove an override so the built-in copy applies again."""
        key = normalize_slug(slug)
        if key not in self.catalog:
            raise UnknownTemplate(str(slug))
        path = self._override_path(key)
        if not path:
            raise StorageUnavailable("Template override directory is not configured")
        if not os.path.isfile(path):
            return False
        try:
            os.remove(path)
        except OSError as e:
            raise WriteFailure(f"Could not delete template {key}") from e
        if self.event_log is not None:
            self.event_log.add(f'Template "{key}" reset to default.', LogType.TEMPLATE, {"template": key})
        return True
