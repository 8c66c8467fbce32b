"""Tests for template resolution, rendering and overrides."""

import os

import pytest

from membermail.engine.templates import TemplateStore, normalize_slug, template_filename
from membermail.errors import StorageUnavailable, UnknownTemplate, WriteFailure


@pytest.fixture
def builtin_dir(tmp_path):
    path = tmp_path / "builtin"
    path.mkdir()
    (path / "email-comeback.html").write_text("<p>Hi {{x}}, from {{ site_name }}</p>", encoding="utf-8")
    (path / "email-plan-reminder.html").write_text("<p>{{ unknown }}left {{x}}</p>", encoding="utf-8")
    return str(path)


@pytest.fixture
def store(settings, builtin_dir, services):
    return TemplateStore(settings, event_log=services.event_log, builtin_dir=builtin_dir)


class TestSlugs:
    """Slug normalization."""

    def test_legacy_prefix_is_stripped(self):
        assert normalize_slug("email-comeback") == "comeback"
        assert normalize_slug("Comeback") == "comeback"
        assert normalize_slug(" plan reminder ") == "planreminder"
        assert template_filename("email-comeback") == "email-comeback.html"


class TestRender:
    """Token substitution."""

    def test_known_token_is_replaced(self, store):
        html = store.render("comeback", {"x": "v"})
        assert "v" in html
        assert "{{x}}" not in html
        assert "Test Site" in html

    def test_unknown_token_is_removed(self, store):
        assert store.render("plan-reminder", {"x": "2"}) == "<p>left 2</p>"

    def test_values_are_html_escaped(self, store):
        html = store.render("comeback", {"x": "<script>alert(1)</script>"})
        assert "<script>" not in html
        assert "&lt;script&gt;" in html

    def test_substituted_values_are_not_rescanned(self, store):
        html = store.render("comeback", {"x": "{{ site_name }}"})
        assert "Hi {{ site_name }}" in html

    def test_caller_value_wins_over_default_even_when_empty(self, store):
        assert store.render("comeback", {"x": "a", "site_name": "Other"}) == "<p>Hi a, from Other</p>"
        assert store.render("comeback", {"x": "a", "site_name": ""}) == "<p>Hi a, from </p>"

    def test_non_scalar_values_are_skipped(self, store):
        assert store.render("comeback", {"x": ["list"]}) == "<p>Hi , from Test Site</p>"

    def test_missing_template_renders_empty(self, store):
        assert store.render("welcome-verify", {"x": "v"}) == ""
        assert store.render("", {}) == ""

    def test_legacy_slug_resolves(self, store):
        assert store.render("email-comeback", {"x": "v"}) == store.render("comeback", {"x": "v"})


class TestOverrides:
    """Override storage and precedence."""

    def test_override_wins_over_builtin(self, store):
        store.save_override("comeback", "<p>Custom {{x}}</p>")
        assert store.has_override("comeback")
        assert store.render("comeback", {"x": "v"}) == "<p>Custom v</p>"

    def test_saving_twice_is_idempotent(self, store):
        store.save_override("comeback", "<p>Custom {{x}}</p>")
        once = store.render("comeback", {"x": "v"})
        store.save_override("comeback", "<p>Custom {{x}}</p>")
        assert store.render("comeback", {"x": "v"}) == once

    def test_override_is_sanitized(self, store, settings):
        path = store.save_override("comeback", '<p onclick="x()">Hi</p><script>alert(1)</script><!-- c -->')
        with open(path, encoding="utf-8") as handle:
            saved = handle.read()
        assert "onclick" not in saved
        assert "<script>" not in saved
        assert "<!--" not in saved
        assert "<p>Hi</p>" in saved

    def test_placeholders_in_links_survive_sanitizing(self, store):
        store.save_override("comeback", '<a href="{{ renew_link }}">Back</a>')
        html = store.render("comeback", {"renew_link": "https://example.test/join"})
        assert 'href="https://example.test/join"' in html

    def test_unknown_template_is_rejected(self, store):
        with pytest.raises(UnknownTemplate):
            store.save_override("not-registered", "<p>x</p>")

    def test_storage_unavailable_without_directory(self, settings, builtin_dir):
        store = TemplateStore(settings.model_copy(update={"template_override_dir": None}), builtin_dir=builtin_dir)
        with pytest.raises(StorageUnavailable):
            store.save_override("comeback", "<p>x</p>")

    def test_write_failure(self, settings, builtin_dir, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")
        store = TemplateStore(settings, override_dir=str(blocker / "sub"), builtin_dir=builtin_dir)
        with pytest.raises(WriteFailure):
            store.save_override("comeback", "<p>x</p>")

    def test_delete_override_restores_builtin(self, store):
        store.save_override("comeback", "<p>Custom</p>")
        assert store.delete_override("comeback") is True
        assert store.delete_override("comeback") is False
        assert store.render("comeback", {"x": "v"}) == "<p>Hi v, from Test Site</p>"

    def test_save_is_logged(self, store, services):
        store.save_override("comeback", "<p>Custom</p>")
        entry = services.event_log.get()[0]
        assert entry.type == "TEMPLATE"
        assert entry.context["template"] == "comeback"


class TestBuiltinTemplates:
    """Shipped templates exist for every registered slug."""

    def test_every_registered_template_has_a_builtin(self, settings):
        store = TemplateStore(settings, override_dir="")
        for slug in store.registered_templates():
            assert os.path.isfile(os.path.join(store.builtin_dir, template_filename(slug)))
            html = store.render(slug, {"recipient_name": "Ada"})
            assert "Ada" in html
            assert "{{" not in html
