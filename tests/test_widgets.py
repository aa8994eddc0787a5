"""Tests for Lua folder widgets."""

import pytest
from lupa import LuaError

from omakure.widgets import WidgetFormatError, evaluate, load_widget


class TestEvaluate:
    def test_returned_table(self):
        result = evaluate('return {title = "Azure", lines = {"rg-prod", 42}}')
        assert result.title == "Azure"
        assert result.lines == ("rg-prod", "42")
        assert not result.error

    def test_global_widget_table(self):
        result = evaluate('widget = {title = "GCP", lines = {}}')
        assert result.title == "GCP"
        assert result.lines == ()

    def test_title_and_lines_globals(self):
        result = evaluate('title = "AWS"\nlines = {"one", "two"}')
        assert result.title == "AWS"
        assert result.lines == ("one", "two")

    def test_missing_lines(self):
        with pytest.raises(WidgetFormatError, match="lines"):
            evaluate('return {title = "x"}')

    def test_nothing_usable(self):
        with pytest.raises(WidgetFormatError):
            evaluate("local x = 1")

    def test_syntax_error(self):
        with pytest.raises(LuaError):
            evaluate("return {")


class TestLoadWidget:
    def test_no_widget(self, tmp_path):
        assert load_widget(tmp_path) is None

    def test_loads_from_directory(self, tmp_path):
        (tmp_path / "index.lua").write_text('return {title = "Folder", lines = {"ok"}}')
        result = load_widget(tmp_path)
        assert result.title == "Folder"
        assert result.lines == ("ok",)

    def test_error_becomes_fallback(self, tmp_path):
        folder = tmp_path / "broken"
        folder.mkdir()
        (folder / "index.lua").write_text("return {")
        result = load_widget(folder)
        assert result.error
        assert result.title == "broken"
        assert result.lines[0].startswith("Lua error:")

    def test_runaway_loop_times_out(self, tmp_path):
        folder = tmp_path / "spin"
        folder.mkdir()
        (folder / "index.lua").write_text("while true do end")
        result = load_widget(folder, timeout=0.3)
        assert result.error
        assert "timed out" in result.lines[0]
