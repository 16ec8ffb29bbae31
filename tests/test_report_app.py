"""Smoke tests for the Streamlit report app (headless, via streamlit.testing)."""

from pathlib import Path

import pytest
from streamlit.testing.v1 import AppTest

APP_PATH = str(Path(__file__).parent.parent / "perseus_report_app.py")


@pytest.fixture
def app():
    at = AppTest.from_file(APP_PATH, default_timeout=120)
    at.run()
    return at


def test_app_starts_without_export(app):
    assert not app.exception
    assert app.button(key="run_report").disabled
    assert any("Welcome" in info.value for info in app.info)


def test_demo_report_end_to_end(app):
    app.button(key="load_demo").click().run()
    assert not app.exception
    assert app.text_input[0].value == "demo"

    app.button(key="run_report").click().run()
    assert not app.exception
    assert not app.error
    metrics = {m.label: m.value for m in app.metric}
    assert metrics["Proteins"] == "200"
    assert metrics["Samples"] == "9"
    assert metrics["Reconciliation issues"] == "0"


def test_wrong_work_order_shows_error(app):
    app.button(key="load_demo").click().run()
    app.text_input[1].set_value("99_999").run()
    app.button(key="run_report").click().run()

    assert not app.exception
    assert any("MalformedInputError" in e.value for e in app.error)
