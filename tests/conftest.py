"""
Pytest fixtures for the fuel log tests.

Every test gets its own data directory, fresh stores on top of it, and
ready-made administrator / driver sessions.
"""

import base64
import io

import pytest
from PIL import Image

from account_store import AccountStore
from fuel_store import FuelLogStore
from main import create_app
from models import DriverForm, EntrySubmission, Session
from storage import JsonKeyValueStore


def make_png(size=(8, 8), color=(200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def png_factory():
    return make_png


@pytest.fixture
def png_bytes():
    return make_png()


@pytest.fixture
def receipt_url(png_bytes):
    return "data:image/png;base64," + base64.b64encode(png_bytes).decode("ascii")


@pytest.fixture
def kv(tmp_path):
    return JsonKeyValueStore(str(tmp_path / "data"))


@pytest.fixture
def accounts(kv):
    return AccountStore(kv)


@pytest.fixture
def logs(kv):
    return FuelLogStore(kv)


@pytest.fixture
def admin_sale(accounts):
    return Session(accounts.admin_profile(), "Salé")


@pytest.fixture
def driver(accounts, admin_sale):
    """Driver for plate AB-123 at Salé."""
    return accounts.create_driver(
        admin_sale, "Salé",
        DriverForm(username="AB-123", driver_name="Youssef", password="pw123", phone="0600000000"),
    )


@pytest.fixture
def driver_session(driver):
    return Session(driver)


@pytest.fixture
def submission(receipt_url):
    def _make(odometer, liters=40.0, total_cost=480.0, remarks=""):
        return EntrySubmission(
            odometer=odometer, liters=liters, total_cost=total_cost,
            remarks=remarks, receipt_photos=[receipt_url],
        )
    return _make


@pytest.fixture
def approved_at(logs, admin_sale, driver_session, submission):
    """Submit and approve an entry for AB-123 at the given odometer."""
    def _approve(odometer):
        entry = logs.submit_entry(driver_session, submission(odometer))
        return logs.approve(admin_sale, "Salé", entry.id)
    return _approve


@pytest.fixture
def app(tmp_path):
    app = create_app(data_dir=str(tmp_path / "appdata"), secret_key="test")
    app.config.update(TESTING=True)
    return app


@pytest.fixture
def client(app):
    return app.test_client()
