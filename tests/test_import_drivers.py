import pytest

from models import ValidationError
from tools.import_drivers_csv import import_drivers


def test_import_skips_duplicates_and_bad_rows(tmp_path, accounts, driver):
    csv_path = tmp_path / "drivers.csv"
    csv_path.write_text(
        "plate,driver_name,password,phone\n"
        "AB-123,Youssef,pw,0600\n"
        "CD-456,Samir,pw2,0611\n"
        "EF-789,,pw3,\n"
        "GH-012,Omar,,\n",
        encoding="utf-8",
    )
    result = import_drivers(str(csv_path), "Salé", accounts)
    assert result == {"created": 1, "skipped": 3}
    assert accounts.authenticate("CD-456", "pw2").site == "Salé"


def test_import_requires_known_site(tmp_path, accounts):
    csv_path = tmp_path / "drivers.csv"
    csv_path.write_text("plate,driver_name\nAB-1,Ali\n", encoding="utf-8")
    with pytest.raises(ValidationError):
        import_drivers(str(csv_path), "Rabat", accounts)
