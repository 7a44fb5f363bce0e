#!/usr/bin/env python3
"""
Bulk-create driver accounts for one site from a CSV.

    python tools/import_drivers_csv.py drivers.csv Salé [--data-dir data]

Columns: plate (or username), driver_name (or name), password, phone.
Plates already registered in the site, and rows missing a name or
password, are skipped.
"""
import argparse
import logging
import os

import pandas as pd

from account_store import AccountStore
from models import DriverForm, DuplicatePlateError, Session, ValidationError, check_site
from storage import JsonKeyValueStore

log = logging.getLogger("import_drivers")


def import_drivers(csv_path: str, site: str, store: AccountStore) -> dict:
    df = pd.read_csv(csv_path, encoding="utf-8-sig", dtype=str).fillna("")
    cols = {c.lower().strip(): c for c in df.columns}
    plate_col = cols.get("plate") or cols.get("username")
    name_col = cols.get("driver_name") or cols.get("name")
    if not plate_col or not name_col:
        raise SystemExit("CSV must include 'plate' and 'driver_name' columns")

    admin = Session(store.admin_profile(), check_site(site))
    created, skipped = 0, 0
    for idx, row in df.iterrows():
        try:
            form = DriverForm.from_form({
                "username": row[plate_col],
                "driver_name": row[name_col],
                "password": row[cols["password"]] if "password" in cols else "",
                "phone": row[cols["phone"]] if "phone" in cols else "",
            })
            store.create_driver(admin, site, form)
            created += 1
        except DuplicatePlateError as e:
            log.info("Skipping: %s", e)
            skipped += 1
        except ValidationError as e:
            log.warning("Skipping row %s: %s", idx + 2, e)
            skipped += 1
    return {"created": created, "skipped": skipped}


def main(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("csv_path")
    parser.add_argument("site")
    parser.add_argument("--data-dir", default=os.environ.get("FUEL_LOG_DATA_DIR", "data"))
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    if not os.path.isfile(args.csv_path):
        raise SystemExit(f"Cannot find {args.csv_path}")

    store = AccountStore(JsonKeyValueStore(args.data_dir))
    try:
        result = import_drivers(args.csv_path, args.site, store)
    except ValidationError as e:
        raise SystemExit(str(e))
    print(f"Created {result['created']} driver(s), skipped {result['skipped']} in {args.site}")


if __name__ == "__main__":
    main()
