import csv
import io
import logging
import os
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import pytz
from flask import Blueprint, Flask, current_app, jsonify, request, send_file, session

from account_store import AccountStore
from chart import render_cost_chart
from fuel_store import FuelLogStore
from models import (
    ROLE_ADMIN,
    STATUSES,
    ConfirmationRequired,
    DriverForm,
    EntrySubmission,
    NotFound,
    OdometerFloorError,
    PermissionDenied,
    ReceiptError,
    Session,
    ValidationError,
    check_site,
)
from receipts import decode_receipt, encode_receipt, validate_receipt
from report_pdf import build_report_pdf
from reports import DEFAULT_TZ, build_report, dashboard_summary, parse_window, report_csv
from storage import JsonKeyValueStore

log = logging.getLogger(__name__)

bp = Blueprint("fuel_log", __name__)

AUTH_FAILED = "Invalid credentials. Please try again."


class NotLoggedIn(PermissionDenied):
    pass


# =========================
# App factory
# =========================
def create_app(data_dir: Optional[str] = None, secret_key: Optional[str] = None) -> Flask:
    app = Flask(__name__)
    app.config.update(
        DATA_DIR=data_dir or os.environ.get("FUEL_LOG_DATA_DIR", "data"),
        SECRET_KEY=secret_key or os.environ.get("FUEL_LOG_SECRET_KEY", "fuel-log-dev-key"),
        DISPLAY_TZ=os.environ.get("FUEL_LOG_TZ", DEFAULT_TZ),
    )
    pytz.timezone(app.config["DISPLAY_TZ"])  # fail fast on a bad zone name
    app.config["AUDIT_PATH"] = os.path.join(app.config["DATA_DIR"], "ops_audit_log.csv")

    kv = JsonKeyValueStore(app.config["DATA_DIR"])
    app.extensions["accounts"] = AccountStore(kv)
    app.extensions["fuel_logs"] = FuelLogStore(kv)

    app.register_blueprint(bp)
    app.register_error_handler(NotLoggedIn, lambda e: _error(e, 401))
    app.register_error_handler(PermissionDenied, lambda e: _error(e, 403))
    app.register_error_handler(ConfirmationRequired, lambda e: _error(e, 409))
    app.register_error_handler(ValidationError, lambda e: _error(e, 400))
    app.register_error_handler(
        OdometerFloorError,
        lambda e: (jsonify({"ok": False, "error": str(e), "floor": e.floor}), 400),
    )
    app.register_error_handler(NotFound, lambda e: _error(e, 404))

    log.info("Fuel log app ready (data dir: %s)", app.config["DATA_DIR"])
    return app


def _error(e, status: int):
    return jsonify({"ok": False, "error": str(e)}), status


def _accounts() -> AccountStore:
    return current_app.extensions["accounts"]


def _logs() -> FuelLogStore:
    return current_app.extensions["fuel_logs"]


# =========================
# Session helpers
# =========================
def _current_session() -> Session:
    account_id = session.get("account_id")
    account = _accounts().find_by_id(account_id) if account_id is not None else None
    if account is None:
        raise NotLoggedIn("Please log in.")
    if account.is_admin:
        return Session(account, session.get("site"))
    return Session(account)


def _admin_session() -> Session:
    sess = _current_session()
    sess.require_admin()
    if not sess.site:
        raise ValidationError("Select a site first.")
    return sess


def _driver_session() -> Session:
    sess = _current_session()
    sess.require_driver()
    return sess


def _payload() -> Dict[str, Any]:
    if request.is_json:
        return dict(request.get_json(silent=True) or {})
    data = request.form.to_dict()
    data["receipt_photos"] = request.form.getlist("receipt_photos")
    return data


def _collect_receipts(data: Dict[str, Any]) -> List[str]:
    """Uploaded files (encoded here) plus data URLs sent in the payload."""
    photos = [encode_receipt(f.stream) for f in request.files.getlist("receipts") if f.filename]
    sent = data.pop("receipt_photos", None) or []
    if isinstance(sent, str):
        sent = [sent]
    if not isinstance(sent, list) or not all(isinstance(p, str) for p in sent):
        raise ReceiptError("receipt_photos must be a list of image data URLs.")
    photos.extend(validate_receipt(p) for p in sent if p)
    return photos


def _truthy(v: Optional[str]) -> bool:
    return str(v or "").strip().lower() in ("1", "true", "yes", "on")


# ===== Tiny CSV-safe audit log =====
AUDIT_FIELDS = [
    "timestamp", "action", "site", "ref_id",
    "from_status", "to_status",
    "route", "actor", "note",
]


def append_audit(action, site="", ref_id="", from_status="", to_status="", note="", actor=""):
    path = current_app.config["AUDIT_PATH"]
    is_new = not os.path.isfile(path)
    try:
        with open(path, "a", newline="", encoding="utf-8-sig") as f:
            writer = csv.DictWriter(f, fieldnames=AUDIT_FIELDS)
            if is_new:
                writer.writeheader()
            writer.writerow({
                "timestamp": datetime.now().isoformat(timespec="seconds"),
                "action": action,
                "site": site or "",
                "ref_id": ref_id,
                "from_status": from_status or "",
                "to_status": to_status or "",
                "route": request.path,
                "actor": actor or session.get("username", ""),
                "note": note or "",
            })
    except OSError as e:
        log.warning("Audit log write failed: %s", e)


# =========================
# Health / auth
# =========================
@bp.route("/healthz", methods=["GET", "HEAD"])
def healthz():
    return ("ok", 200, {"Content-Type": "text/plain; charset=utf-8", "Cache-Control": "no-store"})


@bp.route("/api/v1/login", methods=["POST"])
def login():
    data = _payload()
    username = str(data.get("username") or "").strip()
    account = _accounts().login(username, str(data.get("password") or ""))
    if account is None:
        append_audit("login_failed", note=username, actor=username)
        return jsonify({"ok": False, "error": AUTH_FAILED}), 401

    session.clear()
    session["account_id"] = account.id
    session["username"] = account.username
    if not account.is_admin:
        session["site"] = account.site
    append_audit("login", site=account.site or "", ref_id=account.id)
    return jsonify({"ok": True, "account": account.public_dict(), "site": session.get("site")})


@bp.route("/api/v1/logout", methods=["POST"])
def logout():
    _accounts().logout()
    session.clear()
    return jsonify({"ok": True})


@bp.route("/api/v1/session", methods=["GET"])
def current():
    sess = _current_session()
    return jsonify({"ok": True, "account": sess.account.public_dict(), "site": sess.site})


@bp.route("/api/v1/site", methods=["POST"])
def select_site():
    """Administrators pick which site they manage."""
    sess = _current_session()
    sess.require_admin()
    site = check_site(str(_payload().get("site") or ""))
    session["site"] = site
    return jsonify({"ok": True, "site": site})


# =========================
# Accounts (administrator)
# =========================
@bp.route("/api/v1/accounts", methods=["GET"])
def accounts_list():
    sess = _admin_session()
    return jsonify({
        "ok": True,
        "site": sess.site,
        "accounts": [a.public_dict() for a in _accounts().list_accounts(sess.site)],
    })


@bp.route("/api/v1/accounts", methods=["POST"])
def accounts_create():
    sess = _admin_session()
    form = DriverForm.from_form(_payload())
    account = _accounts().create_driver(sess, sess.site, form)
    append_audit("account_created", sess.site, account.id, note=account.username)
    return jsonify({"ok": True, "account": account.public_dict()}), 201


@bp.route("/api/v1/accounts/<int:account_id>", methods=["PUT"])
def accounts_update(account_id):
    sess = _admin_session()
    form = DriverForm.from_form(_payload(), require_plate=False, require_password=False)
    account = _accounts().update_account(sess, sess.site, account_id, form)
    append_audit("account_updated", sess.site, account.id, note=account.username)
    return jsonify({"ok": True, "account": account.public_dict()})


@bp.route("/api/v1/accounts/<int:account_id>", methods=["DELETE"])
def accounts_delete(account_id):
    sess = _admin_session()
    _accounts().delete_account(sess, sess.site, account_id,
                               confirmed=_truthy(request.args.get("confirm")))
    append_audit("account_deleted", sess.site, account_id)
    return jsonify({"ok": True, "deleted": account_id})


@bp.route("/api/v1/admin/profile", methods=["PUT"])
def admin_profile_update():
    sess = _current_session()
    data = _payload()
    admin = _accounts().update_admin(
        sess,
        username=str(data.get("username") or ""),
        password=str(data.get("password") or ""),
        confirm=str(data.get("confirm") or ""),
    )
    session["username"] = admin.username
    append_audit("admin_profile_updated", ref_id=admin.id)
    return jsonify({"ok": True, "account": admin.public_dict()})


# =========================
# Fuel entries
# =========================
@bp.route("/api/v1/entries", methods=["GET"])
def entries_list():
    sess = _current_session()
    if sess.account.role == ROLE_ADMIN:
        sess = _admin_session()
        plate = (request.args.get("plate") or "").strip() or None
    else:
        sess.require_driver()
        plate = sess.account.username
    rows = _logs().entries_with_distance(sess.site, plate=plate)

    status = (request.args.get("status") or "").strip()
    if status:
        if status not in STATUSES:
            raise ValidationError(f"Unknown status '{status}'.")
        rows = [r for r in rows if r["status"] == status]
    return jsonify({"ok": True, "site": sess.site, "entries": rows})


@bp.route("/api/v1/entries", methods=["POST"])
def entries_submit():
    sess = _driver_session()
    data = _payload()
    sub = EntrySubmission.from_form(data, _collect_receipts(data))
    entry = _logs().submit_entry(sess, sub)
    append_audit("entry_submitted", sess.site, entry.id, "", entry.status,
                 note=f"odometer={entry.odometer}")
    return jsonify({"ok": True, "entry": entry.summary_dict()}), 201


@bp.route("/api/v1/entries/<int:entry_id>", methods=["PUT"])
def entries_edit(entry_id):
    sess = _driver_session()
    data = _payload()
    photos = _collect_receipts(data)
    if not photos:
        # corrections may keep the receipts already on file
        photos = list(_logs().get_entry(sess.site, entry_id).receipt_photos)
    sub = EntrySubmission.from_form(data, photos)
    entry = _logs().edit_entry(sess, entry_id, sub)
    append_audit("entry_corrected", sess.site, entry.id, "rejected", entry.status)
    return jsonify({"ok": True, "entry": entry.summary_dict()})


@bp.route("/api/v1/entries/<int:entry_id>/approve", methods=["POST"])
def entries_approve(entry_id):
    sess = _admin_session()
    entry = _logs().approve(sess, sess.site, entry_id)
    append_audit("entry_status", sess.site, entry.id, "pending", entry.status)
    return jsonify({"ok": True, "entry": entry.summary_dict()})


@bp.route("/api/v1/entries/<int:entry_id>/reject", methods=["POST"])
def entries_reject(entry_id):
    sess = _admin_session()
    reason = str(_payload().get("reason") or "")
    entry = _logs().reject(sess, sess.site, entry_id, reason)
    append_audit("entry_status", sess.site, entry.id, "pending", entry.status, note=reason)
    return jsonify({"ok": True, "entry": entry.summary_dict()})


@bp.route("/api/v1/entries/<int:entry_id>/receipts/<int:index>", methods=["GET"])
def entries_receipt(entry_id, index):
    sess = _current_session()
    if sess.account.is_admin:
        sess = _admin_session()
    entry = _logs().get_entry(sess.site, entry_id)
    if not sess.account.is_admin and entry.plate_number != sess.account.username:
        raise PermissionDenied("Not your entry.")
    if not 0 <= index < len(entry.receipt_photos):
        raise NotFound(f"Receipt {index} not found")
    mimetype, raw = decode_receipt(entry.receipt_photos[index])
    return send_file(io.BytesIO(raw), mimetype=mimetype)


@bp.route("/api/v1/odometer-floor", methods=["GET"])
def odometer_floor():
    sess = _driver_session()
    plate = sess.account.username
    return jsonify({
        "ok": True,
        "plate": plate,
        "floor": _logs().last_approved_odometer(sess.site, plate),
    })


# =========================
# Dashboard / reports (administrator)
# =========================
def _window():
    return parse_window(request.args.get("start"), request.args.get("end"))


def _report(sess: Session) -> Dict[str, Any]:
    start, end = _window()
    plate = (request.args.get("plate") or "").strip()
    if plate == "all":
        plate = ""
    return build_report(
        _logs().entries_with_distance(sess.site), start, end,
        plate=plate or None, tz_name=current_app.config["DISPLAY_TZ"],
    )


@bp.route("/api/v1/dashboard", methods=["GET"])
def dashboard():
    sess = _admin_session()
    start, end = _window()
    summary = dashboard_summary(_logs().entries_with_distance(sess.site), start, end,
                                tz_name=current_app.config["DISPLAY_TZ"])
    return jsonify({"ok": True, "site": sess.site, **summary})


@bp.route("/dashboard/chart.png", methods=["GET"])
def dashboard_chart():
    sess = _admin_session()
    start, end = _window()
    summary = dashboard_summary(_logs().entries_with_distance(sess.site), start, end,
                                tz_name=current_app.config["DISPLAY_TZ"])
    return send_file(io.BytesIO(render_cost_chart(summary["daily_costs"])), mimetype="image/png")


@bp.route("/api/v1/reports", methods=["GET"])
def report_view():
    sess = _admin_session()
    return jsonify({"ok": True, "site": sess.site, **_report(sess)})


@bp.route("/reports/export.pdf", methods=["GET"])
def report_pdf():
    sess = _admin_session()
    pdf_bytes = build_report_pdf(_report(sess), sess.site)
    filename = f"rapport_consommation_{sess.site}_{date.today().isoformat()}.pdf"
    return send_file(io.BytesIO(pdf_bytes), mimetype="application/pdf",
                     as_attachment=True, download_name=filename)


@bp.route("/reports/export.csv", methods=["GET"])
def report_export_csv():
    sess = _admin_session()
    filename = f"rapport_consommation_{sess.site}_{date.today().isoformat()}.csv"
    return send_file(io.BytesIO(report_csv(_report(sess))), mimetype="text/csv",
                     as_attachment=True, download_name=filename)


# =========================
# Entrypoint
# =========================
if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    create_app().run(host="0.0.0.0", port=int(os.environ.get("PORT", 5000)), debug=True)
