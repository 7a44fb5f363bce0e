# models.py
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Mapping, Optional

SITES = ["Salé", "Zemamra"]

ROLE_ADMIN = "admin"
ROLE_DRIVER = "driver"

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED)

# ---- storage keys (one JSON blob per key) ----
SESSION_KEY = "fuel-log-user"
ADMIN_PROFILE_KEY = "fuel-log-admin"


def accounts_key(site: str) -> str:
    return f"users_{site}"


def entries_key(site: str) -> str:
    return f"fuelLogs_{site}"


# Bootstrap administrator; replaced by the stored profile once edited.
INITIAL_ADMIN = {
    "id": 1,
    "username": "admin",
    "password": "admin",
    "role": ROLE_ADMIN,
    "driver_name": "Admin",
}

REPORT_COLUMNS = [
    "date",
    "driver_name",
    "plate_number",
    "odometer",
    "liters",
    "total_cost",
    "status",
]


# =========================
# Errors
# =========================
class FuelLogError(Exception):
    """Base class for every error surfaced to the user."""


class ValidationError(FuelLogError, ValueError):
    """Input rejected; the user can correct it and retry."""


class DuplicatePlateError(ValidationError):
    pass


class OdometerFloorError(ValidationError):
    def __init__(self, floor: int, message: Optional[str] = None):
        self.floor = floor
        super().__init__(message or f"Odometer must be greater than {floor} km.")


class ReceiptError(ValidationError):
    pass


class InvalidTransition(ValidationError):
    pass


class PermissionDenied(FuelLogError):
    pass


class ConfirmationRequired(FuelLogError):
    pass


class NotFound(FuelLogError, KeyError):
    def __str__(self):
        return str(self.args[0]) if self.args else "Not found."


def check_site(site: str) -> str:
    if site not in SITES:
        raise ValidationError(f"Unknown site '{site}'.")
    return site


# =========================
# Records
# =========================
@dataclass
class Account:
    id: int
    username: str
    password: str
    role: str
    driver_name: Optional[str] = None
    phone: Optional[str] = None
    site: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Account":
        return cls(
            id=int(raw["id"]),
            username=str(raw.get("username") or ""),
            password=str(raw.get("password") or ""),
            role=raw.get("role") or ROLE_DRIVER,
            driver_name=raw.get("driver_name"),
            phone=raw.get("phone"),
            site=raw.get("site"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def public_dict(self) -> Dict[str, Any]:
        """Account as exposed over the API (no password)."""
        d = self.to_dict()
        d.pop("password", None)
        return d


@dataclass
class FuelEntry:
    id: int
    plate_number: str
    driver_name: str
    site: str
    date: str
    odometer: int
    liters: float
    total_cost: float
    remarks: str = ""
    receipt_photos: List[str] = field(default_factory=list)
    status: str = STATUS_PENDING
    rejection_reason: str = ""

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "FuelEntry":
        return cls(
            id=int(raw["id"]),
            plate_number=str(raw.get("plate_number") or ""),
            driver_name=str(raw.get("driver_name") or ""),
            site=str(raw.get("site") or ""),
            date=str(raw.get("date") or ""),
            odometer=int(raw.get("odometer") or 0),
            liters=float(raw.get("liters") or 0),
            total_cost=float(raw.get("total_cost") or 0),
            remarks=raw.get("remarks") or "",
            receipt_photos=list(raw.get("receipt_photos") or []),
            status=raw.get("status") or STATUS_PENDING,
            rejection_reason=raw.get("rejection_reason") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def summary_dict(self) -> Dict[str, Any]:
        """Entry for list views: receipts reduced to a count."""
        d = self.to_dict()
        d["receipt_count"] = len(d.pop("receipt_photos"))
        return d


@dataclass
class Session:
    """Who is acting, and on which site."""
    account: Account
    site: Optional[str] = None

    def __post_init__(self):
        if self.site is None and not self.account.is_admin:
            self.site = self.account.site

    def require_admin(self) -> None:
        if not self.account.is_admin:
            raise PermissionDenied("Administrator access required.")

    def require_driver(self) -> None:
        if self.account.is_admin or not self.site:
            raise PermissionDenied("Driver access required.")


# =========================
# Submission records
# =========================
def _clean(v: Any) -> str:
    return "" if v is None else str(v).strip()


def _parse_number(raw: Any, label: str, cast=float):
    s = _clean(raw)
    if s == "":
        raise ValidationError(f"{label} is required.")
    try:
        value = cast(s) if cast is not int else int(float(s))
    except (ValueError, OverflowError):
        raise ValidationError(f"{label} must be a number.")
    if value != value:  # NaN
        raise ValidationError(f"{label} must be a number.")
    if cast is int and float(s) != value:
        raise ValidationError(f"{label} must be a whole number.")
    if value <= 0:
        raise ValidationError(f"{label} must be greater than 0.")
    return value


@dataclass
class EntrySubmission:
    odometer: int
    liters: float
    total_cost: float
    remarks: str = ""
    receipt_photos: List[str] = field(default_factory=list)

    @classmethod
    def from_form(cls, data: Mapping[str, Any],
                  receipt_photos: Optional[List[str]] = None) -> "EntrySubmission":
        """
        Parse a form/JSON payload. Receipts may come in the payload
        (`receipt_photos`, already-encoded data URLs) or from uploaded files
        encoded by the caller; at least one is required.
        """
        photos = list(receipt_photos or [])
        photos.extend(p for p in (data.get("receipt_photos") or []) if p)
        sub = cls(
            odometer=_parse_number(data.get("odometer"), "Odometer", int),
            liters=_parse_number(data.get("liters"), "Liters"),
            total_cost=_parse_number(data.get("total_cost"), "Total cost"),
            remarks=_clean(data.get("remarks")),
            receipt_photos=photos,
        )
        if not sub.receipt_photos:
            raise ValidationError("Please add at least one receipt photo.")
        return sub


@dataclass
class DriverForm:
    username: str
    driver_name: str
    password: str = ""
    phone: str = ""

    @classmethod
    def from_form(cls, data: Mapping[str, Any], require_plate: bool = True,
                  require_password: bool = True) -> "DriverForm":
        """Creation needs plate and password; updates leave both optional."""
        form = cls(
            username=_clean(data.get("username")),
            driver_name=_clean(data.get("driver_name")),
            password=str(data.get("password") or ""),
            phone=_clean(data.get("phone")),
        )
        if require_plate and not form.username:
            raise ValidationError("Plate number is required.")
        if not form.driver_name:
            raise ValidationError("Driver name is required.")
        if require_password and not form.password:
            raise ValidationError("Password is required.")
        return form
