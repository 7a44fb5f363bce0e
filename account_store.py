# account_store.py
import logging
from threading import Lock
from typing import Dict, List, Optional

from models import (
    ADMIN_PROFILE_KEY,
    INITIAL_ADMIN,
    ROLE_DRIVER,
    SESSION_KEY,
    SITES,
    Account,
    ConfirmationRequired,
    DriverForm,
    DuplicatePlateError,
    NotFound,
    Session,
    ValidationError,
    accounts_key,
    check_site,
)
from storage import JsonKeyValueStore, new_id

log = logging.getLogger(__name__)


class AccountStore:
    """
    Driver accounts per site, plus the administrator profile and the
    current session account.

    - Site partitions: `users_<site>` (list of account dicts)
    - Administrator profile: `fuel-log-admin` (defaults to the bootstrap admin)
    - Current session account: `fuel-log-user`

    All partitions are loaded once at construction and rewritten whole
    after each mutation.
    """

    def __init__(self, kv: JsonKeyValueStore):
        self.kv = kv
        self._lock = Lock()
        self._accounts: Dict[str, List[Account]] = {
            site: [Account.from_dict(a) for a in kv.get(accounts_key(site), [])]
            for site in SITES
        }

    # -------------------------
    # Authentication / session
    # -------------------------
    def admin_profile(self) -> Account:
        return Account.from_dict(self.kv.get(ADMIN_PROFILE_KEY, INITIAL_ADMIN))

    def authenticate(self, username: str, password: str) -> Optional[Account]:
        """Administrator first, then each site's drivers in order."""
        admin = self.admin_profile()
        if username == admin.username and password == admin.password:
            return admin
        for site in SITES:
            for account in self._accounts[site]:
                if account.username == username and account.password == password:
                    return account
        return None

    def login(self, username: str, password: str) -> Optional[Account]:
        account = self.authenticate(username, password)
        if account is None:
            log.warning("Failed login for %r", username)
            return None
        self.kv.put(SESSION_KEY, account.to_dict())
        log.info("Login: %s (%s)", account.username, account.role)
        return account

    def logout(self) -> None:
        self.kv.delete(SESSION_KEY)

    def current_account(self) -> Optional[Account]:
        raw = self.kv.get(SESSION_KEY)
        return Account.from_dict(raw) if raw else None

    # -------------------------
    # Queries
    # -------------------------
    def list_accounts(self, site: str) -> List[Account]:
        return list(self._accounts[check_site(site)])

    def find_by_plate(self, site: str, plate: str) -> Optional[Account]:
        for account in self._accounts[check_site(site)]:
            if account.username == plate:
                return account
        return None

    def get_account(self, site: str, account_id: int) -> Account:
        for account in self._accounts[check_site(site)]:
            if account.id == account_id:
                return account
        raise NotFound(f"Account {account_id} not found")

    def find_by_id(self, account_id: int) -> Optional[Account]:
        """Resolve an id across the administrator and every site."""
        admin = self.admin_profile()
        if admin.id == account_id:
            return admin
        for site in SITES:
            for account in self._accounts[site]:
                if account.id == account_id:
                    return account
        return None

    # -------------------------
    # Mutations (administrator)
    # -------------------------
    def create_driver(self, session: Session, site: str, form: DriverForm) -> Account:
        session.require_admin()
        check_site(site)
        if not form.password:
            raise ValidationError("Password is required.")
        with self._lock:
            if self.find_by_plate(site, form.username):
                raise DuplicatePlateError(f"Plate '{form.username}' already exists.")
            account = Account(
                id=new_id(),
                username=form.username,
                password=form.password,
                role=ROLE_DRIVER,
                driver_name=form.driver_name,
                phone=form.phone,
                site=site,
            )
            self._accounts[site].append(account)
            self._save(site)
        log.info("Driver %s created in %s", account.username, site)
        return account

    def update_account(self, session: Session, site: str, account_id: int,
                       form: DriverForm) -> Account:
        """Plate stays fixed: it keys the driver's fuel history."""
        session.require_admin()
        with self._lock:
            account = self.get_account(site, account_id)
            account.driver_name = form.driver_name
            account.phone = form.phone
            if form.password:
                account.password = form.password
            self._save(site)
        log.info("Account %s updated in %s", account.username, site)
        return account

    def delete_account(self, session: Session, site: str, account_id: int,
                       confirmed: bool = False) -> None:
        session.require_admin()
        with self._lock:
            account = self.get_account(site, account_id)
            if not confirmed:
                raise ConfirmationRequired(
                    f"Deleting '{account.username}' must be confirmed."
                )
            self._accounts[site] = [a for a in self._accounts[site] if a.id != account_id]
            self._save(site)
        log.info("Account %s deleted from %s", account.username, site)

    def update_admin(self, session: Session, username: str, password: str = "",
                     confirm: str = "") -> Account:
        session.require_admin()
        username = (username or "").strip()
        if not username:
            raise ValidationError("Username is required.")
        if password and password != confirm:
            raise ValidationError("Passwords do not match.")
        admin = self.admin_profile()
        admin.username = username
        if password:
            admin.password = password
        self.kv.put(ADMIN_PROFILE_KEY, admin.to_dict())
        current = self.current_account()
        if current is not None and current.is_admin:
            self.kv.put(SESSION_KEY, admin.to_dict())
        session.account = admin
        log.info("Administrator profile updated")
        return admin

    # -------------------------
    # Internal helpers
    # -------------------------
    def _save(self, site: str) -> None:
        self.kv.put(accounts_key(site), [a.to_dict() for a in self._accounts[site]])
