import asyncio
import logging
from dataclasses import dataclass

from ldap3 import SUBTREE, Connection, Server
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars

from app.core.config import settings

logger = logging.getLogger(__name__)


class DirectoryError(Exception):
    """Directory unreachable, misconfigured or refusing the service bind."""


class DirectoryNotFoundError(DirectoryError):
    """No (complete) entry for the requested login or name."""


@dataclass
class DirectoryEntry:
    login: str
    name: str
    email: str


def _first(entry: dict, attribute: str) -> str | None:
    value = entry.get(attribute)
    if isinstance(value, list):
        value = value[0] if value else None
    return str(value) if value else None


class DirectoryClient:
    """Read-only lookups of staff accounts in the corporate LDAP directory."""

    def __init__(self, config=settings) -> None:
        self._settings = config

    def _search(self, search_filter: str) -> dict:
        s = self._settings
        if not (s.ldap_server and s.ldap_base_dn):
            raise DirectoryError("LDAP server or base DN not configured")
        server = Server(s.ldap_server, connect_timeout=s.ldap_timeout_seconds)
        try:
            conn = Connection(
                server,
                user=f"{s.ldap_user}{s.ldap_domain}",
                password=s.ldap_password,
                receive_timeout=s.ldap_timeout_seconds,
            )
            if not conn.bind():
                raise DirectoryError(f"LDAP bind failed: {conn.result.get('description')}")
            try:
                conn.search(
                    s.ldap_base_dn,
                    search_filter,
                    search_scope=SUBTREE,
                    attributes=["name", "mail", "sAMAccountName"],
                )
                entries = [e["attributes"] for e in conn.response or [] if e.get("type") == "searchResEntry"]
            finally:
                conn.unbind()
        except LDAPException as e:
            raise DirectoryError(f"LDAP error: {e}") from e
        if not entries:
            raise DirectoryNotFoundError("User not found in directory")
        return entries[0]

    def _lookup(self, search_filter: str, login: str) -> DirectoryEntry:
        entry = self._search(search_filter)
        name = _first(entry, "name")
        email = _first(entry, "mail")
        if not name or not email:
            raise DirectoryNotFoundError("Incomplete directory entry")
        return DirectoryEntry(login=login.lower(), name=name, email=email.lower())

    async def find_by_login(self, login: str) -> DirectoryEntry:
        search_filter = (
            f"(&(sAMAccountName={escape_filter_chars(login)})"
            f"(company={escape_filter_chars(self._settings.ldap_company)}))"
        )
        return await asyncio.to_thread(self._lookup, search_filter, login)


def get_directory() -> DirectoryClient:
    return DirectoryClient()
