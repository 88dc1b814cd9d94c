"""LDAP transport for Active Directory.

Owns the single connection of a session and exposes entry-level primitives:
paged search, add, delete, move/rename and full-replace attribute writes.

Every call is a single blocking request. There is no retry and no
background keep-alive: transport failures are translated into
DirectoryError subclasses and raised to the caller.
"""

import logging
import os
import socket
import ssl
from typing import Any, Dict, Iterable, List, Optional, Tuple

import ldap3
from ldap3 import Server, Connection, ALL, MODIFY_REPLACE
from ldap3.core.exceptions import (
    LDAPException,
    LDAPBindError,
    LDAPNoSuchObjectResult,
    LDAPSocketOpenError,
    LDAPSocketSendError,
    LDAPSocketReceiveError,
)
from ldap3.utils.dn import escape_rdn

from ..config.models import ActiveDirectoryConfig, SecurityConfig, PerformanceConfig
from .account import AccountHandle, ACCOUNT_ATTRIBUTES
from .attributes import AttributeCollection
from .exceptions import (
    DirectoryConnectionError,
    DirectoryModifyError,
    DirectorySearchError,
)
from .logging import log_ldap_operation
from .query import QueryConfig, SearchScope

logger = logging.getLogger("active-directory-objects.ldap")

PAGED_RESULTS_OID = "1.2.840.113556.1.4.319"
MATCH_ALL_FILTER = "(objectClass=*)"

USER_ACCOUNT_CONTROL_COMPUTED = "msDS-User-Account-Control-Computed"

# "*" does not include constructed attributes, so ask for this one by name
DEFAULT_ATTRIBUTES: Tuple[str, ...] = (ldap3.ALL_ATTRIBUTES, USER_ACCOUNT_CONTROL_COMPUTED)

# =============================================================================
# Socket errors mean the connection is gone, not that the request was bad
# =============================================================================
CONNECTION_ERRORS = (
    LDAPSocketSendError,
    LDAPSocketReceiveError,
    LDAPSocketOpenError,
    LDAPBindError,
    ConnectionResetError,
    BrokenPipeError,
)


def discover_joined_domain() -> str:
    """
    Find the DNS domain this machine is joined to.

    Raises:
        DirectoryConnectionError: If no domain can be determined
    """
    domain = os.environ.get("USERDNSDOMAIN", "").strip()
    if not domain:
        _, _, domain = socket.getfqdn().partition(".")
    if not domain:
        raise DirectoryConnectionError(
            "No server or domain configured and this machine is not joined to a domain"
        )
    return domain.lower()


class LDAPManager:
    """
    LDAP connection manager for Active Directory operations.

    The server is resolved on first connect:
    1. the configured server, if any
    2. otherwise the first domain controller of the configured site
    3. otherwise the domain itself (configured, or the joined domain)
    """

    def __init__(self,
                 ad_config: ActiveDirectoryConfig,
                 security_config: Optional[SecurityConfig] = None,
                 performance_config: Optional[PerformanceConfig] = None):
        """
        Initialize LDAP manager.

        Args:
            ad_config: Active Directory configuration
            security_config: Security configuration
            performance_config: Performance configuration
        """
        self.ad_config = ad_config
        self.security_config = security_config or SecurityConfig()
        self.performance_config = performance_config or PerformanceConfig()

        self._connection: Optional[Connection] = None
        self._server_host: Optional[str] = None
        self._query_config: Optional[QueryConfig] = None

    # -------------------------------------------------------------------------
    # Server resolution and connection
    # -------------------------------------------------------------------------

    def resolve_server(self) -> str:
        """
        Pick the server to connect to. Only the first candidate is used.

        Returns:
            Host name or LDAP URL
        """
        if self.ad_config.server:
            return self.ad_config.server

        domain = self.ad_config.domain or discover_joined_domain()

        candidates: List[str] = []
        if self.ad_config.site_name:
            candidates = self.get_servers_for_site(domain, self.ad_config.site_name)
        if not candidates:
            candidates = [domain]

        logger.info(f"Resolved server {candidates[0]} from {len(candidates)} candidate(s)")
        return candidates[0]

    @property
    def server_host(self) -> str:
        if self._server_host is None:
            self._server_host = self.resolve_server()
        return self._server_host

    def _tls(self) -> Optional[ldap3.Tls]:
        if not (self.security_config.enable_tls or self.ad_config.use_ssl):
            return None
        return ldap3.Tls(
            validate=ssl.CERT_REQUIRED if self.security_config.validate_certificate else ssl.CERT_NONE,
            ca_certs_file=self.security_config.ca_cert_file
        )

    def _create_server(self, host: str) -> Server:
        return Server(
            host,
            port=self.ad_config.port,
            use_ssl=self.ad_config.use_ssl,
            get_info=ALL,
            tls=self._tls(),
            connect_timeout=self.ad_config.timeout
        )

    def _create_connection(self, server: Server) -> Connection:
        kwargs: Dict[str, Any] = {
            "receive_timeout": self.ad_config.receive_timeout,
            "raise_exceptions": True,
            # member;range=0-1499 style retrieval of large multi-valued attributes
            "auto_range": True,
        }
        authentication = self.ad_config.authentication
        if authentication == "KERBEROS":
            kwargs.update(authentication=ldap3.SASL, sasl_mechanism=ldap3.KERBEROS)
        elif not self.ad_config.bind_dn:
            kwargs.update(authentication=ldap3.ANONYMOUS)
        else:
            kwargs.update(
                user=self.ad_config.bind_dn,
                password=self.ad_config.password,
                authentication=ldap3.NTLM if authentication == "NTLM" else ldap3.SIMPLE
            )
        return Connection(server, **kwargs)

    def _open(self, host: str) -> Connection:
        server = self._create_server(host)
        connection = self._create_connection(server)
        connection.open()
        if self.security_config.enable_tls and not self.ad_config.use_ssl:
            connection.start_tls()
        connection.bind()
        return connection

    def connect(self) -> Connection:
        """
        Establish the LDAP connection, reusing a bound one.

        Returns:
            Connection: Active LDAP connection

        Raises:
            DirectoryConnectionError: If the server cannot be reached or bound
        """
        if self._connection is not None and self._connection.bound:
            return self._connection

        host = self.server_host
        try:
            logger.debug(f"Connecting to {host}")
            self._connection = self._open(host)
            logger.info(f"Successfully connected to {host}")
            return self._connection
        except (LDAPException, OSError) as e:
            self._connection = None
            logger.error(f"Connection to {host} failed: {e}")
            raise DirectoryConnectionError(f"Failed to connect to {host}: {e}") from e

    def disconnect(self) -> None:
        """Disconnect from LDAP server."""
        if self._connection:
            try:
                self._connection.unbind()
                logger.info("Disconnected from LDAP server")
            except (LDAPException, OSError) as e:
                logger.warning(f"Error during disconnect: {e}")
            finally:
                self._connection = None

    def _ensure_connection(self) -> Connection:
        return self.connect()

    def _root_dse_value(self, name: str) -> Optional[str]:
        connection = self._ensure_connection()
        info = connection.server.info
        if info is None:
            return None
        values = info.other.get(name) or []
        return values[0] if values else None

    @property
    def default_naming_context(self) -> Optional[str]:
        return self._root_dse_value("defaultNamingContext") or self.ad_config.base_dn

    @property
    def configuration_naming_context(self) -> Optional[str]:
        return self._root_dse_value("configurationNamingContext")

    @property
    def query_config(self) -> QueryConfig:
        """Default search: configured OU or base DN, whole subtree."""
        if self._query_config is None:
            base_dn = self.ad_config.ou_dn or self.ad_config.base_dn or self.default_naming_context
            if not base_dn:
                raise DirectoryConnectionError("Could not determine a search base DN")
            self._query_config = QueryConfig(
                base_dn=base_dn,
                scope=SearchScope.SUBTREE,
                attributes=DEFAULT_ATTRIBUTES,
                page_size=self.performance_config.page_size
            )
        return self._query_config

    # -------------------------------------------------------------------------
    # Entry primitives
    # -------------------------------------------------------------------------

    def entry_get(self, search_filter: Optional[str], config: QueryConfig) -> List[AttributeCollection]:
        """
        Perform a paged search.

        Args:
            search_filter: LDAP filter string, None matches every entry
            config: Base DN, scope, attributes and page size

        Returns:
            All entries of all pages in the order the server returned them;
            empty when the search base does not exist

        Raises:
            DirectorySearchError: If the filter is invalid or a page fails
            DirectoryConnectionError: If the connection is lost
        """
        connection = self._ensure_connection()
        search_filter = search_filter or MATCH_ALL_FILTER
        logger.debug(f"Searching: base={config.base_dn}, scope={config.scope.value}, filter={search_filter}")

        entries: List[AttributeCollection] = []
        cookie = None
        try:
            while True:
                connection.search(
                    search_base=config.base_dn,
                    search_filter=search_filter,
                    search_scope=config.scope.value,
                    attributes=list(config.attributes),
                    paged_size=config.page_size,
                    paged_cookie=cookie
                )

                for item in connection.response or []:
                    # skip referrals
                    if item.get('type') != 'searchResEntry':
                        continue
                    entries.append(AttributeCollection(
                        item['dn'],
                        item.get('attributes'),
                        item.get('raw_attributes')
                    ))

                cookie = connection.result.get('controls', {}).get(PAGED_RESULTS_OID, {}).get('value', {}).get('cookie')
                if not cookie:
                    break
        except LDAPNoSuchObjectResult:
            logger.debug(f"Search base does not exist: {config.base_dn}")
            return []
        except CONNECTION_ERRORS as e:
            self._connection = None
            logger.error(f"Connection lost during search: {e}")
            raise DirectoryConnectionError(f"Connection lost during search: {e}") from e
        except LDAPException as e:
            logger.error(f"Search error: {e}")
            raise DirectorySearchError(f"Search failed: {e}", search_filter, config.base_dn) from e

        logger.debug(f"Search returned {len(entries)} entries")
        return entries

    def _modify_failed(self, operation: str, dn: str, error: Exception, attribute: Optional[str] = None):
        if isinstance(error, CONNECTION_ERRORS):
            self._connection = None
            log_ldap_operation(operation, dn, False, f"connection lost: {error}")
            return DirectoryConnectionError(f"Connection lost during {operation} of {dn}: {error}")
        log_ldap_operation(operation, dn, False, str(error))
        return DirectoryModifyError(f"{operation} failed: {error}", dn, attribute)

    def entry_add(self, dn: str, attributes: Iterable[Tuple[str, Any]]) -> bool:
        """
        Add LDAP entry.

        Args:
            dn: Distinguished name of new entry
            attributes: (name, value) pairs; repeated names become multi-valued

        Raises:
            DirectoryModifyError: If the parent is missing or the entry exists
        """
        connection = self._ensure_connection()

        values: Dict[str, List[Any]] = {}
        for name, value in attributes:
            values.setdefault(name, []).append(value)

        try:
            logger.debug(f"Adding entry: {dn}")
            connection.add(dn, attributes=values)
        except LDAPException as e:
            raise self._modify_failed("add", dn, e) from e

        log_ldap_operation("add", dn, True)
        return True

    def entry_delete(self, dn: str) -> bool:
        """
        Delete LDAP entry.

        Returns:
            False if the entry does not exist, True once deleted
        """
        connection = self._ensure_connection()
        try:
            logger.debug(f"Deleting entry: {dn}")
            connection.delete(dn)
        except LDAPNoSuchObjectResult:
            logger.debug(f"Entry to delete does not exist: {dn}")
            return False
        except LDAPException as e:
            raise self._modify_failed("delete", dn, e) from e

        log_ldap_operation("delete", dn, True)
        return True

    def entry_move_rename(self, dn: str, new_parent_dn: str, new_common_name: str) -> bool:
        """
        Move and/or rename an entry in one request.

        The distinguished name changes; the objectGUID does not.
        """
        connection = self._ensure_connection()
        relative_dn = f"CN={escape_rdn(new_common_name)}"
        try:
            logger.debug(f"Moving entry {dn} to {relative_dn},{new_parent_dn}")
            connection.modify_dn(dn, relative_dn, new_superior=new_parent_dn)
        except LDAPException as e:
            raise self._modify_failed("move", dn, e) from e

        log_ldap_operation("move", dn, True, f"now {relative_dn},{new_parent_dn}")
        return True

    def attribute_save(self, dn: str, attribute_name: str, values: Iterable[Any]) -> bool:
        """
        Replace every value of one attribute.

        An empty value list removes the attribute.
        """
        connection = self._ensure_connection()
        values = list(values)
        try:
            logger.debug(f"Modifying entry: {dn} ({attribute_name}, {len(values)} value(s))")
            success = connection.modify(dn, {attribute_name: [(MODIFY_REPLACE, values)]})
        except LDAPException as e:
            raise self._modify_failed("modify", dn, e, attribute_name) from e

        log_ldap_operation("modify", dn, bool(success), attribute_name)
        return bool(success)

    def modify_password(self, dn: str, new_password: str) -> bool:
        """Set an account password through the Microsoft unicodePwd extension."""
        connection = self._ensure_connection()
        try:
            success = connection.extend.microsoft.modify_password(dn, new_password)
        except LDAPException as e:
            raise self._modify_failed("set password", dn, e, "unicodePwd") from e

        log_ldap_operation("set password", dn, bool(success))
        return bool(success)

    # -------------------------------------------------------------------------
    # Directory topology and extended account facility
    # -------------------------------------------------------------------------

    def get_servers_for_site(self, domain: str, site: str) -> List[str]:
        """
        List the domain controllers of an AD site.

        Reads the server objects below the site in the configuration
        partition, using a short-lived connection to the domain.

        Returns:
            DNS host names, empty if the site is unknown or unreachable
        """
        if not domain or not site:
            return []

        connection = None
        try:
            connection = self._open(domain)
            info = connection.server.info
            configuration_nc = (info.other.get('configurationNamingContext') or [None])[0] if info else None
            if not configuration_nc:
                return []

            servers_dn = f"CN=Servers,CN={escape_rdn(site)},CN=Sites,{configuration_nc}"
            connection.search(
                search_base=servers_dn,
                search_filter="(objectClass=server)",
                search_scope=ldap3.LEVEL,
                attributes=['dNSHostName']
            )
            hosts = []
            for item in connection.response or []:
                if item.get('type') != 'searchResEntry':
                    continue
                host = AttributeCollection(item['dn'], item.get('attributes')).get_string('dNSHostName')
                if host:
                    hosts.append(host)
            logger.debug(f"Site {site} of {domain} has {len(hosts)} server(s)")
            return hosts
        except (LDAPException, OSError) as e:
            logger.warning(f"Could not list servers for site {site} of {domain}: {e}")
            return []
        finally:
            if connection is not None:
                try:
                    connection.unbind()
                except (LDAPException, OSError):
                    pass

    def get_account_handle(self, dn: str) -> Optional[AccountHandle]:
        """
        Fetch the account-management view of an entry.

        Returns:
            AccountHandle, or None if the entry does not exist
        """
        config = QueryConfig(
            base_dn=dn,
            scope=SearchScope.BASE,
            attributes=ACCOUNT_ATTRIBUTES,
            page_size=self.performance_config.page_size
        )
        entries = self.entry_get(MATCH_ALL_FILTER, config)
        if not entries:
            return None
        return AccountHandle(self, entries[0])

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    def test_connection(self) -> Dict[str, Any]:
        """
        Connect and read the root of the search base.

        Returns:
            Dictionary with connection test results
        """
        try:
            connection = self.connect()
            server_info = {
                'connected': True,
                'server': connection.server.host,
                'port': connection.server.port,
                'ssl': connection.server.ssl,
                'bound': connection.bound,
                'user': connection.user,
            }

            config = self.query_config
            try:
                self.entry_get(MATCH_ALL_FILTER, config.with_base(config.base_dn, SearchScope.BASE).with_attributes(['objectClass']))
                server_info['search_test'] = True
            except DirectorySearchError as e:
                server_info['search_test'] = False
                server_info['search_error'] = str(e)

            logger.info("Connection test completed")
            return server_info

        except DirectoryConnectionError as e:
            logger.error(f"Connection test failed: {e}")
            return {
                'connected': False,
                'error': str(e),
                'error_type': type(e).__name__,
            }

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()
