"""
Odoo CRM Client
Reads crm.lead records over Odoo's JSON-RPC endpoint
"""

from typing import Any, Optional, Protocol

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shared.config import (
    API_TIMEOUT,
    CRM_EXTRA_FIELDS,
    HEALTH_CHECK_TIMEOUT,
    ODOO_DB,
    ODOO_MAX_RETRIES,
    ODOO_PASSWORD,
    ODOO_RETRY_BACKOFF,
    ODOO_URL,
    ODOO_USERNAME,
)
from shared.errors import CrmError, OperationTimeoutError
from shared.resilience import CircuitBreaker, with_timeout

logger = structlog.get_logger()

LEAD_MODEL = "crm.lead"

# Fields present on every stock Odoo crm.lead
STANDARD_LEAD_FIELDS = [
    "id", "name", "partner_id", "partner_name", "contact_name", "function",
    "email_from", "phone", "mobile", "street", "city", "state_id", "country_id", "zip",
    "expected_revenue", "probability", "stage_id", "user_id", "team_id",
    "source_id", "medium_id", "campaign_id", "referred", "description",
    "create_date", "write_date", "date_deadline", "date_closed",
    "lost_reason_id", "priority", "type", "active",
]

LEAD_FIELDS = STANDARD_LEAD_FIELDS + [f for f in CRM_EXTRA_FIELDS if f not in STANDARD_LEAD_FIELDS]


class CrmSource(Protocol):
    """Read-only view of the CRM used by sync and search"""

    async def count(self, domain: list, include_inactive: bool = False) -> int: ...

    async def fetch_page(
        self,
        domain: list,
        fields: list[str],
        offset: int = 0,
        limit: int = 200,
        order: str = "id asc",
        include_inactive: bool = False,
    ) -> list[dict]: ...

    async def fetch_one(self, record_id: int, fields: list[str]) -> Optional[dict]: ...

    async def read(self, ids: list[int], fields: list[str]) -> list[dict]: ...


def _context(include_inactive: bool) -> dict:
    # active_test=False makes Odoo return archived (lost) leads too
    return {"context": {"active_test": False}} if include_inactive else {}


class OdooClient:
    """
    Odoo JSON-RPC client

    Protocol:
    1. POST /jsonrpc service=common method=authenticate -> uid
    2. POST /jsonrpc service=object method=execute_kw with (db, uid, password, model, method, args, kwargs)

    Each attempt passes through the CRM breaker; transport errors and
    timeouts are retried with exponential backoff.
    """

    def __init__(
        self,
        url: str = ODOO_URL,
        db: str = ODOO_DB,
        username: str = ODOO_USERNAME,
        password: str = ODOO_PASSWORD,
        timeout: float = API_TIMEOUT,
        max_retries: int = ODOO_MAX_RETRIES,
        retry_backoff: float = ODOO_RETRY_BACKOFF,
        breaker: Optional[CircuitBreaker] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url.rstrip("/")
        self.db = db
        self.username = username
        self.password = password
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.breaker = breaker or CircuitBreaker("crm", failure_threshold=5, reset_timeout=60.0)
        self._client = http_client
        self._uid: Optional[int] = None
        self._request_id = 0

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def _rpc(self, service: str, method: str, args: list, timeout: float) -> Any:
        """Single JSON-RPC round trip"""
        self._request_id += 1
        request = {
            "jsonrpc": "2.0",
            "method": "call",
            "params": {"service": service, "method": method, "args": args},
            "id": self._request_id,
        }
        response = await with_timeout(
            self._http().post(f"{self.url}/jsonrpc", json=request, timeout=timeout),
            timeout,
            f"odoo {method}",
        )
        response.raise_for_status()
        body = response.json()
        if body.get("error"):
            error = body["error"]
            data = error.get("data") or {}
            raise CrmError(f"Odoo API error: {data.get('message') or error.get('message')}", data)
        return body.get("result")

    async def _call(self, service: str, method: str, args: list, timeout: Optional[float] = None) -> Any:
        """RPC with retries; each attempt goes through the breaker"""
        timeout = timeout or self.timeout
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.retry_backoff),
            retry=retry_if_exception_type((httpx.TransportError, OperationTimeoutError)),
            before_sleep=lambda state: logger.warning(
                "Odoo call failed, retrying",
                method=method,
                attempt=state.attempt_number,
                error=str(state.outcome.exception()),
            ),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self.breaker.call(self._rpc, service, method, args, timeout)

    async def authenticate(self) -> int:
        """Resolve and cache the user id"""
        if self._uid is not None:
            return self._uid
        uid = await self._call("common", "authenticate", [self.db, self.username, self.password, {}])
        if not uid:
            raise CrmError("Authentication failed: Invalid credentials")
        self._uid = int(uid)
        logger.info("Authenticated with Odoo", url=self.url, db=self.db, uid=self._uid)
        return self._uid

    async def execute(self, model: str, method: str, args: list, kwargs: Optional[dict] = None) -> Any:
        uid = await self.authenticate()
        return await self._call(
            "object",
            "execute_kw",
            [self.db, uid, self.password, model, method, args, kwargs or {}],
        )

    async def count(self, domain: list, include_inactive: bool = False) -> int:
        return int(await self.execute(LEAD_MODEL, "search_count", [domain], _context(include_inactive)))

    async def fetch_page(
        self,
        domain: list,
        fields: list[str],
        offset: int = 0,
        limit: int = 200,
        order: str = "id asc",
        include_inactive: bool = False,
    ) -> list[dict]:
        kwargs = {"fields": fields, "offset": offset, "limit": limit, "order": order}
        kwargs.update(_context(include_inactive))
        return await self.execute(LEAD_MODEL, "search_read", [domain], kwargs) or []

    async def fetch_one(self, record_id: int, fields: list[str]) -> Optional[dict]:
        records = await self.fetch_page(
            [["id", "=", int(record_id)]], fields, limit=1, include_inactive=True
        )
        return records[0] if records else None

    async def read(self, ids: list[int], fields: list[str]) -> list[dict]:
        if not ids:
            return []
        return await self.execute(LEAD_MODEL, "read", [[int(i) for i in ids]], {"fields": fields}) or []

    async def check_health(self) -> bool:
        """Check if Odoo is reachable"""
        try:
            await with_timeout(
                self._rpc("common", "version", [], HEALTH_CHECK_TIMEOUT),
                HEALTH_CHECK_TIMEOUT,
                "odoo health check",
            )
            return True
        except Exception as e:
            logger.warning("Odoo health check failed", error=str(e))
            return False

    async def aclose(self):
        if self._client is not None:
            await self._client.aclose()
