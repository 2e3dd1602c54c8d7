"""
Grant Store client.

The Grant Store is the remote system of record for per-tenant grants and
memberships. ``GrantStore`` is the contract the engine depends on;
``HttpGrantStoreClient`` talks to the REST service with ``requests`` and
maps transport and HTTP failures onto the engine's exception taxonomy.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

import requests
from asgiref.sync import sync_to_async
from django.conf import settings

from apps.core.exceptions import (
    AuthExpired, GrantStoreError, NetworkError, NotAMember,
    PermissionDeniedError, ValidationError,
)
from apps.integrations.serializers import (
    GrantListSerializer, MembershipListSerializer,
)
from apps.rbac.permissions import PermissionCode, parse_permission_code
from apps.rbac.types import Grant
from apps.tenants.types import TenantMembership

logger = logging.getLogger(__name__)


class GrantStore(ABC):
    """Contract for the remote grant system of record. All calls suspend."""

    @abstractmethod
    async def fetch_grants(self, tenant_id: str, actor_id: str) -> List[Grant]:
        """Every grant record (effective or not) for the actor in the tenant."""

    @abstractmethod
    async def grant(self, tenant_id: str, actor_id: str, permission_codes: Iterable[PermissionCode],
                    notes: Optional[str] = None, granted_by: Optional[str] = None) -> List[Grant]:
        """Create grants and return the records that became effective."""

    @abstractmethod
    async def revoke(self, tenant_id: str, actor_id: str, permission_codes: Iterable[PermissionCode],
                     reason: Optional[str] = None, revoked_by: Optional[str] = None) -> None:
        """Soft-revoke the effective grants for the given codes."""

    @abstractmethod
    async def fetch_memberships(self, actor_id: str) -> List[TenantMembership]:
        """Every tenant membership the actor holds."""


class HttpGrantStoreClient(GrantStore):
    """
    REST client for the Grant Store.

    Blocking ``requests`` calls run in a worker thread via
    ``sync_to_async`` so callers on the event loop never block.

    Error mapping:
        - connection errors, timeouts, 429 and 5xx: NetworkError
        - 401: AuthExpired
        - 403: PermissionDeniedError
        - 404: NotAMember
        - 400 and 422: ValidationError
        - anything else or an unreadable body: GrantStoreError
    """

    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None,
                 timeout: Optional[float] = None, session: Optional[requests.Session] = None):
        """
        Args:
            base_url: Grant Store root URL (defaults to settings.GRANT_STORE_URL)
            token: Bearer token of the authenticated actor
            timeout: Per-request timeout in seconds
            session: Optional pre-configured requests session
        """
        self.base_url = (base_url or settings.GRANT_STORE_URL).rstrip('/')
        self.timeout = timeout or getattr(settings, 'GRANT_STORE_REQUEST_TIMEOUT', 10)
        self.session = session or requests.Session()
        self.session.headers.update({'Accept': 'application/json'})
        if token:
            self.session.headers['Authorization'] = f'Bearer {token}'

    def _grants_path(self, tenant_id: str, actor_id: str) -> str:
        return f"/salons/{tenant_id}/employees/{actor_id}/permissions"

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, json=payload, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise NetworkError(f"Grant Store timed out: {method} {path}", details={'error': str(e)})
        except requests.exceptions.ConnectionError as e:
            raise NetworkError(f"Grant Store unreachable: {method} {path}", details={'error': str(e)})
        except requests.exceptions.RequestException as e:
            raise GrantStoreError(f"Grant Store request failed: {method} {path}", details={'error': str(e)})

        status = response.status_code
        if 200 <= status < 300:
            if status == 204 or not response.content:
                return None
            try:
                return response.json()
            except ValueError:
                raise GrantStoreError(f"Grant Store returned invalid JSON for {method} {path}")

        message = self._error_message(response)
        details = {'status_code': status, 'path': path}
        logger.warning(
            f"Grant Store {method} {path} returned {status}",
            extra={'status_code': status, 'error': message}
        )
        if status == 401:
            raise AuthExpired(message or 'Session expired', details=details)
        if status == 403:
            raise PermissionDeniedError(message or 'Not allowed to modify grants', details=details)
        if status == 404:
            raise NotAMember(message or 'No membership for tenant', details=details)
        if status in (400, 422):
            raise ValidationError(message or 'Invalid grant request', details=details)
        if status == 429 or status >= 500:
            raise NetworkError(message or f'Grant Store unavailable ({status})', details=details)
        raise GrantStoreError(message or f'Unexpected Grant Store status {status}', details=details)

    @staticmethod
    def _error_message(response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:200]
        if isinstance(body, dict):
            message = body.get('message') or body.get('error') or body.get('detail')
            if isinstance(message, list):
                message = '; '.join(str(item) for item in message)
            return str(message) if message else ''
        return ''

    async def _call(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        return await sync_to_async(self._request, thread_sensitive=False)(method, path, payload)

    @staticmethod
    def _validated(serializer_class, data, what: str) -> dict:
        serializer = serializer_class(data=data)
        if not serializer.is_valid():
            raise GrantStoreError(f"Malformed {what} payload", details={'errors': serializer.errors})
        return serializer.validated_data

    def _to_grants(self, records: List[dict], tenant_id: str, actor_id: str) -> List[Grant]:
        grants = []
        for record in records:
            try:
                code = parse_permission_code(record['permission_code'])
            except ValidationError:
                logger.warning(
                    f"Ignoring grant with unknown permission code {record['permission_code']}",
                    extra={'tenant_id': tenant_id, 'actor_id': actor_id}
                )
                continue
            grants.append(Grant(
                id=record['id'],
                tenant_id=str(record.get('tenant_id') or tenant_id),
                actor_id=str(actor_id),
                permission_code=code,
                granted_by=record.get('granted_by'),
                granted_at=record.get('granted_at'),
                revoked_at=record.get('revoked_at'),
                revoked_by=record.get('revoked_by'),
                is_active=record.get('is_active', True),
                notes=record.get('notes'),
            ))
        return grants

    async def fetch_grants(self, tenant_id: str, actor_id: str) -> List[Grant]:
        body = await self._call('GET', self._grants_path(tenant_id, actor_id))
        data = self._validated(GrantListSerializer, body or {'permissions': []}, 'grant list')
        return self._to_grants(data['permissions'], tenant_id, actor_id)

    async def grant(self, tenant_id: str, actor_id: str, permission_codes: Iterable[PermissionCode],
                    notes: Optional[str] = None, granted_by: Optional[str] = None) -> List[Grant]:
        payload = {'permissions': [str(code) for code in permission_codes]}
        if notes:
            payload['notes'] = notes
        body = await self._call('POST', self._grants_path(tenant_id, actor_id), payload)
        data = self._validated(GrantListSerializer, body or {'permissions': []}, 'grant result')
        return self._to_grants(data['permissions'], tenant_id, actor_id)

    async def revoke(self, tenant_id: str, actor_id: str, permission_codes: Iterable[PermissionCode],
                     reason: Optional[str] = None, revoked_by: Optional[str] = None) -> None:
        payload = {'permissions': [str(code) for code in permission_codes]}
        if reason:
            payload['reason'] = reason
        await self._call('DELETE', self._grants_path(tenant_id, actor_id), payload)

    async def fetch_memberships(self, actor_id: str) -> List[TenantMembership]:
        body = await self._call('GET', f"/users/{actor_id}/salon-memberships")
        data = self._validated(MembershipListSerializer, body or {'memberships': []}, 'membership list')
        return [
            TenantMembership(
                actor_id=str(actor_id),
                tenant_id=str(item['tenant_id']),
                tenant_name=item.get('tenant_name', ''),
                local_membership_id=item.get('local_membership_id'),
                is_active=item.get('is_active', True),
            )
            for item in data['memberships']
        ]


def create_grant_store_client(token: Optional[str] = None) -> HttpGrantStoreClient:
    """
    Build the HTTP client from settings.

    Example:
        >>> client = create_grant_store_client(token=session.access_token)
        >>> grants = await client.fetch_grants('salon-1', 'user-7')
    """
    return HttpGrantStoreClient(
        base_url=settings.GRANT_STORE_URL,
        token=token,
        timeout=getattr(settings, 'GRANT_STORE_REQUEST_TIMEOUT', 10),
    )
