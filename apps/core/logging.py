"""
Custom logging formatters for structured JSON logging.
"""
import json
import logging
import re
import traceback
from datetime import datetime
from django.utils import timezone
import sentry_sdk


class PIIMasker:
    """
    Utility class to mask credentials and contact details in logs.
    """

    EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b')
    BEARER_PATTERN = re.compile(r'(Bearer)\s+[A-Za-z0-9\-._~+/]+=*', re.IGNORECASE)
    API_KEY_PATTERN = re.compile(r'(api[_-]?key|token|secret|password)["\']?\s*[:=]\s*["\']?([^"\'\s,}]+)', re.IGNORECASE)

    SENSITIVE_FIELDS = {
        'email', 'email_address',
        'password', 'passwd',
        'api_key', 'api_token', 'access_token', 'refresh_token', 'bearer_token',
        'authorization', 'secret', 'secret_key',
    }

    @classmethod
    def mask_email(cls, text):
        """Mask email addresses in text."""
        if not isinstance(text, str):
            return text

        def mask_email_match(match):
            username, _, domain = match.group(0).partition('@')
            if len(username) > 1:
                username = username[0] + '*' * (len(username) - 1)
            return f"{username}@{domain}"

        return cls.EMAIL_PATTERN.sub(mask_email_match, text)

    @classmethod
    def mask_tokens(cls, text):
        """Mask bearer tokens, API keys and secrets in text."""
        if not isinstance(text, str):
            return text
        text = cls.BEARER_PATTERN.sub(r'\1 ********', text)
        return cls.API_KEY_PATTERN.sub(r'\1: ********', text)

    @classmethod
    def mask_text(cls, text):
        """Apply all masking patterns to text."""
        if not isinstance(text, str):
            return text
        return cls.mask_tokens(cls.mask_email(text))

    @classmethod
    def mask_dict(cls, data):
        """Recursively mask sensitive data in dictionaries."""
        if not isinstance(data, dict):
            return data

        masked = {}
        for key, value in data.items():
            if any(sensitive in str(key).lower() for sensitive in cls.SENSITIVE_FIELDS):
                masked[key] = '********' if value and not isinstance(value, (dict, list)) else value
            elif isinstance(value, dict):
                masked[key] = cls.mask_dict(value)
            elif isinstance(value, list):
                masked[key] = [
                    cls.mask_dict(item) if isinstance(item, dict) else cls.mask_text(item)
                    for item in value
                ]
            else:
                masked[key] = cls.mask_text(value)
        return masked


class SanitizingFilter(logging.Filter):
    """
    Logging filter that masks the rendered message of every record.

    Used on console handlers whose formatter is not JSONFormatter, so
    tokens from Grant Store requests never reach plain-text logs.
    """

    def filter(self, record):
        record.msg = PIIMasker.mask_text(record.getMessage())
        record.args = ()
        return True


_RESERVED_ATTRS = frozenset({
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs', 'message',
    'pathname', 'process', 'processName', 'relativeCreated',
    'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info',
    'taskName', 'actor_id', 'tenant_id',
})


class JSONFormatter(logging.Formatter):
    """
    Format log records as JSON for structured logging.
    Includes actor_id and tenant_id from extra fields if available.
    Automatically masks credentials.
    """

    def format(self, record):
        log_data = {
            'timestamp': datetime.utcnow().isoformat() + 'Z',
            'level': record.levelname,
            'logger': record.name,
            'message': PIIMasker.mask_text(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if hasattr(record, 'actor_id'):
            log_data['actor_id'] = str(record.actor_id)

        if hasattr(record, 'tenant_id'):
            log_data['tenant_id'] = str(record.tenant_id)

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': PIIMasker.mask_text(str(record.exc_info[1])),
                'traceback': [PIIMasker.mask_text(line) for line in traceback.format_exception(*record.exc_info)],
            }

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith('_'):
                continue
            try:
                if isinstance(value, dict):
                    masked_value = PIIMasker.mask_dict(value)
                else:
                    masked_value = PIIMasker.mask_text(value)
                json.dumps(masked_value)
                log_data[key] = masked_value
            except (TypeError, ValueError):
                log_data[key] = PIIMasker.mask_text(str(value))

        return json.dumps(log_data)


class SecurityLogger:
    """
    Centralized logging for security-relevant authorization events.

    Grants, revokes, refused tenant switches and session expiry are
    written to the ``security`` logger with structured data. Critical
    events are also sent to Sentry for alerting.
    """

    CRITICAL_EVENTS = {
        'unauthorized_grant_attempt',
    }

    @staticmethod
    def log_event(event_type: str, level: str = 'warning', **context):
        """
        Log a security event with structured data.

        Args:
            event_type: Type of security event (e.g., 'permissions_granted')
            level: Log level ('info', 'warning', 'error', 'critical')
            **context: Additional context data (actor_id, tenant_id, codes, etc.)

        Example:
            >>> SecurityLogger.log_event(
            ...     'permissions_revoked',
            ...     level='info',
            ...     actor_id='emp-1',
            ...     tenant_id='salon-1',
            ...     permission_codes=['MANAGE_APPOINTMENTS'],
            ... )
        """
        logger = logging.getLogger('security')

        log_data = {
            'event_type': event_type,
            'timestamp': timezone.now().isoformat(),
        }
        log_data.update(context)
        log_data = PIIMasker.mask_dict(log_data)

        log_method = getattr(logger, level, logger.warning)
        log_method(f"Security event: {event_type}", extra=log_data)

        if event_type in SecurityLogger.CRITICAL_EVENTS:
            sentry_sdk.capture_message(
                f"Critical security event: {event_type}",
                level='error',
                extras=log_data
            )

    @staticmethod
    def log_permissions_changed(action: str, actor_id: str, tenant_id: str,
                                permission_codes, performed_by: str = None, note: str = None):
        """
        Log a grant or revoke performed against the Grant Store.

        Args:
            action: 'granted' or 'revoked'
            actor_id: Actor whose grants changed
            tenant_id: Tenant scoping the grants
            permission_codes: Codes that changed
            performed_by: Actor who performed the mutation
            note: Grant notes or revoke reason
        """
        SecurityLogger.log_event(
            f'permissions_{action}',
            level='info',
            actor_id=actor_id,
            tenant_id=tenant_id,
            permission_codes=sorted(str(code) for code in permission_codes),
            performed_by=performed_by,
            note=note,
        )

    @staticmethod
    def log_unauthorized_grant_attempt(performed_by: str, role: str, tenant_id: str, actor_id: str):
        """Log a grant or revoke attempted by an actor who may not mutate grants."""
        SecurityLogger.log_event(
            'unauthorized_grant_attempt',
            level='error',
            performed_by=performed_by,
            role=role,
            tenant_id=tenant_id,
            actor_id=actor_id,
        )

    @staticmethod
    def log_tenant_switch_refused(actor_id: str, tenant_id: str):
        """Log a setActiveTenant request for a tenant the actor is not a member of."""
        SecurityLogger.log_event(
            'tenant_switch_refused',
            actor_id=actor_id,
            tenant_id=tenant_id,
        )

    @staticmethod
    def log_session_expired(actor_id: str, reason: str = None):
        """Log that the Grant Store rejected the actor's credentials."""
        SecurityLogger.log_event(
            'authorization_session_expired',
            actor_id=actor_id,
            reason=reason,
        )
