"""GlitchTip/Sentry error reporting for python-homesync.

Provides init_error_reporting() for crash/error reporting and
report_exception() for errors the library isolates instead of raising
(failing observers, failed publishes). Sensitive keys are scrubbed
before send.
"""

import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

# Sensitive-key scrubbing helpers, compiled once at import time.
_SCRUB_KEY_KEYWORDS: tuple[str, ...] = ("password", "token", "secret", "credential", "key")
_SCRUB_MSG_KEYWORDS: tuple[str, ...] = ("password", "token", "secret", "credential")
_SCRUB_KEY_PATTERN = re.compile(r"(?:_|api|access|auth|private)key", re.IGNORECASE)


def init_error_reporting(
    dsn: str | None = None,
    environment: str = "production",
    enabled: bool = True,
) -> None:
    """Initialize Sentry/GlitchTip error reporting.

    Opt-in: enable by providing a DSN via argument or environment variables.
    To disable explicitly, pass enabled=False or set HOMESYNC_SENTRY_DSN="".

    Args:
        dsn: Sentry DSN. If omitted, falls back to the ``HOMESYNC_SENTRY_DSN``
             or ``SENTRY_DSN`` environment variables.
        environment: Environment tag (production/development/testing).
        enabled: Master switch. If False, no SDK initialization occurs.
    """
    if not enabled:
        return

    import os  # noqa: PLC0415

    env_dsn = os.environ.get("HOMESYNC_SENTRY_DSN")
    if env_dsn is not None and env_dsn == "":
        return  # Explicitly disabled

    dsn = dsn or env_dsn or os.environ.get("SENTRY_DSN")

    if not dsn:
        return

    try:
        import sentry_sdk  # noqa: PLC0415

        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            traces_sample_rate=0.1,
            send_default_pii=False,
            before_send=_scrub_event,  # type: ignore[arg-type, unused-ignore]
        )
        logger.debug("Error reporting initialized (dsn=%s...)", dsn[:30])
    except ImportError:
        logger.debug("sentry-sdk not installed; error reporting disabled")
    except Exception as exc:  # noqa: BLE001
        logger.warning("Failed to initialize error reporting: %s", exc)


def _scrub_event(event: dict, hint: dict) -> dict:  # type: ignore[type-arg]
    """Remove sensitive data before sending."""
    if "extra" in event:
        for key in list(event["extra"]):
            if any(s in key.lower() for s in _SCRUB_KEY_KEYWORDS):
                event["extra"][key] = "[REDACTED]"

    if "breadcrumbs" in event and "values" in event["breadcrumbs"]:
        for breadcrumb in event["breadcrumbs"]["values"]:
            if "message" in breadcrumb:
                msg = str(breadcrumb["message"])
                sensitive = any(s in msg.lower() for s in _SCRUB_MSG_KEYWORDS)
                if sensitive or _SCRUB_KEY_PATTERN.search(msg):
                    breadcrumb["message"] = "[REDACTED]"
            if "data" in breadcrumb and isinstance(breadcrumb["data"], dict):
                for key in list(breadcrumb["data"]):
                    if any(s in key.lower() for s in _SCRUB_KEY_KEYWORDS):
                        breadcrumb["data"][key] = "[REDACTED]"

    return event


def report_exception(exc: BaseException, **context: Any) -> bool:
    """Forward an isolated (non-raised) error to Sentry, if initialized.

    The synchronizer and fan-out catch observer and transport failures so
    that one bad message or callback never stops synchronisation; this
    keeps them visible in error tracking.

    Args:
        exc: The exception to report.
        **context: Extra key/value pairs attached to the event (scrubbed).

    Returns:
        True if the exception was handed to Sentry, False otherwise.
    """
    try:
        import sentry_sdk  # noqa: PLC0415
    except ImportError:
        return False

    if not sentry_sdk.is_initialized():
        return False

    with sentry_sdk.new_scope() as scope:
        for key, value in _scrub_dict(context).items():
            scope.set_extra(key, value)
        sentry_sdk.capture_exception(exc)
    logger.debug("Reported %s to error tracking", type(exc).__name__)
    return True


def _scrub_dict(d: dict[str, Any]) -> dict[str, Any]:
    """Recursively redact values for keys that look sensitive."""
    result = {}
    for k, v in d.items():
        if any(s in k.lower() for s in _SCRUB_KEY_KEYWORDS):
            result[k] = "[REDACTED]"
        elif isinstance(v, dict):
            result[k] = _scrub_dict(v)
        elif isinstance(v, list):
            result[k] = [_scrub_dict(x) if isinstance(x, dict) else x for x in v]
        else:
            result[k] = v
    return result
