"""
Connection liveness check used before reusing an idle pooled connection.
"""

import logging
from typing import Any

from dbquery.models_query import ProductTypeEnum

from .connect import execute

_log = logging.getLogger(__name__)


def health_check(conn: Any, product_type: ProductTypeEnum | None) -> bool:
    """True when ``SELECT 1`` round-trips on *conn* without a statement timeout."""
    try:
        cur = execute(conn, "SELECT 1", product_type=product_type, timeout=0)
    except Exception as e:
        _log.debug("Health check failed: %s", e)
        return False
    try:
        cur.fetchone()
        return True
    except Exception as e:
        _log.debug("Health check fetch failed: %s", e)
        return False
    finally:
        try:
            cur.close()
        except Exception:
            _log.debug("Closing health-check cursor failed", exc_info=True)
