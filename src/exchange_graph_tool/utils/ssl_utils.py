"""SSL certificate handling utilities.

Corporate networks frequently intercept TLS with their own CA, which the
certifi bundle used by requests does not know about. The truststore package
injects the operating system's certificate store into Python's SSL context
so Graph and login.microsoftonline.com calls verify against it.
"""

import logging
import platform

logger = logging.getLogger(__name__)

_ssl_initialized = False


def init_ssl() -> bool:
    """
    Inject the OS native certificate store, if truststore is installed.

    Call early in application startup, before any HTTPS connection is made.

    Returns:
        True if truststore was injected (now or previously), False otherwise.
    """
    global _ssl_initialized

    if _ssl_initialized:
        return True

    try:
        import truststore
    except ImportError:
        logger.debug("truststore not installed, using default SSL certificates")
        return False

    try:
        truststore.inject_into_ssl()
    except Exception as e:
        logger.warning(f"Failed to inject truststore: {e}")
        return False

    _ssl_initialized = True
    logger.debug(f"SSL truststore injected for {platform.system()}")
    return True
