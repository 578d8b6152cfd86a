"""
Logging configuration and utilities.

This module provides:
- Centralized logger creation
- Consistent log formatting across modules
- Log level selection from the LOG_LEVEL environment variable
- Masking of credential ids before they reach log output
"""

from __future__ import annotations

import logging
import os




# ==== LOGGER FACTORY ==== #

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def get_logger(name: str) -> logging.Logger:
    """
    Return the proxy logger for one module, attaching a stderr handler once.

    Every scrape_proxy module logs through its own named logger so ledger,
    dispatch and maintenance lines can be told apart under uvicorn, whose
    own loggers are left alone (propagate is off). The level is read from
    LOG_LEVEL when the logger is first created.

    Credential ids must go through mask_credential() and target URLs
    through utils.urls.safe_url() before they reach a log call.

    Example:
        logger = get_logger(__name__)
        logger.info("Credential %s rate limited", mask_credential(credential_id))
    """
    logger = logging.getLogger(name)

    if logger.handlers:
        return logger

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
    logger.propagate = False
    return logger




# ==== REDACTION ==== #

def mask_credential(credential_id: str) -> str:
    """
    Shorten a credential id for logging.

    Example:
        mask_credential("abcdef0123456789") -> 'abcd…6789'
    """
    if len(credential_id) <= 8:
        return "****"

    return f"{credential_id[:4]}…{credential_id[-4:]}"
