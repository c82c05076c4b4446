"""Opaque platform file tokens.

A token is turned into a fetchable link by the chat collaborator (the core
knows nothing about the messaging platform). The link is then classified like
any other reference, so a token served by the local API ends up as a local
read and never as a network download.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from audiomerger.domain.exceptions import InvalidReferenceError, MergerError

__all__ = ["TokenLinkResolver", "resolve_token"]

logger = logging.getLogger(__name__)

TokenLinkResolver = Callable[[str], Awaitable[str]]


async def resolve_token(resolver: TokenLinkResolver | None, token: str) -> str:
    """Ask ``resolver`` for the link behind ``token``."""
    if resolver is None:
        raise InvalidReferenceError(
            "Platform file tokens cannot be resolved in this deployment",
            context={"token": token},
            suggestions=["Configure a token resolver, or queue the file by path or URL"],
        )
    try:
        link = await resolver(token)
    except MergerError:
        raise
    except Exception as exc:
        raise InvalidReferenceError(
            "Could not obtain a link for the platform file",
            cause=exc,
            context={"token": token},
        ) from exc

    if not link or not link.strip():
        raise InvalidReferenceError("Token resolver returned an empty link", context={"token": token})
    logger.debug("Resolved platform token to %s", link)
    return link.strip()
