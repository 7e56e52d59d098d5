"""Factory for shard-bound network handlers."""

import logging
from typing import Optional

from shardwallet.config import Settings, get_settings
from shardwallet.rpc.http import HTTPMessenger

logger = logging.getLogger(__name__)

# Staking transactions are only accepted by the beacon shard
BEACON_SHARD = 0


def handler_for_shard(shard_id: int, settings: Optional[Settings] = None) -> HTTPMessenger:
    """Get a network handler bound to a shard's endpoint.

    Args:
        shard_id: Shard the requests should go to
        settings: Settings to read endpoints from (defaults to global)

    Returns:
        HTTPMessenger for the shard

    Raises:
        ValueError: If shard_id is negative
    """
    if shard_id < 0:
        raise ValueError(f"Invalid shard id: {shard_id}")

    settings = settings or get_settings()
    url = settings.get_rpc_url(shard_id)
    logger.debug(f"Using {url} for shard {shard_id}")

    return HTTPMessenger(url, timeout=settings.rpc_timeout)
