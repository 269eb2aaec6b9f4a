"""
topic_initializer.py - Kafka Topic Auto-Creation Utility

PURPOSE:
    Makes sure the order and inventory topics exist before the inventory
    service starts producing and consuming.

BEHAVIOUR:
    - Topics already present on the cluster are skipped up front
    - Missing topics are created with the given partitions / replication
    - A creation race with another service ("already exists") counts as success
    - Brokers may still be starting when the container comes up, so the whole
      attempt is retried (MAX_ATTEMPTS, RETRY_DELAY seconds apart)
"""

import logging
import time
from typing import List, Optional

from confluent_kafka.admin import AdminClient, NewTopic

from shared.events import ALL_TOPICS

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 10
RETRY_DELAY = 3  # seconds


def _already_exists(error: Exception) -> bool:
    text = str(error)
    return "already exists" in text or "TOPIC_ALREADY_EXISTS" in text


def create_topics(
    bootstrap_servers: str,
    num_partitions: int = 3,
    replication_factor: int = 3,
    topics: Optional[List[str]] = None,
) -> List[str]:
    """
    Create the missing Kafka topics.

    Args:
        bootstrap_servers: Comma-separated Kafka broker addresses
        num_partitions: Number of partitions per new topic
        replication_factor: Number of replicas per partition
        topics: Topic names, defaults to every order/inventory topic

    Returns:
        Names of the topics this call created.
    """
    admin_client = AdminClient({"bootstrap.servers": bootstrap_servers})
    wanted = list(topics or ALL_TOPICS)

    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            existing = set(admin_client.list_topics(timeout=10).topics)
            missing = [name for name in wanted if name not in existing]
            if not missing:
                logger.info(f"All {len(wanted)} topics already exist")
                return []

            logger.info(f"Creating {len(missing)} topic(s) (attempt {attempt}/{MAX_ATTEMPTS})")
            futures = admin_client.create_topics(
                [NewTopic(name, num_partitions=num_partitions, replication_factor=replication_factor) for name in missing]
            )

            created = []
            for name, future in futures.items():
                try:
                    future.result(timeout=10)
                    created.append(name)
                    logger.info(f"Topic '{name}' created")
                except Exception as e:
                    if not _already_exists(e):
                        raise
                    logger.info(f"Topic '{name}' was created concurrently")
            return created

        except Exception as e:
            if attempt == MAX_ATTEMPTS:
                logger.error(f"Failed to create topics after {MAX_ATTEMPTS} attempts: {e}")
                raise
            logger.warning(f"Topic creation failed (attempt {attempt}): {e}. Retrying in {RETRY_DELAY}s...")
            time.sleep(RETRY_DELAY)
