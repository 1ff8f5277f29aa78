"""
Storage connection helpers.

Connects the database, the Redis cache and the Kafka broker, each with a
bounded retry loop, builds session factories and prepares the schema of
audited models.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

from kafka import KafkaConsumer, KafkaProducer
from kafka.errors import KafkaError
from redis import Redis
from redis.exceptions import RedisError
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import sessionmaker

from .config import ToolkitConfig, get_config
from .exceptions import ConnectionRetryExhausted
from .soft_delete.interception import register_audit_listeners

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class BrokerConnection:
    """Connected Kafka producer and consumer."""

    producer: KafkaProducer
    consumer: KafkaConsumer

    def close(self) -> None:
        self.producer.close()
        self.consumer.close()
        logger.info("Broker connection closed")


async def _connect_with_retry(
    target: str,
    attempt_connection: Callable[[], T],
    errors: Tuple[Type[BaseException], ...],
    cap: int,
    delay: float,
) -> T:
    """
    Run ``attempt_connection`` until it succeeds or ``cap`` attempts failed.

    The attempt is responsible for releasing whatever it opened before it
    raises.

    Raises:
        ConnectionRetryExhausted: If every attempt up to the cap failed
    """
    for attempt in range(1, cap + 1):
        logger.debug("Attempting %s connection [%d/%d]", target, attempt, cap)
        try:
            connection = attempt_connection()
        except errors as e:
            if attempt >= cap:
                logger.error("Exceeded %s retry limit after %d attempts", target, cap)
                raise ConnectionRetryExhausted(target, cap) from e
            logger.warning(
                "%s connection failed: %s. Retrying in %.1f s",
                target.capitalize(),
                e,
                delay,
            )
            await asyncio.sleep(delay)
            continue

        logger.info("%s connected", target.capitalize())
        return connection

    # unreachable: the cap is positive
    raise ConnectionRetryExhausted(target, cap)


def _create_engine(config: ToolkitConfig) -> Engine:
    if config.database_url.startswith("sqlite"):
        # SQLite doesn't support pool_size and max_overflow
        return create_engine(config.database_url, pool_pre_ping=True)
    return create_engine(
        config.database_url,
        pool_pre_ping=True,
        pool_size=config.database_pool_size,
        max_overflow=config.database_max_overflow,
    )


async def connect_database(config: Optional[ToolkitConfig] = None) -> Engine:
    """
    Create an engine and make sure the database answers.

    Args:
        config: Configuration to use; defaults to the global configuration

    Returns:
        Connected engine

    Raises:
        ConnectionRetryExhausted: If every attempt up to the retry cap failed
    """
    config = config or get_config()

    def attempt() -> Engine:
        engine = _create_engine(config)
        try:
            with engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except DBAPIError:
            engine.dispose()
            raise
        return engine

    return await _connect_with_retry(
        "database",
        attempt,
        (DBAPIError,),
        config.database_retry_cap,
        config.database_retry_delay_seconds,
    )


async def connect_cache(config: Optional[ToolkitConfig] = None) -> Redis:
    """
    Create a Redis client and make sure the server answers a PING.

    Args:
        config: Configuration to use; defaults to the global configuration

    Returns:
        Connected Redis client

    Raises:
        ConnectionRetryExhausted: If every attempt up to the retry cap failed
    """
    config = config or get_config()

    def attempt() -> Redis:
        client = Redis.from_url(
            config.cache_url,
            socket_connect_timeout=config.cache_connect_timeout_seconds,
            socket_timeout=config.cache_connect_timeout_seconds,
            health_check_interval=30,
        )
        try:
            client.ping()
        except RedisError:
            client.close()
            raise
        return client

    return await _connect_with_retry(
        "cache",
        attempt,
        (RedisError,),
        config.cache_retry_cap,
        config.cache_retry_delay_seconds,
    )


async def connect_broker(config: Optional[ToolkitConfig] = None) -> BrokerConnection:
    """
    Connect a Kafka producer and consumer to the configured brokers.

    Args:
        config: Configuration to use; defaults to the global configuration

    Returns:
        Connected producer and consumer

    Raises:
        ConnectionRetryExhausted: If every attempt up to the retry cap failed
    """
    config = config or get_config()

    def attempt() -> BrokerConnection:
        producer = KafkaProducer(
            bootstrap_servers=config.broker_bootstrap_servers,
            client_id=config.broker_client_id,
        )
        try:
            consumer = KafkaConsumer(
                bootstrap_servers=config.broker_bootstrap_servers,
                client_id=config.broker_client_id,
                group_id=config.broker_group_id,
            )
        except KafkaError:
            producer.close()
            raise
        return BrokerConnection(producer=producer, consumer=consumer)

    return await _connect_with_retry(
        "broker",
        attempt,
        (KafkaError,),
        config.broker_retry_cap,
        config.broker_retry_delay_seconds,
    )


def create_session_factory(engine: Engine) -> sessionmaker:  # type: ignore[type-arg]
    return sessionmaker(autoflush=False, bind=engine)


def init_schema(engine: Engine, base: Type[Any]) -> None:
    """
    Create the tables of a declarative base and register audit listeners.

    Args:
        engine: Connected engine
        base: Declarative base holding the audited models
    """
    base.metadata.create_all(bind=engine)
    register_audit_listeners(base)
    logger.info("Schema ready for %d table(s)", len(base.metadata.tables))
