"""
Config -> Kernel Bridges.

Functions that turn an ``EngineConfig`` into kernel objects.  These live in
pharmacy_config (the producer) because the kernel must NEVER import
pharmacy_config.

Usage:
    from pharmacy_config import get_active_config
    from pharmacy_config.bridges import build_sale_coordinator, init_engine

    config = get_active_config()
    init_engine(config)
    coordinator = build_sale_coordinator(config, get_session_factory(), catalog)
"""

from __future__ import annotations

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from pharmacy_config.schema import EngineConfig
from pharmacy_kernel.db.engine import init_engine_from_url
from pharmacy_kernel.db.immutability import register_immutability_listeners
from pharmacy_kernel.domain.clock import Clock
from pharmacy_kernel.services.catalog import MedicationCatalog
from pharmacy_kernel.services.promotion import PromotionCalculator
from pharmacy_kernel.services.sale_coordinator import SaleCoordinator


def init_engine(config: EngineConfig) -> Engine:
    """
    Initialize the kernel's engine and session factory from ``config.database``.

    Also registers the immutability listeners, so committed sales cannot be
    altered through any session the factory hands out.
    """
    db = config.database
    engine = init_engine_from_url(
        db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_timeout=db.pool_timeout,
        sqlite_busy_timeout_s=db.sqlite_busy_timeout_s,
    )
    register_immutability_listeners()
    return engine


def build_sale_coordinator(
    config: EngineConfig,
    session_factory: sessionmaker[Session],
    catalog: MedicationCatalog,
    promotions: PromotionCalculator | None = None,
    clock: Clock | None = None,
) -> SaleCoordinator:
    """Build a SaleCoordinator with the retry and locking policy from ``config``."""
    return SaleCoordinator(
        session_factory,
        catalog,
        promotions,
        clock,
        max_attempts=config.sales.max_attempts,
        retry_backoff_ms=config.sales.retry_backoff_ms,
        lock_timeout_ms=config.database.lock_timeout_ms,
        money_decimal_places=config.sales.money_decimal_places,
    )
