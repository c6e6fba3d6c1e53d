from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Iterable

from sqlalchemy.orm import Session, sessionmaker

from app import models
from app.db import settings
from app.domain.address.cep import WARM_CEPS, CepResult, sanitize_cep
from app.domain.core.enums import CepSource, Confidence

logger = logging.getLogger(__name__)


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(slots=True)
class WarmReport:
    warmed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class CepCacheService:
    """Two-layer CEP cache: process memory in front of the ``zip_cache`` table.

    Created once at startup and shared. Entries older than the TTL are
    treated as absent on both layers.
    """

    def __init__(
        self,
        session_factory: sessionmaker | Callable[[], Session],
        ttl_seconds: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.ttl = timedelta(seconds=settings.cep_cache_ttl_seconds if ttl_seconds is None else ttl_seconds)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._memory: dict[str, tuple[CepResult, datetime]] = {}
        self.initialized = False

    def _fresh(self, stored_at: datetime | None) -> bool:
        if stored_at is None:
            return False
        return self._clock() - _utc(stored_at) < self.ttl

    def init(self) -> int:
        """Load the still-fresh persisted rows into memory. Safe to call twice."""
        if self.initialized:
            return len(self._memory)
        cutoff = self._clock() - self.ttl
        db = self._session_factory()
        try:
            rows = db.query(models.ZipCache).filter(models.ZipCache.cached_at > cutoff).all()
            for row in rows:
                if self._fresh(row.cached_at):
                    self._memory[row.cep] = (self._from_row(row), _utc(row.cached_at))
        finally:
            db.close()
        self.initialized = True
        logger.info("CEP cache initialized with %s entries", len(self._memory))
        return len(self._memory)

    def clear(self) -> None:
        self._memory.clear()
        self.initialized = False

    def __len__(self) -> int:
        return len(self._memory)

    @staticmethod
    def _from_row(row: models.ZipCache) -> CepResult:
        return CepResult(
            cep=row.cep,
            logradouro=row.logradouro or "",
            bairro=row.bairro or "",
            localidade=row.localidade or "",
            uf=row.uf or "",
            ibge=row.ibge,
            zona_entrega=row.zona_entrega,
            source=CepSource.persisted_cache,
            confidence=Confidence.high,
        )

    def get(self, raw_cep: str) -> CepResult | None:
        cep = sanitize_cep(raw_cep)
        entry = self._memory.get(cep)
        if entry is not None:
            result, stored_at = entry
            if self._fresh(stored_at):
                return result.with_source(CepSource.local_cache, Confidence.high)
            self._memory.pop(cep, None)

        db = self._session_factory()
        try:
            row = db.get(models.ZipCache, cep)
            if row is None or not self._fresh(row.cached_at):
                return None
            result = self._from_row(row)
            self._memory[cep] = (result, _utc(row.cached_at))
            return result.with_source(CepSource.persisted_cache, Confidence.high)
        finally:
            db.close()

    def store(self, result: CepResult) -> bool:
        """Cache a resolved result. Returns whether it reached the persisted layer.

        Only high-confidence results are cached, and only complete ones
        (street and city present) are persisted.
        """
        if result.confidence is not Confidence.high:
            return False
        now = self._clock()
        self._memory[result.cep] = (replace(result, sources={}, warnings=[]), now)
        if not result.logradouro or not result.localidade:
            logger.info("Incomplete CEP data kept in memory only cep=%s", result.cep)
            return False
        self.upsert(result, cached_at=now)
        return True

    def upsert(self, result: CepResult, cached_at: datetime | None = None) -> None:
        when = cached_at or self._clock()
        db = self._session_factory()
        try:
            row = db.get(models.ZipCache, result.cep)
            if row is None:
                row = models.ZipCache(cep=result.cep)
                db.add(row)
            row.logradouro = result.logradouro or None
            row.bairro = result.bairro or None
            row.localidade = result.localidade or None
            row.uf = result.uf or None
            row.ibge = result.ibge
            row.zona_entrega = result.zona_entrega
            row.cached_at = when
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Failed to persist CEP cache entry cep=%s", result.cep)
            raise
        finally:
            db.close()
        self._memory[result.cep] = (replace(result, sources={}, warnings=[]), when)

    def invalidate(self, raw_cep: str) -> None:
        cep = sanitize_cep(raw_cep)
        self._memory.pop(cep, None)
        db = self._session_factory()
        try:
            row = db.get(models.ZipCache, cep)
            if row is not None:
                db.delete(row)
                db.commit()
        finally:
            db.close()

    async def warm(
        self,
        resolver: Callable[[str], Awaitable[CepResult | None]],
        ceps: Iterable[str] = WARM_CEPS,
        delay_seconds: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> WarmReport:
        """Fetch the codes not cached yet, pausing between upstream calls."""
        delay = settings.cep_warm_delay_seconds if delay_seconds is None else delay_seconds
        report = WarmReport()
        called_upstream = False
        for raw in ceps:
            cep = sanitize_cep(raw)
            if self.get(cep) is not None:
                report.skipped.append(cep)
                continue
            if called_upstream and delay > 0:
                await sleep(delay)
            called_upstream = True
            try:
                result = await resolver(cep)
            except Exception:
                logger.exception("CEP warm failed cep=%s", cep)
                report.failed.append(cep)
                continue
            if result is not None and self.store(result):
                report.warmed.append(cep)
            else:
                report.failed.append(cep)
        logger.info(
            "CEP cache warm done warmed=%s skipped=%s failed=%s",
            len(report.warmed),
            len(report.skipped),
            len(report.failed),
        )
        return report
