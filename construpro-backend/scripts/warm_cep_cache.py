"""Pré-carrega o cache de CEP com os códigos mais consultados.

Uso: python -m scripts.warm_cep_cache [CEP ...] [--delay SEGUNDOS]
"""
import argparse
import asyncio
import logging

from app.db import Base, engine, settings
from app.dependencies import build_cep_lookup
from app.domain.address.cep import WARM_CEPS

logger = logging.getLogger(__name__)


async def run(ceps: list[str], delay: float) -> int:
    lookup = build_cep_lookup()
    lookup.cache.init()
    report = await lookup.cache.warm(lookup.fetch_upstream, ceps, delay_seconds=delay)
    print(f"warmed={len(report.warmed)} skipped={len(report.skipped)} failed={len(report.failed)}")
    for cep in report.failed:
        print(f"  falhou: {cep}")
    return 1 if report.failed and not report.warmed else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Pré-carrega o cache de CEP.")
    parser.add_argument("ceps", nargs="*", help="CEPs a carregar (padrão: lista interna)")
    parser.add_argument("--delay", type=float, default=settings.cep_warm_delay_seconds)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    Base.metadata.create_all(bind=engine)
    raise SystemExit(asyncio.run(run(args.ceps or list(WARM_CEPS), args.delay)))


if __name__ == "__main__":
    main()
