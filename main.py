# main.py

import asyncio
import logging
import sys

from manual_rag.composition import RagServices, build_services
from manual_rag.config import Settings
from manual_rag.domain.errors import IngestionValidationError
from manual_rag.infrastructure.document_loader import DocumentLoader
from manual_rag.infrastructure.logging_setup import setup_logging
from manual_rag.interface.cli import (
    ask_continue,
    display_duplicate_warning,
    display_error,
    display_indexing_status,
    display_ingested,
    display_results,
    display_welcome_banner,
    prompt_for_query,
)


logger = logging.getLogger(__name__)

TOP_K_RESULTS = 3


def main() -> None:
    try:
        settings = Settings.from_env()
    except ValueError as error:
        display_error(str(error))
        sys.exit(1)

    setup_logging(settings.log_level)

    try:
        services = build_services(settings)
    except RuntimeError as error:
        display_error(str(error))
        sys.exit(1)

    asyncio.run(_run(services, settings.data_directory))


async def _run(services: RagServices, data_directory: str) -> None:
    display_welcome_banner(services.embedding_service.model_name)
    services.optimizer.start()
    try:
        await _ingest_new_files(services, data_directory)
        display_indexing_status(services.document_store.stats())
        await _search_loop(services)
    finally:
        await services.aclose()


async def _ingest_new_files(services: RagServices, data_directory: str) -> None:
    """Import every supported file whose fingerprint is not stored yet."""
    loader = DocumentLoader()
    try:
        files = loader.list_supported_files(data_directory)
    except FileNotFoundError as error:
        logger.warning("[Main] %s; starting with the existing library.", error)
        return

    imported = 0
    for file_path in files:
        try:
            text = loader.load_file(file_path)
        except IngestionValidationError as error:
            logger.warning("[Main] ⚠ Failed to load '%s': %s", file_path.name, error)
            continue

        check = services.deduplication.check_duplicate(file_path.name, text)
        if services.deduplication.has_file_hash(check.fingerprint.file_hash):
            continue
        if check.is_duplicate:
            display_duplicate_warning(file_path.name, check)

        try:
            document_id = await services.document_store.ingest(file_path.name, text)
        except IngestionValidationError as error:
            logger.warning("[Main] ⚠ Skipped '%s': %s", file_path.name, error)
            continue

        services.deduplication.store(check.fingerprint)
        document = services.document_store.get_document(document_id)
        display_ingested(file_path.name, document.chunk_count if document else 0)
        imported += 1

    if imported == 0:
        logger.info("[Main] Library is up to date — no new files to import. ✓")


async def _search_loop(services: RagServices) -> None:
    while True:
        # Prompts run in a worker thread so the optimizer task keeps its schedule.
        query = await asyncio.to_thread(prompt_for_query)
        hits = await services.document_store.search(query, TOP_K_RESULTS)
        display_results(query, hits)

        if not await asyncio.to_thread(ask_continue):
            break


if __name__ == "__main__":
    main()
