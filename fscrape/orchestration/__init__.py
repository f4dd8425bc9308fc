"""Batch orchestration: loading, executing and reporting batches."""

from fscrape.orchestration.batch_loader import load_batch_config, parse_batch_text
from fscrape.orchestration.batch_processor import BatchProcessor, default_adapters
from fscrape.orchestration.scrape_job import ScrapeJob

__all__ = [
    "BatchProcessor",
    "ScrapeJob",
    "default_adapters",
    "load_batch_config",
    "parse_batch_text",
]
