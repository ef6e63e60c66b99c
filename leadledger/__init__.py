"""Lead-Ledger: multi-tenant lead ingestion from scraping jobs and file imports."""

__version__ = "0.1.0"
