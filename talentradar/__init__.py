"""talentradar - browser session and fetch engine for job-site scraping."""

__version__ = "0.1.0"
