"""oss-stats — Markdown reports on repository health for OSS maintainers."""

__version__ = "0.4.0"
