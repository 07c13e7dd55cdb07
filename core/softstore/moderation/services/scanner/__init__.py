"""Integration with the malware scanning service."""

from .scanner import ScannerService, Report, Throttled
