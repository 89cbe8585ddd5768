"""Report lookup and packaging for finished executions."""

from jmeter_runner.reports.locator import ReportLocator

__all__ = ["ReportLocator"]
