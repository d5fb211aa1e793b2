"""Field sets, CSV and JSON output writers, scan monitoring and Linux gateway discovery."""

__version__ = "0.1.0"
__all__ = ["fieldset", "csv_output", "json_output", "registry", "monitor", "gateway"]