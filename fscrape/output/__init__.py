"""Export renderers"""

from fscrape.output.exporter import Exporter

__all__ = ["Exporter"]
