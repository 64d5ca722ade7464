"""Record processors applied after enrichment."""

from .lowercase import Lowercase
from .nginx_vts_filter import Conversion, NginxVTSFilter

__all__ = ["Lowercase", "Conversion", "NginxVTSFilter"]
