from .dates import parse_portal_date
from .diagnostics import create_debug_bundle, dump_markup, save_page_artifacts

__all__ = ["parse_portal_date", "create_debug_bundle", "dump_markup", "save_page_artifacts"]
