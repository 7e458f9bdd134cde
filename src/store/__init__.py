"""
Worksheet storage: metadata models, S3 asset resolution and the catalog.

Assets are resolved owner-scoped first, then from the legacy flat layout.
Metadata comes from the relational store when available, else from static
JSON next to the assets.
"""

from .models import GuidedWorksheet, Region, RegionWorksheet, parse_worksheet_meta

__all__ = ["GuidedWorksheet", "Region", "RegionWorksheet", "parse_worksheet_meta"]
