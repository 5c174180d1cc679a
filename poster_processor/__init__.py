"""
Poster Processor - turns event posters into published club events.

This package provides tools for:
- Vision model extraction of event details with provider fallback
- Normalization of unreliable model output into validated event records
- Publishing reviewed events to Google Drive, Calendar and Photos
"""

__version__ = "0.1.0"
__author__ = "HDCN Webmaster Team"

from .data_models import EventDetails, CalendarType
from .processor import PosterProcessor

__all__ = ["PosterProcessor", "EventDetails", "CalendarType"]
