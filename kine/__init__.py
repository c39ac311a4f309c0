"""Patient records for physical therapists stored in Google Drive and Sheets."""

__version__ = "1.3.0"
