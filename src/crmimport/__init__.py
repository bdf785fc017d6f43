"""crmimport: CSV contact import with Skip / Update / Fill / No Duplicate Checking modes."""

__version__ = "0.1.0"
