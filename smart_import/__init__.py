"""Smart import: bulk data import engine with classification, validation, approval and audited execution."""

__version__ = "0.1.0"
