# File: evidence_vault/core/database/base.py

from sqlalchemy.orm import declarative_base

# The shared registry. The file record table and any future tables inherit from this.
Base = declarative_base()
