"""SQLAlchemy helpers shared between the billing service and the account service."""

from common.sqlalchemy.metadata_mixin import MetadataAliasMixin

__all__ = ["MetadataAliasMixin"]
