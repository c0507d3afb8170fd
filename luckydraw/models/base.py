from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase
from luckydraw.db.metadata import metadata_obj


class Base(AsyncAttrs, DeclarativeBase):
    metadata = metadata_obj
