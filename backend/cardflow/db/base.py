from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):  # every table model inherits from this so create_all sees it
    pass
