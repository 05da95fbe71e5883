from sqlalchemy.orm import declarative_base


class CustomBase:
    def __repr__(self) -> str:
        class_name = self.__class__.__name__

        columns = [(c.name, getattr(self, c.name)) for c in self.__table__.columns]

        column_str = ", ".join(f"{name}={repr(value)}" for name, value in columns)

        return f"{class_name}({column_str})"

    def to_dict(self) -> dict:
        """Converts the ORM object's column values to a dictionary."""
        return {column.name: getattr(self, column.name) for column in self.__table__.columns}


Base = declarative_base(cls=CustomBase)
