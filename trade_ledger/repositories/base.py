"""
Base Repository Pattern

Shared ORM plumbing for the ledger repositories. Database failures are
logged and re-raised as RepositoryError so they reach the caller typed;
the enclosing session_scope() rolls the transaction back.
"""

from typing import TypeVar, Generic, Type, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
import logging

from trade_ledger.core.errors import LedgerError

logger = logging.getLogger(__name__)

ModelType = TypeVar('ModelType')
ORMType = TypeVar('ORMType')


class RepositoryError(LedgerError):
    """Storage failure (connection, constraint, flush)"""
    pass


class EntityNotFoundError(RepositoryError):
    """Raised when an entity to update or deactivate does not exist"""
    pass


class DuplicateEntityError(RepositoryError):
    """Raised when an insert collides with an existing key"""
    pass


class BaseRepository(Generic[ModelType, ORMType]):
    """
    Base repository: lookup by id, add, delete, count.

    Subclasses add the domain-level API and a to_domain() mapper.

    Usage:
        class TradeRepository(BaseRepository[dm.Trade, TradeORM]):
            def __init__(self, session: Session):
                super().__init__(session, TradeORM)
    """

    def __init__(self, session: Session, model_class: Type[ORMType]):
        self.session = session
        self.model_class = model_class

    @property
    def _name(self) -> str:
        return self.model_class.__name__

    def get_by_id(self, id: str) -> Optional[ORMType]:
        try:
            return self.session.get(self.model_class, id)
        except SQLAlchemyError as e:
            logger.error(f"Error loading {self._name} {id}: {e}")
            raise RepositoryError(f"Could not load {self._name} {id}") from e

    def add(self, orm_instance: ORMType) -> ORMType:
        """
        Stage a new row and flush it.

        Raises:
            DuplicateEntityError: primary / unique key already taken
            RepositoryError: any other database failure
        """
        try:
            self.session.add(orm_instance)
            self.session.flush()
            return orm_instance
        except IntegrityError as e:
            logger.error(f"Integrity error adding {self._name}: {e.orig}")
            raise DuplicateEntityError(f"{self._name} already exists") from e
        except SQLAlchemyError as e:
            logger.error(f"Error adding {self._name}: {e}")
            raise RepositoryError(f"Could not add {self._name}") from e

    def delete(self, orm_instance: ORMType) -> None:
        try:
            self.session.delete(orm_instance)
            self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Error deleting {self._name}: {e}")
            raise RepositoryError(f"Could not delete {self._name}") from e

    def count(self) -> int:
        return self.session.query(self.model_class).count()

    def flush(self) -> None:
        try:
            self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Error flushing {self._name} changes: {e}")
            raise RepositoryError(f"Could not save {self._name} changes") from e
