"""Unit of work for database transactions."""

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse.core.exceptions import PersistenceException


class UnitOfWork:
    """Unit of work for database transactions.

    Every membership writer commits its whole output (profile fields plus any
    ledger row) through one unit of work, so a failure leaves nothing behind.

    Usage:
    -----
    ```python

    async with UnitOfWork(session) as uow:
        await repository.update_member(db, member, updates, uow=uow)
        await repository.create_payment(db, payment_in, uow=uow)

    # Committed when the block exits cleanly, rolled back otherwise.
    ```

    """

    def __init__(self, session: AsyncSession):
        """Initialize the UnitOfWork with a database session.

        Args:
        ----
            session (AsyncSession): The database session.

        """
        self.session = session
        self._committed = False
        self._rolledback = False

    @property
    def committed(self) -> bool:
        """Whether the transaction has been committed."""
        return self._committed

    async def commit(self) -> None:
        """Commit the transaction.

        Storage failures are re-raised as ``PersistenceException``.
        """
        if not self._committed and not self._rolledback:
            try:
                await self.session.commit()
            except SQLAlchemyError as e:
                await self.rollback()
                raise PersistenceException(error=str(e)) from e
            self._committed = True

    async def rollback(self) -> None:
        """Rollback the transaction.

        If the transaction has already been committed or rolled back, this method does nothing.
        """
        if not self._committed and not self._rolledback:
            await self.session.rollback()
            self._rolledback = True

    async def __aenter__(self) -> "UnitOfWork":
        """Enter the context manager."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Commit on a clean exit, roll back when the block raised."""
        if exc_type is not None:
            await self.rollback()
        else:
            await self.commit()
