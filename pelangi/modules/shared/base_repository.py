"""
Repository base for gamification tables.

Repositories only read and stage rows. The session always comes from the
calling service, which owns the transaction (`DatabaseService.get_transaction`),
so nothing here commits.

Subclasses add the lookups their service needs:

    class StudentXpRepository(BaseRepository[StudentXp]):
        async def get_by_student(self, session, student_id, *, for_update=False):
            return await self.find_one_where(
                session, StudentXp.student_id == student_id, for_update=for_update
            )

Pass `for_update=True` on any read that precedes a write to the same row.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import select

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy import ColumnElement
    from sqlalchemy.ext.asyncio import AsyncSession

ModelT = TypeVar("ModelT")


class BaseRepository(Generic[ModelT]):
    """Data access for one mapped model class."""

    def __init__(self, model_class: Type[ModelT], logger: Logger) -> None:
        self.model_class = model_class
        self.log = logger

    @property
    def model_name(self) -> str:
        return self.model_class.__name__

    async def find_one_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        for_update: bool = False,
    ) -> Optional[ModelT]:
        """
        Return the single row matching `conditions`, or None.

        Raises MultipleResultsFound when the conditions are not selective
        enough; callers filter on a unique column.
        """
        stmt = select(self.model_class).where(*conditions)
        if for_update:
            stmt = stmt.with_for_update()
        row = (await session.execute(stmt)).scalar_one_or_none()
        self.log.debug(
            "%s lookup %s",
            self.model_name,
            "hit" if row is not None else "miss",
            extra={"model": self.model_name, "locked": for_update},
        )
        return row

    async def find_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        order_by: Sequence[Any] = (),
        for_update: bool = False,
    ) -> List[ModelT]:
        stmt = select(self.model_class).where(*conditions).order_by(*order_by)
        if for_update:
            stmt = stmt.with_for_update()
        rows = list((await session.execute(stmt)).scalars().all())
        self.log.debug(
            "%s lookup returned %d rows",
            self.model_name,
            len(rows),
            extra={"model": self.model_name, "locked": for_update},
        )
        return rows

    def add(self, session: AsyncSession, instance: ModelT) -> ModelT:
        """Stage a new row; it is written on the next flush or commit."""
        session.add(instance)
        self.log.debug("%s staged", self.model_name, extra={"model": self.model_name})
        return instance

    async def flush(self, session: AsyncSession) -> None:
        await session.flush()
