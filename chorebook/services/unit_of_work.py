"""CompensatingUnitOfWork - 複数リポジトリへの書き込みを取り消し可能にまとめる

ストレージ横断のトランザクションは提供できないため、
失敗時は適用済みの書き込みを逆順に取り消す（補償処理）ことで整合性を保つ。
"""

from __future__ import annotations

import logging

from chorebook.domain.errors import ChorebookError, RepositoryFailure
from chorebook.domain.ports import AsyncWrite, UnitOfWork

logger = logging.getLogger(__name__)


class CompensatingUnitOfWork(UnitOfWork):
    """
    登録された書き込みを順に適用する UnitOfWork。

    - commit() は1回だけ呼べる
    - 途中で失敗したら、適用済みの書き込みの compensate を逆順に実行
    - ドメインエラーはそのまま、それ以外の例外は RepositoryFailure にして送出
    - 補償処理自体が失敗した場合はログに残して残りの補償を続行
    """

    def __init__(self) -> None:
        self._steps: list[tuple[AsyncWrite, AsyncWrite | None]] = []
        self._committed = False

    def add(self, apply: AsyncWrite, compensate: AsyncWrite | None = None) -> None:
        if self._committed:
            raise RuntimeError("Unit of work has already been committed")
        self._steps.append((apply, compensate))

    async def commit(self) -> None:
        if self._committed:
            raise RuntimeError("Unit of work has already been committed")
        self._committed = True

        applied: list[AsyncWrite | None] = []
        for index, (apply, compensate) in enumerate(self._steps):
            try:
                await apply()
            except Exception as e:
                logger.error(
                    "Unit of work step %d/%d failed, rolling back %d step(s): %s",
                    index + 1,
                    len(self._steps),
                    len(applied),
                    e,
                )
                await self._rollback(applied)
                if isinstance(e, ChorebookError):
                    raise
                raise RepositoryFailure(str(e)) from e
            applied.append(compensate)

        logger.debug("Unit of work committed: steps=%d", len(self._steps))

    @staticmethod
    async def _rollback(applied: list[AsyncWrite | None]) -> None:
        for compensate in reversed(applied):
            if compensate is None:
                continue
            try:
                await compensate()
            except Exception:
                logger.exception("Compensation step failed")
