"""Row source running catalog queries on a DuckDB connection."""

import logging
from typing import Any, Callable, Iterator, List, Optional, Sequence

import duckdb

from ..cache.rows import LoadContext, Row, RowCursor, RowSource
from ..exceptions import QueryError, SourceConnectionError

logger = logging.getLogger(__name__)


def _short(sql: str, limit: int = 120) -> str:
    text = " ".join(sql.split())
    return text if len(text) <= limit else text[: limit - 3] + "..."


class DuckDBRowSource(RowSource):
    """Executes one statement per open() on the connection in ctx.session.

    The connection is never retained: every open() uses a fresh cursor of
    the connection the caller supplied.
    """

    def __init__(
        self,
        sql: str,
        key_sql: Optional[str] = None,
        params: Optional[Callable[[Any], Sequence[Any]]] = None,
        name: Optional[str] = None,
    ):
        """Initialize DuckDB row source.

        Args:
            sql: Full enumeration statement
            key_sql: Statement narrowed by one extra trailing parameter
                (object name or parent name)
            params: Callable(owner) returning the positional parameters
                that precede the key (e.g. the schema name)
            name: Label for logging
        """
        self.sql = sql
        self.key_sql = key_sql
        self._params = params or (lambda owner: ())
        self._name = name

    @property
    def name(self) -> str:
        return self._name or super().name

    def open(self, ctx: LoadContext, owner: Any, key: Optional[str] = None) -> RowCursor:
        """Run the statement.

        Raises:
            SourceConnectionError: If ctx carries no usable connection
            QueryError: If DuckDB rejects the statement
        """
        connection = ctx.session
        if connection is None:
            raise SourceConnectionError(f"{self.name}: no DuckDB connection in load context")

        if key is not None and self.key_sql is None:
            raise QueryError(f"{self.name} does not support single-name queries", context={"key": key})

        sql = self.key_sql if key is not None else self.sql
        params: List[Any] = list(self._params(owner))
        if key is not None:
            params.append(key)

        logger.debug("%s: %s %r", self.name, _short(sql), params)
        try:
            cursor = connection.cursor()
        except duckdb.Error as e:
            raise SourceConnectionError(f"{self.name}: connection unusable: {e}") from e

        try:
            cursor.execute(sql, params)
            columns = [d[0] for d in cursor.description]
        except duckdb.ConnectionException as e:
            cursor.close()
            raise SourceConnectionError(f"{self.name}: {e}", context={"query": _short(sql)}) from e
        except duckdb.Error as e:
            cursor.close()
            raise QueryError(f"{self.name}: {e}", context={"query": _short(sql)}) from e

        return RowCursor(self._iterate(cursor, columns, ctx.fetch_size, sql), on_close=cursor.close)

    def _iterate(self, cursor: Any, columns: List[str], fetch_size: int, sql: str) -> Iterator[Row]:
        while True:
            try:
                batch = cursor.fetchmany(fetch_size)
            except duckdb.Error as e:
                raise QueryError(f"{self.name}: {e}", context={"query": _short(sql)}) from e
            if not batch:
                return
            for values in batch:
                yield Row(dict(zip(columns, values)))
