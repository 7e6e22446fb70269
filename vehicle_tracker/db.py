import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import psycopg2
import psycopg2.errors
import psycopg2.extras
from psycopg2 import sql

logger = logging.getLogger(__name__)


def connect(params: Dict[str, str]) -> "PostgresConnection":
    """Open a connection with keyword parameters (host, port, dbname, user, password)."""
    logger.info(f"Connecting to database {params.get('dbname')} on {params.get('host')}...")
    conn = psycopg2.connect(**params)
    logger.info("Database connection established")
    return PostgresConnection(conn)


@dataclass
class PostgresConnection:
    conn: Any
    statement_timeout_ms: int = 10000

    def execute_query(
        self,
        query: Union[str, sql.Composable],
        params: Optional[Sequence[Any]] = None,
        max_rows: int = 100000,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Execute a query and return results as a list of dictionaries with total count."""
        start_time = time.time()
        with self.conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            try:
                cur.execute("SET statement_timeout = %s", (self.statement_timeout_ms,))
                cur.execute(query, params)
                logger.debug(f"Query execution time: {time.time() - start_time:.3f} seconds")
                total_rows = cur.rowcount
                results = cur.fetchmany(max_rows)
                logger.debug(f"Got {total_rows} rows")
                return results, total_rows
            except psycopg2.errors.QueryCanceled:
                self.conn.rollback()
                raise TimeoutError("Query execution timed out")
            except Exception:
                self.conn.rollback()
                raise

    def fetch_route_points(
        self,
        route_id: Any,
        table: str = "route_points",
        route_column: str = "route_id",
        order_column: str = "seq",
    ) -> List[Dict[str, Any]]:
        """Rows of ``{latitude, longitude, timestamp}`` for one route, in playback order."""
        query = sql.SQL(
            "SELECT latitude, longitude, timestamp FROM {table} "
            "WHERE {route_column} = %s ORDER BY {order_column}"
        ).format(
            table=sql.Identifier(table),
            route_column=sql.Identifier(route_column),
            order_column=sql.Identifier(order_column),
        )
        rows, _ = self.execute_query(query, (route_id,))
        return rows

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
