"""
Routing table for the Medea balancer.

This module records where every accepted workflow was placed so that later
status, stop and delete requests can be sent to the cluster that owns it.

Key features:
- SQLite-based persistent storage with WAL mode for concurrency
- Append-only records: a resubmission adds a row, nothing is updated or deleted
- Newest-wins lookup by (workflow name, namespace)
- Automatic schema creation
- Context manager for safe database operations

The database schema:
- workflows: one row per successful submission
  (id, workflowname, workflowtemplate, namespace, cluster, created_at)

Every sqlite failure is raised as PersistenceError. The balancer logs write
failures without touching the response already received from the cluster;
lookup failures are reported to the caller.
"""

import time
import sqlite3
from pathlib import Path
from contextlib import contextmanager
from dataclasses import dataclass, asdict, field
from typing import List, Optional, Dict

from medea.errors import PersistenceError, RoutingNotFound
from medea.utils.logging import get_logger

log = get_logger("state")


@dataclass
class RoutingRecord:
    """Binds an accepted workflow to the cluster that runs it."""

    workflow_name: str
    workflow_template: str
    namespace: str
    cluster: str
    created_at: float = field(default_factory=time.time)
    id: Optional[int] = None

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "RoutingRecord":
        return cls(
            workflow_name=row["workflowname"],
            workflow_template=row["workflowtemplate"],
            namespace=row["namespace"],
            cluster=row["cluster"],
            created_at=row["created_at"],
            id=row["id"],
        )


class RoutingTable:
    """
    Durable mapping from (workflow name, namespace) to the owning cluster.

    Each operation opens its own short-lived connection, so one instance can
    be shared by concurrent request threads.
    """

    def __init__(self, db_path: Path, timeout: float = 10.0):
        """
        :param db_path: Path of the sqlite database file.
        :param timeout: Seconds to wait for a locked database.
        """
        self.db_path = Path(db_path)
        self.timeout = timeout

    @contextmanager
    def _get_conn(self):
        """
        Get a database connection with proper settings.

        Commits on success and rolls back on exceptions. Always closes the
        connection when exiting the context. sqlite errors are raised as
        PersistenceError.

        :return: SQLite connection object.
        """
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        except (OSError, sqlite3.Error) as e:
            raise PersistenceError(f"Cannot open routing database {self.db_path}: {e}") from e

        conn.row_factory = sqlite3.Row  # Access columns by name
        try:
            conn.execute("PRAGMA journal_mode=WAL")  # Better concurrent access
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"Routing database error: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_db(self) -> None:
        """
        Create the workflows table and its lookup index if they don't exist.

        Safe to call multiple times.

        :raises PersistenceError: If the database cannot be opened or written.
        """
        with self._get_conn() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS workflows (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    workflowname TEXT NOT NULL,
                    workflowtemplate TEXT NOT NULL,
                    namespace TEXT NOT NULL,
                    cluster TEXT NOT NULL,
                    created_at REAL NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_workflows_lookup
                    ON workflows(workflowname, namespace);
            """)
        log.debug(f"Routing database initialized at {self.db_path}")

    def put(self, record: RoutingRecord) -> int:
        """
        Append a routing record.

        :param record: Record to store. Its id is set on success.
        :return: Row id of the new record.
        """
        with self._get_conn() as conn:
            cursor = conn.execute("""
                INSERT INTO workflows (workflowname, workflowtemplate, namespace, cluster, created_at)
                VALUES (?, ?, ?, ?, ?)
            """, (
                record.workflow_name,
                record.workflow_template,
                record.namespace,
                record.cluster,
                record.created_at,
            ))
            record.id = cursor.lastrowid
        log.info(f"Workflow {record.workflow_name} saved to routing table (cluster: {record.cluster})")
        return record.id

    def resolve(self, workflow_name: str, namespace: str) -> str:
        """
        Find the cluster that owns a workflow.

        :param workflow_name: Name assigned by the downstream cluster.
        :param namespace: Namespace of the workflow.
        :return: Cluster of the most recently created matching record.
        :raises RoutingNotFound: If no record matches.
        """
        with self._get_conn() as conn:
            row = conn.execute("""
                SELECT cluster FROM workflows
                WHERE workflowname = ? AND namespace = ?
                ORDER BY created_at DESC, id DESC
                LIMIT 1
            """, (workflow_name, namespace)).fetchone()

        if row is None:
            raise RoutingNotFound(f"Workflow '{workflow_name}' not found in namespace '{namespace}'")
        return row["cluster"]

    def list_records(self,
                     namespace: str = None,
                     workflow_name: str = None,
                     limit: int = 100) -> List[RoutingRecord]:
        """
        List records with optional filters, newest first.

        :param namespace: Only records of this namespace.
        :param workflow_name: Only records of this workflow name.
        :param limit: Maximum number of records to return.
        """
        query = "SELECT * FROM workflows WHERE 1=1"
        params = []

        if namespace:
            query += " AND namespace = ?"
            params.append(namespace)
        if workflow_name:
            query += " AND workflowname = ?"
            params.append(workflow_name)

        query += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(limit)

        with self._get_conn() as conn:
            rows = conn.execute(query, params).fetchall()
        return [RoutingRecord.from_row(row) for row in rows]

    def count(self) -> int:
        """Total number of routing records."""
        with self._get_conn() as conn:
            return conn.execute("SELECT COUNT(*) FROM workflows").fetchone()[0]
