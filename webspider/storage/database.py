"""
Result sink for crawled pages.
Supports SQLite, file-based and Cassandra storage.
"""

import hashlib
import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from ..crawler.results import PageResult
from ..crawler.robots import HostPolicy
from ..errors import SinkError
from ..utils.config import DatabaseConfig
from ..utils.logger import TRACE


def _url_hash(url: str) -> str:
    return hashlib.sha256(url.encode('utf-8')).hexdigest()


class StorageBackend:
    """Abstract base class for storage backends."""

    async def initialize(self):
        """Initialize the storage backend."""
        raise NotImplementedError

    async def record(self, result: PageResult):
        """Persist one page result and its outbound link edges."""
        raise NotImplementedError

    async def record_domain(self, policy: HostPolicy):
        """Persist the robots.txt fetched for a host."""
        raise NotImplementedError

    async def get_stats(self) -> Dict[str, Any]:
        """Get storage statistics."""
        raise NotImplementedError

    async def close(self):
        """Close storage connections."""
        raise NotImplementedError


class SQLiteStorageBackend(StorageBackend):
    """
    SQLite storage in <database_name>.db.

    Tables:
      sites(url, crawl_time, depth, status, status_code, error, links_to)
      links(source, target)
      domains(domain, crawl_time, robots)
    """

    def __init__(self, database_name: str):
        if database_name == ':memory:' or database_name.endswith('.db'):
            self.path = database_name
        else:
            self.path = f"{database_name}.db"
        self.conn: Optional[sqlite3.Connection] = None
        self.logger = logging.getLogger(__name__)

    async def initialize(self):
        try:
            self.conn = sqlite3.connect(self.path, check_same_thread=False)
            self.logger.info(f"Opened database connection to '{self.path}'")
            self._setup()
        except sqlite3.Error as e:
            raise SinkError(f"Failed to open SQLite database {self.path}: {e}") from e

    def _setup(self):
        self.logger.log(TRACE, "Setting up SQLite table 'sites'")
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS sites (
                url TEXT PRIMARY KEY,
                crawl_time TEXT NOT NULL,
                depth INTEGER NOT NULL,
                status TEXT NOT NULL,
                status_code INTEGER,
                error TEXT,
                links_to TEXT
            )
        """)
        self.logger.log(TRACE, "Setting up SQLite table 'links'")
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS links (
                source TEXT NOT NULL,
                target TEXT NOT NULL,
                PRIMARY KEY (source, target)
            )
        """)
        self.logger.log(TRACE, "Setting up SQLite table 'domains'")
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS domains (
                domain TEXT PRIMARY KEY,
                crawl_time TEXT NOT NULL,
                robots TEXT
            )
        """)
        self.conn.commit()

    async def record(self, result: PageResult):
        error = result.error.message if result.error else None
        crawl_time = result.fetched_at.isoformat()
        try:
            with self.conn:
                self.conn.execute(
                    "INSERT OR REPLACE INTO sites "
                    "(url, crawl_time, depth, status, status_code, error, links_to) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (result.url, crawl_time, result.depth, result.status.value,
                     result.status_code, error, json.dumps(result.extracted_links))
                )
                self.conn.executemany(
                    "INSERT OR IGNORE INTO links (source, target) VALUES (?, ?)",
                    [(result.url, target) for target in result.extracted_links]
                )
        except sqlite3.Error as e:
            raise SinkError(f"Failed to store {result.url}: {e}") from e

        self.logger.log(TRACE, f"Stored site {result}")

    async def record_domain(self, policy: HostPolicy):
        try:
            with self.conn:
                self.conn.execute(
                    "INSERT OR REPLACE INTO domains (domain, crawl_time, robots) VALUES (?, ?, ?)",
                    (policy.host, policy.fetched_at.isoformat(), policy.robots_txt)
                )
        except sqlite3.Error as e:
            raise SinkError(f"Failed to store domain {policy.host}: {e}") from e

    def count(self, table: str) -> int:
        if table not in ('sites', 'links', 'domains'):
            raise ValueError(f"Unknown table: {table}")
        return self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    async def get_stats(self) -> Dict[str, Any]:
        try:
            stats = {table: self.count(table) for table in ('sites', 'links', 'domains')}
            rows = self.conn.execute("SELECT status, COUNT(*) FROM sites GROUP BY status")
            stats.update({f"sites_{status}": count for status, count in rows})
            return stats
        except sqlite3.Error as e:
            raise SinkError(f"Failed to read statistics: {e}") from e

    async def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None


class FileStorageBackend(StorageBackend):
    """File-based storage: one JSON document per URL and per host."""

    def __init__(self, data_directory: str):
        self.data_directory = Path(data_directory)
        self.logger = logging.getLogger(__name__)
        self.stats = {
            'total_stored': 0,
            'domains_stored': 0
        }
        self._index: Dict[str, Dict[str, str]] = {}

    async def initialize(self):
        """Create data directory structure."""
        try:
            for subdir in ('content', 'domains', 'index'):
                (self.data_directory / subdir).mkdir(parents=True, exist_ok=True)

            index_file = self._index_file()
            if index_file.exists():
                with open(index_file, 'r', encoding='utf-8') as f:
                    self._index = json.load(f)
        except (OSError, ValueError) as e:
            raise SinkError(f"Failed to initialize file storage: {e}") from e

        self.logger.info(f"File storage initialized at {self.data_directory}")

    def _index_file(self) -> Path:
        return self.data_directory / 'index' / 'url_index.json'

    def _get_file_path(self, url: str) -> Path:
        """Generate file path for URL."""
        url_hash = _url_hash(url)
        # Use first 2 chars for directory structure
        return self.data_directory / 'content' / url_hash[:2] / f"{url_hash}.json"

    def _write_json(self, path: Path, data: Any):
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(data, f, ensure_ascii=False, indent=2)

    async def record(self, result: PageResult):
        file_path = self._get_file_path(result.url)
        data = result.to_dict()
        data['stored_at'] = datetime.now(timezone.utc).isoformat()

        try:
            self._write_json(file_path, data)
            self._index[result.url] = {
                'file_path': str(file_path.relative_to(self.data_directory)),
                'status': result.status.value
            }
            self._write_json(self._index_file(), self._index)
        except (OSError, TypeError) as e:
            raise SinkError(f"Failed to store {result.url}: {e}") from e

        self.stats['total_stored'] += 1
        self.logger.log(TRACE, f"Stored content to {file_path}")

    async def record_domain(self, policy: HostPolicy):
        path = self.data_directory / 'domains' / f"{_url_hash(policy.host)}.json"
        try:
            self._write_json(path, {
                'domain': policy.host,
                'crawl_time': policy.fetched_at.isoformat(),
                'robots': policy.robots_txt
            })
        except OSError as e:
            raise SinkError(f"Failed to store domain {policy.host}: {e}") from e
        self.stats['domains_stored'] += 1

    def load(self, url: str) -> Optional[Dict[str, Any]]:
        """Read back the stored document for a URL."""
        file_path = self._get_file_path(url)
        if not file_path.exists():
            return None
        with open(file_path, 'r', encoding='utf-8') as f:
            return json.load(f)

    async def get_stats(self) -> Dict[str, Any]:
        return {**self.stats, 'indexed_urls': len(self._index)}

    async def close(self):
        pass


class CassandraStorageBackend(StorageBackend):
    """Cassandra storage backend for large crawls."""

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.cluster = None
        self.session = None
        self.logger = logging.getLogger(__name__)
        self.stats = {
            'total_stored': 0,
            'domains_stored': 0
        }
        self._insert_site = None
        self._insert_domain = None

    async def initialize(self):
        """Initialize Cassandra connection and keyspace."""
        try:
            from cassandra.cluster import Cluster
            from cassandra.policies import DCAwareRoundRobinPolicy
        except ImportError as e:
            raise SinkError("Cassandra driver not available. Install the 'cassandra' extra.") from e

        keyspace = self.config.get('keyspace', 'webspider')
        replication_factor = self.config.get('replication_factor', 1)

        try:
            self.cluster = Cluster(
                self.config.get('hosts', ['localhost']),
                port=self.config.get('port', 9042),
                load_balancing_policy=DCAwareRoundRobinPolicy()
            )
            self.session = self.cluster.connect()
            self.session.execute(f"""
                CREATE KEYSPACE IF NOT EXISTS {keyspace}
                WITH replication = {{
                    'class': 'SimpleStrategy',
                    'replication_factor': {replication_factor}
                }}
            """)
            self.session.set_keyspace(keyspace)
            self._create_tables()
        except Exception as e:
            raise SinkError(f"Failed to initialize Cassandra: {e}") from e

        self.logger.info(f"Cassandra storage initialized with keyspace: {keyspace}")

    def _create_tables(self):
        self.session.execute("""
            CREATE TABLE IF NOT EXISTS sites (
                url text PRIMARY KEY,
                crawl_time timestamp,
                depth int,
                status text,
                status_code int,
                error text,
                links_to list<text>
            )
        """)
        self.session.execute("""
            CREATE TABLE IF NOT EXISTS domains (
                domain text PRIMARY KEY,
                crawl_time timestamp,
                robots text
            )
        """)
        self._insert_site = self.session.prepare(
            "INSERT INTO sites (url, crawl_time, depth, status, status_code, error, links_to) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)"
        )
        self._insert_domain = self.session.prepare(
            "INSERT INTO domains (domain, crawl_time, robots) VALUES (?, ?, ?)"
        )

    async def record(self, result: PageResult):
        try:
            self.session.execute(self._insert_site, (
                result.url,
                result.fetched_at,
                result.depth,
                result.status.value,
                result.status_code,
                result.error.message if result.error else None,
                result.extracted_links
            ))
        except Exception as e:
            raise SinkError(f"Failed to store {result.url}: {e}") from e
        self.stats['total_stored'] += 1

    async def record_domain(self, policy: HostPolicy):
        try:
            self.session.execute(self._insert_domain,
                                 (policy.host, policy.fetched_at, policy.robots_txt))
        except Exception as e:
            raise SinkError(f"Failed to store domain {policy.host}: {e}") from e
        self.stats['domains_stored'] += 1

    async def get_stats(self) -> Dict[str, Any]:
        return self.stats.copy()

    async def close(self):
        if self.cluster:
            self.cluster.shutdown()
            self.cluster = None
            self.logger.info("Cassandra connections closed")


class DatabaseManager:
    """
    The crawl's sink. Selects a backend and shields the crawl from its failures.

    record() never raises: a failed write is logged and counted, and the
    crawl goes on without that record.
    """

    def __init__(self, config: DatabaseConfig, monitor=None):
        self.config = config
        self.monitor = monitor
        self.backend: Optional[StorageBackend] = None
        self.logger = logging.getLogger(__name__)
        self.stats = {
            'records': 0,
            'record_errors': 0,
            'domain_records': 0,
            'domain_errors': 0
        }

    async def initialize(self):
        """Initialize the appropriate storage backend. Raises SinkError on failure."""
        backend_type = self.config.type.lower()

        if backend_type == 'sqlite':
            self.backend = SQLiteStorageBackend(self.config.database_name)
        elif backend_type == 'file':
            self.backend = FileStorageBackend(self.config.file.get('data_directory', 'data'))
        elif backend_type == 'cassandra':
            self.backend = CassandraStorageBackend(self.config.cassandra)
        else:
            raise SinkError(f"Unknown database type: {backend_type}")

        await self.backend.initialize()
        self.logger.info(f"Database manager initialized with {backend_type} backend")

    async def record(self, result: PageResult) -> bool:
        """Store a page result. Returns False if the backend failed."""
        if not self.backend:
            raise SinkError("Database not initialized")

        try:
            await self.backend.record(result)
        except SinkError as e:
            self.stats['record_errors'] += 1
            if self.monitor:
                self.monitor.record_sink_error()
            self.logger.error(f"Sink error, dropping record for {result.url}: {e}")
            return False

        self.stats['records'] += 1
        return True

    async def record_domain(self, policy: HostPolicy) -> bool:
        """Store a host's robots.txt. Returns False if the backend failed."""
        if not self.backend:
            raise SinkError("Database not initialized")

        try:
            await self.backend.record_domain(policy)
        except SinkError as e:
            self.stats['domain_errors'] += 1
            self.logger.error(f"Sink error, dropping domain record for {policy.host}: {e}")
            return False

        self.stats['domain_records'] += 1
        return True

    async def get_stats(self) -> Dict[str, Any]:
        """Get sink and backend statistics."""
        if not self.backend:
            raise SinkError("Database not initialized")
        try:
            backend_stats = await self.backend.get_stats()
        except SinkError as e:
            self.logger.warning(f"Could not read backend statistics: {e}")
            backend_stats = {}
        return {**self.stats, **backend_stats}

    async def summarize(self):
        """Log the number of stored entries per table."""
        stats = await self.get_stats()
        for key in ('sites', 'links', 'domains'):
            if key in stats:
                self.logger.info(f"{stats[key]} entries in {key} table")

    async def close(self):
        """Close database connections."""
        if self.backend:
            await self.backend.close()
            self.backend = None
            self.logger.debug("Database connections closed")
