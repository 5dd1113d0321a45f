"""Backend-service profiles for dbtestbed.

Each ``BackendSpec`` carries everything needed to start one database
engine in a throwaway container, recognise from its log that it accepts
connections, and point a test suite at it, plus the defaults used when
testing against an already-running local server instead.

Key Concepts:
    BackendSpec: Frozen dataclass: name, dialect, image, port, container
        env, readiness marker, connection URL template, credentials.
    BACKENDS: Registry dict mapping name → BackendSpec, in the order
        ``all`` runs them.
    get_backend() / get_backends(): Case-insensitive lookup with ``all``
        expansion.

Readiness markers are a contract with each engine's own log format. If an
image upgrade changes the phrase, the readiness wait stops firing; bump the
image tag and marker together.

Tags:
    backends, database, docker, readiness, registry, specs
"""

from __future__ import annotations

from dataclasses import dataclass, field

from dbtestbed.core.errors import UnknownBackendError


@dataclass(frozen=True)
class BackendSpec:
    """Specification for one kind of database engine."""

    name: str
    """Short name (e.g., 'mysql')."""

    dialect: str
    """Dialect name exported to the test suite."""

    image: str
    """Container image reference."""

    port: int
    """Port the engine listens on inside the container."""

    env: dict[str, str]
    """Environment variables injected at ``run``."""

    ready_marker: str
    """Log substring that means the engine accepts connections."""

    connection_url_template: str
    """URL template with {user}, {password}, {host}, {port}, {db} placeholders."""

    ready_occurrences: int = 1
    """How many times the marker must be logged before the engine is ready."""

    container_name: str = ""
    """Well-known container name used by docker runs."""

    container_user: str = "dbtestbed"
    container_password: str = "dbtestbed"
    container_database: str = "dbtestbed"

    default_host: str = "127.0.0.1"
    """Host used against a local server when none is given."""

    default_user: str = "dbtestbed"
    default_password: str = "dbtestbed"
    default_database: str = "dbtestbed"

    notes: str = ""
    """Operator-facing remarks shown by `dbtestbed test backends`."""

    aliases: tuple[str, ...] = field(default_factory=tuple)
    """Alternative lookup names (e.g., 'postgres')."""

    def connection_url(
        self,
        host: str,
        port: int | None = None,
        user: str | None = None,
        password: str | None = None,
        database: str | None = None,
    ) -> str:
        """Render the connection URL template."""
        return self.connection_url_template.format(
            user=user if user is not None else self.default_user,
            password=password if password is not None else self.default_password,
            host=host,
            port=port or self.port,
            db=database if database is not None else self.default_database,
        )


# ---------------------------------------------------------------------------
# Pre-defined database backends
# ---------------------------------------------------------------------------

MYSQL = BackendSpec(
    name="mysql",
    dialect="mysql",
    image="mysql:8.4",
    port=3306,
    env={
        "MYSQL_ROOT_PASSWORD": "dbtestbed",
        "MYSQL_DATABASE": "dbtestbed",
    },
    # The init server logs "port: 0"; only the real server mentions 3306.
    ready_marker="port: 3306  MySQL Community Server",
    connection_url_template="mysql+pymysql://{user}:{password}@{host}:{port}/{db}",
    container_name="dbtestbed_mysql",
    container_user="root",
    container_password="dbtestbed",
    container_database="dbtestbed",
    notes="Connects as root inside the container.",
)

POSTGRESQL = BackendSpec(
    name="postgresql",
    dialect="postgres",
    image="postgres:16-alpine",
    port=5432,
    env={
        "POSTGRES_USER": "dbtestbed",
        "POSTGRES_PASSWORD": "dbtestbed",
        "POSTGRES_DB": "dbtestbed",
    },
    ready_marker="database system is ready to accept connections",
    # Logged once by the temporary init server, then by the real one.
    ready_occurrences=2,
    notes="Waits for the ready marker twice: init server, then real server.",
    connection_url_template="postgresql://{user}:{password}@{host}:{port}/{db}",
    container_name="dbtestbed_postgres",
    aliases=("postgres",),
)


# Registry of all pre-defined backends, in "all" order
BACKENDS: dict[str, BackendSpec] = {
    "mysql": MYSQL,
    "postgresql": POSTGRESQL,
}


def get_backend(name: str) -> BackendSpec:
    """Look up a backend spec by name or alias (case-insensitive).

    Raises
    ------
    UnknownBackendError
        If backend name is not recognized.
    """
    key = name.lower().strip()
    if key in BACKENDS:
        return BACKENDS[key]
    for spec in BACKENDS.values():
        if key in spec.aliases:
            return spec
    available = ", ".join(sorted(BACKENDS.keys()))
    raise UnknownBackendError(f"Unknown backend: {name!r}. Available: {available}")


def get_backends(names: list[str]) -> list[BackendSpec]:
    """Look up multiple backend specs; ``["all"]`` expands to every backend."""
    if [n.lower().strip() for n in names] == ["all"]:
        return list(BACKENDS.values())
    return [get_backend(n) for n in names]
