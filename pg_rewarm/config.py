"""
Configuration management for pg_rewarm.

Supports:
- TOML config files
- libpq environment variables (PGHOST, PGPORT, PGUSER, PGPASSWORD, PGDATABASE)
- Command-line overrides
- Sensible defaults

Priority (highest to lowest):
1. Command-line arguments
2. Environment variables
3. Config file
4. Defaults
"""

import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Mapping

try:
    import tomllib  # Python 3.11+
except ImportError:
    import tomli as tomllib

from .image import DEFAULT_FORMAT
from .manager import CacheConfig, DEFAULT_BATCH_SIZE


# Default config file locations (searched in order)
CONFIG_SEARCH_PATHS = [
    Path.cwd() / "pg_rewarm.toml",
    Path.home() / ".config" / "pg_rewarm" / "config.toml",
]

DEFAULT_SAVE_FILE = "pg_rewarm.img"


@dataclass
class DatabaseConfig:
    """Database connection configuration."""
    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: str = ""
    name: str = "postgres"


@dataclass
class RewarmConfig:
    """Save/restore behaviour."""
    image_format: str = DEFAULT_FORMAT
    batch_size: int = DEFAULT_BATCH_SIZE
    save_file: str = DEFAULT_SAVE_FILE
    concurrency: int = 1
    connect_timeout: int = 10              # seconds
    statement_timeout: int = 30000         # milliseconds


@dataclass
class OutputConfig:
    """Output configuration."""
    verbose: bool = False
    quiet: bool = False


@dataclass
class Config:
    """Main configuration container."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    rewarm: RewarmConfig = field(default_factory=RewarmConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    # Source tracking
    _config_file: Optional[Path] = None

    @classmethod
    def load(
        cls,
        config_path: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "Config":
        """
        Load configuration from file, then apply environment variables.

        Args:
            config_path: Explicit path to config file. If None, searches default locations.
            environ: Environment mapping (defaults to os.environ)

        Returns:
            Config instance with loaded values
        """
        config = cls()

        if config_path:
            path = Path(config_path)
            if not path.exists():
                raise FileNotFoundError(f"Config file not found: {config_path}")
        else:
            path = cls._find_config_file()

        if path:
            config = cls._load_from_file(path)
            config._config_file = path

        config.apply_environment(os.environ if environ is None else environ)
        return config

    @classmethod
    def _find_config_file(cls) -> Optional[Path]:
        """Find config file in default locations."""
        for path in CONFIG_SEARCH_PATHS:
            if path.exists():
                return path
        return None

    @classmethod
    def _load_from_file(cls, path: Path) -> "Config":
        """Load config from TOML file."""
        with open(path, "rb") as f:
            data = tomllib.load(f)

        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create Config from dictionary."""
        config = cls()

        # Database
        if "database" in data:
            db = data["database"]
            config.database = DatabaseConfig(
                host=db.get("host", config.database.host),
                port=db.get("port", config.database.port),
                user=db.get("user", config.database.user),
                password=db.get("password", config.database.password),
                name=db.get("name", config.database.name),
            )

        # Save/restore
        if "rewarm" in data:
            rw = data["rewarm"]
            config.rewarm = RewarmConfig(
                image_format=rw.get("image_format", config.rewarm.image_format),
                batch_size=rw.get("batch_size", config.rewarm.batch_size),
                save_file=rw.get("save_file", config.rewarm.save_file),
                concurrency=rw.get("concurrency", config.rewarm.concurrency),
                connect_timeout=rw.get("connect_timeout", config.rewarm.connect_timeout),
                statement_timeout=rw.get("statement_timeout", config.rewarm.statement_timeout),
            )

        # Output
        if "output" in data:
            out = data["output"]
            config.output = OutputConfig(
                verbose=out.get("verbose", config.output.verbose),
                quiet=out.get("quiet", config.output.quiet),
            )

        return config

    def apply_environment(self, environ: Mapping[str, str]) -> "Config":
        """Override database settings from libpq environment variables."""
        if environ.get("PGHOST"):
            self.database.host = environ["PGHOST"]
        if environ.get("PGPORT"):
            try:
                self.database.port = int(environ["PGPORT"])
            except ValueError:
                raise ValueError(f"PGPORT must be an integer, got {environ['PGPORT']!r}") from None
        if environ.get("PGUSER"):
            self.database.user = environ["PGUSER"]
        if environ.get("PGPASSWORD"):
            self.database.password = environ["PGPASSWORD"]
        if environ.get("PGDATABASE"):
            self.database.name = environ["PGDATABASE"]
        return self

    def override_from_args(self, args) -> "Config":
        """
        Override config values from argparse namespace.

        Args with value None are ignored (keeping config file values).
        """
        # Database overrides
        if getattr(args, "host", None):
            self.database.host = args.host
        if getattr(args, "port", None):
            self.database.port = args.port
        if getattr(args, "user", None):
            self.database.user = args.user
        if getattr(args, "password", None):
            self.database.password = args.password
        if getattr(args, "dbname", None):
            self.database.name = args.dbname

        # Save/restore overrides
        if getattr(args, "image_format", None):
            self.rewarm.image_format = args.image_format
        if getattr(args, "batch_size", None) is not None:
            self.rewarm.batch_size = args.batch_size
        if getattr(args, "save_file", None):
            self.rewarm.save_file = args.save_file
        if getattr(args, "concurrency", None) is not None:
            self.rewarm.concurrency = args.concurrency
        if getattr(args, "connect_timeout", None) is not None:
            self.rewarm.connect_timeout = args.connect_timeout
        if getattr(args, "statement_timeout", None) is not None:
            self.rewarm.statement_timeout = args.statement_timeout

        # Output overrides
        if getattr(args, "verbose", None):
            self.output.verbose = True
        if getattr(args, "quiet", None):
            self.output.quiet = True
            self.output.verbose = False

        return self

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation error messages (empty if valid)
        """
        errors = []

        if not self.database.host:
            errors.append("Database host is required")
        if not self.database.user:
            errors.append("Database user is required")
        if not self.rewarm.save_file:
            errors.append("Save file is required")

        for name in ("batch_size", "concurrency", "connect_timeout", "statement_timeout"):
            value = getattr(self.rewarm, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                errors.append(f"{name} must be a positive integer (got {value!r})")

        port = self.database.port
        if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
            errors.append(f"Port must be between 1 and 65535 (got {port!r})")

        return errors

    def to_cache_config(self) -> CacheConfig:
        """Build the engine's configuration value object."""
        return CacheConfig(
            image_format=self.rewarm.image_format,
            batch_size=self.rewarm.batch_size,
            host=self.database.host,
            port=self.database.port,
            user=self.database.user,
            password=self.database.password,
            database=self.database.name,
            concurrency=self.rewarm.concurrency,
            connect_timeout=self.rewarm.connect_timeout,
            statement_timeout=self.rewarm.statement_timeout,
        )

    def summary(self, include_config_path: bool = True) -> str:
        """Generate human-readable config summary."""
        lines = []

        if include_config_path:
            if self._config_file:
                lines.append(f"Config: {self._config_file}")
            else:
                lines.append("Config: (defaults)")

        lines.append(f"Database: {self.database.user}@{self.database.host}:{self.database.port}/{self.database.name}")
        lines.append(f"Image: {self.rewarm.save_file} ({self.rewarm.image_format})")
        lines.append(
            f"Restore: batches of {self.rewarm.batch_size}, "
            f"{self.rewarm.concurrency} concurrent fetch(es)"
        )

        return "\n".join(lines)


def create_example_config(path: str = "pg_rewarm.toml") -> Path:
    """Create example config file."""
    target = Path(path)

    if target.exists():
        raise FileExistsError(f"Config file already exists: {path}")

    target.write_text("""# pg_rewarm Configuration

[database]
host = "localhost"
port = 5432
user = "postgres"
password = ""
name = "postgres"

[rewarm]
image_format = "json"      # json | sqlite
batch_size = 1000
save_file = "pg_rewarm.img"
concurrency = 1
connect_timeout = 10       # seconds
statement_timeout = 30000  # milliseconds

[output]
verbose = false
""")

    return target
