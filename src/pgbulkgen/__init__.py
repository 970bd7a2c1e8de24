"""pgbulkgen: fill an empty PostgreSQL database with ~N bytes of random rows."""

__version__ = "0.1.0"
