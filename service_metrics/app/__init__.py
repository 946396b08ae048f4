"""
Metric server package.

Accepts gauge and counter updates over HTTP in three encodings (path, JSON
object, JSON batch), optionally HMAC-signed, and keeps them in an in-memory
store with file snapshots or in PostgreSQL.
"""
