"""Cross-cutting pieces: enums, errors, pagination, audit log, rate limiting."""
