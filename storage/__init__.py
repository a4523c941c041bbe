"""
Storage Package.

This package manages all data persistence.

Modules:
- database: Engine, sessions and schema initialization
- models/: ORM models
- repositories/: Data access layer
- maintenance: Startup repair of grant rows
"""
