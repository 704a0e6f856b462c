"""Open-data dump parsers.

One module per entity family, each turning the extracted JSON files of one
source into typed records from :mod:`activite_deputes.models`:

  - ``deputes``      – representatives and organs (groups, parties, ...)
  - ``strategies``   – aggregated vs one-file-per-entity registry layouts
  - ``scrutins``     – roll-call votes
  - ``amendements``  – amendments
  - ``dossiers``     – legislative files
  - ``dataset``      – runs every parser over the work directory

Per-file failures are logged and skipped.  Only an absent or empty
representative registry is fatal.
"""
